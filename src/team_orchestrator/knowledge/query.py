"""Knowledge query tools offered to specialists: list, search, read."""

import logging
from typing import Any, Optional

from ..errors import EmbeddingUnavailable, ProviderError
from .store import KnowledgeStore

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_K = 5
MAX_SEARCH_K = 10

LIST_DOCUMENTS = "list_documents"
SEARCH_DOCUMENTS = "search_documents"
READ_DOCUMENT = "read_knowledge_document"


def _to_int(value: Any) -> Optional[int]:
	if value is None or isinstance(value, bool):
		return None
	try:
		return int(float(value))
	except (TypeError, ValueError):
		return None


def clamp_k(value: Any, default: int = DEFAULT_SEARCH_K, maximum: int = MAX_SEARCH_K) -> int:
	"""Clamp a requested result count into 1..maximum."""
	n = _to_int(value)
	if n is None:
		return default
	return max(1, min(maximum, n))


def knowledge_tool_definitions(max_k: int = MAX_SEARCH_K, default_k: int = DEFAULT_SEARCH_K) -> list[dict]:
	"""JSON-schema tool definitions for the model."""
	return [
		{
			"name": LIST_DOCUMENTS,
			"description": "Lists all documents in the team knowledge base with their IDs and titles.",
			"input_schema": {"type": "object", "properties": {}, "required": []},
		},
		{
			"name": SEARCH_DOCUMENTS,
			"description": "Performs a semantic search over the team knowledge base.",
			"input_schema": {
				"type": "object",
				"properties": {
					"query": {"type": "string", "description": "The search query string."},
					"k": {
						"type": "integer",
						"description": f"Number of results to return (1-{max_k}). Defaults to {default_k}.",
					},
				},
				"required": ["query"],
			},
		},
		{
			"name": READ_DOCUMENT,
			"description": (
				"Reads the content of a document from the team knowledge base. "
				"You can specify line ranges to read only a portion of the document."
			),
			"input_schema": {
				"type": "object",
				"properties": {
					"document_id": {
						"type": "string",
						"description": "The unique ID of the document to read (e.g., from search results).",
					},
					"start_line": {
						"type": "integer",
						"description": "Optional: the starting line number (1-based, inclusive).",
					},
					"end_line": {
						"type": "integer",
						"description": "Optional: the ending line number (1-based, inclusive).",
					},
				},
				"required": ["document_id"],
			},
		},
	]


class KnowledgeQuery:
	"""Text-returning query surface over a KnowledgeStore for one conversation."""

	TOOL_NAMES = (LIST_DOCUMENTS, SEARCH_DOCUMENTS, READ_DOCUMENT)

	def __init__(
		self,
		store: KnowledgeStore,
		conversation_id: str,
		default_k: int = DEFAULT_SEARCH_K,
		max_k: int = MAX_SEARCH_K,
	):
		self.store = store
		self.conversation_id = conversation_id
		self.default_k = default_k
		self.max_k = max_k

	def definitions(self) -> list[dict]:
		return knowledge_tool_definitions(self.max_k, self.default_k)

	def handles(self, tool_name: str) -> bool:
		return tool_name in self.TOOL_NAMES

	async def execute(self, tool_name: str, args: dict) -> str:
		"""Dispatch a tool call by name."""
		if tool_name == LIST_DOCUMENTS:
			return await self.list_documents()
		if tool_name == SEARCH_DOCUMENTS:
			return await self.search_documents(args.get("query", ""), args.get("k"))
		if tool_name == READ_DOCUMENT:
			return await self.read_document(
				args.get("document_id", ""), args.get("start_line"), args.get("end_line"),
			)
		return f"Error: unknown knowledge tool {tool_name}"

	async def list_documents(self) -> str:
		docs = await self.store.list(self.conversation_id)
		if not docs:
			return "No documents found in the knowledge base."
		return "\n".join(f"- {d.title} (ID: {d.document_id})" for d in docs)

	async def search_documents(self, query: str, k: Any = None) -> str:
		q = query.strip() if isinstance(query, str) else ""
		if not q:
			return "Error: missing `query` (provide a non-empty search query)."

		desired_k = clamp_k(k, self.default_k, self.max_k)
		try:
			results = await self.store.search(self.conversation_id, q, desired_k)
		except (EmbeddingUnavailable, ProviderError) as e:
			logger.warning(f"Knowledge search failed for {self.conversation_id}: {e}")
			return f"Error: knowledge search is unavailable ({e})."

		if not results:
			return f'No relevant documents found for "{q}".'

		formatted = []
		for i, r in enumerate(results, 1):
			title = r.title or "Unknown Document"
			range_info = f" (Lines {r.line_range['from']}-{r.line_range['to']})" if r.line_range else ""
			formatted.append(
				f'### Search Result {i}: "{title}" (ID: {r.document_id}){range_info} '
				f"(score: {r.score:.3f})\n{r.text}"
			)
		return f'### Search Results for "{q}":\n\n' + "\n\n".join(formatted)

	async def read_document(self, document_id: str, start_line: Any = None, end_line: Any = None) -> str:
		"""Read a whole document or a 1-based inclusive line range of it."""
		doc_id = document_id.strip() if isinstance(document_id, str) else ""
		if not doc_id:
			return "Error: missing `document_id` (provide the document ID to read)."

		doc = await self.store.get(doc_id)
		if not doc or doc.conversation_id != self.conversation_id:
			return f"Error: Document with ID {doc_id} not found."

		start = _to_int(start_line)
		end = _to_int(end_line)
		if start is None and end is None:
			return f"### Document: {doc.title} (ID: {doc.document_id})\n\n{doc.content}"

		lines = doc.content.split("\n")
		start_idx = start - 1 if start is not None and start > 0 else 0
		end_exclusive = end if end is not None and end > 0 else len(lines)

		if start_idx >= len(lines):
			return f"Error: Start line {start} is beyond document length ({len(lines)} lines)."

		end_idx = max(start_idx + 1, min(end_exclusive, len(lines)))
		selected = "\n".join(lines[start_idx:end_idx])
		return (
			f"### Document: {doc.title} (ID: {doc.document_id}) (Lines {start_idx + 1}-{end_idx})\n\n"
			f"{selected}"
		)
