"""Team knowledge base tools - list, search, read, save, delete."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..errors import EmbeddingUnavailable, PersistenceError, ValidationError
from ..knowledge.models import KnowledgeDocument
from ..knowledge.query import KnowledgeQuery
from ..knowledge.store import get_knowledge_store


def register_knowledge_tools(mcp: FastMCP, config: Config) -> None:
	"""Register knowledge base tools."""

	async def _query(conversation_id: str) -> KnowledgeQuery:
		store = await get_knowledge_store()
		return KnowledgeQuery(
			store, conversation_id,
			default_k=config.search_default_k, max_k=config.search_max_k,
		)

	@mcp.tool()
	async def list_documents(conversation_id: str) -> str:
		"""
		List all documents in a conversation's team knowledge base.

		Args:
			conversation_id: Conversation that owns the knowledge base
		"""
		return await (await _query(conversation_id)).list_documents()

	@mcp.tool()
	async def search_documents(conversation_id: str, query: str, k: int = 5) -> str:
		"""
		Semantic search over a conversation's team knowledge base.

		Args:
			conversation_id: Conversation that owns the knowledge base
			query: The search query (natural language)
			k: Number of results to return (1-10, default: 5)
		"""
		return await (await _query(conversation_id)).search_documents(query, k)

	@mcp.tool()
	async def read_knowledge_document(
		conversation_id: str,
		document_id: str,
		start_line: int = 0,
		end_line: int = 0,
	) -> str:
		"""
		Read a knowledge document, optionally a line range.

		Args:
			conversation_id: Conversation that owns the document
			document_id: The document ID (as returned by list/search)
			start_line: First line to read, 1-based (0 = from the start)
			end_line: Last line to read, inclusive (0 = to the end)
		"""
		return await (await _query(conversation_id)).read_document(
			document_id,
			start_line if start_line > 0 else None,
			end_line if end_line > 0 else None,
		)

	@mcp.tool()
	async def save_knowledge_document(
		conversation_id: str,
		title: str,
		content: str,
		tags: str = "",
		dedupe_key: str = "",
		created_by: str = "",
	) -> str:
		"""
		Save a document to a conversation's team knowledge base.

		Args:
			conversation_id: Conversation that owns the knowledge base
			title: Document title
			content: Full document text (Markdown)
			tags: Comma-separated tags
			dedupe_key: Optional key; saving again with the same key replaces the document
			created_by: Optional author name
		"""
		store = await get_knowledge_store()
		try:
			doc = await store.save(KnowledgeDocument(
				conversation_id=conversation_id,
				title=title,
				content=content,
				tags=[t.strip() for t in tags.split(",") if t.strip()],
				dedupe_key=dedupe_key or None,
				created_by=created_by or None,
			))
		except (ValidationError, EmbeddingUnavailable, PersistenceError) as e:
			return json.dumps({"success": False, "error": str(e)})

		return json.dumps({
			"success": True,
			"document_id": doc.document_id,
			"chunks": doc.chunk_count,
		}, indent=2)

	@mcp.tool()
	async def delete_knowledge_document(document_id: str) -> str:
		"""
		Delete a knowledge document and its chunks. Deleting twice is harmless.

		Args:
			document_id: The document ID
		"""
		store = await get_knowledge_store()
		try:
			removed = await store.delete(document_id)
		except PersistenceError as e:
			return json.dumps({"success": False, "error": str(e)})
		return json.dumps({"success": True, "deleted": removed})
