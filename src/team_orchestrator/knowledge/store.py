"""
Knowledge Store - SQLite-backed team knowledge base with semantic search.

Features:
- Save/get/list/delete documents per conversation
- Dedupe-key upserts (re-saving an artifact replaces it in place)
- Fixed-window chunking with one embedding per chunk
- Cosine-similarity search scoped to a conversation
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from ..errors import (
	CredentialMissing,
	EmbeddingUnavailable,
	PersistenceError,
	ProviderError,
	ValidationError,
)
from .embeddings import EmbeddingProvider
from .models import KnowledgeDocument, SearchResult, new_document_id
from .vector_index import DEFAULT_OVERLAP, DEFAULT_WINDOW, TextChunk, chunk_text, rank_by_similarity

logger = logging.getLogger(__name__)

CONTEXT_CONTENT_LIMIT = 4000


class KnowledgeStore:
	"""
	SQLite-backed knowledge base.

	Usage:
		store = KnowledgeStore("data/knowledge.db", provider)
		await store.init()

		doc = await store.save(KnowledgeDocument(
			conversation_id="conv-1", title="Brief", content="...",
		))
		results = await store.search("conv-1", "pricing assumptions", k=5)
	"""

	def __init__(
		self,
		db_path: str,
		provider: EmbeddingProvider,
		window: int = DEFAULT_WINDOW,
		overlap: int = DEFAULT_OVERLAP,
		embedding_concurrency: int = 4,
		embedding_model: Optional[str] = None,
	):
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self.provider = provider
		self.window = window
		self.overlap = overlap
		self.embedding_model = embedding_model
		self._embed_slots = asyncio.Semaphore(max(1, embedding_concurrency))
		self._write_lock = asyncio.Lock()
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS documents (
				document_id TEXT PRIMARY KEY,
				conversation_id TEXT NOT NULL,
				dedupe_key TEXT,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_documents_conversation ON documents(conversation_id)
		""")

		await self._db.execute("""
			CREATE UNIQUE INDEX IF NOT EXISTS idx_documents_dedupe
			ON documents(conversation_id, dedupe_key)
			WHERE dedupe_key IS NOT NULL AND dedupe_key != ''
		""")

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS chunks (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				document_id TEXT NOT NULL,
				conversation_id TEXT NOT NULL,
				chunk_index INTEGER NOT NULL,
				text TEXT NOT NULL,
				embedding TEXT NOT NULL,
				start_line INTEGER NOT NULL,
				end_line INTEGER NOT NULL
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_chunks_conversation ON chunks(conversation_id)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id)
		""")

		await self._db.commit()
		logger.info(f"Knowledge store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def _conn(self) -> aiosqlite.Connection:
		if not self._db:
			await self.init()
		return self._db

	async def _embed_chunks(self, chunks: list[TextChunk]) -> Optional[list[list[float]]]:
		"""
		Embed every chunk, bounded by the concurrency limit.

		Returns None when a transient provider error means the chunk set
		cannot be completed. Raises EmbeddingUnavailable when there is no
		usable credential.
		"""

		async def _one(chunk: TextChunk) -> list[float]:
			async with self._embed_slots:
				return await self.provider.embed(chunk.text, self.embedding_model)

		results = await asyncio.gather(*(_one(c) for c in chunks), return_exceptions=True)

		for result in results:
			if isinstance(result, CredentialMissing):
				raise EmbeddingUnavailable(str(result)) from result
		for result in results:
			if isinstance(result, ProviderError):
				logger.warning(f"Embedding failed, saving without chunks: {result}")
				return None
			if isinstance(result, BaseException):
				raise result
		return results

	async def save(self, doc: KnowledgeDocument) -> KnowledgeDocument:
		"""
		Save a document and rebuild its chunk set.

		Embeddings are computed before anything is written. The document
		row and its chunks are then replaced in a single transaction.

		Args:
			doc: Document to save (document_id is assigned when empty)

		Returns:
			The stored document, with chunk_count set
		"""
		if not doc.conversation_id:
			raise ValidationError("conversation_id is required")
		if not doc.title or not doc.title.strip():
			raise ValidationError("title is required")
		if not doc.content:
			raise ValidationError("content is required")

		chunks = chunk_text(doc.content, self.window, self.overlap)
		vectors = await self._embed_chunks(chunks)
		if vectors is None:
			chunks = []
			vectors = []

		db = await self._conn()
		now = datetime.now().isoformat()

		async with self._write_lock:
			existing = None
			if doc.dedupe_key:
				existing = await self._find_by_dedupe_key(db, doc.conversation_id, doc.dedupe_key)
			elif doc.document_id:
				existing = await self.get(doc.document_id)

			if existing:
				doc.document_id = existing.document_id
				doc.created_at = existing.created_at
			elif not doc.document_id:
				doc.document_id = new_document_id(doc.conversation_id)
			doc.updated_at = now

			try:
				await db.execute(
					"""
					INSERT INTO documents (document_id, conversation_id, dedupe_key, data, created_at, updated_at)
					VALUES (?, ?, ?, ?, ?, ?)
					ON CONFLICT(document_id) DO UPDATE SET
						conversation_id = excluded.conversation_id,
						dedupe_key = excluded.dedupe_key,
						data = excluded.data,
						updated_at = excluded.updated_at
					""",
					(
						doc.document_id,
						doc.conversation_id,
						doc.dedupe_key or None,
						doc.model_dump_json(by_alias=True),
						doc.created_at,
						doc.updated_at,
					)
				)
				await db.execute("DELETE FROM chunks WHERE document_id = ?", (doc.document_id,))
				await db.executemany(
					"""
					INSERT INTO chunks (document_id, conversation_id, chunk_index, text, embedding, start_line, end_line)
					VALUES (?, ?, ?, ?, ?, ?, ?)
					""",
					[
						(
							doc.document_id,
							doc.conversation_id,
							chunk.index,
							chunk.text,
							json.dumps(vector),
							chunk.line_range.start,
							chunk.line_range.end,
						)
						for chunk, vector in zip(chunks, vectors)
					]
				)
				await db.commit()
			except aiosqlite.Error as e:
				await db.rollback()
				raise PersistenceError(f"Failed to save document {doc.document_id}: {e}") from e

		doc.chunk_count = len(chunks)
		action = "Updated" if existing else "Saved"
		logger.info(
			f"{action} document {doc.document_id} ({doc.chunk_count} chunks) "
			f"for conversation {doc.conversation_id}"
		)
		return doc

	async def reindex(self, document_id: str) -> Optional[KnowledgeDocument]:
		"""Rebuild embeddings for an existing document."""
		doc = await self.get(document_id)
		if not doc:
			return None
		return await self.save(doc)

	async def _find_by_dedupe_key(
		self,
		db: aiosqlite.Connection,
		conversation_id: str,
		dedupe_key: str,
	) -> Optional[KnowledgeDocument]:
		cursor = await db.execute(
			"SELECT data FROM documents WHERE conversation_id = ? AND dedupe_key = ?",
			(conversation_id, dedupe_key)
		)
		row = await cursor.fetchone()
		if not row:
			return None
		return KnowledgeDocument.model_validate_json(row["data"])

	async def get(self, document_id: str) -> Optional[KnowledgeDocument]:
		"""Get a document by id, or None."""
		db = await self._conn()

		cursor = await db.execute(
			"SELECT data FROM documents WHERE document_id = ?",
			(document_id,)
		)
		row = await cursor.fetchone()
		if not row:
			return None

		doc = KnowledgeDocument.model_validate_json(row["data"])
		cursor = await db.execute(
			"SELECT COUNT(*) AS n FROM chunks WHERE document_id = ?",
			(document_id,)
		)
		doc.chunk_count = (await cursor.fetchone())["n"]
		return doc

	async def list(self, conversation_id: str) -> list[KnowledgeDocument]:
		"""All documents for a conversation, newest first."""
		db = await self._conn()

		cursor = await db.execute(
			"""
			SELECT d.data, COUNT(c.id) AS n
			FROM documents d LEFT JOIN chunks c ON c.document_id = d.document_id
			WHERE d.conversation_id = ?
			GROUP BY d.document_id
			ORDER BY d.created_at DESC, d.rowid DESC
			""",
			(conversation_id,)
		)
		docs = []
		async for row in cursor:
			doc = KnowledgeDocument.model_validate_json(row["data"])
			doc.chunk_count = row["n"]
			docs.append(doc)
		return docs

	async def search(self, conversation_id: str, query: str, k: int = 5) -> list[SearchResult]:
		"""
		Semantic search over a conversation's chunks.

		Returns an empty list when the conversation has no chunks, without
		calling the embedding provider.
		"""
		if k <= 0:
			return []

		db = await self._conn()
		cursor = await db.execute(
			"""
			SELECT c.document_id, c.chunk_index, c.text, c.embedding, c.start_line, c.end_line, d.data
			FROM chunks c JOIN documents d ON d.document_id = c.document_id
			WHERE c.conversation_id = ?
			ORDER BY d.created_at, d.rowid, c.chunk_index
			""",
			(conversation_id,)
		)
		rows = await cursor.fetchall()
		if not rows:
			return []

		try:
			query_vector = await self.provider.embed(query, self.embedding_model)
		except CredentialMissing as e:
			raise EmbeddingUnavailable(str(e)) from e

		vectors = [json.loads(row["embedding"]) for row in rows]
		titles: dict[str, str] = {}
		results = []
		for position, score in rank_by_similarity(query_vector, vectors, k):
			row = rows[position]
			doc_id = row["document_id"]
			if doc_id not in titles:
				titles[doc_id] = json.loads(row["data"]).get("title", "")
			results.append(SearchResult(
				text=row["text"],
				document_id=doc_id,
				title=titles[doc_id],
				score=score,
				chunk_index=row["chunk_index"],
				line_range={"from": row["start_line"], "to": row["end_line"]},
			))
		return results

	async def delete(self, document_id: str) -> int:
		"""Delete a document and its chunks. Returns documents removed (0 or 1)."""
		db = await self._conn()
		async with self._write_lock:
			try:
				await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
				cursor = await db.execute("DELETE FROM documents WHERE document_id = ?", (document_id,))
				removed = cursor.rowcount
				await db.commit()
			except aiosqlite.Error as e:
				await db.rollback()
				raise PersistenceError(f"Failed to delete document {document_id}: {e}") from e

		if removed:
			logger.info(f"Deleted document {document_id}")
		return removed

	async def clear(self, conversation_id: str) -> int:
		"""Delete every document in a conversation. Returns documents removed."""
		db = await self._conn()
		async with self._write_lock:
			try:
				await db.execute("DELETE FROM chunks WHERE conversation_id = ?", (conversation_id,))
				cursor = await db.execute(
					"DELETE FROM documents WHERE conversation_id = ?", (conversation_id,)
				)
				removed = cursor.rowcount
				await db.commit()
			except aiosqlite.Error as e:
				await db.rollback()
				raise PersistenceError(f"Failed to clear conversation {conversation_id}: {e}") from e

		logger.info(f"Cleared {removed} documents for conversation {conversation_id}")
		return removed

	async def format_context(self, conversation_id: str, limit: int = 10) -> str:
		"""Render the conversation's documents as a prompt section."""
		docs = await self.list(conversation_id)
		if not docs:
			return ""

		sections = []
		for i, doc in enumerate(docs[:limit], 1):
			content = doc.content
			if len(content) > CONTEXT_CONTENT_LIMIT:
				content = content[:CONTEXT_CONTENT_LIMIT] + "\n...(truncated, use read_knowledge_document)"
			header = f"### Document {i}: {doc.title} (ID: {doc.document_id})"
			if doc.tags:
				header += f"\nTags: {', '.join(doc.tags)}"
			sections.append(f"{header}\n{content}")

		return (
			"## Team Knowledge Base\n"
			"The following documents have been previously created and approved by the team:\n\n"
			+ "\n\n---\n\n".join(sections)
		)


# Global store instance
_knowledge_store: Optional[KnowledgeStore] = None


async def get_knowledge_store(db_path: str = "") -> KnowledgeStore:
	"""Get or create the global knowledge store."""
	global _knowledge_store

	if _knowledge_store is None:
		from ..config import get_config
		from .embeddings import build_embedding_provider

		config = get_config()
		if not db_path:
			db_path = str(config.knowledge_db_path)
		_knowledge_store = KnowledgeStore(
			db_path,
			build_embedding_provider(config),
			window=config.chunk_window,
			overlap=config.chunk_overlap,
			embedding_concurrency=config.embedding_concurrency,
		)
		await _knowledge_store.init()

	return _knowledge_store
