"""
Knowledge Models - Pydantic schemas for team knowledge documents.

A document belongs to exactly one conversation. Its chunks (with
embeddings) live in a separate table and are rebuilt on every save.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_document_id(conversation_id: str) -> str:
	"""Document ids embed the owning conversation."""
	return f"kb_{conversation_id}_{uuid.uuid4().hex}"


class KnowledgeDocument(BaseModel):
	"""A document in a conversation's team knowledge base."""
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	document_id: str = Field(default="", description="Globally unique id (kb_<conversation>_<hex>)")
	conversation_id: str = Field(description="Conversation that owns this document")
	title: str = Field(description="Human-readable title")
	content: str = Field(description="Full document text")
	content_type: str = Field(default="text/markdown")
	message_id: Optional[str] = Field(default=None, description="Message the document came from")
	dedupe_key: Optional[str] = Field(
		default=None,
		description="When set, saves with the same key in the same conversation replace this document",
	)
	tags: list[str] = Field(default_factory=list)
	metadata: dict[str, Any] = Field(default_factory=dict)
	created_by: Optional[str] = Field(default=None, description="User or agent that created it")
	created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())

	# Set by the store, not persisted in the document body
	chunk_count: int = Field(default=0, exclude=True)

	def line_count(self) -> int:
		return len(self.content.split("\n")) if self.content else 0


class SearchResult(BaseModel):
	"""One ranked chunk returned by semantic search."""
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	text: str
	document_id: str
	title: str = ""
	score: float
	chunk_index: int = 0
	line_range: Optional[dict[str, int]] = Field(
		default=None, description="1-based inclusive {'from': n, 'to': m}"
	)
