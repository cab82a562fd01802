"""Knowledge module - Per-conversation team knowledge base with semantic search."""

from .models import KnowledgeDocument, SearchResult
from .query import KnowledgeQuery
from .store import KnowledgeStore

__all__ = [
	"KnowledgeDocument",
	"SearchResult",
	"KnowledgeStore",
	"KnowledgeQuery",
]
