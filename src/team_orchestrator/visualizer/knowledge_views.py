"""Rich views for the team knowledge base."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..knowledge.models import KnowledgeDocument, SearchResult
from .utils import format_timestamp, truncate


def render_document_list(
	conversation_id: str,
	documents: list[KnowledgeDocument],
	console: Optional[Console] = None,
) -> None:
	"""Table of documents, in the order given (newest first from the store)."""
	console = console or Console()

	if not documents:
		console.print(f"[dim]No documents in the knowledge base for {conversation_id}.[/dim]")
		return

	table = Table(title=f"Knowledge base: {conversation_id}")
	table.add_column("Title", style="bold")
	table.add_column("ID", style="dim")
	table.add_column("Lines", justify="right")
	table.add_column("Tags")
	table.add_column("Created")

	for doc in documents:
		table.add_row(
			doc.title,
			doc.document_id,
			str(doc.line_count()),
			", ".join(doc.tags),
			format_timestamp(doc.created_at),
		)
	console.print(table)


def render_search_results(query: str, results: list[SearchResult], console: Optional[Console] = None) -> None:
	console = console or Console()

	if not results:
		console.print(f'[dim]No relevant documents found for "{query}".[/dim]')
		return

	table = Table(title=f'Search: "{query}"')
	table.add_column("#", justify="right")
	table.add_column("Score", justify="right")
	table.add_column("Document")
	table.add_column("Lines", style="dim")
	table.add_column("Text")

	for i, r in enumerate(results, 1):
		lines = f"{r.line_range['from']}-{r.line_range['to']}" if r.line_range else ""
		table.add_row(str(i), f"{r.score:.3f}", r.title or r.document_id, lines, truncate(r.text, 60))
	console.print(table)
