"""Visualizer package - Rich terminal views for team runs and the knowledge base."""

from .knowledge_views import render_document_list, render_search_results
from .run_progress import render_run_progress, render_run_summary

__all__ = [
	"render_document_list",
	"render_search_results",
	"render_run_progress",
	"render_run_summary",
]
