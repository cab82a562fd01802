"""Starlette app with route assembly."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from starlette.applications import Starlette
from starlette.routing import Route

from ..config import Config, get_config
from ..events.bus import EventHub
from ..knowledge.embeddings import build_embedding_provider
from ..knowledge.store import KnowledgeStore
from ..orchestration.coordinator import TeamCoordinator
from ..orchestration.model import ModelClient
from ..orchestration.store import OrchestrationStore
from .api import (
	api_cancel,
	api_clear_run,
	api_delete_document,
	api_get_document,
	api_get_run,
	api_list_knowledge,
	api_reply,
	api_save_knowledge,
	api_search_knowledge,
	api_start_run,
)

logger = logging.getLogger(__name__)


def build_app(
	config: Optional[Config] = None,
	model: Optional[ModelClient] = None,
	knowledge: Optional[KnowledgeStore] = None,
	runs: Optional[OrchestrationStore] = None,
) -> Starlette:
	"""
	Build and return the Starlette ASGI app.

	Without a model client the run start/reply endpoints answer 503;
	state, knowledge and cancel endpoints still work.
	"""
	config = config or get_config()
	if knowledge is None:
		knowledge = KnowledgeStore(
			str(config.knowledge_db_path),
			build_embedding_provider(config),
			window=config.chunk_window,
			overlap=config.chunk_overlap,
			embedding_concurrency=config.embedding_concurrency,
		)
	if runs is None:
		runs = OrchestrationStore(str(config.orchestration_db_path))

	routes = [
		Route("/api/runs", api_start_run, methods=["POST"]),
		Route("/api/runs/{conversation_id}", api_get_run, methods=["GET"]),
		Route("/api/runs/{conversation_id}", api_clear_run, methods=["DELETE"]),
		Route("/api/runs/{conversation_id}/reply", api_reply, methods=["POST"]),
		Route("/api/runs/{conversation_id}/cancel", api_cancel, methods=["POST"]),
		Route("/api/knowledge/{conversation_id}", api_list_knowledge, methods=["GET"]),
		Route("/api/knowledge/{conversation_id}", api_save_knowledge, methods=["POST"]),
		Route("/api/knowledge/{conversation_id}/search", api_search_knowledge, methods=["POST"]),
		Route("/api/documents/{document_id}", api_get_document, methods=["GET"]),
		Route("/api/documents/{document_id}", api_delete_document, methods=["DELETE"]),
	]

	@asynccontextmanager
	async def lifespan(app: Starlette) -> AsyncIterator[None]:
		yield
		await knowledge.close()
		await runs.close()

	app = Starlette(routes=routes, lifespan=lifespan)
	app.state.config = config
	app.state.knowledge = knowledge
	app.state.runs = runs
	app.state.hub = EventHub()
	app.state.coordinator = (
		TeamCoordinator(runs, knowledge, model, hub=app.state.hub, config=config) if model else None
	)
	if model is None:
		logger.info("No model client configured; run start/reply endpoints are disabled")
	return app
