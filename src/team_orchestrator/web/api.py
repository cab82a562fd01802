"""JSON API endpoints and SSE run streams."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse

from ..errors import (
	EmbeddingUnavailable,
	RunNotFoundError,
	TeamOrchestratorError,
	ValidationError,
)
from ..events.bus import ProgressEventBus
from ..events.models import to_sse
from ..knowledge.models import KnowledgeDocument
from ..knowledge.query import clamp_k
from ..knowledge.store import KnowledgeStore
from ..orchestration.coordinator import TeamCoordinator
from ..orchestration.models import TeamMember
from ..orchestration.store import OrchestrationStore

logger = logging.getLogger(__name__)

SSE_HEADERS = {
	"Cache-Control": "no-cache",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
}


def get_knowledge(request: Request) -> KnowledgeStore:
	return request.app.state.knowledge


def get_runs(request: Request) -> OrchestrationStore:
	return request.app.state.runs


def get_coordinator(request: Request) -> Optional[TeamCoordinator]:
	return request.app.state.coordinator


def error_response(error: BaseException) -> JSONResponse:
	"""Map an error to a status code. Unexpected errors get a generic body."""
	if isinstance(error, RunNotFoundError):
		return JSONResponse({"error": str(error)}, status_code=404)
	if isinstance(error, (ValidationError, PydanticValidationError)):
		return JSONResponse({"error": str(error)}, status_code=400)
	if isinstance(error, EmbeddingUnavailable):
		return JSONResponse({"error": "Knowledge search is unavailable"}, status_code=503)
	logger.error(f"Request failed: {error}", exc_info=error)
	return JSONResponse({"error": "Internal server error"}, status_code=500)


async def _json_body(request: Request) -> dict:
	try:
		body = await request.json()
	except (json.JSONDecodeError, UnicodeDecodeError) as e:
		raise ValidationError(f"Request body must be JSON: {e}") from e
	if not isinstance(body, dict):
		raise ValidationError("Request body must be a JSON object")
	return body


def _required(body: dict, key: str) -> str:
	value = body.get(key)
	if not isinstance(value, str) or not value.strip():
		raise ValidationError(f"{key} is required")
	return value


async def _stream_run(
	bus: ProgressEventBus,
	work: Callable[[], Awaitable[object]],
	abandon: Callable[[], object],
) -> AsyncGenerator[str, None]:
	"""
	Run `work` in the background and relay its bus as SSE frames.

	If the client goes away before the bus closes, `abandon` stops the run.
	"""
	subscription = bus.subscribe()
	task = asyncio.create_task(work())
	try:
		async for event in subscription:
			yield to_sse(event)
	finally:
		subscription.close()
		if not task.done() and not bus.closed:
			logger.info(f"[{bus.conversation_id}] Client disconnected, cancelling run")
			abandon()
		if task.done() and not task.cancelled() and task.exception():
			logger.error(f"[{bus.conversation_id}] Run ended with an error: {task.exception()}")



def _no_model() -> JSONResponse:
	return JSONResponse({"error": "No model client configured"}, status_code=503)


# --- Runs ---

async def api_get_run(request: Request) -> Response:
	"""Persisted run state for a conversation."""
	conversation_id = request.path_params["conversation_id"]
	run = await get_runs(request).get_state(conversation_id)
	if not run:
		return error_response(RunNotFoundError(conversation_id))
	return JSONResponse(run.to_document())


async def api_clear_run(request: Request) -> Response:
	"""Delete a conversation's run. Clearing a missing run is not an error."""
	conversation_id = request.path_params["conversation_id"]
	coordinator = get_coordinator(request)
	try:
		if coordinator:
			coordinator.cancel(conversation_id)
		removed = await get_runs(request).clear_state(conversation_id)
	except TeamOrchestratorError as e:
		return error_response(e)
	return JSONResponse({"cleared": removed})


async def api_start_run(request: Request) -> Response:
	"""
	Start a team run and stream its progress events.

	Body: {conversationId, objective, lead, team, parentMessageId?,
	responseMessageId?, teamCreated?}
	"""
	coordinator = get_coordinator(request)
	if coordinator is None:
		return _no_model()

	try:
		body = await _json_body(request)
		conversation_id = _required(body, "conversationId")
		objective = _required(body, "objective")
		lead = TeamMember.model_validate(body.get("lead") or {"name": "Project Lead", "role": "Project Lead"})
		team = [TeamMember.model_validate(m) for m in body.get("team") or []]
		if not team:
			raise ValidationError("team must have at least one specialist")
	except (ValidationError, PydanticValidationError) as e:
		return error_response(e)

	bus = coordinator.open_stream(conversation_id)
	logger.info(f"[{conversation_id}] Starting run with {len(team)} specialists")
	return StreamingResponse(
		_stream_run(bus, lambda: coordinator.start(
			conversation_id,
			objective,
			lead,
			team,
			parent_message_id=body.get("parentMessageId"),
			response_message_id=body.get("responseMessageId"),
			team_created=bool(body.get("teamCreated", False)),
			bus=bus,
		), lambda: coordinator.cancel(conversation_id)),
		media_type="text/event-stream",
		headers=SSE_HEADERS,
	)


async def api_reply(request: Request) -> Response:
	"""
	Answer a paused specialist and stream the resumed run.

	Body: {answer, agentName?, pausedMessageId?, responseMessageId?}
	"""
	coordinator = get_coordinator(request)
	if coordinator is None:
		return _no_model()

	conversation_id = request.path_params["conversation_id"]
	try:
		body = await _json_body(request)
		answer = _required(body, "answer")
		paused_message_id = body.get("pausedMessageId")
		runs = get_runs(request)
		if await runs.get_state(conversation_id) is None:
			raise RunNotFoundError(conversation_id)
		if await runs.find_paused_state(conversation_id, paused_message_id) is None:
			raise ValidationError(f"Run for {conversation_id} is not waiting for an answer")
	except TeamOrchestratorError as e:
		return error_response(e)

	bus = coordinator.open_stream(conversation_id)
	return StreamingResponse(
		_stream_run(bus, lambda: coordinator.reply(
			conversation_id,
			answer,
			agent_name=body.get("agentName"),
			paused_message_id=paused_message_id,
			response_message_id=body.get("responseMessageId"),
			bus=bus,
		), lambda: coordinator.cancel(conversation_id)),
		media_type="text/event-stream",
		headers=SSE_HEADERS,
	)


async def api_cancel(request: Request) -> Response:
	"""Abandon the live run for a conversation."""
	conversation_id = request.path_params["conversation_id"]
	coordinator = get_coordinator(request)
	cancelled = coordinator.cancel(conversation_id) if coordinator else False
	return JSONResponse({"cancelled": cancelled})


# --- Knowledge ---

def _document_summary(doc: KnowledgeDocument) -> dict:
	data = doc.model_dump(mode="json", by_alias=True, exclude={"content"})
	data["lineCount"] = doc.line_count()
	return data


async def api_list_knowledge(request: Request) -> Response:
	"""Documents of a conversation, newest first (without content)."""
	conversation_id = request.path_params["conversation_id"]
	docs = await get_knowledge(request).list(conversation_id)
	return JSONResponse([_document_summary(d) for d in docs])


async def api_save_knowledge(request: Request) -> Response:
	"""Save a document. Body: {title, content, tags?, dedupeKey?, createdBy?, ...}."""
	conversation_id = request.path_params["conversation_id"]
	try:
		body = await _json_body(request)
		body["conversationId"] = conversation_id
		body.pop("documentId", None)
		doc = await get_knowledge(request).save(KnowledgeDocument.model_validate(body))
	except (TeamOrchestratorError, PydanticValidationError) as e:
		return error_response(e)

	data = doc.model_dump(mode="json", by_alias=True)
	data["chunkCount"] = doc.chunk_count
	return JSONResponse(data, status_code=201)


async def api_search_knowledge(request: Request) -> Response:
	"""Semantic search. Body: {query, k?}."""
	conversation_id = request.path_params["conversation_id"]
	try:
		body = await _json_body(request)
		query = _required(body, "query")
		k = clamp_k(body.get("k"))
		results = await get_knowledge(request).search(conversation_id, query, k)
	except TeamOrchestratorError as e:
		return error_response(e)
	return JSONResponse([r.model_dump(mode="json", by_alias=True) for r in results])


async def api_get_document(request: Request) -> Response:
	document_id = request.path_params["document_id"]
	doc = await get_knowledge(request).get(document_id)
	if not doc:
		return JSONResponse({"error": f"Document not found: {document_id}"}, status_code=404)
	data = doc.model_dump(mode="json", by_alias=True)
	data["chunkCount"] = doc.chunk_count
	return JSONResponse(data)


async def api_delete_document(request: Request) -> Response:
	document_id = request.path_params["document_id"]
	try:
		removed = await get_knowledge(request).delete(document_id)
	except TeamOrchestratorError as e:
		return error_response(e)
	return JSONResponse({"deleted": removed})
