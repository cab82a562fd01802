"""
Progress event wire contract.

Each event is one JSON object tagged by its `event` kind. Consumers
decode with parse_event(), which ignores unknown fields so producers can
add payload without breaking older clients.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..errors import ValidationError

# Lead actions
ANALYZING = "analyzing"
PLANNED = "planned"
SYNTHESIZING = "synthesizing"
COMPLETE = "complete"
# Specialist actions
WORKING = "working"
COMPLETED = "completed"
THINKING = "thinking"
COLLABORATION = "collaboration"
TOOL_USE = "tool_use"


class _Event(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

	id: str = Field(default_factory=lambda: uuid.uuid4().hex)
	conversation_id: str = ""
	seq: int = Field(default=0, description="Per-run emission order, assigned by the bus")
	timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class _AgentEvent(_Event):
	agent: str
	role: str = ""
	action: str = ""
	message: str = ""


class CreatedEvent(_Event):
	"""Run accepted."""
	event: Literal["created"] = "created"
	message_id: Optional[str] = None


class ThinkingEvent(_AgentEvent):
	"""Latest reasoning text for an agent. Overwrites on the consumer."""
	event: Literal["thinking"] = "thinking"
	action: str = THINKING
	thinking: str = ""


class AgentStartEvent(_AgentEvent):
	event: Literal["agent_start"] = "agent_start"


class AgentCompleteEvent(_AgentEvent):
	event: Literal["agent_complete"] = "agent_complete"


class CollaborationEvent(_AgentEvent):
	"""Team-visible exchange. Overwrites per agent and is logged as a step."""
	event: Literal["collaboration"] = "collaboration"
	action: str = COLLABORATION
	collaboration: str = ""


class InterruptEvent(_AgentEvent):
	"""A specialist paused to ask the user a question."""
	event: Literal["interrupt"] = "interrupt"
	question: str = ""


class SyncEvent(_Event):
	"""Discard in-progress view state and start fresh."""
	event: Literal["sync"] = "sync"


class ErrorEvent(_Event):
	"""Run failed. The message is generic by construction."""
	event: Literal["error"] = "error"
	message: str = "The team run failed."


class FinalEvent(_Event):
	"""Terminal event for a run."""
	event: Literal["final"] = "final"
	team_created: bool = False
	status: str = ""
	paused: bool = False
	response: Optional[str] = None


ProgressEvent = Annotated[
	Union[
		CreatedEvent,
		ThinkingEvent,
		AgentStartEvent,
		AgentCompleteEvent,
		CollaborationEvent,
		InterruptEvent,
		SyncEvent,
		ErrorEvent,
		FinalEvent,
	],
	Field(discriminator="event"),
]

_adapter: TypeAdapter = TypeAdapter(ProgressEvent)

EVENT_KINDS = (
	"created", "thinking", "agent_start", "agent_complete", "collaboration",
	"interrupt", "sync", "error", "final",
)


def parse_event(payload: Union[str, bytes, dict[str, Any]]) -> ProgressEvent:
	"""Decode one event. Unknown fields are ignored; unknown kinds are rejected."""
	try:
		if isinstance(payload, dict):
			return _adapter.validate_python(payload)
		return _adapter.validate_json(payload)
	except PydanticValidationError as e:
		raise ValidationError(f"Malformed progress event: {e}") from e


def event_to_dict(event: _Event) -> dict:
	return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def to_sse(event: _Event) -> str:
	"""Server-sent event frame carrying one JSON object."""
	return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"
