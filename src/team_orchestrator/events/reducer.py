"""
Collaboration Reducer - folds a run's event stream into view state.

reduce() is pure: it returns a new CollaborationState and never mutates
its input. Delivery is at-least-once, so events already folded (same id)
are ignored. CollaborationTracker owns one state per conversation and
performs the delayed reset after a run completes.
"""

import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .bus import Subscription
from .models import (
	ANALYZING,
	COLLABORATION,
	COMPLETE,
	COMPLETED,
	PLANNED,
	SYNTHESIZING,
	THINKING,
	WORKING,
	ProgressEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_RESET_DELAY = 3.0


class Phase(str, Enum):
	"""Client-visible coarse stage of a run."""
	IDLE = "idle"
	PLANNING = "planning"
	SPECIALIST_WORK = "specialist-work"
	SYNTHESIS = "synthesis"
	COMPLETE = "complete"


PHASE_BY_ACTION = {
	ANALYZING: Phase.PLANNING,
	PLANNED: Phase.PLANNING,
	WORKING: Phase.SPECIALIST_WORK,
	COMPLETED: Phase.SPECIALIST_WORK,
	THINKING: Phase.SPECIALIST_WORK,
	SYNTHESIZING: Phase.SYNTHESIS,
	COMPLETE: Phase.COMPLETE,
}

AGENT_EVENTS = ("thinking", "agent_start", "agent_complete", "collaboration")


@dataclass
class CollaborationStep:
	"""One entry in the visible progress log."""
	agent: str
	action: str
	message: str
	timestamp: str = ""


@dataclass
class CollaborationState:
	conversation_id: str = ""
	is_active: bool = False
	phase: Phase = Phase.IDLE
	steps: list[CollaborationStep] = field(default_factory=list)
	current_agent: Optional[str] = None
	agent_thinking: dict[str, str] = field(default_factory=dict)
	agent_collaboration: dict[str, str] = field(default_factory=dict)
	pending_question: Optional[dict[str, str]] = None
	error: Optional[str] = None
	reset_at: Optional[float] = None
	seen_ids: set[str] = field(default_factory=set)


def _default_step_message(event: ProgressEvent) -> str:
	if event.event == "agent_complete":
		return f"{event.agent} finished"
	return f"{event.agent} started working"


def _fold_agent_event(state: CollaborationState, event: ProgressEvent) -> None:
	action = event.action
	collaboration = getattr(event, "collaboration", "")
	thinking = getattr(event, "thinking", "")

	if collaboration and action == COLLABORATION:
		state.agent_collaboration[event.agent] = collaboration
		state.steps.append(CollaborationStep(
			agent=event.agent, action=action, message=collaboration, timestamp=event.timestamp,
		))
	elif thinking and action == THINKING:
		state.agent_thinking[event.agent] = thinking
	else:
		state.steps.append(CollaborationStep(
			agent=event.agent,
			action=action,
			message=event.message or _default_step_message(event),
			timestamp=event.timestamp,
		))
		state.current_agent = event.agent

	phase = PHASE_BY_ACTION.get(action)
	if phase is not None:
		state.phase = phase


def reduce(
	state: CollaborationState,
	event: ProgressEvent,
	now: float = 0.0,
	reset_delay: float = DEFAULT_RESET_DELAY,
) -> CollaborationState:
	"""Fold one event into a new state."""
	if event.id in state.seen_ids:
		return state

	if event.event == "sync":
		fresh = CollaborationState(conversation_id=state.conversation_id)
		fresh.seen_ids.add(event.id)
		return fresh

	if event.event == "created" and state.phase == Phase.COMPLETE:
		state = CollaborationState(conversation_id=state.conversation_id, seen_ids=set(state.seen_ids))

	new = copy.deepcopy(state)
	new.seen_ids.add(event.id)
	if event.conversation_id:
		new.conversation_id = event.conversation_id

	if event.event == "created":
		new.is_active = True
		new.reset_at = None
	elif event.event in AGENT_EVENTS:
		new.is_active = True
		_fold_agent_event(new, event)
	elif event.event == "interrupt":
		new.pending_question = {"agent": event.agent, "question": event.question}
		new.current_agent = event.agent
		new.steps.append(CollaborationStep(
			agent=event.agent, action="interrupt",
			message=f"{event.agent} asked: {event.question}", timestamp=event.timestamp,
		))
	elif event.event == "error":
		new.error = event.message
		new.is_active = False
	elif event.event == "final":
		new.phase = Phase.COMPLETE
		new.is_active = False
		new.reset_at = now + reset_delay
	else:
		logger.debug(f"Ignoring unhandled event kind {event.event}")

	return new


class CollaborationTracker:
	"""Per-conversation view state, built fresh per run and torn down on reset."""

	def __init__(
		self,
		reset_delay: float = DEFAULT_RESET_DELAY,
		clock: Callable[[], float] = time.monotonic,
	):
		self.reset_delay = reset_delay
		self.clock = clock
		self._states: dict[str, CollaborationState] = {}

	def state(self, conversation_id: str) -> CollaborationState:
		return self._states.get(conversation_id) or CollaborationState(conversation_id=conversation_id)

	def apply(self, event: ProgressEvent) -> CollaborationState:
		now = self.clock()
		self.poll(now)
		conversation_id = event.conversation_id
		updated = reduce(self.state(conversation_id), event, now, self.reset_delay)
		self._states[conversation_id] = updated
		return updated

	def poll(self, now: Optional[float] = None) -> list[str]:
		"""Reset every conversation whose post-completion delay has elapsed."""
		now = self.clock() if now is None else now
		expired = [
			cid for cid, s in self._states.items()
			if s.reset_at is not None and s.reset_at <= now
		]
		for cid in expired:
			self._states[cid] = CollaborationState(
				conversation_id=cid, seen_ids=self._states[cid].seen_ids,
			)
		return expired

	def discard(self, conversation_id: str) -> None:
		self._states.pop(conversation_id, None)

	async def follow(self, subscription: Subscription) -> CollaborationState:
		"""Fold a live subscription until the bus closes. Returns the last state."""
		last: Optional[CollaborationState] = None
		async for event in subscription:
			last = self.apply(event)
		return last or CollaborationState()
