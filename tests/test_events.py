"""Tests for the progress event contract and bus."""

import asyncio
import json

import pytest

from team_orchestrator.errors import ValidationError
from team_orchestrator.events.bus import EventHub, ProgressEventBus
from team_orchestrator.events.models import (
	AgentStartEvent,
	CollaborationEvent,
	CreatedEvent,
	FinalEvent,
	ThinkingEvent,
	event_to_dict,
	parse_event,
	to_sse,
)


class TestWireShape:
	"""Encoding and decoding events."""

	def test_camel_case_keys(self):
		event = FinalEvent(team_created=True, status="COMPLETED", response="done")
		data = event_to_dict(event)
		assert data["event"] == "final"
		assert data["teamCreated"] is True
		assert "conversationId" in data

	def test_sse_frame(self):
		frame = to_sse(AgentStartEvent(agent="A", role="Analyst", action="working", message="A started working"))
		assert frame.startswith("data: ")
		assert frame.endswith("\n\n")
		payload = json.loads(frame[len("data: "):])
		assert payload["event"] == "agent_start"
		assert payload["agent"] == "A"

	def test_parse_by_kind(self):
		event = parse_event({"event": "thinking", "agent": "A", "action": "thinking", "thinking": "hmm"})
		assert isinstance(event, ThinkingEvent)
		assert event.thinking == "hmm"

	def test_unknown_fields_are_ignored(self):
		raw = json.dumps({"event": "collaboration", "agent": "B", "collaboration": "hi", "mood": "cheerful"})
		event = parse_event(raw)
		assert isinstance(event, CollaborationEvent)
		assert not hasattr(event, "mood")

	def test_unknown_kind_is_rejected(self):
		with pytest.raises(ValidationError):
			parse_event({"event": "teleport"})

	def test_round_trip_keeps_identity(self):
		original = CreatedEvent(message_id="m1")
		decoded = parse_event(to_sse(original)[len("data: "):].strip())
		assert decoded.id == original.id
		assert decoded.message_id == "m1"


class TestProgressEventBus:
	"""Ordered non-blocking fan-out."""

	def test_publish_assigns_sequence_and_conversation(self):
		bus = ProgressEventBus("conv-1")
		first = bus.publish(CreatedEvent())
		second = bus.publish(AgentStartEvent(agent="A"))
		assert (first.seq, second.seq) == (1, 2)
		assert second.conversation_id == "conv-1"

	@pytest.mark.asyncio
	async def test_subscriber_receives_in_order(self):
		bus = ProgressEventBus("conv-1")
		subscription = bus.subscribe()
		for name in ("A", "B", "C"):
			bus.publish(AgentStartEvent(agent=name))
		bus.close()

		received = [event.agent async for event in subscription]
		assert received == ["A", "B", "C"]

	@pytest.mark.asyncio
	async def test_late_subscriber_gets_replay(self):
		bus = ProgressEventBus("conv-1")
		bus.publish(CreatedEvent())
		bus.publish(FinalEvent())
		bus.close()

		kinds = [event.event async for event in bus.subscribe()]
		assert kinds == ["created", "final"]

	@pytest.mark.asyncio
	async def test_slow_consumer_does_not_block_publisher(self):
		bus = ProgressEventBus("conv-1")
		subscription = bus.subscribe()
		for i in range(500):
			bus.publish(ThinkingEvent(agent="A", thinking=str(i)))
		assert subscription.pending() == 500
		bus.close()

		seqs = [event.seq async for event in subscription]
		assert seqs == list(range(1, 501))

	def test_closed_bus_drops_events(self):
		bus = ProgressEventBus("conv-1")
		bus.close()
		assert bus.publish(CreatedEvent()) is None
		assert bus.history == []

	@pytest.mark.asyncio
	async def test_unsubscribe_ends_iteration(self):
		bus = ProgressEventBus("conv-1")
		subscription = bus.subscribe()
		bus.publish(CreatedEvent())
		subscription.close()

		received = await asyncio.wait_for(_collect(subscription), timeout=1)
		assert [e.event for e in received] == ["created"]


async def _collect(subscription) -> list:
	return [event async for event in subscription]


class TestEventHub:
	"""One live bus per conversation."""

	def test_open_replaces_previous_bus(self):
		hub = EventHub()
		first = hub.open("conv-1")
		second = hub.open("conv-1")
		assert first.closed
		assert hub.get("conv-1") is second

	def test_close(self):
		hub = EventHub()
		bus = hub.open("conv-1")
		hub.close("conv-1")
		assert bus.closed
		assert hub.get("conv-1") is None
