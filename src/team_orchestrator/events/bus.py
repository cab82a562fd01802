"""
Progress Event Bus - ordered, non-blocking fan-out of run events.

Publishing never waits on consumers: every subscriber has an unbounded
queue and slow consumers just fall behind. Events for one run carry a
strictly increasing `seq` in emission order.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from .models import ProgressEvent, event_to_dict

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
	"""Async iterator over the events of one bus."""

	def __init__(self, bus: "ProgressEventBus", queue: asyncio.Queue):
		self._bus = bus
		self._queue = queue

	def __aiter__(self) -> AsyncIterator[ProgressEvent]:
		return self

	async def __anext__(self) -> ProgressEvent:
		item = await self._queue.get()
		if item is _CLOSED:
			raise StopAsyncIteration
		return item

	def pending(self) -> int:
		return self._queue.qsize()

	def close(self) -> None:
		self._bus._unsubscribe(self._queue)


class ProgressEventBus:
	"""Event stream for a single run."""

	def __init__(self, conversation_id: str):
		self.conversation_id = conversation_id
		self._seq = 0
		self._subscribers: list[asyncio.Queue] = []
		self._history: list[ProgressEvent] = []
		self.closed = False

	@property
	def history(self) -> list[ProgressEvent]:
		return list(self._history)

	def publish(self, event: ProgressEvent) -> Optional[ProgressEvent]:
		"""Stamp and deliver an event. Dropped once the bus is closed."""
		if self.closed:
			logger.debug(f"Dropping {event.event} event for closed run {self.conversation_id}")
			return None

		self._seq += 1
		event.seq = self._seq
		if not event.conversation_id:
			event.conversation_id = self.conversation_id

		self._history.append(event)
		for queue in self._subscribers:
			queue.put_nowait(event)

		logger.debug(f"[{self.conversation_id}] #{event.seq} {event.event} {event_to_dict(event).get('agent', '')}")
		return event

	def subscribe(self, replay: bool = True) -> Subscription:
		"""
		Start receiving events.

		With replay, events already published are delivered first, so a
		subscriber attached after the run started still sees the whole run.
		"""
		queue: asyncio.Queue = asyncio.Queue()
		if replay:
			for event in self._history:
				queue.put_nowait(event)
		if self.closed:
			queue.put_nowait(_CLOSED)
		else:
			self._subscribers.append(queue)
		return Subscription(self, queue)

	def _unsubscribe(self, queue: asyncio.Queue) -> None:
		if queue in self._subscribers:
			self._subscribers.remove(queue)
			queue.put_nowait(_CLOSED)

	def close(self) -> None:
		"""End the stream for every subscriber."""
		if self.closed:
			return
		self.closed = True
		for queue in self._subscribers:
			queue.put_nowait(_CLOSED)
		self._subscribers.clear()


class EventHub:
	"""One live bus per conversation."""

	def __init__(self):
		self._buses: dict[str, ProgressEventBus] = {}

	def open(self, conversation_id: str) -> ProgressEventBus:
		"""Start a fresh bus, closing any previous one for the conversation."""
		previous = self._buses.get(conversation_id)
		if previous:
			previous.close()
		bus = ProgressEventBus(conversation_id)
		self._buses[conversation_id] = bus
		return bus

	def get(self, conversation_id: str) -> Optional[ProgressEventBus]:
		return self._buses.get(conversation_id)

	def close(self, conversation_id: str) -> None:
		bus = self._buses.pop(conversation_id, None)
		if bus:
			bus.close()
