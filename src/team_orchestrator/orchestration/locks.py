"""Per-conversation mutual exclusion for run read-modify-write cycles."""

import asyncio
from collections import defaultdict


class ConversationLocks:
	"""Hands out one asyncio.Lock per conversation id."""

	def __init__(self):
		self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

	def get(self, conversation_id: str) -> asyncio.Lock:
		return self._locks[conversation_id]

	def discard(self, conversation_id: str) -> None:
		"""Forget an idle lock (e.g. after the run is cleared)."""
		lock = self._locks.get(conversation_id)
		if lock is not None and not lock.locked():
			del self._locks[conversation_id]

	def __len__(self) -> int:
		return len(self._locks)
