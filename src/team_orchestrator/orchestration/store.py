"""
Orchestration Store - SQLite-backed persistence of team runs.

Features:
- One run per conversation (upsert by conversation id)
- Server-assigned, strictly increasing updated_at
- Per-conversation locks for read-modify-write transitions
- Lookup of paused runs for resume
"""

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

import aiosqlite

from ..errors import PersistenceError, RunNotFoundError
from .locks import ConversationLocks
from .models import OrchestrationRun, RunStatus

logger = logging.getLogger(__name__)


class OrchestrationStore:
	"""
	SQLite-backed run storage.

	Usage:
		store = OrchestrationStore("data/orchestration.db")
		await store.init()

		await store.save_state(run)
		run = await store.get_state("conv-1")

		# Field-level changes go through the conversation lock
		await store.transition("conv-1", lambda run: run.get_specialist("A").start())
	"""

	def __init__(self, db_path: str, locks: Optional[ConversationLocks] = None):
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self.locks = locks or ConversationLocks()
		self._write_lock = asyncio.Lock()
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS runs (
				conversation_id TEXT PRIMARY KEY,
				parent_message_id TEXT,
				paused_message_id TEXT,
				status TEXT NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)
		""")

		await self._db.commit()
		logger.info(f"Orchestration store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def _conn(self) -> aiosqlite.Connection:
		if not self._db:
			await self.init()
		return self._db

	def lock(self, conversation_id: str) -> asyncio.Lock:
		"""The mutual-exclusion scope for a conversation's transitions."""
		return self.locks.get(conversation_id)

	async def save_state(self, run: OrchestrationRun) -> OrchestrationRun:
		"""
		Upsert a run by conversation id.

		updated_at is always assigned here and is strictly greater than the
		previously stored value. created_at is kept from the first save.
		Concurrent saves for one conversation serialize to last-write-wins.

		Returns:
			The run as stored
		"""
		run.check_invariants()
		run.refresh_status()
		db = await self._conn()

		async with self._write_lock:
			cursor = await db.execute(
				"SELECT created_at, updated_at FROM runs WHERE conversation_id = ?",
				(run.conversation_id,)
			)
			row = await cursor.fetchone()

			now = datetime.now()
			if row:
				previous = datetime.fromisoformat(row["updated_at"])
				if now <= previous:
					now = previous + timedelta(microseconds=1)
				run.created_at = row["created_at"]
			else:
				run.created_at = now.isoformat()
			run.updated_at = now.isoformat()

			try:
				await db.execute(
					"""
					INSERT INTO runs (conversation_id, parent_message_id, paused_message_id, status, data, created_at, updated_at)
					VALUES (?, ?, ?, ?, ?, ?, ?)
					ON CONFLICT(conversation_id) DO UPDATE SET
						parent_message_id = excluded.parent_message_id,
						paused_message_id = excluded.paused_message_id,
						status = excluded.status,
						data = excluded.data,
						updated_at = excluded.updated_at
					""",
					(
						run.conversation_id,
						run.parent_message_id,
						run.paused_message_id,
						run.status.value,
						run.model_dump_json(by_alias=True),
						run.created_at,
						run.updated_at,
					)
				)
				await db.commit()
			except aiosqlite.Error as e:
				await db.rollback()
				raise PersistenceError(f"Failed to save run for {run.conversation_id}: {e}") from e

		logger.debug(f"Saved run {run.conversation_id} status={run.status.value}")
		return run

	async def get_state(self, conversation_id: str) -> Optional[OrchestrationRun]:
		"""Get the run for a conversation, or None."""
		db = await self._conn()

		cursor = await db.execute(
			"SELECT data FROM runs WHERE conversation_id = ?",
			(conversation_id,)
		)
		row = await cursor.fetchone()
		if not row:
			return None
		return OrchestrationRun.model_validate_json(row["data"])

	async def clear_state(self, conversation_id: str) -> int:
		"""Delete the run for a conversation. Returns runs removed (0 or 1)."""
		db = await self._conn()
		async with self._write_lock:
			try:
				cursor = await db.execute(
					"DELETE FROM runs WHERE conversation_id = ?",
					(conversation_id,)
				)
				removed = cursor.rowcount
				await db.commit()
			except aiosqlite.Error as e:
				await db.rollback()
				raise PersistenceError(f"Failed to clear run for {conversation_id}: {e}") from e

		self.locks.discard(conversation_id)
		if removed:
			logger.info(f"Cleared run for conversation {conversation_id}")
		return removed

	async def find_paused_state(
		self,
		conversation_id: str,
		paused_message_id: Optional[str] = None,
	) -> Optional[OrchestrationRun]:
		"""The conversation's run if it is PAUSED (and matches the message, when given)."""
		run = await self.get_state(conversation_id)
		if not run or run.status != RunStatus.PAUSED:
			return None
		if paused_message_id and run.paused_message_id != paused_message_id:
			return None
		return run

	async def list_runs(self, status: Optional[RunStatus] = None, limit: int = 50) -> list[OrchestrationRun]:
		"""Most recently updated runs, optionally filtered by status."""
		db = await self._conn()

		query = "SELECT data FROM runs"
		params: list = []
		if status:
			query += " WHERE status = ?"
			params.append(status.value)
		query += " ORDER BY updated_at DESC LIMIT ?"
		params.append(limit)

		cursor = await db.execute(query, params)
		rows = await cursor.fetchall()
		return [OrchestrationRun.model_validate_json(row["data"]) for row in rows]

	async def transition(
		self,
		conversation_id: str,
		mutate: Callable[[OrchestrationRun], object],
	) -> OrchestrationRun:
		"""
		Read-modify-write a run under the conversation lock.

		Args:
			conversation_id: Run to change
			mutate: Called with the freshly loaded run; changes it in place

		Returns:
			The saved run
		"""
		async with self.lock(conversation_id):
			run = await self.get_state(conversation_id)
			if run is None:
				raise RunNotFoundError(conversation_id)
			mutate(run)
			return await self.save_state(run)


# Global store instance
_orchestration_store: Optional[OrchestrationStore] = None


async def get_orchestration_store(db_path: str = "") -> OrchestrationStore:
	"""Get or create the global orchestration store."""
	global _orchestration_store

	if _orchestration_store is None:
		if not db_path:
			from ..config import get_config
			db_path = str(get_config().orchestration_db_path)
		_orchestration_store = OrchestrationStore(db_path)
		await _orchestration_store.init()

	return _orchestration_store
