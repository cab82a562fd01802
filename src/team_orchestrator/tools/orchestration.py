"""Team run state tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..errors import PersistenceError
from ..orchestration.store import get_orchestration_store


def register_orchestration_tools(mcp: FastMCP, config: Config) -> None:
	"""Register orchestration state tools."""

	@mcp.tool()
	async def get_run_state(conversation_id: str) -> str:
		"""
		Get the persisted team run for a conversation.

		Args:
			conversation_id: The conversation ID
		"""
		store = await get_orchestration_store()
		run = await store.get_state(conversation_id)
		if not run:
			return json.dumps({"error": f"No run found for conversation: {conversation_id}"})

		return json.dumps({
			"run": run.to_document(),
			"paused": [
				{"agent": s.agent_name, "question": s.interrupt_question}
				for s in run.paused_specialists()
			],
		}, indent=2)

	@mcp.tool()
	async def clear_run_state(conversation_id: str) -> str:
		"""
		Delete the persisted team run for a conversation.

		Args:
			conversation_id: The conversation ID
		"""
		store = await get_orchestration_store()
		try:
			removed = await store.clear_state(conversation_id)
		except PersistenceError as e:
			return json.dumps({"success": False, "error": str(e)})
		return json.dumps({"success": True, "cleared": removed})
