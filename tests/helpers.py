"""Shared test fixtures and helpers for team-orchestrator tests."""

import re
import zlib
from typing import Callable, Optional, Union
from unittest.mock import MagicMock

import numpy as np

from team_orchestrator.errors import ProviderError
from team_orchestrator.orchestration.model import ModelReply, ToolCall
from team_orchestrator.orchestration.models import LeadPlan, PlanRole, TeamMember


def capture_tools(config: MagicMock, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		config: Mock config object to pass to the registration function
		register_fn: The registration function (e.g., register_knowledge_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config)
	return captured


class HashEmbeddingProvider:
	"""
	Deterministic bag-of-words embeddings.

	Each lowercase word is hashed into one of `dims` buckets, so texts that
	share words have a positive cosine similarity and texts that share none
	score 0.
	"""

	def __init__(self, dims: int = 64, fail_with: Optional[Exception] = None):
		self.dims = dims
		self.fail_with = fail_with
		self.calls: list[str] = []

	async def embed(self, text: str, model: Optional[str] = None) -> list[float]:
		self.calls.append(text)
		if self.fail_with is not None:
			raise self.fail_with
		vector = np.zeros(self.dims)
		for word in re.findall(r"[a-z0-9]+", text.lower()):
			vector[zlib.crc32(word.encode()) % self.dims] += 1.0
		return vector.tolist()


Step = Union[ModelReply, Exception]


class ScriptedModel:
	"""
	Model client that plays back scripted replies per agent.

	The agent is identified from the system prompt ("You are <name>, ...").
	Each script entry is a ModelReply to return or an exception to raise.
	"""

	def __init__(self, scripts: dict[str, list[Step]]):
		self.scripts = {name: list(steps) for name, steps in scripts.items()}
		self.calls: list[tuple[str, list[dict]]] = []

	def _agent(self, system: str) -> str:
		for name in self.scripts:
			if system.startswith(f"You are {name},"):
				return name
		raise AssertionError(f"No script for system prompt: {system[:60]!r}")

	async def complete(
		self,
		system: str,
		messages: list[dict],
		tools: Optional[list[dict]] = None,
		tool_choice: Optional[str] = None,
	) -> ModelReply:
		agent = self._agent(system)
		self.calls.append((agent, [dict(m) for m in messages]))
		steps = self.scripts[agent]
		if not steps:
			raise AssertionError(f"Script for {agent} is exhausted")
		step = steps.pop(0)
		if isinstance(step, Exception):
			raise step
		return step

	def calls_for(self, agent: str) -> list[list[dict]]:
		return [messages for name, messages in self.calls if name == agent]


def say(text: str, thinking: Optional[str] = None) -> ModelReply:
	"""A final answer without tool calls."""
	return ModelReply(text=text, thinking=thinking)


def ask(question: str, call_id: str = "call_ask") -> ModelReply:
	"""A reply that asks the user a question."""
	return ModelReply(tool_calls=[ToolCall(name="ask_user", input={"question": question}, id=call_id)])


def use_tool(name: str, call_id: str = "call_tool", **tool_input) -> ModelReply:
	return ModelReply(tool_calls=[ToolCall(name=name, input=tool_input, id=call_id)])


def transient(message: str = "upstream 503") -> ProviderError:
	return ProviderError(message)


def make_team(*names: str) -> list[TeamMember]:
	"""Roster members named as given, each with a role derived from the name."""
	return [
		TeamMember(name=name, role=f"{name} Specialist", expertise=f"{name} topics")
		for name in names
	]


def make_lead() -> TeamMember:
	return TeamMember(name="Lead", role="Project Lead", instructions="Coordinate the team.")


def make_plan(
	objective: str = "Draft a launch plan",
	roles: Optional[dict[str, list[str]]] = None,
) -> LeadPlan:
	"""LeadPlan with one role per entry of `roles` (name -> depends_on)."""
	roles = roles if roles is not None else {"A": [], "B": []}
	return LeadPlan(
		objective=objective,
		analysis="Two specialists are enough.",
		roles=[
			PlanRole(
				agent_name=name,
				role=f"{name} Specialist",
				assignment=f"Cover the {name} part",
				depends_on=deps,
			)
			for name, deps in roles.items()
		],
	)
