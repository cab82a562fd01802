"""
Model client interface used by the runner and coordinator.

No vendor is wired in here. Any client that can take a system prompt,
a vendor-neutral message list and tool definitions, and answer with
text and/or tool calls, can drive a team run.

Message shapes:
	{"role": "user", "content": "..."}
	{"role": "assistant", "content": "...", "tool_calls": [{"id", "name", "input"}]}
	{"role": "tool", "tool_call_id": "...", "name": "...", "content": "..."}
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass
class ToolCall:
	name: str
	input: dict[str, Any] = field(default_factory=dict)
	id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")

	def to_dict(self) -> dict:
		return {"id": self.id, "name": self.name, "input": self.input}


@dataclass
class ModelReply:
	"""One model response."""
	text: str = ""
	tool_calls: list[ToolCall] = field(default_factory=list)
	thinking: Optional[str] = None

	def to_message(self) -> dict:
		message: dict[str, Any] = {"role": "assistant", "content": self.text}
		if self.tool_calls:
			message["tool_calls"] = [c.to_dict() for c in self.tool_calls]
		return message


class ModelClient(Protocol):
	"""Reasoning/tool-call backend."""

	async def complete(
		self,
		system: str,
		messages: list[dict],
		tools: Optional[list[dict]] = None,
		tool_choice: Optional[str] = None,
	) -> ModelReply:
		...
