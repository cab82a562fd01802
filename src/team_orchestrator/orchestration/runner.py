"""
Specialist Runner - drives one specialist through its tool-use loop.

A turn alternates model calls and tool executions until the model
answers without tool calls (COMPLETED) or asks the user a question
(PAUSED). Every step is persisted through the orchestration store
under the conversation lock, so a paused or crashed run resumes from
its last recorded message rather than from scratch.

Failures: each model call is retried with backoff and bounded by a
timeout. A cycle that still cannot finish is abandoned and re-entered;
once every cycle is spent the run is marked FAILED while the specialist
itself stays WORKING. Any other error from the model client or a tool
fails the run the same way on the spot; storage errors propagate.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from ..config import Config
from ..errors import PersistenceError, ValidationError
from ..events.bus import ProgressEventBus
from ..events.models import (
	COLLABORATION,
	COMPLETED,
	THINKING,
	TOOL_USE,
	WORKING,
	AgentCompleteEvent,
	AgentStartEvent,
	CollaborationEvent,
	InterruptEvent,
	ThinkingEvent,
)
from ..knowledge.query import KnowledgeQuery
from ..knowledge.store import KnowledgeStore
from .model import ModelClient, ModelReply, ToolCall
from .models import OrchestrationRun, SpecialistState, SpecialistStatus, TeamMember
from .retry import RetriesExhausted, RetryPolicy, retry_async
from .store import OrchestrationStore

logger = logging.getLogger(__name__)

ASK_USER = "ask_user"

ASK_USER_TOOL = {
	"name": ASK_USER,
	"description": (
		"Ask the user a clarifying question to proceed. CAUTION: This pauses execution "
		"until the user replies. Use only if absolutely necessary to resolve ambiguity."
	),
	"input_schema": {
		"type": "object",
		"properties": {
			"question": {"type": "string", "description": "The question to ask the user."},
		},
		"required": ["question"],
	},
}

COLLABORATION_PREVIEW = 280


class TurnOutcome(str, Enum):
	COMPLETED = "completed"
	PAUSED = "paused"
	FAILED = "failed"
	CANCELLED = "cancelled"


class RunCancelled(Exception):
	"""Raised inside a turn once its cancel scope is triggered."""
	pass


class TurnAbandoned(Exception):
	"""A cycle could not finish; the specialist stays WORKING."""
	pass


class CancelScope:
	"""Cooperative cancellation flag for one run."""

	def __init__(self):
		self._event = asyncio.Event()

	def cancel(self) -> None:
		self._event.set()

	@property
	def cancelled(self) -> bool:
		return self._event.is_set()

	def check(self) -> None:
		if self._event.is_set():
			raise RunCancelled()


def build_specialist_prompt(member: TeamMember) -> str:
	parts = [f"You are {member.name}, a {member.role or 'specialist'}."]
	if member.instructions:
		parts.append(member.instructions)
	if member.expertise:
		parts.append(f"Your expertise: {member.expertise}")
	parts.append(
		"You have been assigned a specific task by the Project Lead.\n\n"
		"Guidelines:\n"
		"- Focus ONLY on your assigned area\n"
		"- Check the team knowledge base before making assumptions\n"
		"- Ask the user only when the objective is genuinely ambiguous\n"
		"- When done, answer with your final contribution and no tool calls"
	)
	return "\n\n".join(parts)


class SpecialistRunner:
	"""Runs specialist turns for one conversation's run."""

	def __init__(
		self,
		store: OrchestrationStore,
		knowledge: KnowledgeStore,
		model: ModelClient,
		bus: Optional[ProgressEventBus] = None,
		config: Optional[Config] = None,
		cancel: Optional[CancelScope] = None,
	):
		config = config or Config()
		self.store = store
		self.knowledge = knowledge
		self.model = model
		self.bus = bus
		self.cancel_scope = cancel or CancelScope()
		self.max_steps = config.max_turn_steps
		self.max_cycles = max(1, config.max_turn_cycles)
		self.tool_timeout = config.turn_timeout_seconds
		self.search_default_k = config.search_default_k
		self.search_max_k = config.search_max_k
		self.retry_policy = RetryPolicy(
			max_attempts=config.retry_attempts,
			initial_delay=config.retry_initial_delay,
			timeout=config.turn_timeout_seconds,
		)

	def _emit(self, event) -> None:
		if self.bus is not None and not self.cancel_scope.cancelled:
			self.bus.publish(event)

	def _query(self, conversation_id: str) -> KnowledgeQuery:
		return KnowledgeQuery(
			self.knowledge, conversation_id,
			default_k=self.search_default_k, max_k=self.search_max_k,
		)

	async def run_turn(self, conversation_id: str, member: TeamMember) -> TurnOutcome:
		"""
		Run a specialist until it completes, pauses or fails.

		Args:
			conversation_id: Run to work on
			member: Roster entry for the specialist (agent name = member.name)

		Returns:
			How the turn ended
		"""
		last_error: Optional[BaseException] = None

		for cycle in range(self.max_cycles):
			try:
				self.cancel_scope.check()
				return await self._cycle(conversation_id, member)
			except RunCancelled:
				logger.info(f"[{conversation_id}] {member.name}: cancelled")
				return TurnOutcome.CANCELLED
			except TurnAbandoned as e:
				last_error = e
				logger.warning(
					f"[{conversation_id}] {member.name}: cycle {cycle + 1}/{self.max_cycles} abandoned: {e}"
				)
			except PersistenceError:
				raise
			except Exception as e:
				logger.error(f"[{conversation_id}] {member.name}: turn failed: {e}", exc_info=True)
				message = str(e) or type(e).__name__
				await self.store.transition(conversation_id, lambda run: run.mark_failed(member.name, message))
				return TurnOutcome.FAILED

		message = str(last_error) if last_error else "turn could not complete"
		logger.error(f"[{conversation_id}] {member.name}: giving up, marking run FAILED ({message})")
		await self.store.transition(conversation_id, lambda run: run.mark_failed(member.name, message))
		return TurnOutcome.FAILED

	async def resume(self, conversation_id: str, answer: str, agent_name: Optional[str] = None) -> str:
		"""
		Hand the user's answer to a paused specialist.

		The answer becomes the result of the pending ask_user call and the
		specialist returns to WORKING. Call run_turn() afterwards to continue.

		Returns:
			Name of the resumed specialist
		"""
		if not answer or not answer.strip():
			raise ValidationError("answer is required")

		resumed: list[str] = []

		def _resume(run: OrchestrationRun) -> None:
			paused = run.paused_specialists()
			if agent_name:
				paused = [s for s in paused if s.agent_name == agent_name]
			if not paused:
				target = f" named {agent_name}" if agent_name else ""
				raise ValidationError(f"No paused specialist{target} in run {conversation_id}")
			specialist = paused[0]
			specialist.resume(answer)
			if not run.paused_specialists():
				run.paused_message_id = None
			resumed.append(specialist.agent_name)

		await self.store.transition(conversation_id, _resume)
		name = resumed[0]
		logger.info(f"[{conversation_id}] {name}: resumed with user answer")
		self._emit(AgentStartEvent(
			agent=name, action=WORKING, message=f"{name} resumed with the user's answer",
		))
		return name

	async def _cycle(self, conversation_id: str, member: TeamMember) -> TurnOutcome:
		name = member.name
		knowledge_context = await self.knowledge.format_context(conversation_id)
		started: list[bool] = []

		def _start(run: OrchestrationRun) -> None:
			specialist = self._specialist(run, name)
			if specialist.status == SpecialistStatus.PENDING:
				started.append(True)
			specialist.start()
			if not specialist.messages:
				specialist.add_message({
					"role": "user",
					"content": self._opening_message(run, name, knowledge_context),
				})

		run = await self.store.transition(conversation_id, _start)
		if started:
			logger.info(f"[{conversation_id}] {name}: PENDING -> WORKING")
			self._emit(AgentStartEvent(
				agent=name, role=member.role, action=WORKING, message=f"{name} started working",
			))

		system = build_specialist_prompt(member)
		query = self._query(conversation_id)
		tools = query.definitions() + [ASK_USER_TOOL]
		messages = list(self._specialist(run, name).messages)

		for step in range(self.max_steps):
			self.cancel_scope.check()
			try:
				reply: ModelReply = await retry_async(
					lambda: self.model.complete(system, messages, tools),
					self.retry_policy,
					label=f"{name} step {step + 1}",
				)
			except RetriesExhausted as e:
				raise TurnAbandoned(str(e)) from e
			self.cancel_scope.check()

			if reply.thinking:
				self._emit(ThinkingEvent(
					agent=name, role=member.role, action=THINKING, thinking=reply.thinking,
				))

			if not reply.tool_calls:
				return await self._complete(conversation_id, member, reply)

			asks = [c for c in reply.tool_calls if c.name == ASK_USER]
			ask = next((c for c in asks if str(c.input.get("question", "")).strip()), None)
			tool_messages = []
			for call in reply.tool_calls:
				if call is ask:
					continue
				result = await self._execute_tool(query, call, name, member.role)
				tool_messages.append({
					"role": "tool", "tool_call_id": call.id, "name": call.name, "content": result,
				})
				self.cancel_scope.check()

			if ask is not None:
				return await self._pause(conversation_id, member, reply, tool_messages, ask)

			def _record(run: OrchestrationRun) -> None:
				specialist = self._specialist(run, name)
				specialist.add_message(reply.to_message())
				for message in tool_messages:
					specialist.add_message(message)
				if reply.thinking:
					specialist.thinking = reply.thinking

			run = await self.store.transition(conversation_id, _record)
			messages = list(self._specialist(run, name).messages)

		raise TurnAbandoned(f"step budget of {self.max_steps} exhausted")

	async def _execute_tool(self, query: KnowledgeQuery, call: ToolCall, agent: str, role: str) -> str:
		logger.info(f"[{agent}] Calling tool {call.name}")
		self._emit(ThinkingEvent(
			agent=agent, role=role, action=TOOL_USE, message=f"Using tool {call.name}...",
		))

		if call.name == ASK_USER:
			return f"Error executing {ASK_USER}: provide a non-empty `question` (one question at a time)."
		if not query.handles(call.name):
			return f"Error: Tool {call.name} is not available."
		try:
			return await asyncio.wait_for(query.execute(call.name, call.input or {}), timeout=self.tool_timeout)
		except asyncio.TimeoutError:
			return f"Error executing {call.name}: timed out after {self.tool_timeout:.0f}s"
		except Exception as e:
			logger.warning(f"[{agent}] Tool {call.name} failed: {e}")
			return f"Error executing {call.name}: {e}"

	async def _pause(
		self,
		conversation_id: str,
		member: TeamMember,
		reply: ModelReply,
		tool_messages: list[dict],
		ask: ToolCall,
	) -> TurnOutcome:
		question = str(ask.input["question"])

		def _apply(run: OrchestrationRun) -> None:
			specialist = self._specialist(run, member.name)
			specialist.add_message(reply.to_message())
			for message in tool_messages:
				specialist.add_message(message)
			if reply.thinking:
				specialist.thinking = reply.thinking
			specialist.pause(question, ask.id)

		await self.store.transition(conversation_id, _apply)
		logger.info(f"[{conversation_id}] {member.name}: WORKING -> PAUSED ({question})")
		self._emit(InterruptEvent(
			agent=member.name, role=member.role, action="interrupt",
			message=f"{member.name} needs your input", question=question,
		))
		return TurnOutcome.PAUSED

	async def _complete(self, conversation_id: str, member: TeamMember, reply: ModelReply) -> TurnOutcome:
		output = reply.text.strip()

		def _apply(run: OrchestrationRun) -> None:
			specialist = self._specialist(run, member.name)
			specialist.add_message(reply.to_message())
			if reply.thinking:
				specialist.thinking = reply.thinking
			specialist.complete(output)
			run.append_context(f"### {member.name} ({member.role or 'specialist'})\n{output}")

		await self.store.transition(conversation_id, _apply)
		logger.info(f"[{conversation_id}] {member.name}: WORKING -> COMPLETED")

		preview = output if len(output) <= COLLABORATION_PREVIEW else output[:COLLABORATION_PREVIEW] + "..."
		self._emit(CollaborationEvent(
			agent=member.name, role=member.role, action=COLLABORATION, collaboration=preview,
		))
		self._emit(AgentCompleteEvent(
			agent=member.name, role=member.role, action=COMPLETED, message=f"{member.name} finished",
		))
		return TurnOutcome.COMPLETED

	@staticmethod
	def _specialist(run: OrchestrationRun, agent_name: str) -> SpecialistState:
		specialist = run.get_specialist(agent_name)
		if specialist is None:
			raise ValidationError(f"Run {run.conversation_id} has no specialist {agent_name}")
		return specialist

	@staticmethod
	def _opening_message(run: OrchestrationRun, agent_name: str, knowledge_context: str) -> str:
		plan = run.lead_plan
		objective = plan.objective if plan else ""
		assignment = ""
		if plan:
			role = next((r for r in plan.roles if r.agent_name == agent_name), None)
			assignment = role.assignment if role else ""

		parts = [f"Overall Objective: {objective}"]
		parts.append(
			f"Your Specific Assignment: {assignment or 'Provide your specialist analysis on this objective.'}"
		)
		if run.shared_context:
			parts.append(f"## Team Context\n{run.shared_context}")
		if knowledge_context:
			parts.append(knowledge_context)
		return "\n\n".join(parts)
