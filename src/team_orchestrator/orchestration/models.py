"""
Orchestration Models - Pydantic schemas for persisted team runs.

One OrchestrationRun exists per conversation. It embeds the lead plan
and one SpecialistState per planned role, in plan order. Specialist
states are only ever status-transitioned, never removed, and their
message history is append-only so a paused specialist can resume
exactly where it stopped.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..errors import InvalidTransitionError, ValidationError


class RunStatus(str, Enum):
	"""Run-level status."""
	IN_PROGRESS = "IN_PROGRESS"
	PAUSED = "PAUSED"
	COMPLETED = "COMPLETED"
	FAILED = "FAILED"


class SpecialistStatus(str, Enum):
	"""Specialist status. There is deliberately no FAILED value here."""
	PENDING = "PENDING"
	WORKING = "WORKING"
	PAUSED = "PAUSED"
	COMPLETED = "COMPLETED"


class _Model(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TeamMember(_Model):
	"""A member of the team roster the lead can assign work to."""
	name: str = Field(description="Unique agent name")
	role: str = Field(default="", description="Role title")
	expertise: str = Field(default="")
	instructions: str = Field(default="", description="Standing instructions for this agent")


class PlanRole(_Model):
	"""One role in the lead plan."""
	agent_name: str = Field(description="Unique name of the specialist")
	role: str = Field(default="", description="Role title (e.g. 'Market Analyst')")
	assignment: str = Field(default="", description="What this specialist should produce")
	depends_on: list[str] = Field(default_factory=list, description="Agent names that must finish first")


class LeadPlan(_Model):
	"""Plan produced by the coordinator."""
	objective: str = Field(description="The user objective being worked on")
	analysis: str = Field(default="")
	roles: list[PlanRole] = Field(default_factory=list)
	deliverable_outline: list[str] = Field(default_factory=list)

	def validate_roles(self) -> None:
		"""Reject empty plans and duplicate agent names."""
		if not self.roles:
			raise ValidationError("Plan has no roles")
		names = [r.agent_name for r in self.roles]
		if len(set(names)) != len(names):
			raise ValidationError(f"Duplicate agent names in plan: {names}")

	def waves(self) -> list[list[str]]:
		"""
		Group agent names into dependency waves.

		Roles in the same wave are independent of each other. Dependencies
		on names outside the plan are ignored.
		"""
		known = {r.agent_name for r in self.roles}
		remaining = {r.agent_name: {d for d in r.depends_on if d in known and d != r.agent_name} for r in self.roles}
		order = [r.agent_name for r in self.roles]
		done: set[str] = set()
		waves = []

		while remaining:
			wave = [name for name in order if name in remaining and remaining[name] <= done]
			if not wave:
				raise ValidationError(f"Dependency cycle among: {sorted(remaining)}")
			waves.append(wave)
			for name in wave:
				done.add(name)
				del remaining[name]
		return waves


class SpecialistState(_Model):
	"""Execution state of one specialist within a run."""
	agent_name: str
	role: str = ""
	status: SpecialistStatus = Field(default=SpecialistStatus.PENDING)
	messages: list[dict[str, Any]] = Field(default_factory=list, description="Full reasoning/tool history")
	current_output: Optional[str] = Field(default=None)
	interrupt_question: Optional[str] = Field(default=None, description="Set only while PAUSED")
	pending_tool_call_id: Optional[str] = Field(default=None, description="ask_user call awaiting an answer")
	thinking: Optional[str] = Field(default=None, description="Latest reasoning text")
	error: Optional[str] = Field(default=None, description="Last unrecoverable error, for inspection")
	definition: Optional[TeamMember] = Field(default=None, description="Roster entry used to run this specialist")

	def check_invariant(self) -> None:
		paused = self.status == SpecialistStatus.PAUSED
		if paused != (self.interrupt_question is not None):
			raise ValidationError(
				f"Specialist {self.agent_name}: interrupt_question must be set iff PAUSED "
				f"(status={self.status.value})"
			)

	def add_message(self, message: dict[str, Any]) -> None:
		self.messages.append(message)

	def start(self) -> None:
		"""PENDING -> WORKING. Re-entering an abandoned WORKING turn is allowed."""
		if self.status not in (SpecialistStatus.PENDING, SpecialistStatus.WORKING):
			raise InvalidTransitionError(self.agent_name, self.status.value, SpecialistStatus.WORKING.value)
		self.status = SpecialistStatus.WORKING
		self.check_invariant()

	def pause(self, question: str, tool_call_id: Optional[str] = None) -> None:
		"""WORKING -> PAUSED with the literal question."""
		if self.status != SpecialistStatus.WORKING:
			raise InvalidTransitionError(self.agent_name, self.status.value, SpecialistStatus.PAUSED.value)
		self.status = SpecialistStatus.PAUSED
		self.interrupt_question = question
		self.pending_tool_call_id = tool_call_id
		self.check_invariant()

	def resume(self, answer: str) -> None:
		"""PAUSED -> WORKING. The answer is appended as the result of the pending ask."""
		if self.status != SpecialistStatus.PAUSED:
			raise InvalidTransitionError(self.agent_name, self.status.value, SpecialistStatus.WORKING.value)
		if self.pending_tool_call_id:
			self.add_message({
				"role": "tool",
				"tool_call_id": self.pending_tool_call_id,
				"name": "ask_user",
				"content": answer,
			})
		else:
			self.add_message({"role": "user", "content": answer})
		self.status = SpecialistStatus.WORKING
		self.interrupt_question = None
		self.pending_tool_call_id = None
		self.check_invariant()

	def complete(self, output: str) -> None:
		"""WORKING -> COMPLETED with the final answer."""
		if self.status != SpecialistStatus.WORKING:
			raise InvalidTransitionError(self.agent_name, self.status.value, SpecialistStatus.COMPLETED.value)
		self.status = SpecialistStatus.COMPLETED
		self.current_output = output
		self.error = None
		self.check_invariant()


class OrchestrationRun(_Model):
	"""
	A team run for one conversation.

	Status is derived from the specialists except FAILED, which is set
	explicitly and stays set. A failed run leaves the failing specialist
	in WORKING so its last live state can be inspected.
	"""
	conversation_id: str = Field(description="Conversation this run belongs to (unique)")
	parent_message_id: Optional[str] = Field(default=None, description="User message that triggered the run")
	paused_message_id: Optional[str] = Field(default=None, description="Message that surfaced the interrupt")
	status: RunStatus = Field(default=RunStatus.IN_PROGRESS)
	lead: Optional[TeamMember] = Field(default=None, description="Coordinator that planned and synthesizes")
	lead_plan: Optional[LeadPlan] = Field(default=None)
	specialist_states: list[SpecialistState] = Field(default_factory=list)
	shared_context: str = Field(default="", description="Append-only context visible to all specialists")
	final_output: Optional[str] = Field(default=None, description="Synthesized deliverable")

	# Timestamps (server-assigned by the store)
	created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())

	@classmethod
	def from_plan(
		cls,
		conversation_id: str,
		plan: LeadPlan,
		parent_message_id: Optional[str] = None,
		team: Optional[list[TeamMember]] = None,
		lead: Optional[TeamMember] = None,
	) -> "OrchestrationRun":
		"""Create a run with one PENDING specialist per plan role."""
		plan.validate_roles()
		roster = {m.name: m for m in team or []}
		return cls(
			conversation_id=conversation_id,
			parent_message_id=parent_message_id,
			lead=lead,
			lead_plan=plan,
			specialist_states=[
				SpecialistState(
					agent_name=r.agent_name,
					role=r.role,
					status=SpecialistStatus.PENDING,
					definition=roster.get(r.agent_name),
				)
				for r in plan.roles
			],
		)

	def get_specialist(self, agent_name: str) -> Optional[SpecialistState]:
		for state in self.specialist_states:
			if state.agent_name == agent_name:
				return state
		return None

	def paused_specialists(self) -> list[SpecialistState]:
		return [s for s in self.specialist_states if s.status == SpecialistStatus.PAUSED]

	def derive_status(self) -> RunStatus:
		if self.status == RunStatus.FAILED:
			return RunStatus.FAILED
		if any(s.status == SpecialistStatus.PAUSED for s in self.specialist_states):
			return RunStatus.PAUSED
		if self.specialist_states and all(
			s.status == SpecialistStatus.COMPLETED for s in self.specialist_states
		):
			return RunStatus.COMPLETED
		return RunStatus.IN_PROGRESS

	def refresh_status(self) -> RunStatus:
		self.status = self.derive_status()
		return self.status

	def append_context(self, entry: str) -> None:
		if not entry:
			return
		self.shared_context = f"{self.shared_context}\n\n{entry}" if self.shared_context else entry

	def mark_failed(self, agent_name: str, error: str) -> None:
		"""Record an unrecoverable error. The specialist keeps its status."""
		specialist = self.get_specialist(agent_name)
		if specialist:
			specialist.error = error
		self.append_context(f"[error] {agent_name}: {error}")
		self.status = RunStatus.FAILED

	def check_invariants(self) -> None:
		names = [s.agent_name for s in self.specialist_states]
		if len(set(names)) != len(names):
			raise ValidationError(f"Duplicate specialists in run {self.conversation_id}")
		for state in self.specialist_states:
			state.check_invariant()

	def to_document(self) -> dict:
		"""At-rest / wire shape with camelCase keys."""
		return self.model_dump(mode="json", by_alias=True)
