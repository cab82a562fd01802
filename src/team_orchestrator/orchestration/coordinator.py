"""
Team Coordinator - lead analysis, specialist scheduling and synthesis.

Flow for one run:
1. Lead analyzes the objective and picks specialists (LeadPlan)
2. Specialists run as soon as everything they depend on is COMPLETED;
   independent specialists run concurrently
3. When every specialist is COMPLETED the lead synthesizes one
   deliverable, and any artifacts in it are filed in the knowledge base

A specialist that asks the user a question pauses only itself. The run
reports PAUSED once nothing else can make progress, and reply() picks it
up again from the stored state.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from ..config import Config
from ..errors import (
	EmbeddingUnavailable,
	PersistenceError,
	ProviderError,
	RunNotFoundError,
	ValidationError,
)
from ..events.bus import EventHub, ProgressEventBus
from ..events.models import (
	ANALYZING,
	COMPLETE,
	PLANNED,
	SYNTHESIZING,
	AgentCompleteEvent,
	AgentStartEvent,
	CreatedEvent,
	ErrorEvent,
	FinalEvent,
)
from ..knowledge.artifacts import save_artifacts
from ..knowledge.store import KnowledgeStore
from .model import ModelClient
from .models import (
	LeadPlan,
	OrchestrationRun,
	PlanRole,
	RunStatus,
	SpecialistStatus,
	TeamMember,
)
from .retry import RetriesExhausted, RetryPolicy, retry_async
from .runner import CancelScope, SpecialistRunner, TurnOutcome
from .store import OrchestrationStore

logger = logging.getLogger(__name__)


def lead_analysis_prompt(lead: TeamMember, team: list[TeamMember]) -> str:
	specialists = "\n".join(
		f"{i}. {m.name} ({m.role}): {m.expertise or 'Specialist'}" for i, m in enumerate(team, 1)
	)
	return f"""You are {lead.name}, {lead.role}.

{lead.instructions}

You are the Project Lead. Your job is to:
1. Analyze the user's objective
2. Decide which team specialists are needed (you don't need all of them!)
3. Create clear assignments for each selected specialist

Available Specialists:
{specialists}

IMPORTANT: Respond in this EXACT JSON format:
{{
  "analysis": "Brief analysis of what the objective requires",
  "selectedSpecialists": [1, 2],
  "assignments": {{"1": "Specific task for specialist 1", "2": "Specific task for specialist 2"}},
  "dependencies": {{"2": [1]}},
  "deliverableOutline": ["Section one", "Section two"]
}}

"dependencies" is optional: list, per specialist number, the specialists whose results it needs first."""


SYNTHESIS_PROMPT = """You are {name}, {role}.

You have received input from your specialist team. Synthesize their contributions into ONE cohesive, professional deliverable.

DO NOT just combine their responses. Create a UNIFIED document that:
1. Has a clear executive summary
2. Integrates insights from all specialists seamlessly
3. Provides actionable recommendations
4. Uses proper Markdown formatting

Wrap any standalone file or document you produce in an artifact block:
:::artifact{{identifier="short-id" type="text/markdown" title="Title"}}
```
content
```
:::"""


def _extract_json_object(text: str) -> Optional[dict]:
	"""Parse the first JSON object in free text. Everything before the first brace is skipped."""
	start = text.find("{")
	end = text.rfind("}")
	if start == -1 or end <= start:
		return None
	try:
		data = json.loads(text[start:end + 1])
	except json.JSONDecodeError:
		return None
	return data if isinstance(data, dict) else None


def _as_index(value) -> Optional[int]:
	try:
		return int(value)
	except (TypeError, ValueError):
		return None


def parse_lead_plan(text: str, objective: str, team: list[TeamMember]) -> LeadPlan:
	"""
	Build a LeadPlan from the lead's reply.

	Specialists are referenced by 1-based roster position. Anything that
	cannot be parsed falls back to assigning every roster member.
	"""
	data = _extract_json_object(text) or {}

	selected = [_as_index(i) for i in data.get("selectedSpecialists") or []]
	selected = [i for i in dict.fromkeys(selected) if i is not None and 1 <= i <= len(team)]
	if not selected:
		if data:
			logger.warning("Lead plan selected no valid specialists, using the whole team")
		else:
			logger.warning("Could not parse lead plan JSON, using the whole team")
		selected = list(range(1, len(team) + 1))

	assignments = data.get("assignments") or {}
	dependencies = data.get("dependencies") or {}
	if not isinstance(assignments, dict):
		assignments = {}
	if not isinstance(dependencies, dict):
		dependencies = {}

	roles = []
	for index in selected:
		member = team[index - 1]
		deps = [_as_index(d) for d in dependencies.get(str(index)) or []]
		roles.append(PlanRole(
			agent_name=member.name,
			role=member.role,
			assignment=str(assignments.get(str(index), "")),
			depends_on=[team[d - 1].name for d in deps if d and 1 <= d <= len(team) and d in selected and d != index],
		))

	outline = data.get("deliverableOutline") or []
	if isinstance(outline, str):
		outline = [outline]

	plan = LeadPlan(
		objective=objective,
		analysis=str(data.get("analysis") or (text.strip() if not data else "")),
		roles=roles,
		deliverable_outline=[str(o) for o in outline],
	)
	try:
		plan.waves()
	except ValidationError as e:
		logger.warning(f"Ignoring lead plan dependencies: {e}")
		for role in plan.roles:
			role.depends_on = []
	return plan


def team_credits(lead: TeamMember, contributors: list[str], when: Optional[datetime] = None) -> str:
	date = (when or datetime.now()).date().isoformat()
	names = ", ".join([f"{lead.name} (Lead)"] + contributors)
	return f"\n\n---\n\n_**Team Contributors:** {names}_\n_**Generated:** {date}_"


class TeamCoordinator:
	"""Starts, resumes and cancels team runs."""

	def __init__(
		self,
		store: OrchestrationStore,
		knowledge: KnowledgeStore,
		model: ModelClient,
		hub: Optional[EventHub] = None,
		config: Optional[Config] = None,
	):
		self.store = store
		self.knowledge = knowledge
		self.model = model
		self.hub = hub or EventHub()
		self.config = config or Config()
		self.retry_policy = RetryPolicy(
			max_attempts=self.config.retry_attempts,
			initial_delay=self.config.retry_initial_delay,
			timeout=self.config.turn_timeout_seconds,
		)
		self._scopes: dict[str, CancelScope] = {}

	def open_stream(self, conversation_id: str) -> ProgressEventBus:
		"""Create the event bus for the next run of a conversation."""
		return self.hub.open(conversation_id)

	async def start(
		self,
		conversation_id: str,
		objective: str,
		lead: TeamMember,
		team: list[TeamMember],
		parent_message_id: Optional[str] = None,
		response_message_id: Optional[str] = None,
		team_created: bool = False,
		bus: Optional[ProgressEventBus] = None,
	) -> Optional[OrchestrationRun]:
		"""
		Plan and execute a new run, replacing any previous run for the conversation.

		Returns:
			The run as persisted when execution stopped (None if planning failed or the run was cancelled)
		"""
		if not objective or not objective.strip():
			raise ValidationError("objective is required")
		if not team:
			raise ValidationError("team must have at least one specialist")

		bus = bus or self.open_stream(conversation_id)
		scope = self._scope(conversation_id)
		try:
			bus.publish(CreatedEvent(message_id=parent_message_id))
			plan = await self._analyze(objective, lead, team, bus)
			if plan is None:
				self._finish_failed(bus)
				return None
			if scope.cancelled:
				return None

			run = OrchestrationRun.from_plan(conversation_id, plan, parent_message_id, team=team, lead=lead)
			await self.store.save_state(run)
			logger.info(
				f"[{conversation_id}] Run created with {len(plan.roles)} specialists: "
				f"{', '.join(r.agent_name for r in plan.roles)}"
			)
			return await self._execute(conversation_id, bus, scope, response_message_id, team_created)
		except Exception:
			logger.exception(f"[{conversation_id}] Run failed unexpectedly")
			if not scope.cancelled:
				bus.publish(ErrorEvent())
			raise
		finally:
			bus.close()
			self._scopes.pop(conversation_id, None)

	async def reply(
		self,
		conversation_id: str,
		answer: str,
		agent_name: Optional[str] = None,
		paused_message_id: Optional[str] = None,
		response_message_id: Optional[str] = None,
		bus: Optional[ProgressEventBus] = None,
	) -> Optional[OrchestrationRun]:
		"""Answer a paused specialist and continue the run."""
		run = await self.store.get_state(conversation_id)
		if run is None:
			raise RunNotFoundError(conversation_id)
		if await self.store.find_paused_state(conversation_id, paused_message_id) is None:
			raise ValidationError(f"Run for {conversation_id} is not waiting for an answer")

		bus = bus or self.open_stream(conversation_id)
		scope = self._scope(conversation_id)
		runner = self._runner(bus, scope)
		try:
			bus.publish(CreatedEvent(message_id=paused_message_id))
			await runner.resume(conversation_id, answer, agent_name)
			return await self._execute(conversation_id, bus, scope, response_message_id, False)
		except Exception:
			logger.exception(f"[{conversation_id}] Resume failed")
			if not scope.cancelled:
				bus.publish(ErrorEvent())
			raise
		finally:
			bus.close()
			self._scopes.pop(conversation_id, None)

	def cancel(self, conversation_id: str) -> bool:
		"""Abandon the live run. Persisted state stays resumable."""
		scope = self._scopes.get(conversation_id)
		if scope is None:
			return False
		scope.cancel()
		self.hub.close(conversation_id)
		logger.info(f"[{conversation_id}] Run cancelled by client")
		return True

	def _scope(self, conversation_id: str) -> CancelScope:
		scope = CancelScope()
		previous = self._scopes.get(conversation_id)
		if previous:
			previous.cancel()
		self._scopes[conversation_id] = scope
		return scope

	def _runner(self, bus: ProgressEventBus, scope: CancelScope) -> SpecialistRunner:
		return SpecialistRunner(
			self.store, self.knowledge, self.model, bus=bus, config=self.config, cancel=scope,
		)

	async def _analyze(
		self,
		objective: str,
		lead: TeamMember,
		team: list[TeamMember],
		bus: ProgressEventBus,
	) -> Optional[LeadPlan]:
		bus.publish(AgentStartEvent(
			agent=lead.name, role=lead.role, action=ANALYZING,
			message=f"{lead.name} is analyzing the objective",
		))
		system = lead_analysis_prompt(lead, team)
		try:
			reply = await retry_async(
				lambda: self.model.complete(system, [{"role": "user", "content": f"Objective: {objective}"}]),
				self.retry_policy,
				label=f"{lead.name} analysis",
			)
		except RetriesExhausted as e:
			logger.error(f"Lead analysis failed: {e}")
			return None

		plan = parse_lead_plan(reply.text, objective, team)
		bus.publish(AgentCompleteEvent(
			agent=lead.name, role=lead.role, action=PLANNED,
			message=f"Selected {', '.join(r.agent_name for r in plan.roles)}",
		))
		return plan

	@staticmethod
	def _ready(run: OrchestrationRun) -> list[str]:
		"""Specialists that can run now: not paused or done, dependencies COMPLETED."""
		completed = {s.agent_name for s in run.specialist_states if s.status == SpecialistStatus.COMPLETED}
		deps = {r.agent_name: set(r.depends_on) for r in run.lead_plan.roles} if run.lead_plan else {}
		return [
			s.agent_name for s in run.specialist_states
			if s.status in (SpecialistStatus.PENDING, SpecialistStatus.WORKING)
			and deps.get(s.agent_name, set()) <= completed
		]

	@staticmethod
	def _member(run: OrchestrationRun, agent_name: str) -> TeamMember:
		specialist = run.get_specialist(agent_name)
		if specialist and specialist.definition:
			return specialist.definition
		return TeamMember(name=agent_name, role=specialist.role if specialist else "")

	async def _run_turns(
		self,
		runner: SpecialistRunner,
		conversation_id: str,
		run: OrchestrationRun,
		ready: list[str],
	) -> list[TurnOutcome]:
		"""Run ready specialists concurrently. If one turn raises, the others are stopped."""
		tasks = [
			asyncio.create_task(runner.run_turn(conversation_id, self._member(run, name)))
			for name in ready
		]
		try:
			return await asyncio.gather(*tasks)
		except Exception:
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)
			raise

	async def _execute(
		self,
		conversation_id: str,
		bus: ProgressEventBus,
		scope: CancelScope,
		response_message_id: Optional[str],
		team_created: bool,
	) -> Optional[OrchestrationRun]:
		runner = self._runner(bus, scope)

		while True:
			run = await self.store.get_state(conversation_id)
			if run is None:
				raise RunNotFoundError(conversation_id)
			if run.status == RunStatus.FAILED:
				break
			ready = self._ready(run)
			if not ready:
				break
			outcomes = await self._run_turns(runner, conversation_id, run, ready)
			if TurnOutcome.CANCELLED in outcomes or scope.cancelled:
				return None

		if run.status == RunStatus.FAILED:
			self._finish_failed(bus)
			return run

		if run.status == RunStatus.PAUSED:
			def _mark_paused(r: OrchestrationRun) -> None:
				r.paused_message_id = response_message_id
			run = await self.store.transition(conversation_id, _mark_paused)
			questions = "\n".join(
				f"**{s.agent_name}:** {s.interrupt_question}" for s in run.paused_specialists()
			)
			bus.publish(FinalEvent(
				status=run.status.value, paused=True, team_created=team_created, response=questions,
			))
			logger.info(f"[{conversation_id}] Run paused waiting for user input")
			return run

		if run.status != RunStatus.COMPLETED:
			# Nothing runnable but not done: dependencies on a specialist that cannot finish
			logger.error(f"[{conversation_id}] Run stalled in {run.status.value}")
			run = await self.store.transition(
				conversation_id, lambda r: r.mark_failed("coordinator", "no runnable specialists left"),
			)
			self._finish_failed(bus)
			return run

		return await self._synthesize(run, bus, scope, response_message_id, team_created)

	async def _synthesize(
		self,
		run: OrchestrationRun,
		bus: ProgressEventBus,
		scope: CancelScope,
		response_message_id: Optional[str],
		team_created: bool,
	) -> Optional[OrchestrationRun]:
		conversation_id = run.conversation_id
		lead = run.lead or TeamMember(name="Project Lead", role="Project Lead")
		bus.publish(AgentStartEvent(
			agent=lead.name, role=lead.role, action=SYNTHESIZING,
			message=f"{lead.name} is synthesizing the deliverable",
		))

		inputs = "\n\n---\n\n".join(
			f"### {s.agent_name} ({s.role})\n{s.current_output or ''}" for s in run.specialist_states
		)
		outline = "\n".join(f"- {o}" for o in run.lead_plan.deliverable_outline) if run.lead_plan else ""
		prompt = (
			f"# Objective\n{run.lead_plan.objective if run.lead_plan else ''}\n\n"
			f"# Deliverable Structure\n{outline or 'Professional analysis document'}\n\n"
			f"# Specialist Inputs\n\n{inputs}\n\n---\n\n"
			"Now synthesize all of this into ONE unified, professional deliverable document in Markdown format."
		)
		system = SYNTHESIS_PROMPT.format(name=lead.name, role=lead.role)

		try:
			reply = await retry_async(
				lambda: self.model.complete(system, [{"role": "user", "content": prompt}]),
				self.retry_policy,
				label=f"{lead.name} synthesis",
			)
		except RetriesExhausted as e:
			logger.error(f"[{conversation_id}] Synthesis failed: {e}")
			run = await self.store.transition(conversation_id, lambda r: r.mark_failed(lead.name, str(e)))
			self._finish_failed(bus)
			return run
		if scope.cancelled:
			return None

		deliverable = reply.text.strip() + team_credits(lead, [s.agent_name for s in run.specialist_states])

		def _store_output(r: OrchestrationRun) -> None:
			r.final_output = deliverable

		run = await self.store.transition(conversation_id, _store_output)
		try:
			await save_artifacts(
				self.knowledge, conversation_id, reply.text,
				message_id=response_message_id, created_by=lead.name,
			)
		except (EmbeddingUnavailable, PersistenceError, ProviderError) as e:
			logger.warning(f"[{conversation_id}] Deliverable artifacts not saved to the knowledge base: {e}")

		bus.publish(AgentCompleteEvent(
			agent=lead.name, role=lead.role, action=COMPLETE, message="Deliverable complete",
		))
		bus.publish(FinalEvent(status=run.status.value, team_created=team_created, response=deliverable))
		logger.info(f"[{conversation_id}] Completed - {len(run.specialist_states) + 1} agents contributed")
		return run

	def _finish_failed(self, bus: ProgressEventBus) -> None:
		bus.publish(ErrorEvent())
		bus.publish(FinalEvent(status=RunStatus.FAILED.value))
