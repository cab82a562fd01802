"""Tests for the team coordinator: planning, scheduling, pausing and synthesis."""

import asyncio
import json
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio

from team_orchestrator.config import Config
from team_orchestrator.errors import CredentialMissing, PersistenceError, RunNotFoundError, ValidationError
from team_orchestrator.knowledge.store import KnowledgeStore
from team_orchestrator.orchestration.coordinator import TeamCoordinator, parse_lead_plan, team_credits
from team_orchestrator.orchestration.model import ModelReply
from team_orchestrator.orchestration.models import OrchestrationRun, RunStatus, SpecialistStatus
from team_orchestrator.orchestration.store import OrchestrationStore

from .helpers import HashEmbeddingProvider, ScriptedModel, ask, make_lead, make_plan, make_team, say, transient

TEAM = make_team("A", "B", "C")

DELIVERABLE = """# Launch Plan

Two tiers, shipped in spring.

:::artifact{identifier="launch-plan" type="text/markdown" title="Launch Plan"}
```
# Launch Plan
Ship it in spring.
```
:::"""


def plan_reply(selected, assignments=None, dependencies=None, preamble="Here is my plan:\n") -> str:
	data = {
		"analysis": "Needs research and writing",
		"selectedSpecialists": selected,
		"assignments": assignments or {str(i): f"Task {i}" for i in selected},
		"deliverableOutline": ["Summary", "Details"],
	}
	if dependencies is not None:
		data["dependencies"] = dependencies
	return preamble + json.dumps(data)


class TestParseLeadPlan:
	"""Lead reply parsing."""

	def test_selected_specialists(self):
		plan = parse_lead_plan(
			plan_reply([2, 1], dependencies={"2": [1]}), "Launch", TEAM,
		)
		assert [r.agent_name for r in plan.roles] == ["B", "A"]
		assert plan.roles[0].assignment == "Task 2"
		assert plan.roles[0].depends_on == ["A"]
		assert plan.roles[0].role == "B Specialist"
		assert plan.analysis == "Needs research and writing"
		assert plan.deliverable_outline == ["Summary", "Details"]
		assert plan.waves() == [["A"], ["B"]]

	def test_unparseable_reply_uses_whole_team(self):
		plan = parse_lead_plan("I think everyone should help.", "Launch", TEAM)
		assert [r.agent_name for r in plan.roles] == ["A", "B", "C"]
		assert plan.analysis == "I think everyone should help."
		assert all(r.assignment == "" for r in plan.roles)

	def test_out_of_range_selection_uses_whole_team(self):
		plan = parse_lead_plan(plan_reply([7, 0]), "Launch", TEAM)
		assert [r.agent_name for r in plan.roles] == ["A", "B", "C"]

	def test_dependency_on_unselected_specialist_is_dropped(self):
		plan = parse_lead_plan(plan_reply([2], dependencies={"2": [3]}), "Launch", TEAM)
		assert plan.roles[0].depends_on == []

	def test_cyclic_dependencies_are_dropped(self):
		plan = parse_lead_plan(plan_reply([1, 2], dependencies={"1": [2], "2": [1]}), "Launch", TEAM)
		assert [r.depends_on for r in plan.roles] == [[], []]

	def test_team_credits(self):
		footer = team_credits(make_lead(), ["A", "B"], when=datetime(2024, 3, 1, 12, 0))
		assert footer == "\n\n---\n\n_**Team Contributors:** Lead (Lead), A, B_\n_**Generated:** 2024-03-01_"


@pytest_asyncio.fixture
async def runs(tmp_path: Path):
	store = OrchestrationStore(str(tmp_path / "orchestration.db"))
	await store.init()
	yield store
	await store.close()


@pytest_asyncio.fixture
async def knowledge(tmp_path: Path):
	store = KnowledgeStore(str(tmp_path / "knowledge.db"), HashEmbeddingProvider(), window=200, overlap=50)
	await store.init()
	yield store
	await store.close()


def _coordinator(runs, knowledge, model, tmp_path) -> TeamCoordinator:
	config = Config(data_dir=tmp_path, retry_initial_delay=0, retry_attempts=2, max_turn_cycles=1)
	return TeamCoordinator(runs, knowledge, model, config=config)


class TestStart:
	"""Runs from objective to deliverable."""

	@pytest.mark.asyncio
	async def test_completes_with_deliverable(self, runs, knowledge, tmp_path):
		model = ScriptedModel({
			"Lead": [say(plan_reply([1, 2])), say(DELIVERABLE)],
			"A": [say("result-A")],
			"B": [say("result-B")],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)
		bus = coordinator.open_stream("conv-1")

		run = await coordinator.start(
			"conv-1", "Draft a launch plan", make_lead(), TEAM,
			parent_message_id="user-1", response_message_id="resp-1", team_created=True, bus=bus,
		)

		assert run.status == RunStatus.COMPLETED
		assert [s.agent_name for s in run.specialist_states] == ["A", "B"]
		assert run.final_output.startswith("# Launch Plan")
		assert "_**Team Contributors:** Lead (Lead), A, B_" in run.final_output
		assert run.lead.name == "Lead"
		assert run.parent_message_id == "user-1"

		events = bus.history
		assert events[0].event == "created"
		assert events[0].message_id == "user-1"
		assert events[-1].event == "final"
		assert events[-1].status == "COMPLETED"
		assert events[-1].team_created is True
		assert events[-1].response == run.final_output
		assert [e.seq for e in events] == list(range(1, len(events) + 1))
		assert bus.closed

		actions = [(e.event, getattr(e, "action", None)) for e in events]
		assert ("agent_start", "analyzing") in actions
		assert ("agent_complete", "planned") in actions
		assert ("agent_start", "synthesizing") in actions
		assert ("agent_complete", "complete") in actions

	@pytest.mark.asyncio
	async def test_artifacts_are_filed(self, runs, knowledge, tmp_path):
		model = ScriptedModel({
			"Lead": [say(plan_reply([1])), say(DELIVERABLE)],
			"A": [say("result-A")],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)

		await coordinator.start("conv-1", "Draft a launch plan", make_lead(), TEAM, response_message_id="resp-1")

		docs = await knowledge.list("conv-1")
		assert len(docs) == 1
		assert docs[0].title == "Launch Plan"
		assert docs[0].content == "# Launch Plan\nShip it in spring."
		assert docs[0].message_id == "resp-1"
		assert docs[0].created_by == "Lead"
		assert docs[0].dedupe_key == "conv-1:launch-plan"

	@pytest.mark.asyncio
	async def test_dependencies_run_first(self, runs, knowledge, tmp_path):
		model = ScriptedModel({
			"Lead": [say(plan_reply([1, 2], dependencies={"1": [2]})), say("Done")],
			"A": [say("result-A")],
			"B": [say("result-B")],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)

		await coordinator.start("conv-1", "Draft a launch plan", make_lead(), TEAM)

		order = [name for name, _ in model.calls if name != "Lead"]
		assert order == ["B", "A"]
		assert "result-B" in model.calls_for("A")[0][0]["content"]

	@pytest.mark.asyncio
	async def test_replaces_previous_run(self, runs, knowledge, tmp_path):
		await runs.save_state(OrchestrationRun.from_plan("conv-1", make_plan(roles={"Old": []})))
		model = ScriptedModel({
			"Lead": [say(plan_reply([3])), say("Done")],
			"C": [say("result-C")],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)

		await coordinator.start("conv-1", "Draft a launch plan", make_lead(), TEAM)

		run = await runs.get_state("conv-1")
		assert [s.agent_name for s in run.specialist_states] == ["C"]

	@pytest.mark.asyncio
	async def test_requires_objective_and_team(self, runs, knowledge, tmp_path):
		coordinator = _coordinator(runs, knowledge, ScriptedModel({}), tmp_path)
		with pytest.raises(ValidationError):
			await coordinator.start("conv-1", "  ", make_lead(), TEAM)
		with pytest.raises(ValidationError):
			await coordinator.start("conv-1", "Launch", make_lead(), [])


class TestPauseAndReply:
	"""A question from one specialist pauses the run until the user replies."""

	@pytest.mark.asyncio
	async def test_pause_then_reply(self, runs, knowledge, tmp_path):
		model = ScriptedModel({
			"Lead": [say(plan_reply([1, 2])), say("Final report")],
			"A": [say("result-A")],
			"B": [ask("Which format?"), say("Formatted as PDF")],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)
		bus = coordinator.open_stream("conv-1")

		run = await coordinator.start(
			"conv-1", "Draft a launch plan", make_lead(), TEAM, response_message_id="resp-1", bus=bus,
		)

		assert run.status == RunStatus.PAUSED
		assert run.paused_message_id == "resp-1"
		assert run.get_specialist("A").status == SpecialistStatus.COMPLETED
		final = bus.history[-1]
		assert final.event == "final"
		assert final.paused is True
		assert final.response == "**B:** Which format?"
		assert "interrupt" in [e.event for e in bus.history]

		reply_bus = coordinator.open_stream("conv-1")
		run = await coordinator.reply(
			"conv-1", "PDF", paused_message_id="resp-1", response_message_id="resp-2", bus=reply_bus,
		)

		assert run.status == RunStatus.COMPLETED
		assert run.paused_message_id is None
		assert run.final_output.startswith("Final report")
		assert reply_bus.history[0].event == "created"
		assert reply_bus.history[-1].status == "COMPLETED"
		# A is not run again after the reply
		assert len(model.calls_for("A")) == 1

	@pytest.mark.asyncio
	async def test_reply_to_missing_run(self, runs, knowledge, tmp_path):
		coordinator = _coordinator(runs, knowledge, ScriptedModel({}), tmp_path)
		with pytest.raises(RunNotFoundError):
			await coordinator.reply("nope", "PDF")

	@pytest.mark.asyncio
	async def test_reply_to_run_that_is_not_paused(self, runs, knowledge, tmp_path):
		await runs.save_state(OrchestrationRun.from_plan("conv-1", make_plan()))
		coordinator = _coordinator(runs, knowledge, ScriptedModel({}), tmp_path)
		with pytest.raises(ValidationError):
			await coordinator.reply("conv-1", "PDF")

	@pytest.mark.asyncio
	async def test_reply_to_stale_message(self, runs, knowledge, tmp_path):
		model = ScriptedModel({"Lead": [say(plan_reply([2]))], "B": [ask("Which format?")]})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)
		await coordinator.start("conv-1", "Launch", make_lead(), TEAM, response_message_id="resp-1")

		with pytest.raises(ValidationError):
			await coordinator.reply("conv-1", "PDF", paused_message_id="resp-0")


class TestFailure:
	"""Failed planning, specialists and synthesis."""

	@pytest.mark.asyncio
	async def test_lead_analysis_failure(self, runs, knowledge, tmp_path):
		model = ScriptedModel({"Lead": [transient(), transient()]})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)
		bus = coordinator.open_stream("conv-1")

		assert await coordinator.start("conv-1", "Launch", make_lead(), TEAM, bus=bus) is None
		assert [e.event for e in bus.history][-2:] == ["error", "final"]
		assert bus.history[-1].status == "FAILED"
		assert await runs.get_state("conv-1") is None

	@pytest.mark.asyncio
	async def test_specialist_failure(self, runs, knowledge, tmp_path):
		model = ScriptedModel({
			"Lead": [say(plan_reply([1]))],
			"A": [transient(), transient()],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)
		bus = coordinator.open_stream("conv-1")

		run = await coordinator.start("conv-1", "Launch", make_lead(), TEAM, bus=bus)

		assert run.status == RunStatus.FAILED
		assert run.get_specialist("A").status == SpecialistStatus.WORKING
		assert bus.history[-1].status == "FAILED"
		assert bus.history[-2].message == "The team run failed."

	@pytest.mark.asyncio
	async def test_synthesis_failure(self, runs, knowledge, tmp_path):
		model = ScriptedModel({
			"Lead": [say(plan_reply([1])), transient(), transient()],
			"A": [say("result-A")],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)

		run = await coordinator.start("conv-1", "Launch", make_lead(), TEAM)

		assert run.status == RunStatus.FAILED
		assert run.final_output is None
		assert "[error] Lead:" in run.shared_context

	@pytest.mark.asyncio
	async def test_cancel_without_live_run(self, runs, knowledge, tmp_path):
		coordinator = _coordinator(runs, knowledge, ScriptedModel({}), tmp_path)
		assert coordinator.cancel("conv-1") is False

	@pytest.mark.asyncio
	async def test_artifact_capture_failure_still_completes(self, runs, tmp_path):
		knowledge = KnowledgeStore(
			str(tmp_path / "knowledge.db"),
			HashEmbeddingProvider(fail_with=CredentialMissing("no API key")),
			window=200, overlap=50,
		)
		await knowledge.init()
		model = ScriptedModel({
			"Lead": [say(plan_reply([1])), say(DELIVERABLE)],
			"A": [say("result-A")],
		})
		coordinator = _coordinator(runs, knowledge, model, tmp_path)
		bus = coordinator.open_stream("conv-1")

		try:
			run = await coordinator.start("conv-1", "Launch", make_lead(), TEAM, bus=bus)
		finally:
			await knowledge.close()

		assert run.status == RunStatus.COMPLETED
		assert run.final_output.startswith("# Launch Plan")
		events = [e.event for e in bus.history]
		assert "error" not in events
		assert events[-2:] == ["agent_complete", "final"]
		assert bus.history[-1].status == "COMPLETED"

	@pytest.mark.asyncio
	async def test_failing_turn_stops_concurrent_specialists(self, runs, knowledge, tmp_path):
		model = StallingSiblingModel()
		coordinator = _coordinator(runs, knowledge, model, tmp_path)
		bus = coordinator.open_stream("conv-1")

		with pytest.raises(PersistenceError):
			await coordinator.start("conv-1", "Launch", make_lead(), TEAM, bus=bus)

		assert model.b_cancelled
		assert bus.history[-1].event == "error"
		assert bus.closed


class StallingSiblingModel:
	"""Lead selects A and B; B blocks until cancelled while A hits a storage error."""

	def __init__(self):
		self.b_started = asyncio.Event()
		self.b_cancelled = False

	async def complete(self, system, messages, tools=None, tool_choice=None) -> ModelReply:
		if system.startswith("You are Lead,"):
			return say(plan_reply([1, 2]))
		if system.startswith("You are A,"):
			await self.b_started.wait()
			raise PersistenceError("disk full")
		self.b_started.set()
		try:
			await asyncio.Event().wait()
		except asyncio.CancelledError:
			self.b_cancelled = True
			raise
		return say("never")
