"""Tests for the MCP tool functions."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from team_orchestrator.config import Config
from team_orchestrator.knowledge.store import KnowledgeStore
from team_orchestrator.orchestration.models import OrchestrationRun
from team_orchestrator.orchestration.store import OrchestrationStore
from team_orchestrator.tools.core import register_core_tools
from team_orchestrator.tools.knowledge import register_knowledge_tools
from team_orchestrator.tools.orchestration import register_orchestration_tools

from .helpers import HashEmbeddingProvider, capture_tools, make_plan


@pytest.fixture
def config(tmp_path: Path) -> Config:
	return Config(data_dir=tmp_path, config_dir=tmp_path / "config", embedding_api_key="sk-test")


@pytest_asyncio.fixture
async def knowledge(tmp_path: Path):
	store = KnowledgeStore(str(tmp_path / "knowledge.db"), HashEmbeddingProvider(), window=200, overlap=50)
	await store.init()
	with patch("team_orchestrator.tools.knowledge.get_knowledge_store", AsyncMock(return_value=store)):
		yield store
	await store.close()


@pytest_asyncio.fixture
async def runs(tmp_path: Path):
	store = OrchestrationStore(str(tmp_path / "orchestration.db"))
	await store.init()
	with patch("team_orchestrator.tools.orchestration.get_orchestration_store", AsyncMock(return_value=store)):
		yield store
	await store.close()


@pytest.mark.asyncio
async def test_health_check(config):
	tools = capture_tools(config, register_core_tools)
	status = json.loads(await tools["health_check"]())

	assert status["server"] == "running"
	assert status["data_dir"] == str(config.data_dir)
	assert status["knowledge_db_exists"] is False
	assert status["embedding_credentials"] is True


class TestKnowledgeTools:
	"""Knowledge base tools scoped to a conversation."""

	@pytest.mark.asyncio
	async def test_save_list_read(self, config, knowledge):
		tools = capture_tools(config, register_knowledge_tools)

		saved = json.loads(await tools["save_knowledge_document"](
			"conv-1", "Launch Brief", "line one\nline two\nline three", tags="plan, launch",
		))
		assert saved["success"] is True
		assert saved["chunks"] >= 1

		listing = await tools["list_documents"]("conv-1")
		assert f"- Launch Brief (ID: {saved['document_id']})" in listing
		assert await tools["list_documents"]("conv-2") == "No documents found in the knowledge base."

		excerpt = await tools["read_knowledge_document"]("conv-1", saved["document_id"], start_line=2, end_line=2)
		assert "line two" in excerpt
		assert "line one" not in excerpt

		doc = await knowledge.get(saved["document_id"])
		assert doc.tags == ["plan", "launch"]

	@pytest.mark.asyncio
	async def test_read_other_conversation(self, config, knowledge):
		tools = capture_tools(config, register_knowledge_tools)
		saved = json.loads(await tools["save_knowledge_document"]("conv-1", "Brief", "secret plan"))

		result = await tools["read_knowledge_document"]("conv-2", saved["document_id"])
		assert result == f"Error: Document with ID {saved['document_id']} not found."

	@pytest.mark.asyncio
	async def test_search(self, config, knowledge):
		tools = capture_tools(config, register_knowledge_tools)
		await tools["save_knowledge_document"]("conv-1", "Pricing", "pricing tiers are gold and silver")

		result = await tools["search_documents"]("conv-1", "pricing tiers", k=50)
		assert result.startswith('### Search Results for "pricing tiers":')
		assert '"Pricing"' in result

		assert (await tools["search_documents"]("conv-1", "  ")).startswith("Error: missing `query`")

	@pytest.mark.asyncio
	async def test_dedupe_key_replaces(self, config, knowledge):
		tools = capture_tools(config, register_knowledge_tools)
		first = json.loads(await tools["save_knowledge_document"]("conv-1", "Plan", "v1", dedupe_key="plan"))
		second = json.loads(await tools["save_knowledge_document"]("conv-1", "Plan", "v2", dedupe_key="plan"))

		assert first["document_id"] == second["document_id"]
		assert len(await knowledge.list("conv-1")) == 1

	@pytest.mark.asyncio
	async def test_save_rejects_empty_content(self, config, knowledge):
		tools = capture_tools(config, register_knowledge_tools)
		result = json.loads(await tools["save_knowledge_document"]("conv-1", "Empty", ""))
		assert result == {"success": False, "error": "content is required"}

	@pytest.mark.asyncio
	async def test_delete_twice(self, config, knowledge):
		tools = capture_tools(config, register_knowledge_tools)
		saved = json.loads(await tools["save_knowledge_document"]("conv-1", "Brief", "text"))

		assert json.loads(await tools["delete_knowledge_document"](saved["document_id"]))["deleted"] == 1
		assert json.loads(await tools["delete_knowledge_document"](saved["document_id"]))["deleted"] == 0


class TestRunTools:
	"""Run state inspection tools."""

	@pytest.mark.asyncio
	async def test_get_run_state(self, config, runs):
		run = OrchestrationRun.from_plan("conv-1", make_plan())
		run.specialist_states[1].start()
		run.specialist_states[1].pause("Which format?")
		await runs.save_state(run)
		tools = capture_tools(config, register_orchestration_tools)

		result = json.loads(await tools["get_run_state"]("conv-1"))
		assert result["run"]["status"] == "PAUSED"
		assert result["paused"] == [{"agent": "B", "question": "Which format?"}]

	@pytest.mark.asyncio
	async def test_missing_run(self, config, runs):
		tools = capture_tools(config, register_orchestration_tools)
		result = json.loads(await tools["get_run_state"]("nope"))
		assert "error" in result

	@pytest.mark.asyncio
	async def test_clear_run_state(self, config, runs):
		await runs.save_state(OrchestrationRun.from_plan("conv-1", make_plan()))
		tools = capture_tools(config, register_orchestration_tools)

		assert json.loads(await tools["clear_run_state"]("conv-1")) == {"success": True, "cleared": 1}
		assert json.loads(await tools["clear_run_state"]("conv-1")) == {"success": True, "cleared": 0}
