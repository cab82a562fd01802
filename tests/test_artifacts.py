"""Tests for artifact extraction and capture."""

from pathlib import Path

import pytest

from team_orchestrator.knowledge.artifacts import (
	artifact_dedupe_key,
	extract_artifacts,
	save_artifacts,
)
from team_orchestrator.knowledge.store import KnowledgeStore

from .helpers import HashEmbeddingProvider

DELIVERABLE = """# Launch Plan

Summary text.

:::artifact{identifier="launch-checklist" type="text/markdown" title="Launch Checklist"}
```markdown
- [ ] Pricing page
- [ ] Press kit
```
:::

More prose.

:::artifact{title="Budget Overview"}
Budget is 10k.
:::
"""


class TestExtractArtifacts:
	"""Parsing :::artifact blocks."""

	def test_extracts_all_blocks(self):
		artifacts = extract_artifacts(DELIVERABLE)
		assert len(artifacts) == 2

		checklist, budget = artifacts
		assert checklist.identifier == "launch-checklist"
		assert checklist.title == "Launch Checklist"
		assert checklist.type == "text/markdown"
		assert checklist.content == "- [ ] Pricing page\n- [ ] Press kit"

		assert budget.identifier == ""
		assert budget.content == "Budget is 10k."

	def test_no_blocks(self):
		assert extract_artifacts("Just a normal answer.") == []
		assert extract_artifacts("") == []


class TestDedupeKey:
	"""Stable keys for artifact upserts."""

	def test_identifier_wins(self):
		assert artifact_dedupe_key("c1", "launch-checklist", "Anything") == "c1:launch-checklist"

	def test_normalized_title(self):
		assert artifact_dedupe_key("c1", "", "Budget Overview (Q3)!") == "c1:budget_overview_q3"

	def test_title_is_capped(self):
		key = artifact_dedupe_key("c1", "", "x" * 100)
		assert key == "c1:" + "x" * 64

	def test_default(self):
		assert artifact_dedupe_key("c1") == "c1:default-artifact"


@pytest.mark.asyncio
async def test_save_artifacts_upserts(tmp_path: Path):
	store = KnowledgeStore(str(tmp_path / "kb.db"), HashEmbeddingProvider())
	try:
		first = await save_artifacts(store, "c1", DELIVERABLE, message_id="m1", created_by="Lead")
		assert [d.title for d in first] == ["Launch Checklist", "Budget Overview"]
		assert all("artifact" in d.tags for d in first)

		# Regenerating the same deliverable updates rather than duplicates
		second = await save_artifacts(store, "c1", DELIVERABLE.replace("10k", "12k"), message_id="m2")
		assert [d.document_id for d in second] == [d.document_id for d in first]

		docs = await store.list("c1")
		assert len(docs) == 2
		budget = next(d for d in docs if d.title == "Budget Overview")
		assert budget.content == "Budget is 12k."
		assert budget.message_id == "m2"
	finally:
		await store.close()
