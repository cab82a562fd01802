"""Extract :::artifact blocks from deliverables and file them in the knowledge base."""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .models import KnowledgeDocument
from .store import KnowledgeStore

logger = logging.getLogger(__name__)

ARTIFACT_BLOCK = re.compile(r":::artifact\{(?P<attrs>[^}]*)\}\s*\n(?P<body>.*?)\n:::", re.DOTALL)
ATTRIBUTE = re.compile(r'(\w+)="([^"]*)"')
FENCED = re.compile(r"```[\w-]*\n(.*?)\n```", re.DOTALL)


@dataclass
class Artifact:
	"""One artifact block."""
	content: str
	identifier: str = ""
	title: str = ""
	type: str = ""
	attributes: dict[str, str] = field(default_factory=dict)


def extract_artifacts(text: str) -> list[Artifact]:
	"""Parse every artifact block in text. Fenced bodies are unwrapped."""
	if not text:
		return []

	artifacts = []
	for match in ARTIFACT_BLOCK.finditer(text):
		attrs = dict(ATTRIBUTE.findall(match.group("attrs")))
		body = match.group("body")
		fenced = FENCED.search(body)
		artifacts.append(Artifact(
			content=fenced.group(1) if fenced else body.strip(),
			identifier=attrs.get("identifier", ""),
			title=attrs.get("title", ""),
			type=attrs.get("type", ""),
			attributes=attrs,
		))
	return artifacts


def artifact_dedupe_key(conversation_id: str, identifier: str = "", title: str = "") -> str:
	"""
	Stable key so a regenerated artifact replaces its earlier version.

	Prefers the identifier, then a normalized title (64 chars max), then
	a fixed default.
	"""
	stable_id = identifier.strip() if identifier else ""
	if not stable_id and title:
		normalized = re.sub(r"\s+", "_", title.strip().lower())
		stable_id = re.sub(r"[^a-z0-9_-]", "", normalized)[:64]
	if not stable_id:
		stable_id = "default-artifact"
	return f"{conversation_id}:{stable_id}"


async def save_artifacts(
	store: KnowledgeStore,
	conversation_id: str,
	text: str,
	message_id: Optional[str] = None,
	created_by: Optional[str] = None,
) -> list[KnowledgeDocument]:
	"""Save each artifact in text as a knowledge document keyed for dedupe."""
	saved = []
	for artifact in extract_artifacts(text):
		if not artifact.content.strip():
			continue
		doc = KnowledgeDocument(
			conversation_id=conversation_id,
			title=artifact.title or artifact.identifier or "Untitled artifact",
			content=artifact.content,
			content_type=artifact.type or "text/markdown",
			message_id=message_id,
			dedupe_key=artifact_dedupe_key(conversation_id, artifact.identifier, artifact.title),
			created_by=created_by,
			tags=["artifact"],
			metadata={"identifier": artifact.identifier} if artifact.identifier else {},
		)
		saved.append(await store.save(doc))

	if saved:
		logger.info(f"Saved {len(saved)} artifacts to knowledge base for {conversation_id}")
	return saved
