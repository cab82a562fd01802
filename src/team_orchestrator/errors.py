"""Error taxonomy shared by the stores, runner, tools and HTTP surface.

Absence is not an error at the store layer: lookups return None or an
empty list. Exceptions here are for malformed input, backend failures and
storage failures.
"""


class TeamOrchestratorError(Exception):
	"""Base class for all team-orchestrator errors."""
	pass


class ValidationError(TeamOrchestratorError):
	"""Raised when a request is malformed (missing or invalid field)."""
	pass


class InvalidTransitionError(ValidationError):
	"""Raised when a specialist state change is not allowed."""

	def __init__(self, agent_name: str, current: str, target: str):
		self.agent_name = agent_name
		self.current = current
		self.target = target
		super().__init__(f"Specialist {agent_name}: cannot transition {current} -> {target}")


class ProviderError(TeamOrchestratorError):
	"""Raised when an embedding or model backend fails."""
	pass


class CredentialMissing(ProviderError):
	"""Raised when a provider has no usable credential configured."""
	pass


class EmbeddingUnavailable(TeamOrchestratorError):
	"""Raised by the knowledge store when documents cannot be embedded at all."""
	pass


class PersistenceError(TeamOrchestratorError):
	"""Raised when a storage write fails. Never swallowed."""
	pass


class RunNotFoundError(TeamOrchestratorError):
	"""Raised by outer surfaces when a run is required but missing."""

	def __init__(self, conversation_id: str):
		self.conversation_id = conversation_id
		super().__init__(f"No orchestration run for conversation {conversation_id}")
