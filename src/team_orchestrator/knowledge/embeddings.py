"""
Embedding providers.

The knowledge store only depends on the EmbeddingProvider protocol. Two
implementations ship: an OpenAI-compatible HTTP endpoint (OpenRouter by
default) and a local sentence-transformers model.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Protocol

import openai

from ..config import Config
from ..errors import CredentialMissing, ProviderError, ValidationError

if TYPE_CHECKING:
	from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
	"""Turns text into a fixed-length vector."""

	async def embed(self, text: str, model: Optional[str] = None) -> list[float]:
		...


class OpenAIEmbeddingProvider:
	"""Embeddings from an OpenAI-compatible endpoint."""

	def __init__(
		self,
		api_key: Optional[str],
		model: str = "text-embedding-3-small",
		base_url: Optional[str] = None,
		timeout: float = 60.0,
	):
		self.api_key = api_key
		self.model = model
		self.base_url = base_url
		self.timeout = timeout
		self._client: Optional[openai.AsyncOpenAI] = None

	@property
	def client(self) -> openai.AsyncOpenAI:
		"""Lazily create the HTTP client."""
		if not self.api_key:
			raise CredentialMissing(
				"No embedding API key configured (set OPENROUTER_KEY or TEAM_ORCHESTRATOR_EMBEDDING_API_KEY)"
			)
		if self._client is None:
			self._client = openai.AsyncOpenAI(
				api_key=self.api_key,
				base_url=self.base_url,
				timeout=self.timeout,
				max_retries=0,
			)
		return self._client

	async def embed(self, text: str, model: Optional[str] = None) -> list[float]:
		client = self.client
		current_model = model or self.model
		try:
			response = await client.embeddings.create(model=current_model, input=text)
		except openai.AuthenticationError as e:
			raise CredentialMissing(f"Embedding credential rejected: {e}") from e
		except openai.OpenAIError as e:
			raise ProviderError(f"Embedding request failed ({current_model}): {e}") from e

		if not response.data:
			raise ProviderError(f"Embedding response from {current_model} contained no data")
		return list(response.data[0].embedding)


class SentenceTransformerProvider:
	"""Embeddings from a local sentence-transformers model."""

	def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
		self.model_name = model_name
		self._model: Optional["SentenceTransformer"] = None

	@property
	def model(self) -> "SentenceTransformer":
		"""Lazy load the embedding model."""
		if self._model is None:
			try:
				from sentence_transformers import SentenceTransformer
			except ImportError as e:
				raise CredentialMissing(
					"Local embeddings need sentence-transformers (pip install team-orchestrator[local])"
				) from e
			logger.info(f"Loading embedding model: {self.model_name}")
			self._model = SentenceTransformer(self.model_name)
		return self._model

	async def embed(self, text: str, model: Optional[str] = None) -> list[float]:
		encoder = self.model
		try:
			vector = await asyncio.to_thread(encoder.encode, text, show_progress_bar=False)
		except Exception as e:
			raise ProviderError(f"Local embedding failed ({self.model_name}): {e}") from e
		return [float(x) for x in vector]


def build_embedding_provider(config: Config) -> EmbeddingProvider:
	"""Create the provider selected in config."""
	if config.embedding_provider == "openai":
		return OpenAIEmbeddingProvider(
			api_key=config.embedding_api_key,
			model=config.embedding_model,
			base_url=config.embedding_base_url or None,
		)
	if config.embedding_provider == "local":
		return SentenceTransformerProvider(model_name=config.local_embedding_model)
	raise ValidationError(f"Unknown embedding provider: {config.embedding_provider}")
