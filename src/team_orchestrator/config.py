"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import platformdirs

from .errors import ValidationError

APP_NAME = "team-orchestrator"
APP_AUTHOR = "team-orchestrator"

EMBEDDING_PROVIDERS = ("openai", "local")


def _default_api_key() -> Optional[str]:
	return os.getenv("OPENROUTER_KEY") or os.getenv("OPENAI_API_KEY") or None


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	knowledge_db_path: Path = field(init=False)
	orchestration_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Chunking
	chunk_window: int = 1000
	chunk_overlap: int = 200

	# Embeddings
	embedding_provider: str = "openai"
	embedding_model: str = "text-embedding-3-small"
	embedding_base_url: str = "https://openrouter.ai/api/v1"
	embedding_api_key: Optional[str] = field(default_factory=_default_api_key)
	local_embedding_model: str = "all-MiniLM-L6-v2"
	embedding_concurrency: int = 4

	# Specialist turns
	max_turn_steps: int = 10
	retry_attempts: int = 3
	retry_initial_delay: float = 1.0
	turn_timeout_seconds: float = 120.0
	max_turn_cycles: int = 2

	# Knowledge query tools
	search_default_k: int = 5
	search_max_k: int = 10

	# Client-side collaboration view
	reset_delay_seconds: float = 3.0

	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.knowledge_db_path = self.data_dir / "knowledge.db"
		self.orchestration_db_path = self.data_dir / "orchestration.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)

	def validate(self) -> None:
		"""Reject settings the chunker or providers cannot work with."""
		if self.chunk_window <= 0:
			raise ValidationError(f"chunk_window must be positive, got {self.chunk_window}")
		if not 0 <= self.chunk_overlap < self.chunk_window:
			raise ValidationError(
				f"chunk_overlap must be in [0, chunk_window), got {self.chunk_overlap}"
			)
		if self.embedding_provider not in EMBEDDING_PROVIDERS:
			raise ValidationError(
				f"Unknown embedding_provider '{self.embedding_provider}' "
				f"(expected one of {', '.join(EMBEDDING_PROVIDERS)})"
			)
		if self.retry_attempts < 1:
			raise ValidationError("retry_attempts must be at least 1")
		if self.search_max_k < 1:
			raise ValidationError("search_max_k must be at least 1")


PATH_FIELDS = {"config_dir", "data_dir"}
INT_FIELDS = {
	"chunk_window", "chunk_overlap", "embedding_concurrency", "max_turn_steps",
	"retry_attempts", "max_turn_cycles", "search_default_k", "search_max_k",
}
FLOAT_FIELDS = {"retry_initial_delay", "turn_timeout_seconds", "reset_delay_seconds"}


def _coerce(attr: str, val: str):
	if attr in PATH_FIELDS:
		return Path(os.path.expanduser(val))
	if attr in INT_FIELDS:
		return int(val)
	if attr in FLOAT_FIELDS:
		return float(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply TEAM_ORCHESTRATOR_* environment variable overrides."""
	env_map = {
		"TEAM_ORCHESTRATOR_CONFIG_DIR": "config_dir",
		"TEAM_ORCHESTRATOR_DATA_DIR": "data_dir",
		"TEAM_ORCHESTRATOR_CHUNK_WINDOW": "chunk_window",
		"TEAM_ORCHESTRATOR_CHUNK_OVERLAP": "chunk_overlap",
		"TEAM_ORCHESTRATOR_EMBEDDING_PROVIDER": "embedding_provider",
		"TEAM_ORCHESTRATOR_EMBEDDING_MODEL": "embedding_model",
		"TEAM_ORCHESTRATOR_EMBEDDING_BASE_URL": "embedding_base_url",
		"TEAM_ORCHESTRATOR_EMBEDDING_API_KEY": "embedding_api_key",
		"TEAM_ORCHESTRATOR_TURN_TIMEOUT": "turn_timeout_seconds",
		"TEAM_ORCHESTRATOR_RETRY_ATTEMPTS": "retry_attempts",
		"TEAM_ORCHESTRATOR_LOG_LEVEL": "log_level",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			try:
				setattr(config, attr, _coerce(attr, val))
			except ValueError as e:
				raise ValidationError(f"{env_key}: {e}") from e
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if hasattr(config, key):
			if key in PATH_FIELDS:
				setattr(config, key, Path(os.path.expanduser(val)))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# config.toml is looked up in the overridden config dir, if any
	config_dir = os.getenv("TEAM_ORCHESTRATOR_CONFIG_DIR")
	if config_dir:
		config.config_dir = Path(os.path.expanduser(config_dir))
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.validate()
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
