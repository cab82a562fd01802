"""Centralized logging configuration for team-orchestrator."""

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "team_orchestrator"


class SensitiveDataFilter(logging.Filter):
	"""Redact API keys and bearer tokens before a record is written."""

	SENSITIVE_PATTERNS = [
		(re.compile(r"sk-[A-Za-z0-9_\-]{8,}"), "[REDACTED_API_KEY]"),
		(re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED_TOKEN]"),
		(re.compile(r"(?i)(api_key|apikey|token|secret|password)=\S+"), r"\1=[REDACTED]"),
	]

	def filter(self, record: logging.LogRecord) -> bool:
		if record.args:
			try:
				record.msg = record.getMessage()
				record.args = None
			except (TypeError, ValueError):
				return True
		if isinstance(record.msg, str):
			for pattern, replacement in self.SENSITIVE_PATTERNS:
				record.msg = pattern.sub(replacement, record.msg)
		return True


def setup_logging(
	log_dir: Optional[Path] = None,
	level: Optional[str] = None,
	name: str = ROOT_LOGGER,
) -> logging.Logger:
	"""
	Set up logging with console and rotating file handlers.

	Args:
		log_dir: Directory for log files (no file handler when omitted)
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env var or INFO.
		name: Logger name

	Returns:
		Configured logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(name)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	detailed_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)
	simple_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(message)s",
		datefmt="%H:%M:%S",
	)
	redact = SensitiveDataFilter()

	# stderr keeps stdout free for the MCP stdio transport
	console_handler = logging.StreamHandler(sys.stderr)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(simple_formatter)
	console_handler.addFilter(redact)
	logger.addHandler(console_handler)

	if log_dir is not None:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)

		file_handler = RotatingFileHandler(
			log_path / f"{name}.log",
			maxBytes=10 * 1024 * 1024,  # 10 MB
			backupCount=5,
		)
		file_handler.setLevel(logging.DEBUG)
		file_handler.setFormatter(detailed_formatter)
		file_handler.addFilter(redact)
		logger.addHandler(file_handler)

	return logger
