"""Tests for logging setup and secret redaction."""

import logging
from pathlib import Path

from team_orchestrator.logging_config import SensitiveDataFilter, setup_logging


def _record(msg: str, *args) -> logging.LogRecord:
	return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


class TestSensitiveDataFilter:
	"""Secrets never reach a handler."""

	def test_redacts_api_keys(self):
		record = _record("Using key sk-abcdefghijklmnop for embeddings")
		assert SensitiveDataFilter().filter(record)
		assert "sk-abcdefghijklmnop" not in record.msg
		assert "[REDACTED_API_KEY]" in record.msg

	def test_redacts_bearer_tokens_in_args(self):
		record = _record("Header was %s", "Bearer abc.def.ghi")
		SensitiveDataFilter().filter(record)
		assert "abc.def.ghi" not in record.getMessage()

	def test_redacts_key_value_secrets(self):
		record = _record("retrying with api_key=hunter2")
		SensitiveDataFilter().filter(record)
		assert record.msg == "retrying with api_key=[REDACTED]"

	def test_plain_messages_untouched(self):
		record = _record("Saved document kb_c1_abc (3 chunks)")
		SensitiveDataFilter().filter(record)
		assert record.msg == "Saved document kb_c1_abc (3 chunks)"


def test_setup_logging_writes_file(tmp_path: Path):
	logger = setup_logging(log_dir=tmp_path, level="DEBUG", name="team_orchestrator_test_file")
	logger.info("hello sk-secretsecretsecret")
	for handler in logger.handlers:
		handler.flush()

	log_file = tmp_path / "team_orchestrator_test_file.log"
	assert log_file.exists()
	text = log_file.read_text()
	assert "hello" in text
	assert "sk-secretsecretsecret" not in text

	for handler in list(logger.handlers):
		handler.close()
		logger.removeHandler(handler)


def test_setup_logging_is_idempotent():
	name = "team_orchestrator_test_idempotent"
	first = setup_logging(name=name)
	count = len(first.handlers)
	second = setup_logging(name=name)
	assert second is first
	assert len(second.handlers) == count
	for handler in list(first.handlers):
		first.removeHandler(handler)
