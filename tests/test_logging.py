"""Unit tests for structured logging infrastructure.

- StructuredFormatter produces valid JSON
- Sensitive keys are redacted from log context
- configure_logging is idempotent and honors ADO_LOG_* variables
"""

import json
import logging
import math
import sys

import pytest

from workitems.logging_config import (
    LOGGER_NAMESPACE,
    StructuredFormatter,
    TextFormatter,
    configure_logging,
)


@pytest.fixture(autouse=True)
def restore_namespace_level():
    logger = logging.getLogger(LOGGER_NAMESPACE)
    level = logger.level
    yield
    logger.setLevel(level)


def make_record(msg="test_message", name="ado_workitems.test", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """StructuredFormatter output shape."""

    def test_formatter_produces_valid_json(self):
        output = StructuredFormatter().format(make_record())
        assert isinstance(json.loads(output), dict)

    def test_formatter_includes_required_fields(self):
        log_data = json.loads(
            StructuredFormatter().format(
                make_record("batch_complete", name="ado_workitems.azure_devops.batch")
            )
        )
        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "ado_workitems.azure_devops.batch"
        assert log_data["message"] == "batch_complete"
        assert log_data["timestamp"].endswith("Z")

    def test_extras_go_into_context(self):
        log_data = json.loads(
            StructuredFormatter().format(make_record(work_item_id=42, operation="single"))
        )
        assert log_data["context"] == {"work_item_id": 42, "operation": "single"}

    def test_no_context_without_extras(self):
        log_data = json.loads(StructuredFormatter().format(make_record()))
        assert "context" not in log_data

    @pytest.mark.parametrize("key", ["pat", "Authorization", "token", "api_key"])
    def test_sensitive_keys_redacted(self, key):
        output = StructuredFormatter().format(make_record(**{key: "s3cr3t"}))
        assert "s3cr3t" not in output
        assert json.loads(output)["context"][key] == "[REDACTED]"

    def test_non_json_values_stringified(self):
        log_data = json.loads(
            StructuredFormatter().format(make_record(remaining=math.nan, path=object()))
        )
        assert "remaining" in log_data["context"]
        assert isinstance(log_data["context"]["path"], str)

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()
        log_data = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in log_data["exception"]


class TestConfigureLogging:
    def test_single_handler_after_repeated_calls(self):
        configure_logging()
        configure_logging()
        logger = logging.getLogger(LOGGER_NAMESPACE)
        assert len(logger.handlers) == 1
        assert logger.propagate is False

    def test_explicit_level_and_text_format(self):
        configure_logging(level="DEBUG", log_format="text")
        logger = logging.getLogger(LOGGER_NAMESPACE)
        assert logger.level == logging.DEBUG
        assert isinstance(logger.handlers[0].formatter, TextFormatter)

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("ADO_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("ADO_LOG_FORMAT", "json")
        configure_logging()
        logger = logging.getLogger(LOGGER_NAMESPACE)
        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, StructuredFormatter)

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="LOUD")
        assert logging.getLogger(LOGGER_NAMESPACE).level == logging.INFO

    def test_format_switch_reuses_handler(self):
        configure_logging(log_format="json")
        configure_logging(log_format="text")
        handlers = logging.getLogger(LOGGER_NAMESPACE).handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, TextFormatter)
