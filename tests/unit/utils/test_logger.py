"""
Unit tests for the logging utilities.

Tests the ContextAwareLogger, CorrelationContextFilter, AzureQueueHandler
and the configuration functions.
"""

import json
import logging
from io import StringIO
from unittest.mock import Mock, patch

import pytest

from token_policy_core.exceptions import set_correlation_id
from token_policy_core.utils import logger as utils_logger
from token_policy_core.utils.logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    CorrelationContextFilter,
    configure_logging,
    get_logger,
    secret_preview,
)


def _capture(name, level=logging.DEBUG):
    base_logger = logging.getLogger(name)
    base_logger.setLevel(level)
    base_logger.handlers.clear()
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    base_logger.addHandler(handler)
    return base_logger, stream


def _record(msg="hello", **extra):
    record = logging.LogRecord("token_policy.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestContextAwareLogger:
    """Test the ContextAwareLogger wrapper."""

    def test_message_without_extra(self):
        base_logger, stream = _capture("test.token_policy.plain")

        ContextAwareLogger(base_logger).info("Token created")

        assert stream.getvalue().strip() == "Token created"

    def test_extra_rendered_pipe_delimited(self):
        """Test extras are appended as key=value pairs."""
        base_logger, stream = _capture("test.token_policy.extra")

        ContextAwareLogger(base_logger).warning(
            "Access denied", extra={"token_id": "t-1", "reason": "expired"}
        )

        assert stream.getvalue().strip() == "Access denied | token_id=t-1 | reason=expired"

    def test_extra_still_attached_to_record(self):
        """Test structured handlers can read the extras from the record."""
        base_logger, _ = _capture("test.token_policy.record")
        records = []
        handler = logging.Handler()
        handler.emit = records.append
        base_logger.addHandler(handler)

        ContextAwareLogger(base_logger).info("Usage recorded", extra={"client_ip": "10.0.0.1"})

        assert records[0].client_ip == "10.0.0.1"

    def test_set_level(self):
        base_logger, stream = _capture("test.token_policy.level")
        wrapped = ContextAwareLogger(base_logger)

        wrapped.set_level(logging.ERROR)
        wrapped.info("hidden")
        wrapped.error("shown")

        assert stream.getvalue().strip() == "shown"


class TestCorrelationContextFilter:
    def test_adds_current_correlation_id(self):
        set_correlation_id("corr-123")
        record = _record()

        assert CorrelationContextFilter().filter(record) is True
        assert record.correlation_id == "corr-123"

    def test_no_correlation_id(self):
        record = _record()

        CorrelationContextFilter().filter(record)

        assert not hasattr(record, "correlation_id")


class TestAzureQueueHandler:
    """Test buffering and shipping of queue log entries."""

    def test_without_connection_string_nothing_is_sent(self):
        """Test the handler buffers but never connects without a connection string."""
        handler = AzureQueueHandler(connection_string="", batch_size=1)

        with patch.object(utils_logger, "QueueClient") as queue_client:
            handler.emit(_record())

        queue_client.from_connection_string.assert_not_called()
        assert len(handler.log_buffer) == 1

    def test_build_entry_collects_context(self):
        """Test custom record attributes land under context."""
        handler = AzureQueueHandler(connection_string="")

        entry = handler.build_entry(
            _record("Denied", correlation_id="c-1", token_id="t-1", reason="expired")
        )

        assert entry["message"] == "Denied"
        assert entry["level"] == "INFO"
        assert entry["correlation_id"] == "c-1"
        assert entry["token_id"] == "t-1"
        assert entry["context"] == {"reason": "expired"}

    def test_flush_sends_one_message_per_entry(self):
        """Test a full batch is sent as JSON messages and the buffer cleared."""
        client = Mock()
        with patch.object(utils_logger, "QueueServiceClient") as service_client, patch.object(
            utils_logger, "QueueClient"
        ) as queue_client:
            service_client.from_connection_string.return_value.list_queues.return_value = []
            queue_client.from_connection_string.return_value = client

            handler = AzureQueueHandler(
                queue_name="logs-queue", connection_string="UseDevelopmentStorage=true", batch_size=2
            )
            handler.emit(_record("first"))
            client.send_message.assert_not_called()
            handler.emit(_record("second"))

        service_client.from_connection_string.return_value.create_queue.assert_called_once_with(
            "logs-queue"
        )
        messages = [json.loads(call.args[0])["message"] for call in client.send_message.call_args_list]
        assert messages == ["first", "second"]
        assert handler.log_buffer == []


class TestConfigureLogging:
    """Test logger configuration."""

    def test_configure_sets_service_logger(self):
        """Test get_logger returns the configured service logger."""
        configured = configure_logging("token-api", log_level="DEBUG", enable_queue=False)

        assert get_logger() is configured
        assert configured.logger.name == "token_policy.token-api"
        assert configured.logger.level == logging.DEBUG
        assert len(configured.logger.handlers) == 1

    def test_reconfigure_replaces_handlers(self):
        configure_logging("token-api", enable_queue=False)
        configured = configure_logging("token-api", enable_queue=False)

        assert len(configured.logger.handlers) == 1

    def test_fallback_logger(self):
        """Test an unconfigured process gets the package logger."""
        logger = get_logger("WARNING")

        assert isinstance(logger, ContextAwareLogger)
        assert logger.logger.name == "token_policy"
        assert logger.logger.level == logging.WARNING


class TestSecretPreview:
    @pytest.mark.parametrize(
        "secret, expected",
        [(None, ""), ("", ""), ("sk-short", "***"), ("sk-abcdefghijklmnop", "sk-abcdefghi...")],
    )
    def test_preview(self, secret, expected):
        assert secret_preview(secret) == expected
