"""Unit tests for logging configuration."""

from __future__ import annotations

import json
import logging

import pytest

from cmdrelay.models import LogLevel, ObservabilityConfig
from cmdrelay.utils.exceptions import CmdRelayError
from cmdrelay.utils.logging_config import (
    CorrelationFilter,
    LoggingContext,
    StructuredFormatter,
    get_correlation_id,
    get_logger,
    log_exception,
    set_correlation_id,
    setup_logging,
)
from cmdrelay.utils.rich_logging import CorrelationRichHandler, FileFormatter

pytestmark = [pytest.mark.unit]


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="cmdrelay.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestGetLogger:
    """Test logger naming."""

    def test_prefixes_bare_names(self):
        """Test names outside the package are namespaced."""
        assert get_logger("operations").name == "cmdrelay.operations"

    def test_keeps_package_names(self):
        """Test module names under cmdrelay are kept."""
        assert get_logger("cmdrelay.session.client").name == "cmdrelay.session.client"
        assert get_logger("cmdrelay").name == "cmdrelay"


class TestCorrelation:
    """Test correlation ID helpers."""

    def test_set_and_get(self):
        """Test an explicit ID round-trips."""
        set_correlation_id("abc")
        assert get_correlation_id() == "abc"

    def test_generates_id(self):
        """Test an ID is generated when none is given."""
        corr_id = set_correlation_id()
        assert corr_id
        assert get_correlation_id() == corr_id

    def test_filter_stamps_record(self):
        """Test the filter adds correlation_id."""
        set_correlation_id("req-1")
        record = _record()

        assert CorrelationFilter().filter(record) is True
        assert record.correlation_id == "req-1"


class TestFormatters:
    """Test log formatters."""

    def test_structured_formatter_emits_json(self):
        """Test JSON output with extras."""
        record = _record("relayed", correlation_id="c-1", session_id="s-1")

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "relayed"
        assert entry["level"] == "INFO"
        assert entry["correlation_id"] == "c-1"
        assert entry["session_id"] == "s-1"

    def test_file_formatter_strips_markup(self):
        """Test Rich markup is removed from file output."""
        formatted = FileFormatter("%(message)s").format(_record("[green]ready[/green]"))
        assert formatted == "ready"

    def test_file_formatter_keeps_invalid_markup(self):
        """Test text that is not valid markup is left alone."""
        formatted = FileFormatter("%(message)s").format(_record("path [/tmp] done"))
        assert formatted == "path [/tmp] done"


class TestSetupLogging:
    """Test setup_logging()."""

    def test_console_handler_installed(self):
        """Test the package logger gets a Rich handler and the configured level."""
        setup_logging(ObservabilityConfig(log_level=LogLevel.DEBUG))

        package_logger = logging.getLogger("cmdrelay")
        assert package_logger.level == logging.DEBUG
        assert any(isinstance(h, CorrelationRichHandler) for h in package_logger.handlers)

    def test_structured_log_file(self, tmp_path):
        """Test structured records are written to the log file."""
        log_file = tmp_path / "logs" / "relay.log"
        setup_logging(
            ObservabilityConfig(log_file=str(log_file), structured_logging=True)
        )

        get_logger("test").info("written to file")
        for handler in logging.getLogger("cmdrelay").handlers:
            handler.flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["message"] == "written to file"


class TestLoggingContext:
    """Test LoggingContext."""

    def test_logs_start_and_completion(self, caplog):
        """Test start and completion messages."""
        logger = logging.getLogger("relaytest.context")
        with caplog.at_level(logging.INFO, logger="relaytest.context"):
            with LoggingContext("bootstrap", logger=logger):
                pass

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == "Starting bootstrap"
        assert messages[1].startswith("Completed bootstrap in ")

    def test_logs_failure_and_propagates(self, caplog):
        """Test failures are logged and not suppressed."""
        logger = logging.getLogger("relaytest.context")
        with caplog.at_level(logging.INFO, logger="relaytest.context"):
            with pytest.raises(RuntimeError):
                with LoggingContext("bootstrap", logger=logger):
                    raise RuntimeError("nope")

        assert caplog.records[-1].levelno == logging.ERROR
        assert "nope" in caplog.records[-1].getMessage()


class TestLogException:
    """Test log_exception()."""

    def test_relay_error_details(self, caplog):
        """Test relay errors log their message and details."""
        logger = logging.getLogger("relaytest.exc")
        with caplog.at_level(logging.ERROR, logger="relaytest.exc"):
            try:
                raise CmdRelayError("failed", {"step": 1})
            except CmdRelayError as e:
                log_exception(logger, e, "bootstrap")

        record = caplog.records[-1]
        assert record.getMessage() == "bootstrap: failed"
        assert record.details == {"step": 1}
