"""Unit tests for deplock.utils.logger.

Test Coverage:
- ColoredFormatter color decisions and record restoration
- setup_logging handler replacement and format selection
- get_logger namespacing and NullHandler attachment
- is_logging_configured / disable_logging state transitions
"""

from __future__ import annotations

import io
import logging
from typing import Generator
from unittest.mock import patch

import pytest

from deplock.utils import logger as logger_module
from deplock.utils.logger import (
    ColoredFormatter,
    disable_logging,
    get_logger,
    is_logging_configured,
    setup_logging,
)


@pytest.fixture
def clean_logger_state() -> Generator[None, None, None]:
    """Reset the deplock logger hierarchy around each test."""
    root = logging.getLogger("deplock")
    saved_handlers = list(root.handlers)
    saved_level = root.level
    saved_propagate = root.propagate
    saved_flag = logger_module._logging_configured

    root.handlers.clear()
    logger_module._logging_configured = False

    yield

    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)
    root.propagate = saved_propagate
    logger_module._logging_configured = saved_flag


@pytest.fixture
def captured_stream() -> io.StringIO:
    return io.StringIO()


def _record(level: int = logging.INFO, msg: str = "resolved 3 packages") -> logging.LogRecord:
    return logging.LogRecord(
        name="deplock.core.solver",
        level=level,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


# ============================================================================
# Test: ColoredFormatter
# ============================================================================


@pytest.mark.unit
class TestColoredFormatter:
    """Tests for ColoredFormatter."""

    def test_plain_output_when_color_disabled(self) -> None:
        formatter = ColoredFormatter("%(levelname)s: %(message)s", use_color=False)
        assert formatter.format(_record()) == "INFO: resolved 3 packages"

    def test_colored_output_on_tty(self) -> None:
        """Happy path: the level name is wrapped in its ANSI color."""
        formatter = ColoredFormatter("%(levelname)s: %(message)s")

        with patch.object(ColoredFormatter, "_should_use_color", return_value=True):
            output = formatter.format(_record(logging.WARNING))

        assert output.startswith(ColoredFormatter.COLORS["WARNING"] + "WARNING")
        assert ColoredFormatter.RESET in output

    def test_record_levelname_is_restored(self) -> None:
        """Edge case: other handlers must see the uncolored level name."""
        formatter = ColoredFormatter("%(levelname)s", use_color=True)
        record = _record(logging.ERROR)

        with patch.object(ColoredFormatter, "_should_use_color", return_value=True):
            formatter.format(record)

        assert record.levelname == "ERROR"

    def test_unknown_level_is_left_alone(self) -> None:
        formatter = ColoredFormatter("%(levelname)s")
        record = _record(25)
        record.levelname = "NOTICE"

        with patch.object(ColoredFormatter, "_should_use_color", return_value=True):
            assert formatter.format(record) == "NOTICE"

    @pytest.mark.parametrize("variable", ["NO_COLOR", "CI"])
    def test_environment_disables_color(
        self, monkeypatch: pytest.MonkeyPatch, variable: str
    ) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("CI", raising=False)
        monkeypatch.setenv(variable, "1")

        assert ColoredFormatter._should_use_color() is False

    def test_non_tty_stderr_disables_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("CI", raising=False)
        with patch("sys.stderr", io.StringIO()):
            assert ColoredFormatter._should_use_color() is False


# ============================================================================
# Test: setup_logging
# ============================================================================


@pytest.mark.unit
class TestSetupLogging:
    """Tests for setup_logging."""

    def test_messages_reach_stream(
        self, clean_logger_state: None, captured_stream: io.StringIO
    ) -> None:
        setup_logging(level=logging.DEBUG, stream=captured_stream)

        get_logger("solver").debug("decided a==1.0")

        assert "DEBUG" in captured_stream.getvalue()
        assert "decided a==1.0" in captured_stream.getvalue()

    def test_level_filters_messages(
        self, clean_logger_state: None, captured_stream: io.StringIO
    ) -> None:
        setup_logging(level=logging.WARNING, stream=captured_stream)

        log = get_logger("forks")
        log.info("fork started")
        log.warning("fork failed")

        output = captured_stream.getvalue()
        assert "fork started" not in output
        assert "fork failed" in output

    def test_repeated_calls_replace_handlers(
        self, clean_logger_state: None, captured_stream: io.StringIO
    ) -> None:
        setup_logging(stream=captured_stream)
        setup_logging(stream=captured_stream)

        root = logging.getLogger("deplock")
        assert len(root.handlers) == 1
        assert root.propagate is False

    def test_verbose_format_includes_logger_name(
        self, clean_logger_state: None, captured_stream: io.StringIO
    ) -> None:
        setup_logging(verbose=True, stream=captured_stream)

        get_logger("deplock.core.provider").info("fetching a")

        assert "deplock.core.provider" in captured_stream.getvalue()

    def test_no_color_env_disables_formatter_color(
        self,
        clean_logger_state: None,
        captured_stream: io.StringIO,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        setup_logging(stream=captured_stream)

        formatter = logging.getLogger("deplock").handlers[0].formatter
        assert isinstance(formatter, ColoredFormatter)
        assert formatter.use_color is False


# ============================================================================
# Test: get_logger
# ============================================================================


@pytest.mark.unit
class TestGetLogger:
    """Tests for get_logger namespacing."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            (None, "deplock"),
            ("", "deplock"),
            ("deplock", "deplock"),
            ("solver", "deplock.solver"),
            ("deplock.core.solver", "deplock.core.solver"),
        ],
    )
    def test_names(self, name, expected: str) -> None:
        assert get_logger(name).name == expected

    def test_null_handler_without_configuration(self, clean_logger_state: None) -> None:
        log = get_logger("graph_builder_check")
        assert any(isinstance(h, logging.NullHandler) for h in log.handlers)


# ============================================================================
# Test: configuration state
# ============================================================================


@pytest.mark.unit
class TestConfigurationState:
    """Tests for is_logging_configured and disable_logging."""

    def test_state_transitions(
        self, clean_logger_state: None, captured_stream: io.StringIO
    ) -> None:
        assert is_logging_configured() is False

        setup_logging(stream=captured_stream)
        assert is_logging_configured() is True

        disable_logging()
        assert is_logging_configured() is False

    def test_disable_silences_output(
        self, clean_logger_state: None, captured_stream: io.StringIO
    ) -> None:
        setup_logging(stream=captured_stream)
        disable_logging()

        get_logger("solver").error("should not appear")

        assert captured_stream.getvalue() == ""
        handlers = logging.getLogger("deplock").handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.NullHandler)
