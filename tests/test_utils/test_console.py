"""Unit tests for deplock.utils.console."""

from __future__ import annotations

import io
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from deplock.utils import console as console_module
from deplock.utils.console import (
    DEPLOCK_THEME,
    _get_console,
    _should_use_color,
    get_raw_console,
    print_error,
    print_plain,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)


@pytest.fixture
def recording_console() -> Generator[Console, None, None]:
    """Install a plain recording console as the module singleton."""
    console = Console(
        file=io.StringIO(),
        theme=DEPLOCK_THEME,
        no_color=True,
        width=120,
        record=True,
    )
    with patch.object(console_module, "_console", console):
        yield console


@pytest.fixture
def fresh_console() -> Generator[None, None, None]:
    reconfigure_console()
    yield
    reconfigure_console()


# ============================================================================
# Test: color detection
# ============================================================================


@pytest.mark.unit
class TestShouldUseColor:
    """Tests for _should_use_color."""

    def test_no_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        assert _should_use_color() is False

    def test_ci(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("CI", "true")
        assert _should_use_color() is False

    def test_tty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("CI", raising=False)
        stdout = MagicMock()
        stdout.isatty.return_value = True

        with patch("sys.stdout", stdout):
            assert _should_use_color() is True

    def test_isatty_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Edge case: a closed or exotic stdout is treated as non-tty."""
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("CI", raising=False)
        stdout = MagicMock()
        stdout.isatty.side_effect = OSError("closed")

        with patch("sys.stdout", stdout):
            assert _should_use_color() is False


# ============================================================================
# Test: console lifecycle
# ============================================================================


@pytest.mark.unit
class TestConsoleLifecycle:
    """Tests for the lazily created singleton."""

    def test_singleton(self, fresh_console: None) -> None:
        assert _get_console() is _get_console()
        assert get_raw_console() is _get_console()

    def test_reconfigure_creates_new_instance(self, fresh_console: None) -> None:
        first = _get_console()
        reconfigure_console()
        assert _get_console() is not first

    def test_no_color_respected(
        self, fresh_console: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        reconfigure_console()
        assert _get_console().no_color is True


# ============================================================================
# Test: message helpers
# ============================================================================


@pytest.mark.unit
class TestMessages:
    """Tests for the status message helpers."""

    def test_prefixes(self, recording_console: Console) -> None:
        print_success("Resolved 4 packages")
        print_warning("2 forks")
        print_error("Resolution failed")

        output = recording_console.export_text()
        assert "[OK] Resolved 4 packages" in output
        assert "[WARNING] 2 forks" in output
        assert "[ERROR] Resolution failed" in output

    def test_custom_prefix(self, recording_console: Console) -> None:
        print_success("done", prefix=">>")
        assert ">> done" in recording_console.export_text()

    def test_plain_ignores_markup(self, recording_console: Console) -> None:
        """Edge case: requirement extras look like Rich markup tags."""
        print_plain("a[fast]==1.0")
        assert "a[fast]==1.0" in recording_console.export_text()


# ============================================================================
# Test: print_table
# ============================================================================


@pytest.mark.unit
class TestPrintTable:
    """Tests for print_table."""

    def test_rows_and_title(self, recording_console: Console) -> None:
        print_table(
            [
                {"Package": "a", "Version": "1.0"},
                {"Package": "b", "Version": "2.0"},
            ],
            title="Resolution",
            column_styles={"Version": {"justify": "right"}},
        )

        output = recording_console.export_text()
        assert "Resolution" in output
        assert "Package" in output
        assert "b" in output and "2.0" in output

    def test_header_order_and_missing_values(self, recording_console: Console) -> None:
        print_table([{"Version": "1.0"}], headers=["Package", "Version"])

        header_line = next(
            line for line in recording_console.export_text().splitlines() if "Package" in line
        )
        assert header_line.index("Package") < header_line.index("Version")

    def test_empty_data_prints_nothing(self, recording_console: Console) -> None:
        print_table([])
        assert recording_console.export_text() == ""
