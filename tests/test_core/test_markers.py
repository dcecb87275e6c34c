"""Unit tests for deplock.core.markers.

Test Coverage:
- Classification (always, never, conditional)
- Python version atoms, including reversed and ``in`` forms
- Platform variables, ``extra`` and unmodelled variables
- Boolean structure (``and`` binding tighter than ``or``)
- Agreement with packaging's point evaluation
"""

from __future__ import annotations

import pytest
from packaging.markers import Marker

from deplock.core.markers import MarkerOutcome, evaluate, marker_environment
from deplock.models.environment import Platform, TargetEnvironment


def _env(*platforms: str, python: str = ">=3.9,<3.13"):
    return TargetEnvironment.create(python, platforms).environment_set()


LINUX = _env("linux")
BOTH = _env("linux", "windows")


class TestClassification:
    """Tests for the three outcomes."""

    def test_no_marker_is_always(self) -> None:
        result = evaluate(None, LINUX)
        assert result.is_always
        assert result.subset == LINUX
        assert result.complement.is_empty()

    def test_platform_mismatch_is_never(self) -> None:
        result = evaluate('sys_platform == "win32"', LINUX)
        assert result.is_never
        assert result.subset.is_empty()
        assert result.complement == LINUX

    def test_partial_python_range_is_conditional(self) -> None:
        result = evaluate('python_version >= "3.11"', LINUX)

        assert result.outcome is MarkerOutcome.CONDITIONAL
        assert str(result.subset) == "python>=3.11,<3.13 on linux"
        assert str(result.complement) == "python>=3.9,<3.11 on linux"

    def test_subset_and_complement_partition(self) -> None:
        result = evaluate('sys_platform == "win32" and python_version < "3.10"', BOTH)

        assert result.is_conditional
        assert result.subset.is_disjoint(result.complement)
        assert result.subset.union(result.complement) == BOTH


class TestPythonAtoms:
    """Tests for python_version and python_full_version."""

    @pytest.mark.parametrize(
        "marker,expected",
        [
            ('python_version == "3.10"', "python>=3.10,<3.11 on linux"),
            ('python_version > "3.10"', "python>=3.11,<3.13 on linux"),
            ('python_version <= "3.10"', "python>=3.9,<3.11 on linux"),
            ('python_version != "3.10"', "python>=3.9,<3.10 | >=3.11,<3.13 on linux"),
            ('"3.11" <= python_version', "python>=3.11,<3.13 on linux"),
            ('python_version in "3.9 3.10"', "python>=3.9,<3.11 on linux"),
            ('python_version == "3.10.*"', "python>=3.10,<3.11 on linux"),
        ],
    )
    def test_ranges(self, marker: str, expected: str) -> None:
        assert str(evaluate(marker, LINUX).subset) == expected

    def test_full_version(self) -> None:
        result = evaluate('python_full_version >= "3.10.2"', LINUX)
        assert str(result.subset) == "python>=3.10.2,<3.13 on linux"

    def test_unparseable_literal_is_kept(self) -> None:
        assert evaluate('python_version >= "three"', LINUX).is_always


class TestOtherVariables:
    """Tests for platform, extra and unmodelled variables."""

    def test_platform_system(self) -> None:
        result = evaluate('platform_system != "Windows"', BOTH)
        assert [p.tag for p in result.subset.platforms] == ["linux"]

    def test_os_name_in(self) -> None:
        result = evaluate('os_name in "nt java"', BOTH)
        assert [p.tag for p in result.subset.platforms] == ["windows"]

    def test_extra_active(self) -> None:
        assert evaluate('extra == "Fast"', LINUX, {"fast"}).is_always

    def test_extra_inactive(self) -> None:
        assert evaluate('extra == "fast"', LINUX).is_never

    def test_unmodelled_variable_is_kept(self) -> None:
        assert evaluate('platform_release >= "5.0"', LINUX).is_always


class TestStructure:
    """Tests for and/or evaluation."""

    def test_and_binds_tighter_than_or(self) -> None:
        result = evaluate(
            'sys_platform == "win32" and python_version >= "3.11" or sys_platform == "linux"',
            BOTH,
        )
        windows = Platform.from_tag("windows")
        linux = Platform.from_tag("linux")

        assert result.subset.python_range(linux) == BOTH.python_range(linux)
        assert str(result.subset.python_range(windows)) == ">=3.11,<3.13"

    def test_parenthesized_group(self) -> None:
        result = evaluate(
            'python_version >= "3.12" and (sys_platform == "win32" or sys_platform == "linux")',
            BOTH,
        )
        assert str(result.subset) == "python>=3.12,<3.13 on linux, windows"


class TestAgreementWithPackaging:
    """Set evaluation matches packaging's evaluation at concrete points."""

    MARKERS = [
        'python_version >= "3.11"',
        'python_version < "3.10" or sys_platform == "win32"',
        'platform_system == "Linux" and python_full_version != "3.11.0"',
        'python_version ~= "3.10"',
        'os_name == "posix" and python_version not in "3.9 3.12"',
    ]
    POINTS = ["3.9.0", "3.9.18", "3.10.0", "3.10.13", "3.11.0", "3.11.7", "3.12.1"]

    @pytest.mark.parametrize("marker", MARKERS)
    def test_points(self, marker: str) -> None:
        subset = evaluate(marker, BOTH).subset
        for platform in BOTH.platforms:
            for point in self.POINTS:
                expected = Marker(marker).evaluate(marker_environment(platform, point))
                assert (point in subset.python_range(platform)) == expected, (
                    platform.tag,
                    point,
                )
