"""Unit tests for deplock.models.requirement and deplock.models.candidate.

Test Coverage:
- PEP 508 parsing (specifiers, extras, markers, direct references)
- Source classification and rendering
- Name normalization and solver package keys
- Derived views (version range, parsed marker, pre-release mentions)
- Rendering back to PEP 508
- Candidate helpers
"""

from __future__ import annotations

import pytest
from packaging.specifiers import SpecifierSet
from packaging.version import Version

from deplock.exceptions import RequirementParseError
from deplock.models.candidate import Candidate
from deplock.models.requirement import (
    Requirement,
    Source,
    SourceKind,
    normalize_name,
    package_key,
    split_package_key,
)


class TestNormalization:
    """Tests for normalize_name and package keys."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Requests", "requests"),
            ("Flask_Login", "flask-login"),
            ("zope.interface", "zope-interface"),
            ("my--pkg", "my-pkg"),
        ],
    )
    def test_normalize_name(self, raw: str, expected: str) -> None:
        assert normalize_name(raw) == expected

    def test_package_key_round_trip(self) -> None:
        assert package_key("a") == "a"
        assert package_key("a", "fast") == "a[fast]"
        assert split_package_key("a[fast]") == ("a", "fast")
        assert split_package_key("a") == ("a", None)


class TestParse:
    """Tests for Requirement.parse."""

    def test_full_requirement(self) -> None:
        """Happy path: extras, specifier and marker are all captured."""
        req = Requirement.parse('Flask[Async]>=2.0; python_version >= "3.8"', origin="cli")

        assert req.name == "flask"
        assert req.extras == frozenset({"async"})
        assert req.specifier == SpecifierSet(">=2.0")
        assert req.marker == 'python_version >= "3.8"'
        assert req.source == Source.registry()
        assert req.origin == "cli"

    def test_bare_name(self) -> None:
        req = Requirement.parse("six")
        assert not req.specifier
        assert req.marker is None
        assert req.version_range.is_any()

    def test_vcs_reference(self) -> None:
        req = Requirement.parse("c @ git+https://example.com/c.git@v1")
        assert req.source.kind is SourceKind.GIT
        assert req.source.location == "git+https://example.com/c.git@v1"
        assert req.source.is_direct

    def test_file_reference(self) -> None:
        req = Requirement.parse("c @ file:///src/c")
        assert req.source == Source(SourceKind.PATH, "/src/c")
        assert str(req.source) == "file:///src/c"

    def test_archive_reference(self) -> None:
        req = Requirement.parse("c @ https://example.com/c-1.0.tar.gz")
        assert req.source.kind is SourceKind.URL

    def test_invalid_requirement(self) -> None:
        with pytest.raises(RequirementParseError) as exc_info:
            Requirement.parse("requests>=", origin="requirements.txt")

        assert exc_info.value.requirement == "requests>="
        assert exc_info.value.source == "requirements.txt"

    def test_parse_many_skips_comments(self) -> None:
        reqs = Requirement.parse_many(
            [
                "# pinned for the API",
                "",
                "a>=1  # inline comment",
                "   ",
                "b[x]",
            ]
        )
        assert [str(req) for req in reqs] == ["a>=1", "b[x]"]


class TestDerivedViews:
    """Tests for version_range, parsed_marker and mentions_prerelease."""

    def test_version_range(self) -> None:
        req = Requirement.parse("a>=1,<2")
        assert "1.5" in req.version_range
        assert "2.0" not in req.version_range

    def test_invalid_marker_raises_lazily(self) -> None:
        req = Requirement(name="a", marker="python_version >>> '3'")
        with pytest.raises(RequirementParseError, match="Invalid marker"):
            req.parsed_marker

    def test_mentions_prerelease(self) -> None:
        assert Requirement.parse("a>=2.0b1").mentions_prerelease()
        assert not Requirement.parse("a>=2.0").mentions_prerelease()

    def test_specifier_string_is_coerced(self) -> None:
        req = Requirement(name="A_B", specifier=">=1", extras=frozenset({"X"}))
        assert req.name == "a-b"
        assert req.specifier == SpecifierSet(">=1")
        assert req.extras == frozenset({"x"})


class TestRendering:
    """Tests for to_string and helpers that copy requirements."""

    def test_to_string_sorts_specifiers_and_extras(self) -> None:
        req = Requirement.parse('a[z,b]>=1,<2; sys_platform == "linux"')
        assert req.to_string() == 'a[b,z]<2,>=1; sys_platform == "linux"'
        assert req.to_string(include_marker=False) == "a[b,z]<2,>=1"

    def test_direct_reference_rendering(self) -> None:
        req = Requirement.parse("c @ git+https://example.com/c.git")
        assert str(req) == "c @ git+https://example.com/c.git"

    def test_with_specifier_and_without_marker(self) -> None:
        req = Requirement.parse('a>=1; sys_platform == "linux"')

        assert str(req.with_specifier(SpecifierSet("==2.0"))).startswith("a==2.0;")
        assert req.without_marker().marker is None
        assert req.marker is not None

    def test_equality_ignores_origin(self) -> None:
        assert Requirement.parse("a>=1", origin="x") == Requirement.parse("a>=1", origin="y")


class TestCandidate:
    """Tests for Candidate helpers."""

    def test_requires_python_range(self) -> None:
        candidate = Candidate(name="a", version=Version("1.0"), requires_python=">=3.10")
        assert "3.9" not in candidate.requires_python_range
        assert "3.12" in candidate.requires_python_range

    def test_missing_requires_python_allows_any(self) -> None:
        assert Candidate(name="a", version=Version("1.0")).requires_python_range.is_any()

    def test_to_json(self) -> None:
        candidate = Candidate(
            name="a",
            version=Version("1.0"),
            requires=(Requirement.parse("b>=1"),),
            extras=frozenset({"z", "fast"}),
            hashes=("sha256:abc",),
        )
        data = candidate.to_json()

        assert data["source"] == "registry"
        assert data["requires"] == ["b>=1"]
        assert data["extras"] == ["fast", "z"]
        assert data["hashes"] == ["sha256:abc"]
        assert candidate.provides_extra("fast")
        assert str(candidate) == "a==1.0"
