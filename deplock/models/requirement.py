"""
Requirement data model for deplock.

A :class:`Requirement` is one dependency declaration: a package, the
versions it may take, the extras it activates, the marker that gates it
and where it comes from (a registry, a local path, a VCS repository or a
direct URL). Requirements are immutable once created.
"""

from __future__ import annotations

from enum import Enum
from functools import cached_property
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, List, Optional, Tuple

from packaging.markers import InvalidMarker, Marker
from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name
from packaging.requirements import InvalidRequirement, Requirement as PkgRequirement

from deplock.exceptions import RequirementParseError
from deplock.utils.version_utils import VersionRange

__all__ = [
    "Requirement",
    "Source",
    "SourceKind",
    "normalize_name",
    "package_key",
    "split_package_key",
]

_VCS_PREFIXES: Tuple[str, ...] = ("git+", "hg+", "svn+", "bzr+")


def normalize_name(name: str) -> str:
    """Normalize a package or extra name according to PEP 503.

    Example::

        >>> normalize_name("Flask_Login")
        'flask-login'
    """
    return str(canonicalize_name(name))


def package_key(name: str, extra: Optional[str] = None) -> str:
    """Return the solver identifier for a package or one of its extras.

    Extras are modelled as separate virtual packages (``name[extra]``)
    that depend on the base package at the same version.
    """
    if extra:
        return f"{name}[{extra}]"
    return name


def split_package_key(key: str) -> Tuple[str, Optional[str]]:
    """Inverse of :func:`package_key`."""
    if key.endswith("]") and "[" in key:
        name, _, extra = key[:-1].partition("[")
        return name, extra
    return key, None


class SourceKind(Enum):
    """Where a requirement's artifacts come from."""

    REGISTRY = "registry"
    PATH = "path"
    GIT = "git"
    URL = "url"
    PROJECT = "project"


@dataclass(frozen=True)
class Source:
    """A concrete artifact origin for a package.

    Attributes:
        kind: The source variant.
        location: Index name, filesystem path, repository URL or archive
            URL; ``None`` for the default registry.
    """

    kind: SourceKind = SourceKind.REGISTRY
    location: Optional[str] = None

    @classmethod
    def registry(cls, index: Optional[str] = None) -> "Source":
        return cls(SourceKind.REGISTRY, index)

    @classmethod
    def from_url(cls, url: str) -> "Source":
        """Classify a PEP 508 direct reference URL."""
        if url.startswith(_VCS_PREFIXES):
            return cls(SourceKind.GIT, url)
        if url.startswith("file:"):
            path = url[len("file:"):]
            if path.startswith("//"):
                path = path[2:]
            return cls(SourceKind.PATH, path)
        return cls(SourceKind.URL, url)

    @property
    def is_direct(self) -> bool:
        return self.kind in (SourceKind.PATH, SourceKind.GIT, SourceKind.URL)

    def sort_key(self) -> Tuple[str, str]:
        return (self.kind.value, self.location or "")

    def __str__(self) -> str:
        if self.location is None:
            return self.kind.value
        if self.kind is SourceKind.PATH:
            return f"file://{self.location}"
        return self.location


@dataclass(frozen=True)
class Requirement:
    """A single dependency declaration.

    Attributes:
        name: Normalized package name.
        specifier: Allowed versions; empty means any version.
        extras: Normalized extras to activate.
        marker: PEP 508 environment marker text, or ``None``.
        source: Artifact origin.
        origin: Free-form description of who declared it, for messages.
    """

    name: str
    specifier: SpecifierSet = field(default_factory=SpecifierSet)
    extras: FrozenSet[str] = frozenset()
    marker: Optional[str] = None
    source: Source = field(default_factory=Source)
    origin: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", normalize_name(self.name))
        object.__setattr__(
            self, "extras", frozenset(normalize_name(e) for e in self.extras)
        )
        if isinstance(self.specifier, str):
            object.__setattr__(self, "specifier", SpecifierSet(self.specifier))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, text: str, *, origin: Optional[str] = None) -> "Requirement":
        """Parse a PEP 508 requirement string.

        Raises:
            RequirementParseError: *text* is not a valid requirement.

        Example::

            >>> req = Requirement.parse('Flask[async]>=2.0; python_version >= "3.8"')
            >>> req.name, sorted(req.extras), str(req.specifier)
            ('flask', ['async'], '>=2.0')
        """
        try:
            parsed = PkgRequirement(text)
        except InvalidRequirement as exc:
            raise RequirementParseError(
                f"Invalid requirement: {exc}",
                requirement=text,
                source=origin,
            ) from exc

        source = Source.from_url(parsed.url) if parsed.url else Source()
        return cls(
            name=parsed.name,
            specifier=parsed.specifier,
            extras=frozenset(parsed.extras),
            marker=str(parsed.marker) if parsed.marker else None,
            source=source,
            origin=origin,
        )

    @classmethod
    def parse_many(
        cls, lines: Iterable[str], *, origin: Optional[str] = None
    ) -> List["Requirement"]:
        """Parse requirement lines, skipping blanks and ``#`` comments."""
        result: List[Requirement] = []
        for raw in lines:
            line = raw.split(" #", 1)[0].strip()
            if not line or line.startswith("#"):
                continue
            result.append(cls.parse(line, origin=origin))
        return result

    def with_specifier(self, specifier: SpecifierSet) -> "Requirement":
        return replace(self, specifier=specifier)

    def without_marker(self) -> "Requirement":
        return replace(self, marker=None)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @cached_property
    def version_range(self) -> VersionRange:
        return VersionRange.from_specifier(self.specifier)

    @cached_property
    def parsed_marker(self) -> Optional[Marker]:
        if self.marker is None:
            return None
        try:
            return Marker(self.marker)
        except InvalidMarker as exc:
            raise RequirementParseError(
                f"Invalid marker: {exc}",
                requirement=self.to_string(),
                source=self.origin,
            ) from exc

    def mentions_prerelease(self) -> bool:
        """True if any specifier names a pre-release version explicitly."""
        return any(bool(spec.prereleases) for spec in self.specifier)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def to_string(self, *, include_marker: bool = True) -> str:
        """Render the requirement in PEP 508 form."""
        result = self.name
        if self.extras:
            result += f"[{','.join(sorted(self.extras))}]"
        if self.source.is_direct:
            result += f" @ {self.source.location}"
        elif self.specifier:
            result += ",".join(sorted(str(spec) for spec in self.specifier))
        if include_marker and self.marker:
            result += f"; {self.marker}"
        return result

    def __str__(self) -> str:
        return self.to_string()
