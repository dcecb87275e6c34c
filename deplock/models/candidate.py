"""
Candidate data model for deplock.

A :class:`Candidate` is one concrete ``(package, version, source)`` triple
together with the metadata the solver needs: its declared requirements
(possibly marker-gated, possibly conditional on one of its extras), the
extras it offers and the interpreter versions it supports.
"""

from __future__ import annotations

from functools import cached_property
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

from packaging.version import Version

from deplock.models.requirement import Requirement, Source
from deplock.utils.version_utils import VersionRange

__all__ = ["Candidate"]


@dataclass(frozen=True)
class Candidate:
    """A concrete, installable release of a package.

    Attributes:
        name: Normalized package name.
        version: The release version.
        source: Where the artifact comes from.
        requires: Declared requirements, in metadata order.
        extras: Extras the release declares (``Provides-Extra``).
        requires_python: ``Requires-Python`` specifier text, if any.
        artifact: Artifact file name or URL, if known.
        hashes: Artifact hashes, e.g. ``("sha256:…",)``.
        yanked: Whether the registry flagged the release as yanked.
    """

    name: str
    version: Version
    source: Source = field(default_factory=Source)
    requires: Tuple[Requirement, ...] = ()
    extras: FrozenSet[str] = frozenset()
    requires_python: Optional[str] = None
    artifact: Optional[str] = None
    hashes: Tuple[str, ...] = ()
    yanked: bool = False

    @cached_property
    def requires_python_range(self) -> VersionRange:
        return VersionRange.from_specifier(self.requires_python or "")

    def provides_extra(self, extra: str) -> bool:
        return extra in self.extras

    def to_json(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "name": self.name,
            "version": str(self.version),
            "source": str(self.source),
            "requires": [str(req) for req in self.requires],
            "extras": sorted(self.extras),
            "requires_python": self.requires_python,
            "artifact": self.artifact,
            "hashes": list(self.hashes),
        }

    def __str__(self) -> str:
        return f"{self.name}=={self.version}"

    def __repr__(self) -> str:
        return (
            "Candidate("
            f"name={self.name!r}, "
            f"version={str(self.version)!r}, "
            f"source={str(self.source)!r}, "
            f"requires={[str(r) for r in self.requires]!r}"
            ")"
        )

