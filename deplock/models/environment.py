"""
Target environment models for deplock.

A resolution is computed for a *set* of environments at once. The space is
modelled as ``platform × interpreter version``: each :class:`Platform`
carries concrete values for the platform-related marker variables, and
the interpreter dimension is a :class:`~deplock.utils.version_utils.VersionRange`
over full Python versions.

:class:`EnvironmentSet` is the canonical representation of any subset of
that space (a mapping from platform to the Python range still covered on
it). It is closed under intersection, union and difference, so marker
evaluation and fork partitioning never lose precision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from deplock.utils.version_utils import VersionRange
from deplock.models.requirement import normalize_name
from deplock.constants import (
    DEFAULT_IMPLEMENTATION,
    DEFAULT_PLATFORMS,
    DEFAULT_REQUIRES_PYTHON,
    KNOWN_PLATFORMS,
)

__all__ = ["Platform", "EnvironmentSet", "TargetEnvironment", "PLATFORM_VARIABLES"]

#: Marker variables answered by :class:`Platform`.
PLATFORM_VARIABLES: FrozenSet[str] = frozenset(
    {
        "sys_platform",
        "platform_system",
        "os_name",
        "platform_machine",
        "implementation_name",
        "platform_python_implementation",
    }
)


@dataclass(frozen=True, order=True)
class Platform:
    """A named target platform and its marker values.

    Attributes:
        tag: Short identifier, e.g. ``"linux"`` or ``"macos-x86_64"``.
        sys_platform: Value of ``sys.platform``.
        platform_system: Value of ``platform.system()``.
        os_name: Value of ``os.name``.
        platform_machine: Value of ``platform.machine()``.
        implementation_name: Value of ``sys.implementation.name``.
        platform_python_implementation: Value of
            ``platform.python_implementation()``.
    """

    tag: str
    sys_platform: str = field(compare=False)
    platform_system: str = field(compare=False)
    os_name: str = field(compare=False)
    platform_machine: str = field(compare=False)
    implementation_name: str = field(default="cpython", compare=False)
    platform_python_implementation: str = field(default="CPython", compare=False)

    @classmethod
    def from_tag(cls, tag: str) -> "Platform":
        """Build a platform from one of :data:`KNOWN_PLATFORMS`.

        Raises:
            ValueError: *tag* is not a known platform.
        """
        try:
            values = KNOWN_PLATFORMS[tag]
        except KeyError:
            known = ", ".join(sorted(KNOWN_PLATFORMS))
            raise ValueError(f"Unknown platform {tag!r} (known: {known})") from None
        return cls(tag=tag, **values, **DEFAULT_IMPLEMENTATION)

    def marker_value(self, variable: str) -> Optional[str]:
        """Return this platform's value for a marker variable, if modelled."""
        if variable in PLATFORM_VARIABLES:
            return getattr(self, variable)
        return None

    def __str__(self) -> str:
        return self.tag


# ---------------------------------------------------------------------------
# Environment sets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnvironmentSet:
    """A subset of the ``platform × python`` space.

    ``entries`` is sorted by platform tag and never contains an empty
    Python range, so structurally equal sets compare equal.
    """

    entries: Tuple[Tuple[Platform, VersionRange], ...] = ()

    @classmethod
    def from_mapping(cls, mapping: Mapping[Platform, VersionRange]) -> "EnvironmentSet":
        return cls(
            tuple(
                (platform, python)
                for platform, python in sorted(mapping.items(), key=lambda kv: kv[0].tag)
                if not python.is_empty()
            )
        )

    @classmethod
    def product(
        cls, platforms: Iterable[Platform], python: VersionRange
    ) -> "EnvironmentSet":
        return cls.from_mapping({platform: python for platform in platforms})

    @classmethod
    def empty(cls) -> "EnvironmentSet":
        return cls(())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def as_dict(self) -> Dict[Platform, VersionRange]:
        return dict(self.entries)

    @property
    def platforms(self) -> Tuple[Platform, ...]:
        return tuple(platform for platform, _ in self.entries)

    def python_range(self, platform: Platform) -> VersionRange:
        return self.as_dict().get(platform, VersionRange.empty())

    def python_coverage(self) -> VersionRange:
        """Union of the Python ranges over all platforms."""
        return VersionRange.union_of(python for _, python in self.entries)

    def is_empty(self) -> bool:
        return not self.entries

    def is_subset(self, other: "EnvironmentSet") -> bool:
        return self.difference(other).is_empty()

    def is_disjoint(self, other: "EnvironmentSet") -> bool:
        return self.intersect(other).is_empty()

    def sort_key(self) -> tuple:
        """Deterministic ordering key used for forks and output."""
        return tuple((platform.tag, str(python)) for platform, python in self.entries)

    # ------------------------------------------------------------------
    # Set operations
    # ------------------------------------------------------------------

    def intersect(self, other: "EnvironmentSet") -> "EnvironmentSet":
        theirs = other.as_dict()
        return EnvironmentSet.from_mapping(
            {
                platform: python.intersect(theirs[platform])
                for platform, python in self.entries
                if platform in theirs
            }
        )

    def union(self, other: "EnvironmentSet") -> "EnvironmentSet":
        merged = self.as_dict()
        for platform, python in other.entries:
            merged[platform] = merged.get(platform, VersionRange.empty()).union(python)
        return EnvironmentSet.from_mapping(merged)

    def difference(self, other: "EnvironmentSet") -> "EnvironmentSet":
        theirs = other.as_dict()
        return EnvironmentSet.from_mapping(
            {
                platform: python.difference(theirs.get(platform, VersionRange.empty()))
                for platform, python in self.entries
            }
        )

    def restrict_python(self, python: VersionRange) -> "EnvironmentSet":
        return EnvironmentSet.from_mapping(
            {platform: current.intersect(python) for platform, current in self.entries}
        )

    def restrict_platforms(self, platforms: Iterable[Platform]) -> "EnvironmentSet":
        keep = set(platforms)
        return EnvironmentSet(
            tuple((p, python) for p, python in self.entries if p in keep)
        )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _grouped(self) -> List[Tuple[VersionRange, List[Platform]]]:
        groups: Dict[VersionRange, List[Platform]] = {}
        for platform, python in self.entries:
            groups.setdefault(python, []).append(platform)
        return sorted(groups.items(), key=lambda kv: [p.tag for p in kv[1]])

    def __str__(self) -> str:
        if not self.entries:
            return "<no environments>"
        parts = []
        for python, platforms in self._grouped():
            tags = ", ".join(p.tag for p in platforms)
            parts.append(f"python{python} on {tags}" if not python.is_any() else tags)
        return "; ".join(parts)

    def to_marker(self) -> str:
        """Render the set as a PEP 508 marker expression.

        The marker is exact for the modelled variables: each group becomes
        ``(platform clause) and (python clause)`` joined with ``or``.
        """
        if not self.entries:
            return 'python_full_version < "0"'
        clauses = []
        for python, platforms in self._grouped():
            platform_clause = " or ".join(
                f'(sys_platform == "{p.sys_platform}" and '
                f'platform_machine == "{p.platform_machine}")'
                for p in platforms
            )
            python_clause = _python_marker(python)
            if python_clause:
                clauses.append(f"({platform_clause}) and ({python_clause})")
            else:
                clauses.append(f"({platform_clause})")
        return " or ".join(clauses)


def _python_marker(python: VersionRange) -> str:
    if python.is_any():
        return ""
    alternatives = []
    for interval in python:
        parts = []
        if interval.lower is not None:
            op = ">=" if interval.lower_inclusive else ">"
            parts.append(f'python_full_version {op} "{interval.lower}"')
        if interval.upper is not None:
            op = "<=" if interval.upper_inclusive else "<"
            parts.append(f'python_full_version {op} "{interval.upper}"')
        alternatives.append(" and ".join(parts))
    if len(alternatives) == 1:
        return alternatives[0]
    return " or ".join(f"({alt})" for alt in alternatives)


# ---------------------------------------------------------------------------
# Target environment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TargetEnvironment:
    """The full set of environments a project supports.

    Attributes:
        requires_python: Interpreter versions the project supports.
        platforms: Target platforms.
        extras: Optional-dependency groups of the project to activate.
    """

    requires_python: VersionRange
    platforms: Tuple[Platform, ...]
    extras: FrozenSet[str] = frozenset()

    @classmethod
    def create(
        cls,
        requires_python: str = DEFAULT_REQUIRES_PYTHON,
        platforms: Iterable[str] = DEFAULT_PLATFORMS,
        extras: Iterable[str] = (),
    ) -> "TargetEnvironment":
        """Build a target environment from plain configuration values.

        Example::

            >>> env = TargetEnvironment.create(">=3.9,<3.13", ["linux"])
            >>> str(env.environment_set())
            'python>=3.9,<3.13 on linux'
        """
        tags = sorted(set(platforms))
        return cls(
            requires_python=VersionRange.from_specifier(requires_python),
            platforms=tuple(Platform.from_tag(tag) for tag in tags),
            extras=frozenset(normalize_name(extra) for extra in extras),
        )

    def environment_set(self) -> EnvironmentSet:
        return EnvironmentSet.product(self.platforms, self.requires_python)

    def __str__(self) -> str:
        return str(self.environment_set())
