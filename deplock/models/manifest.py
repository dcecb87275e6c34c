"""
Resolution input model for deplock.

A :class:`Manifest` bundles everything the caller controls about a
resolution run besides the target environments: the project's direct
requirements, constraints and overrides, version preferences carried over
from a previous resolution, and the version-selection policies.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from packaging.version import Version

from deplock.constants import (
    DEFAULT_PRERELEASE_MODE,
    DEFAULT_RESOLUTION_MODE,
    DEFAULT_ROOT_NAME,
)
from deplock.models.environment import EnvironmentSet
from deplock.models.requirement import Requirement, normalize_name

__all__ = [
    "DependencyMode",
    "ExcludeNewer",
    "Manifest",
    "Preference",
    "PrereleaseMode",
    "ResolutionMode",
]


class ResolutionMode(Enum):
    """Which version to try first for each package."""

    HIGHEST = "highest"
    LOWEST = "lowest"
    # Lowest for direct dependencies, highest for transitive ones.
    LOWEST_DIRECT = "lowest-direct"


class PrereleaseMode(Enum):
    """When pre-release versions may be selected."""

    DISALLOW = "disallow"
    ALLOW = "allow"
    # Only when no final release satisfies the requirement.
    IF_NECESSARY = "if-necessary"
    # Only for packages whose requirements name a pre-release.
    EXPLICIT = "explicit"
    IF_NECESSARY_OR_EXPLICIT = "if-necessary-or-explicit"


class DependencyMode(Enum):
    """Whose requirements the solver follows."""

    TRANSITIVE = "transitive"
    # Only the project's own requirements; selected packages bring nothing in.
    DIRECT = "direct"


@dataclass(frozen=True)
class ExcludeNewer:
    """Upload-time cutoff: only files uploaded strictly before it are used.

    Attributes:
        cutoff: Timezone-aware UTC timestamp.
    """

    cutoff: datetime

    @classmethod
    def parse(cls, value: Union[str, date]) -> "ExcludeNewer":
        """Build a cutoff from a date, a date-time or their ISO 8601 text.

        A plain date means midnight UTC at the start of that day, and a
        date-time without offset is read as UTC.

        Raises:
            ValueError: *value* is not a date or an RFC 3339 date-time.
        """
        parsed: date
        if isinstance(value, str):
            text = value.strip()
            try:
                if len(text) == 10:
                    parsed = date.fromisoformat(text)
                else:
                    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                raise ValueError(
                    f"Invalid timestamp {value!r}: expected YYYY-MM-DD or an "
                    "RFC 3339 date-time"
                ) from None
        else:
            parsed = value

        if not isinstance(parsed, datetime):
            parsed = datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
        elif parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return cls(parsed.astimezone(timezone.utc))

    def admits(self, upload_time: Optional[str]) -> bool:
        """Whether a file uploaded at *upload_time* is older than the cutoff.

        Files without a readable upload time are never admitted.
        """
        if not upload_time:
            return False
        try:
            uploaded = ExcludeNewer.parse(upload_time).cutoff
        except ValueError:
            return False
        return uploaded < self.cutoff

    def __str__(self) -> str:
        return self.cutoff.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Preference:
    """A previously selected version, valid on ``environment``.

    ``environment`` of ``None`` means the preference applies everywhere.
    """

    version: Version
    environment: Optional[EnvironmentSet] = None


@dataclass(frozen=True)
class Manifest:
    """Root input of a resolution run.

    Attributes:
        requirements: The project's direct requirements, in order.
        constraints: Ranges applied to a package whenever it is required,
            without requiring it.
        overrides: Requirements that replace every declaration of the
            same package, root and transitive alike.
        preferences: Versions to try first, per package (usually taken
            from a previous :class:`~deplock.models.graph.ResolutionGraph`).
        resolution_mode: Version ordering policy.
        prerelease_mode: Pre-release admission policy.
        dependency_mode: Whether requirements of selected packages are
            followed or only the project's own.
        name: Name of the virtual root package.
    """

    requirements: Tuple[Requirement, ...] = ()
    constraints: Tuple[Requirement, ...] = ()
    overrides: Tuple[Requirement, ...] = ()
    preferences: Mapping[str, Tuple[Preference, ...]] = field(default_factory=dict)
    resolution_mode: ResolutionMode = ResolutionMode(DEFAULT_RESOLUTION_MODE)
    prerelease_mode: PrereleaseMode = PrereleaseMode(DEFAULT_PRERELEASE_MODE)
    dependency_mode: DependencyMode = DependencyMode.TRANSITIVE
    name: str = DEFAULT_ROOT_NAME

    @classmethod
    def from_strings(
        cls,
        requirements: Iterable[str],
        *,
        constraints: Iterable[str] = (),
        overrides: Iterable[str] = (),
        **kwargs,
    ) -> "Manifest":
        """Build a manifest from PEP 508 strings.

        Example::

            >>> m = Manifest.from_strings(["a>=1,<2", "b==1.0"])
            >>> [r.name for r in m.requirements]
            ['a', 'b']
        """
        return cls(
            requirements=tuple(Requirement.parse(r, origin="project") for r in requirements),
            constraints=tuple(Requirement.parse(r, origin="constraints") for r in constraints),
            overrides=tuple(Requirement.parse(r, origin="overrides") for r in overrides),
            **kwargs,
        )

    def with_preferences(
        self, preferences: Mapping[str, Iterable[Preference]]
    ) -> "Manifest":
        return replace(
            self,
            preferences={normalize_name(k): tuple(v) for k, v in preferences.items()},
        )

    def constraints_by_name(self) -> Dict[str, List[Requirement]]:
        grouped: Dict[str, List[Requirement]] = {}
        for constraint in self.constraints:
            grouped.setdefault(constraint.name, []).append(constraint)
        return grouped

    def overrides_by_name(self) -> Dict[str, List[Requirement]]:
        grouped: Dict[str, List[Requirement]] = {}
        for override in self.overrides:
            grouped.setdefault(override.name, []).append(override)
        return grouped

    def direct_names(self) -> frozenset:
        return frozenset(req.name for req in self.requirements)
