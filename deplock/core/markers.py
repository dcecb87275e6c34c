"""Environment marker evaluation over sets of environments.

PEP 508 markers are normally evaluated against one concrete interpreter.
The resolver needs to know how a marker behaves across *every* environment
it targets at once, so :func:`evaluate` maps a marker onto an
:class:`~deplock.models.environment.EnvironmentSet` and classifies the
result:

- ``ALWAYS``: the marker holds in every environment of the set;
- ``NEVER``: it holds in none;
- ``CONDITIONAL``: it holds on a non-empty proper subset, returned
  together with its complement.

``and`` is set intersection and ``or`` is set union, so the evaluation is
exact for the modelled variables (``python_version``,
``python_full_version``, the platform variables and ``extra``). Variables
the environment space does not model (``platform_release``,
``platform_version``, ``implementation_version``) match every environment,
so a requirement gated on them is kept rather than dropped; its marker text
stays on the resolution graph edge for the installer to decide.

Typical usage::

    >>> env = TargetEnvironment.create(">=3.9,<3.13", ["linux"]).environment_set()
    >>> result = evaluate('python_version >= "3.11"', env)
    >>> result.outcome, str(result.subset)
    (<MarkerOutcome.CONDITIONAL: 'conditional'>, 'python>=3.11,<3.13 on linux')
"""

from __future__ import annotations

import re
import operator
from enum import Enum
from functools import lru_cache
from dataclasses import dataclass
from typing import AbstractSet, Any, Callable, Dict, List, Optional, Union

from packaging.markers import Marker, Variable
from packaging.version import InvalidVersion, Version
from packaging.specifiers import InvalidSpecifier

from deplock.models.environment import EnvironmentSet, Platform, PLATFORM_VARIABLES
from deplock.models.requirement import normalize_name
from deplock.utils.logger import get_logger
from deplock.utils.version_utils import VersionRange

logger = get_logger("markers")

__all__ = [
    "MarkerOutcome",
    "MarkerResult",
    "classify",
    "evaluate",
    "marker_environment",
    "marker_subset",
]

_FLIPPED = {
    "<": ">",
    "<=": ">=",
    ">": "<",
    ">=": "<=",
    "==": "==",
    "!=": "!=",
    "===": "===",
    "~=": "~=",
}

_STRING_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "===": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class MarkerOutcome(Enum):
    """Classification of a marker over an environment set."""

    ALWAYS = "always"
    NEVER = "never"
    CONDITIONAL = "conditional"


@dataclass(frozen=True)
class MarkerResult:
    """Outcome of :func:`evaluate`.

    Attributes:
        outcome: The classification.
        subset: Environments where the marker holds.
        complement: Environments where it does not.
    """

    outcome: MarkerOutcome
    subset: EnvironmentSet
    complement: EnvironmentSet

    @property
    def is_always(self) -> bool:
        return self.outcome is MarkerOutcome.ALWAYS

    @property
    def is_never(self) -> bool:
        return self.outcome is MarkerOutcome.NEVER

    @property
    def is_conditional(self) -> bool:
        return self.outcome is MarkerOutcome.CONDITIONAL


@lru_cache(maxsize=4096)
def _parse(text: str) -> Marker:
    return Marker(text)


def evaluate(
    marker: Union[str, Marker, None],
    environment: EnvironmentSet,
    extras: AbstractSet[str] = frozenset(),
) -> MarkerResult:
    """Classify *marker* over *environment*.

    Args:
        marker: Marker text, a parsed marker, or ``None`` (always true).
        environment: The environments to evaluate over.
        extras: Normalized extras considered active for ``extra`` atoms.

    Returns:
        The :class:`MarkerResult`; ``subset`` and ``complement`` always
        partition *environment*.
    """
    return classify(marker_subset(marker, environment, extras), environment)


def classify(subset: EnvironmentSet, environment: EnvironmentSet) -> MarkerResult:
    """Classify the part *subset* of *environment* where some condition holds."""
    subset = subset.intersect(environment)
    complement = environment.difference(subset)
    if complement.is_empty():
        return MarkerResult(MarkerOutcome.ALWAYS, environment, complement)
    if subset.is_empty():
        return MarkerResult(MarkerOutcome.NEVER, subset, environment)
    return MarkerResult(MarkerOutcome.CONDITIONAL, subset, complement)


def marker_subset(
    marker: Union[str, Marker, None],
    environment: EnvironmentSet,
    extras: AbstractSet[str] = frozenset(),
) -> EnvironmentSet:
    """Return the part of *environment* where *marker* holds."""
    if marker is None:
        return environment
    if isinstance(marker, str):
        marker = _parse(marker)
    return _evaluate_list(marker._markers, environment, frozenset(extras))


def marker_environment(
    platform: Platform,
    python_full_version: Union[str, Version],
    extra: str = "",
) -> Dict[str, str]:
    """Build a concrete PEP 508 environment for one point of the space.

    Used to cross-check set evaluation against :meth:`Marker.evaluate`.
    """
    version = Version(str(python_full_version))
    env = {name: platform.marker_value(name) for name in PLATFORM_VARIABLES}
    env.update(
        {
            "python_version": f"{version.major}.{version.minor}",
            "python_full_version": str(version),
            "implementation_version": str(version),
            "platform_release": "",
            "platform_version": "",
            "extra": extra,
        }
    )
    return env


# ---------------------------------------------------------------------------
# Tree walk
# ---------------------------------------------------------------------------


def _evaluate_list(
    items: List[Any], environment: EnvironmentSet, extras: frozenset
) -> EnvironmentSet:
    # "and" binds tighter than "or": collect and-groups, union them.
    groups: List[List[EnvironmentSet]] = [[]]
    for item in items:
        if isinstance(item, list):
            groups[-1].append(_evaluate_list(item, environment, extras))
        elif isinstance(item, tuple):
            groups[-1].append(_evaluate_atom(item, environment, extras))
        elif item == "or":
            groups.append([])

    result = EnvironmentSet.empty()
    for group in groups:
        matched = environment
        for part in group:
            matched = matched.intersect(part)
        result = result.union(matched)
    return result


def _evaluate_atom(
    atom: tuple, environment: EnvironmentSet, extras: frozenset
) -> EnvironmentSet:
    lhs, op_node, rhs = atom
    op = op_node.value
    if isinstance(lhs, Variable):
        variable, literal, reverse = lhs.value, rhs.value, False
    else:
        variable, literal, reverse = rhs.value, lhs.value, True

    if variable in ("python_version", "python_full_version"):
        python = _python_range(variable, op, literal, reverse)
        if python is None:
            logger.debug("Unsupported python marker atom %s %s %s", lhs, op, rhs)
            return environment
        return environment.restrict_python(python)

    if variable in PLATFORM_VARIABLES:
        keep = [
            platform
            for platform in environment.platforms
            if _compare_strings(platform.marker_value(variable), op, literal, reverse)
        ]
        return environment.restrict_platforms(keep)

    if variable == "extra":
        # Without active extras the variable is the empty string.
        values = sorted(extras) or [""]
        if op in ("==", "===", "!="):
            literal = normalize_name(literal)
        matched = any(_compare_strings(value, op, literal, reverse) for value in values)
        return environment if matched else EnvironmentSet.empty()

    logger.debug("Marker variable %r is not modelled; treating as satisfied", variable)
    return environment


def _compare_strings(value: Optional[str], op: str, literal: str, reverse: bool) -> bool:
    if value is None:
        return True
    if op == "in":
        return literal in value if reverse else value in literal
    if op == "not in":
        return literal not in value if reverse else value not in literal
    if op == "~=":
        return value == literal
    left, right = (literal, value) if reverse else (value, literal)
    return _STRING_OPS[op](left, right)


# ---------------------------------------------------------------------------
# Python version atoms
# ---------------------------------------------------------------------------


def _next_minor(version: Version) -> Version:
    return Version(f"{version.major}.{version.minor + 1}")


def _minor(version: Version) -> Version:
    return Version(f"{version.major}.{version.minor}")


def _python_range(
    variable: str, op: str, literal: str, reverse: bool
) -> Optional[VersionRange]:
    if op in ("in", "not in"):
        if reverse:
            return None
        tokens = [t for t in re.split(r"[\s,]+", literal) if t]
        ranges = []
        for token in tokens:
            single = _python_range(variable, "==", token, False)
            if single is None:
                return None
            ranges.append(single)
        found = VersionRange.union_of(ranges)
        return found if op == "in" else found.complement()

    if reverse:
        op = _FLIPPED[op]

    try:
        if variable == "python_full_version" or literal.endswith(".*"):
            return VersionRange.from_specifier(f"{op}{literal}")
        version = _minor(Version(literal))
    except (InvalidVersion, InvalidSpecifier):
        return None

    # python_version only carries "X.Y", so compare on minor boundaries.
    if op in ("==", "==="):
        return VersionRange.between(version, _next_minor(version))
    if op == "!=":
        return VersionRange.between(version, _next_minor(version)).complement()
    if op == ">=":
        return VersionRange.at_least(version)
    if op == ">":
        return VersionRange.at_least(_next_minor(version))
    if op == "<":
        return VersionRange.below(version)
    if op == "<=":
        return VersionRange.below(_next_minor(version))
    if op == "~=":
        return VersionRange.between(version, Version(f"{version.major + 1}"))
    return None
