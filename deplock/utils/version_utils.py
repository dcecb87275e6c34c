"""Version utilities and range algebra for deplock.

A :class:`VersionRange` is a finite union of disjoint intervals over PEP 440
versions. Ranges are closed under intersection, union and complement, which
is what the solver needs to reason about terms such as "``requests`` must
lie in ``>=2.25,<3``" and "``urllib3`` must *not* lie in ``==2.0.0``".

Specifier semantics follow :mod:`packaging` where an interval can express
them:

- ``<V`` excludes pre-releases of ``V`` unless ``V`` is itself a
  pre-release (the upper bound becomes ``V.dev0``).
- ``==V.*`` and ``~=V`` are translated to half-open intervals ending at
  the next release prefix's ``.dev0``.
- ``>V`` is a plain exclusive lower bound; post-releases of ``V`` are
  admitted.

Typical usage::

    >>> r = VersionRange.from_specifier(">=1.0,<2")
    >>> Version("1.5") in r
    True
    >>> str(r.intersect(VersionRange.from_specifier("!=1.5")))
    '>=1.0,<1.5 | >1.5,<2'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from packaging.version import InvalidVersion, Version
from packaging.specifiers import InvalidSpecifier, Specifier, SpecifierSet

__all__ = ["VersionRange", "parse_version"]


def parse_version(value: Union[str, Version]) -> Version:
    """Return *value* as a :class:`Version`, parsing strings.

    Raises:
        InvalidVersion: *value* is not PEP 440 compliant.
    """
    if isinstance(value, Version):
        return value
    return Version(value)


def _dev0(epoch: int, release: Tuple[int, ...]) -> Version:
    """Return the smallest version in a release family (``X.Y.dev0``)."""
    prefix = f"{epoch}!" if epoch else ""
    return Version(f"{prefix}{'.'.join(str(part) for part in release)}.dev0")


def _bump(release: Tuple[int, ...]) -> Tuple[int, ...]:
    """Increment the last component of a release tuple."""
    return release[:-1] + (release[-1] + 1,)


def _is_final(version: Version) -> bool:
    return (
        version.pre is None
        and version.dev is None
        and version.post is None
        and version.local is None
    )


# ---------------------------------------------------------------------------
# Intervals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Interval:
    """A single interval; ``None`` bounds are unbounded."""

    lower: Optional[Version]
    lower_inclusive: bool
    upper: Optional[Version]
    upper_inclusive: bool

    def lower_key(self) -> tuple:
        if self.lower is None:
            return (0,)
        return (1, self.lower, 0 if self.lower_inclusive else 1)

    def upper_key(self) -> tuple:
        if self.upper is None:
            return (2,)
        return (1, self.upper, 1 if self.upper_inclusive else 0)

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower > self.upper:
            return True
        if self.lower == self.upper:
            return not (self.lower_inclusive and self.upper_inclusive)
        return False

    def contains(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower:
                return False
            if version == self.lower and not self.lower_inclusive:
                return False
        if self.upper is not None:
            if version > self.upper:
                return False
            if version == self.upper and not self.upper_inclusive:
                return False
        return True

    def is_point(self) -> bool:
        return (
            self.lower is not None
            and self.lower == self.upper
            and self.lower_inclusive
            and self.upper_inclusive
        )

    def render(self) -> str:
        if self.is_point():
            return f"=={self.lower}"
        parts: List[str] = []
        if self.lower is not None:
            if self.lower_inclusive:
                parts.append(f">={_display(self.lower)}")
            else:
                parts.append(f">{self.lower}")
        if self.upper is not None:
            if self.upper_inclusive:
                parts.append(f"<={self.upper}")
            else:
                parts.append(f"<{_display(self.upper)}")
        return ",".join(parts) if parts else "*"


def _display(version: Version) -> str:
    """Render synthetic ``X.dev0`` bounds as ``X``."""
    if version.dev == 0 and version.pre is None and version.post is None:
        return str(version.base_version) if not version.epoch else (
            f"{version.epoch}!{'.'.join(str(p) for p in version.release)}"
        )
    return str(version)


def _touches(left: _Interval, right: _Interval) -> bool:
    """Whether *right* (starting at or after *left*) overlaps or abuts *left*."""
    if left.upper is None or right.lower is None:
        return True
    if right.lower < left.upper:
        return True
    if right.lower == left.upper:
        return left.upper_inclusive or right.lower_inclusive
    return False


def _normalize(intervals: Iterable[_Interval]) -> Tuple[_Interval, ...]:
    """Sort, drop empties and merge overlapping or adjacent intervals."""
    items = sorted(
        (iv for iv in intervals if not iv.is_empty()), key=_Interval.lower_key
    )
    merged: List[_Interval] = []
    for interval in items:
        if merged and _touches(merged[-1], interval):
            last = merged[-1]
            if interval.upper_key() > last.upper_key():
                merged[-1] = _Interval(
                    last.lower,
                    last.lower_inclusive,
                    interval.upper,
                    interval.upper_inclusive,
                )
        else:
            merged.append(interval)
    return tuple(merged)


# ---------------------------------------------------------------------------
# VersionRange
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VersionRange:
    """An immutable, canonical union of version intervals.

    Two ranges describing the same set of versions compare equal and hash
    identically, which the solver relies on for deterministic output.
    """

    intervals: Tuple[_Interval, ...] = ()

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def any(cls) -> "VersionRange":
        return cls((_Interval(None, False, None, False),))

    @classmethod
    def empty(cls) -> "VersionRange":
        return cls(())

    @classmethod
    def exact(cls, version: Union[str, Version]) -> "VersionRange":
        v = parse_version(version)
        return cls((_Interval(v, True, v, True),))

    @classmethod
    def at_least(
        cls, version: Union[str, Version], inclusive: bool = True
    ) -> "VersionRange":
        return cls((_Interval(parse_version(version), inclusive, None, False),))

    @classmethod
    def below(
        cls, version: Union[str, Version], inclusive: bool = False
    ) -> "VersionRange":
        return cls((_Interval(None, False, parse_version(version), inclusive),))

    @classmethod
    def between(
        cls,
        lower: Union[str, Version],
        upper: Union[str, Version],
        *,
        lower_inclusive: bool = True,
        upper_inclusive: bool = False,
    ) -> "VersionRange":
        return cls(
            _normalize(
                [
                    _Interval(
                        parse_version(lower),
                        lower_inclusive,
                        parse_version(upper),
                        upper_inclusive,
                    )
                ]
            )
        )

    @classmethod
    def union_of(cls, ranges: Iterable["VersionRange"]) -> "VersionRange":
        intervals: List[_Interval] = []
        for item in ranges:
            intervals.extend(item.intervals)
        return cls(_normalize(intervals))

    @classmethod
    def from_specifier(
        cls, specifier: Union[str, SpecifierSet, Specifier, None]
    ) -> "VersionRange":
        """Translate a PEP 440 specifier (set) into a range.

        Raises:
            InvalidSpecifier: *specifier* cannot be parsed.
        """
        if specifier is None:
            return cls.any()
        if isinstance(specifier, str):
            specifier = SpecifierSet(specifier)
        if isinstance(specifier, Specifier):
            return _from_single(specifier.operator, specifier.version)

        result = cls.any()
        # Sorted for a stable evaluation order; intersection is commutative.
        for spec in sorted(specifier, key=str):
            result = result.intersect(_from_single(spec.operator, spec.version))
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_empty(self) -> bool:
        return not self.intervals

    def is_any(self) -> bool:
        return (
            len(self.intervals) == 1
            and self.intervals[0].lower is None
            and self.intervals[0].upper is None
        )

    def singleton(self) -> Optional[Version]:
        """Return the only version in this range, if it is a single point."""
        if len(self.intervals) == 1 and self.intervals[0].is_point():
            return self.intervals[0].lower
        return None

    def lowest(self) -> Optional[Version]:
        """Return the lower bound of the first interval, if bounded."""
        return self.intervals[0].lower if self.intervals else None

    def __contains__(self, version: object) -> bool:
        if isinstance(version, str):
            try:
                version = Version(version)
            except InvalidVersion:
                return False
        if not isinstance(version, Version):
            return False
        return any(interval.contains(version) for interval in self.intervals)

    def __iter__(self) -> Iterator[_Interval]:
        return iter(self.intervals)

    def allows_all(self, other: "VersionRange") -> bool:
        """True if every version in *other* is in this range."""
        return other.difference(self).is_empty()

    def allows_any(self, other: "VersionRange") -> bool:
        """True if the two ranges share at least one version."""
        return not self.intersect(other).is_empty()

    # ------------------------------------------------------------------
    # Set operations
    # ------------------------------------------------------------------

    def intersect(self, other: "VersionRange") -> "VersionRange":
        result: List[_Interval] = []
        i = j = 0
        left, right = self.intervals, other.intervals
        while i < len(left) and j < len(right):
            a, b = left[i], right[j]
            lower = a if a.lower_key() >= b.lower_key() else b
            upper = a if a.upper_key() <= b.upper_key() else b
            candidate = _Interval(
                lower.lower,
                lower.lower_inclusive,
                upper.upper,
                upper.upper_inclusive,
            )
            if not candidate.is_empty():
                result.append(candidate)
            if a.upper_key() <= b.upper_key():
                i += 1
            else:
                j += 1
        return VersionRange(_normalize(result))

    def union(self, other: "VersionRange") -> "VersionRange":
        return VersionRange(_normalize(self.intervals + other.intervals))

    def complement(self) -> "VersionRange":
        gaps: List[_Interval] = []
        cursor: Optional[Version] = None
        cursor_inclusive = False
        at_start = True
        for interval in self.intervals:
            if interval.lower is not None:
                if at_start:
                    gaps.append(
                        _Interval(None, False, interval.lower, not interval.lower_inclusive)
                    )
                else:
                    gaps.append(
                        _Interval(
                            cursor,
                            cursor_inclusive,
                            interval.lower,
                            not interval.lower_inclusive,
                        )
                    )
            at_start = False
            if interval.upper is None:
                return VersionRange(_normalize(gaps))
            cursor = interval.upper
            cursor_inclusive = not interval.upper_inclusive
        if at_start:
            return VersionRange.any()
        gaps.append(_Interval(cursor, cursor_inclusive, None, False))
        return VersionRange(_normalize(gaps))

    def difference(self, other: "VersionRange") -> "VersionRange":
        return self.intersect(other.complement())

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        if not self.intervals:
            return "<none>"
        if self.is_any():
            return "*"
        if len(self.intervals) == 2:
            first, second = self.intervals
            if (
                first.lower is None
                and second.upper is None
                and first.upper == second.lower
                and not first.upper_inclusive
                and not second.lower_inclusive
            ):
                return f"!={first.upper}"
        return " | ".join(interval.render() for interval in self.intervals)

    def __repr__(self) -> str:
        return f"VersionRange({str(self)!r})"


# ---------------------------------------------------------------------------
# Specifier translation
# ---------------------------------------------------------------------------


def _from_single(operator: str, raw: str) -> VersionRange:
    if raw.endswith(".*"):
        prefix = Version(raw[:-2])
        family = VersionRange(
            (
                _Interval(
                    _dev0(prefix.epoch, prefix.release),
                    True,
                    _dev0(prefix.epoch, _bump(prefix.release)),
                    False,
                ),
            )
        )
        if operator == "==":
            return family
        if operator == "!=":
            return family.complement()
        raise InvalidSpecifier(f"Wildcard not allowed with {operator}: {raw}")

    version = Version(raw)

    if operator in ("==", "==="):
        return VersionRange.exact(version)
    if operator == "!=":
        return VersionRange.exact(version).complement()
    if operator == ">=":
        return VersionRange.at_least(version)
    if operator == ">":
        return VersionRange.at_least(version, inclusive=False)
    if operator == "<=":
        return VersionRange.below(version, inclusive=True)
    if operator == "<":
        if _is_final(version):
            return VersionRange.below(_dev0(version.epoch, version.release))
        return VersionRange.below(version)
    if operator == "~=":
        if len(version.release) < 2:
            raise InvalidSpecifier(f"~= requires at least two release parts: {raw}")
        upper = _dev0(version.epoch, _bump(version.release[:-1]))
        return VersionRange.between(version, upper)
    raise InvalidSpecifier(f"Unsupported operator {operator!r}")
