"""Terms: the atomic statements the solver reasons about.

A :class:`Term` says that a package's selected version must (positive) or
must not (negative) lie in a :class:`VersionRange`. A negative term is also
satisfied when the package is not selected at all, which is what makes
"``a`` depends on ``b>=2``" expressible as the incompatibility
``{a==1.0, not b>=2}``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from deplock.utils.version_utils import VersionRange

__all__ = ["SetRelation", "Term"]


class SetRelation(Enum):
    """How the versions allowed by one term relate to another's."""

    SUBSET = "subset"
    DISJOINT = "disjoint"
    OVERLAPPING = "overlapping"


class Term:
    """A statement about one package's selected version.

    Args:
        package: Solver package identifier (``name`` or ``name[extra]``).
        version_range: The versions the statement is about.
        positive: ``True`` for "must lie in", ``False`` for "must not".
    """

    __slots__ = ("package", "version_range", "positive")

    def __init__(self, package: str, version_range: VersionRange, positive: bool = True):
        self.package = package
        self.version_range = version_range
        self.positive = positive

    @property
    def inverse(self) -> "Term":
        return Term(self.package, self.version_range, not self.positive)

    def satisfies(self, other: "Term") -> bool:
        """Whether this term being true implies *other* is true."""
        return self.package == other.package and self.relation(other) is SetRelation.SUBSET

    def relation(self, other: "Term") -> SetRelation:
        """Relation between the solutions of this term and of *other*.

        Both terms must concern the same package.
        """
        if self.package != other.package:
            raise ValueError(f"{other} should refer to {self.package}")

        mine, theirs = self.version_range, other.version_range
        if other.positive:
            if self.positive:
                # a>=1.5 is a subset of a>=1; a>=2 is disjoint with a<2
                if theirs.allows_all(mine):
                    return SetRelation.SUBSET
                if not mine.allows_any(theirs):
                    return SetRelation.DISJOINT
                return SetRelation.OVERLAPPING
            # not a>=1 is disjoint with a>=1.5
            if mine.allows_all(theirs):
                return SetRelation.DISJOINT
            return SetRelation.OVERLAPPING

        if self.positive:
            # a>=2 is a subset of not a<2
            if not theirs.allows_any(mine):
                return SetRelation.SUBSET
            # a>=1.5 is disjoint with not a>=1
            if theirs.allows_all(mine):
                return SetRelation.DISJOINT
            return SetRelation.OVERLAPPING
        # not a>=1 is a subset of not a>=1.5
        if mine.allows_all(theirs):
            return SetRelation.SUBSET
        return SetRelation.OVERLAPPING

    def intersect(self, other: "Term") -> Optional["Term"]:
        """Term satisfied exactly when both terms are, or ``None`` if impossible."""
        if self.package != other.package:
            raise ValueError(f"{other} should refer to {self.package}")

        if self.positive != other.positive:
            positive, negative = (self, other) if self.positive else (other, self)
            return self._non_empty(
                positive.version_range.difference(negative.version_range), True
            )
        if self.positive:
            return self._non_empty(
                self.version_range.intersect(other.version_range), True
            )
        return self._non_empty(self.version_range.union(other.version_range), False)

    def difference(self, other: "Term") -> Optional["Term"]:
        """Term satisfied when this one is and *other* is not."""
        return self.intersect(other.inverse)

    def _non_empty(self, version_range: VersionRange, positive: bool) -> Optional["Term"]:
        if version_range.is_empty():
            return None
        return Term(self.package, version_range, positive)

    # ------------------------------------------------------------------
    # Identity and rendering
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Term):
            return NotImplemented
        return (
            self.package == other.package
            and self.positive == other.positive
            and self.version_range == other.version_range
        )

    def __hash__(self) -> int:
        return hash((self.package, self.positive, self.version_range))

    def describe(self) -> str:
        """Render the package and range without polarity."""
        if self.version_range.is_any():
            return self.package
        return f"{self.package}{self.version_range}"

    def __str__(self) -> str:
        if self.positive:
            return self.describe()
        return f"not {self.describe()}"

    def __repr__(self) -> str:
        return f"<Term {self}>"
