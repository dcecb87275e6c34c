"""The solver's partial solution: an ordered log of assignments.

Each assignment is a :class:`~deplock.core.term.Term` plus bookkeeping:
whether it was a decision or derived from an incompatibility, the decision
level it belongs to and its position in the log. For every package the log
keeps a running intersection of its assignments, so relation queries are
answered without replaying history.
"""

from __future__ import annotations

from typing import Collection, Dict, List, Optional

from packaging.version import Version

from deplock.core.incompatibility import Incompatibility
from deplock.core.term import SetRelation, Term
from deplock.exceptions import InternalInvariantError
from deplock.utils.version_utils import VersionRange

__all__ = ["Assignment", "PartialSolution"]


class Assignment(Term):
    """A term recorded in a :class:`PartialSolution`.

    Args:
        package: Solver package identifier.
        version_range: The term's range.
        positive: Term polarity.
        decision_level: Number of decisions made before (or including) it.
        index: Position in the assignment log.
        cause: The incompatibility it was derived from, ``None`` for
            decisions.
    """

    __slots__ = ("decision_level", "index", "cause")

    def __init__(
        self,
        package: str,
        version_range: VersionRange,
        positive: bool,
        decision_level: int,
        index: int,
        cause: Optional[Incompatibility] = None,
    ) -> None:
        super().__init__(package, version_range, positive)
        self.decision_level = decision_level
        self.index = index
        self.cause = cause

    @classmethod
    def decision(
        cls, package: str, version: Version, decision_level: int, index: int
    ) -> "Assignment":
        return cls(package, VersionRange.exact(version), True, decision_level, index)

    @classmethod
    def derivation(
        cls, term: Term, cause: Incompatibility, decision_level: int, index: int
    ) -> "Assignment":
        return cls(
            term.package,
            term.version_range,
            term.positive,
            decision_level,
            index,
            cause,
        )

    def is_decision(self) -> bool:
        return self.cause is None

    def __repr__(self) -> str:
        kind = "decision" if self.is_decision() else f"derived from #{self.cause.id}"
        return f"<Assignment {self} @{self.decision_level} ({kind})>"


class PartialSolution:
    """The solver's current set of beliefs about every package.

    Invariants: assignments for one package never contradict each other,
    and a package is decided at most once.
    """

    def __init__(self) -> None:
        self._assignments: List[Assignment] = []
        self._decisions: Dict[str, Version] = {}
        # Intersection of all assignments per package, once any is positive.
        self._positive: Dict[str, Term] = {}
        # Intersection of negative assignments for packages with no positive one.
        self._negative: Dict[str, Term] = {}
        self._attempted_solutions = 1
        self._backtracking = False

    @property
    def decisions(self) -> Dict[str, Version]:
        return dict(self._decisions)

    @property
    def decision_level(self) -> int:
        return len(self._decisions)

    @property
    def attempted_solutions(self) -> int:
        return self._attempted_solutions

    @property
    def assignments(self) -> List[Assignment]:
        return list(self._assignments)

    def unsatisfied(self) -> List[Term]:
        """Positive terms whose package has not been decided yet."""
        return [
            term for package, term in self._positive.items()
            if package not in self._decisions
        ]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def decide(self, package: str, version: Version) -> None:
        """Select *version* of *package*, opening a new decision level."""
        if self._backtracking:
            self._attempted_solutions += 1
        self._backtracking = False
        self._decisions[package] = version
        self._assign(
            Assignment.decision(
                package, version, self.decision_level, len(self._assignments)
            )
        )

    def derive(self, term: Term, cause: Incompatibility) -> None:
        """Record *term* as a consequence of *cause*."""
        self._assign(
            Assignment.derivation(
                term, cause, self.decision_level, len(self._assignments)
            )
        )

    def _assign(self, assignment: Assignment) -> None:
        self._assignments.append(assignment)
        self._register(assignment)

    def backtrack(self, decision_level: int) -> None:
        """Drop every assignment made above *decision_level*."""
        self._backtracking = True

        packages = []
        while self._assignments and self._assignments[-1].decision_level > decision_level:
            removed = self._assignments.pop()
            if removed.package not in packages:
                packages.append(removed.package)
            if removed.is_decision():
                del self._decisions[removed.package]

        for package in packages:
            self._positive.pop(package, None)
            self._negative.pop(package, None)

        for assignment in self._assignments:
            if assignment.package in packages:
                self._register(assignment)

    def retract(self, causes: Collection[int]) -> bool:
        """Backtrack below the first assignment derived from any of *causes*.

        Returns ``False`` when no assignment depends on them. Retraction
        does not count as an attempted solution.
        """
        for assignment in self._assignments:
            if assignment.cause is not None and assignment.cause.id in causes:
                break
        else:
            return False

        backtracking = self._backtracking
        self.backtrack(assignment.decision_level - 1)
        self._backtracking = backtracking
        return True

    def _register(self, assignment: Assignment) -> None:
        package = assignment.package
        old_positive = self._positive.get(package)
        if old_positive is not None:
            self._positive[package] = self._merge(old_positive, assignment)
            return

        old_negative = self._negative.get(package)
        term = assignment if old_negative is None else self._merge(assignment, old_negative)
        if term.positive:
            self._negative.pop(package, None)
            self._positive[package] = term
        else:
            self._negative[package] = term

    @staticmethod
    def _merge(left: Term, right: Term) -> Term:
        merged = left.intersect(right)
        if merged is None:
            raise InternalInvariantError(
                f"Assignments {left} and {right} contradict each other",
                invariant="partial-solution-consistency",
            )
        return merged

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def satisfier(self, term: Term) -> Assignment:
        """Return the earliest assignment after which *term* is satisfied."""
        assigned: Optional[Term] = None
        for assignment in self._assignments:
            if assignment.package != term.package:
                continue
            assigned = assignment if assigned is None else assigned.intersect(assignment)
            if assigned is not None and assigned.satisfies(term):
                return assignment

        raise InternalInvariantError(
            f"{term} is not satisfied by the partial solution",
            invariant="satisfier",
        )

    def satisfies(self, term: Term) -> bool:
        return self.relation(term) is SetRelation.SUBSET

    def relation(self, term: Term) -> SetRelation:
        positive = self._positive.get(term.package)
        if positive is not None:
            return positive.relation(term)
        negative = self._negative.get(term.package)
        if negative is None:
            return SetRelation.OVERLAPPING
        return negative.relation(term)

    def snapshot(self) -> "PartialSolution":
        """Return an independent copy (assignments are immutable and shared)."""
        copy = PartialSolution()
        copy._assignments = list(self._assignments)
        copy._decisions = dict(self._decisions)
        copy._positive = dict(self._positive)
        copy._negative = dict(self._negative)
        copy._attempted_solutions = self._attempted_solutions
        copy._backtracking = self._backtracking
        return copy

    def __str__(self) -> str:
        return "\n".join(repr(assignment) for assignment in self._assignments)
