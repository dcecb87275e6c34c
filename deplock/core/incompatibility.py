"""Incompatibilities and the incompatibility store.

An :class:`Incompatibility` is a set of terms that cannot all be true at
once, together with the reason it is known (its *cause*). Incompatibilities
derived during conflict resolution record the two incompatibilities they
were derived from, which turns the store into a derivation DAG used by
:mod:`deplock.core.explanation`.

Incompatibilities live in an arena owned by :class:`IncompatibilityStore`
and reference their ancestors by integer id, so shared ancestry never
creates ownership cycles and forks can copy the store cheaply.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

from deplock.core.term import Term
from deplock.exceptions import InternalInvariantError

__all__ = [
    "ConflictCause",
    "DependencyCause",
    "Incompatibility",
    "IncompatibilityCause",
    "IncompatibilityStore",
    "NoVersionsCause",
    "NotFoundCause",
    "RequiresPythonCause",
    "RootCause",
    "UnavailableCause",
]


# ---------------------------------------------------------------------------
# Causes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RootCause:
    """The root package must be selected."""


@dataclass(frozen=True)
class DependencyCause:
    """A candidate (or the root) declares a requirement.

    Attributes:
        requirement: The requirement text as declared, marker included.
    """

    requirement: str


@dataclass(frozen=True)
class NoVersionsCause:
    """No available version lies in the term's range."""


@dataclass(frozen=True)
class NotFoundCause:
    """The provider reported the package or version as not found.

    Attributes:
        reason: Provider message.
    """

    reason: str


@dataclass(frozen=True)
class UnavailableCause:
    """The candidate's metadata could not be used for this run.

    Attributes:
        reason: Provider message.
    """

    reason: str


@dataclass(frozen=True)
class RequiresPythonCause:
    """The candidate does not support every targeted interpreter.

    Attributes:
        requires_python: The candidate's ``Requires-Python``.
        target: The interpreter range the fork must support.
    """

    requires_python: str
    target: str


@dataclass(frozen=True)
class ConflictCause:
    """Derived by resolving two incompatibilities against each other.

    Attributes:
        conflict: Id of the incompatibility that was in conflict.
        other: Id of the incompatibility that caused the satisfier.
    """

    conflict: int
    other: int


IncompatibilityCause = Union[
    RootCause,
    DependencyCause,
    NoVersionsCause,
    NotFoundCause,
    UnavailableCause,
    RequiresPythonCause,
    ConflictCause,
]


# ---------------------------------------------------------------------------
# Incompatibility
# ---------------------------------------------------------------------------


class Incompatibility:
    """A set of terms that must not all be true.

    Terms about the same package are merged into one. When the
    incompatibility is derived and also mentions the root positively, the
    root term is dropped since the root is always selected.

    Args:
        id: Arena id assigned by the store.
        terms: The terms.
        cause: Why the incompatibility holds.
        root: The root package identifier.
    """

    __slots__ = ("id", "terms", "cause", "root")

    def __init__(
        self,
        id: int,
        terms: Iterable[Term],
        cause: IncompatibilityCause,
        root: str,
    ) -> None:
        terms = list(terms)
        if (
            len(terms) != 1
            and isinstance(cause, ConflictCause)
            and any(t.positive and t.package == root for t in terms)
        ):
            terms = [t for t in terms if not (t.positive and t.package == root)]

        if len(terms) > 2 or (len(terms) == 2 and terms[0].package == terms[1].package):
            merged: Dict[str, Term] = {}
            for term in terms:
                if term.package in merged:
                    combined = merged[term.package].intersect(term)
                    if combined is None:
                        raise InternalInvariantError(
                            f"Terms {merged[term.package]} and {term} cannot be merged",
                            invariant="incompatibility-terms",
                        )
                    merged[term.package] = combined
                else:
                    merged[term.package] = term
            terms = list(merged.values())

        self.id = id
        self.terms: Sequence[Term] = tuple(terms)
        self.cause = cause
        self.root = root

    def is_failure(self) -> bool:
        """True if this incompatibility says the root cannot be selected."""
        return len(self.terms) == 0 or (
            len(self.terms) == 1
            and self.terms[0].positive
            and self.terms[0].package == self.root
        )

    def is_derived(self) -> bool:
        return isinstance(self.cause, ConflictCause)

    def get(self, package: str) -> Optional[Term]:
        for term in self.terms:
            if term.package == package:
                return term
        return None

    def packages(self) -> List[str]:
        return [term.package for term in self.terms]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _terse(self, term: Term) -> str:
        if term.package == self.root:
            return self.root
        return term.describe()

    def __str__(self) -> str:
        cause = self.cause
        if isinstance(cause, DependencyCause) and len(self.terms) == 2:
            depender, dependee = self._dependency_terms()
            return f"{self._terse(depender)} depends on {dependee.describe()}"

        if isinstance(cause, DependencyCause) and len(self.terms) == 1:
            return (
                f"{self._terse(self.terms[0])} depends on {cause.requirement}, "
                "which matches no version"
            )

        if isinstance(cause, RequiresPythonCause):
            return (
                f"{self._terse(self.terms[0])} requires Python "
                f"{cause.requires_python}, but the targets include Python {cause.target}"
            )

        if isinstance(cause, NoVersionsCause):
            term = self.terms[0]
            if term.version_range.is_any():
                return f"there are no versions of {term.package}"
            return f"no versions of {term.describe()} are available"

        if isinstance(cause, NotFoundCause):
            term = self.terms[0]
            if term.version_range.singleton() is not None:
                return f"{term.describe()} could not be found ({cause.reason})"
            return f"{term.package} was not found ({cause.reason})"

        if isinstance(cause, UnavailableCause):
            return f"{self.terms[0].describe()} is unavailable ({cause.reason})"

        if isinstance(cause, RootCause):
            return f"{self.root} is the project being resolved"

        if self.is_failure():
            return "version solving failed"

        if len(self.terms) == 1:
            term = self.terms[0]
            verb = "is forbidden" if term.positive else "is required"
            return f"{self._terse(term)} {verb}"

        positive = [t for t in self.terms if t.positive]
        negative = [t for t in self.terms if not t.positive]

        if len(self.terms) == 2 and len(positive) == 1:
            return f"{self._terse(positive[0])} requires {negative[0].describe()}"

        if not negative:
            if len(positive) == 2:
                return (
                    f"{self._terse(positive[0])} is incompatible with "
                    f"{self._terse(positive[1])}"
                )
            return "one of " + " or ".join(self._terse(t) for t in positive) + " must be false"

        if not positive:
            return "one of " + " or ".join(t.describe() for t in negative) + " must be true"

        return (
            "if "
            + " and ".join(self._terse(t) for t in positive)
            + " then "
            + " or ".join(t.describe() for t in negative)
        )

    def _dependency_terms(self) -> tuple:
        first, second = self.terms
        return (first, second) if first.positive else (second, first)

    def and_to_string(
        self,
        other: "Incompatibility",
        this_line: Optional[int] = None,
        other_line: Optional[int] = None,
    ) -> str:
        """Render "this and other", collapsing dependency chains."""
        both = self._try_requires_both(other, this_line, other_line)
        if both is not None:
            return both
        through = self._try_requires_through(other, this_line, other_line)
        if through is not None:
            return through

        text = str(self)
        if this_line is not None:
            text += f" ({this_line})"
        text += f" and {other}"
        if other_line is not None:
            text += f" ({other_line})"
        return text

    def _try_requires_both(
        self,
        other: "Incompatibility",
        this_line: Optional[int],
        other_line: Optional[int],
    ) -> Optional[str]:
        if not (
            isinstance(self.cause, DependencyCause)
            and isinstance(other.cause, DependencyCause)
            and len(self.terms) == 2
            and len(other.terms) == 2
        ):
            return None
        mine, first = self._dependency_terms()
        theirs, second = other._dependency_terms()
        if mine != theirs:
            return None
        text = f"{self._terse(mine)} depends on both {first.describe()}"
        if this_line is not None:
            text += f" ({this_line})"
        text += f" and {second.describe()}"
        if other_line is not None:
            text += f" ({other_line})"
        return text

    def _try_requires_through(
        self,
        other: "Incompatibility",
        this_line: Optional[int],
        other_line: Optional[int],
    ) -> Optional[str]:
        if not (
            isinstance(self.cause, DependencyCause)
            and isinstance(other.cause, DependencyCause)
            and len(self.terms) == 2
            and len(other.terms) == 2
        ):
            return None
        first_depender, first_dependee = self._dependency_terms()
        second_depender, second_dependee = other._dependency_terms()
        if first_dependee.package == second_depender.package and (
            first_dependee.inverse.satisfies(second_depender)
            or second_depender.version_range.allows_all(first_dependee.version_range)
        ):
            head, tail, head_line, tail_line = self, other, this_line, other_line
        elif second_dependee.package == first_depender.package and (
            first_depender.version_range.allows_all(second_dependee.version_range)
        ):
            head, tail, head_line, tail_line = other, self, other_line, this_line
        else:
            return None

        head_depender, head_dependee = head._dependency_terms()
        _, tail_dependee = tail._dependency_terms()
        text = f"{head._terse(head_depender)} depends on {head_dependee.describe()}"
        if head_line is not None:
            text += f" ({head_line})"
        text += f" which depends on {tail_dependee.describe()}"
        if tail_line is not None:
            text += f" ({tail_line})"
        return text

    def __repr__(self) -> str:
        return f"<Incompatibility #{self.id} {{{', '.join(str(t) for t in self.terms)}}}>"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class IncompatibilityStore:
    """Arena of incompatibilities plus a per-package propagation index.

    Every incompatibility ever created in a run (including intermediate
    derivations that only serve as explanation) lives in the arena.
    Only incompatibilities passed to :meth:`add` participate in unit
    propagation. The store is append-only.

    Args:
        root: The root package identifier.
    """

    def __init__(self, root: str) -> None:
        self.root = root
        self._arena: List[Incompatibility] = []
        self._by_package: Dict[str, List[int]] = {}

    def create(
        self, terms: Iterable[Term], cause: IncompatibilityCause
    ) -> Incompatibility:
        """Allocate a new incompatibility in the arena without indexing it."""
        incompatibility = Incompatibility(len(self._arena), terms, cause, self.root)
        self._arena.append(incompatibility)
        return incompatibility

    def add(self, incompatibility: Incompatibility) -> Incompatibility:
        """Index *incompatibility* for propagation."""
        if self._arena[incompatibility.id] is not incompatibility:
            raise InternalInvariantError(
                f"Incompatibility #{incompatibility.id} belongs to another store",
                invariant="store-ownership",
            )
        for term in incompatibility.terms:
            self._by_package.setdefault(term.package, []).append(incompatibility.id)
        return incompatibility

    def create_and_add(
        self, terms: Iterable[Term], cause: IncompatibilityCause
    ) -> Incompatibility:
        return self.add(self.create(terms, cause))

    def for_package(self, package: str) -> List[Incompatibility]:
        return [self._arena[i] for i in self._by_package.get(package, ())]

    def __getitem__(self, id: int) -> Incompatibility:
        return self._arena[id]

    def __len__(self) -> int:
        return len(self._arena)

    def __iter__(self) -> Iterator[Incompatibility]:
        return iter(self._arena)

    def snapshot(self) -> "IncompatibilityStore":
        """Return an independent copy sharing the (immutable) records."""
        copy = IncompatibilityStore(self.root)
        copy._arena = list(self._arena)
        copy._by_package = {k: list(v) for k, v in self._by_package.items()}
        return copy

    def without(self, ids: Iterable[int]) -> "IncompatibilityStore":
        """Return a snapshot where *ids* no longer take part in propagation.

        The arena is kept whole so existing ids and explanations stay valid.
        """
        dropped = set(ids)
        copy = self.snapshot()
        copy._by_package = {
            package: [i for i in members if i not in dropped]
            for package, members in self._by_package.items()
        }
        return copy

    def packages(self) -> List[str]:
        """Packages mentioned by at least one propagating incompatibility."""
        return [package for package, members in self._by_package.items() if members]
