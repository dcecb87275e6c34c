"""PubGrub version solving for one fork of the target environment space.

:class:`Solver` runs conflict-driven clause learning over version ranges:

1. **Propagating** derives every term forced by the known
   incompatibilities (unit propagation) until nothing changes, or finds an
   incompatibility the partial solution fully satisfies.
2. **Resolving conflict** combines the violated incompatibility with the
   causes of its satisfiers until the result forces a backjump, learns it,
   and resumes propagation. An empty (or root-only) result means failure.
3. **Deciding** picks the undecided package with the fewest candidate
   versions and selects a version for it (preference, then resolution mode).
4. **Registering** turns the chosen candidate's applicable requirements
   into dependency incompatibilities and records the decision. A
   requirement whose marker holds on only part of this fork's environments
   stops the loop with a :class:`ForkRequest`; the fork manager then
   continues the search in two child solvers via :meth:`Solver.split`.

The loop is an explicit state machine (:class:`SolverState`) so a fork can
be suspended in ``REGISTERING`` and resumed in its children.
"""

from __future__ import annotations

import copy
import asyncio
from enum import Enum
from functools import cached_property
from dataclasses import dataclass
from typing import (
    Awaitable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from packaging.specifiers import SpecifierSet
from packaging.version import Version

from deplock.core.incompatibility import (
    ConflictCause,
    DependencyCause,
    Incompatibility,
    IncompatibilityStore,
    NoVersionsCause,
    NotFoundCause,
    RequiresPythonCause,
    RootCause,
    UnavailableCause,
)
from deplock.core.markers import MarkerResult, classify, evaluate, marker_subset
from deplock.core.partial_solution import PartialSolution
from deplock.core.provider import MetadataProvider
from deplock.core.term import SetRelation, Term
from deplock.exceptions import (
    ConflictingSourcesError,
    InternalInvariantError,
    ProviderMalformedError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    ResolutionCancelledError,
)
from deplock.models.candidate import Candidate
from deplock.models.environment import EnvironmentSet, TargetEnvironment
from deplock.models.manifest import (
    DependencyMode,
    Manifest,
    PrereleaseMode,
    ResolutionMode,
)
from deplock.models.requirement import (
    Requirement,
    Source,
    SourceKind,
    package_key,
    split_package_key,
)
from deplock.utils.logger import get_logger
from deplock.utils.version_utils import VersionRange

logger = get_logger("solver")

__all__ = [
    "Dependency",
    "ForkFailure",
    "ForkRequest",
    "ForkSolution",
    "Solver",
    "SolverContext",
    "SolverState",
]

#: The single version of the virtual root package.
ROOT_VERSION = Version("0")

_CONFLICT = object()

T = TypeVar("T")


class SolverState(Enum):
    """States of the solver loop."""

    PROPAGATING = "propagating"
    DECIDING = "deciding"
    REGISTERING = "registering"
    FORKING = "forking"
    RESOLVING_CONFLICT = "resolving-conflict"
    DONE_SUCCESS = "done-success"
    DONE_FAILURE = "done-failure"


# ---------------------------------------------------------------------------
# Inputs and outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SolverContext:
    """Run-wide inputs shared by every fork.

    Attributes:
        manifest: Requirements, constraints, overrides and policies.
        target: The target environment description.
        provider: Metadata source.
        cancel_event: Set by the caller to abort the run.
    """

    manifest: Manifest
    target: TargetEnvironment
    provider: MetadataProvider
    cancel_event: Optional[asyncio.Event] = None

    @property
    def root(self) -> str:
        return self.manifest.name

    @cached_property
    def root_candidate(self) -> Candidate:
        return Candidate(
            name=self.root,
            version=ROOT_VERSION,
            source=Source(SourceKind.PROJECT),
            requires=self.manifest.requirements,
            extras=self.target.extras,
        )

    @cached_property
    def constraints(self) -> Dict[str, List[Requirement]]:
        return self.manifest.constraints_by_name()

    @cached_property
    def overrides(self) -> Dict[str, List[Requirement]]:
        return self.manifest.overrides_by_name()

    @cached_property
    def direct_names(self) -> FrozenSet[str]:
        return self.manifest.direct_names()

    @cached_property
    def explicit_prereleases(self) -> FrozenSet[str]:
        """Packages whose first-party requirements name a pre-release."""
        declared = (
            self.manifest.requirements
            + self.manifest.constraints
            + self.manifest.overrides
        )
        return frozenset(req.name for req in declared if req.mentions_prerelease())

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ResolutionCancelledError("Resolution was cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, giving up as soon as the cancel event is set.

        Raises:
            ResolutionCancelledError: The event was set before *awaitable*
                finished.
        """
        if self.cancel_event is None:
            return await awaitable

        task = asyncio.ensure_future(awaitable)
        if self.cancel_event.is_set():
            task.cancel()
            raise ResolutionCancelledError("Resolution was cancelled")
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if not task.done():
            task.cancel()
            raise ResolutionCancelledError("Resolution was cancelled")
        return task.result()


@dataclass(frozen=True)
class Dependency:
    """A requirement applied while registering a candidate.

    Attributes:
        requirement: The effective requirement (after overrides), with its
            declared marker.
        version_range: Allowed versions, constraints applied.
        targets: Solver identifiers the requirement depends on: the base
            package and one virtual package per requested extra.
        extra: The depender's extra that introduced the requirement.
    """

    requirement: Requirement
    version_range: VersionRange
    targets: Tuple[str, ...]
    extra: Optional[str] = None


@dataclass(frozen=True)
class ForkRequest:
    """The solver needs its environment split before it can continue.

    Attributes:
        package: Solver identifier of the candidate being registered.
        requirement: The requirement whose marker is conditional.
        subset: Environments where the requirement applies.
        complement: Environments where it does not.
    """

    package: str
    requirement: Requirement
    subset: EnvironmentSet
    complement: EnvironmentSet


@dataclass(frozen=True)
class ForkSolution:
    """A successful fork.

    Attributes:
        environment: The environments this solution is valid on.
        root: The root package identifier.
        selections: Selected candidate per solver identifier, root and
            extra packages included.
        dependencies: Applied dependencies per solver identifier.
        attempted_solutions: How many times the solver had to backtrack
            and try again, plus one.
    """

    environment: EnvironmentSet
    root: str
    selections: Mapping[str, Candidate]
    dependencies: Mapping[str, Tuple[Dependency, ...]]
    attempted_solutions: int = 1


@dataclass(frozen=True)
class ForkFailure:
    """A fork that proved its environments unsatisfiable.

    Attributes:
        environment: The environments that cannot be satisfied.
        incompatibility: The final, failing incompatibility.
        store: The store holding its derivation DAG.
    """

    environment: EnvironmentSet
    incompatibility: Incompatibility
    store: IncompatibilityStore


SolverOutcome = Union[ForkSolution, ForkFailure, ForkRequest]


@dataclass(frozen=True)
class _Pending:
    package: str
    candidate: Candidate


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------


class Solver:
    """PubGrub solver over one set of environments.

    Args:
        context: Run-wide inputs.
        environment: The environments this solver must satisfy.

    Example::

        solver = Solver(context, target.environment_set())
        outcome = await solver.run()
        if isinstance(outcome, ForkRequest):
            left, right = solver.split(outcome)
    """

    def __init__(self, context: SolverContext, environment: EnvironmentSet) -> None:
        self.context = context
        self.environment = environment
        self.root = context.root

        self._store = IncompatibilityStore(self.root)
        self._solution = PartialSolution()
        self._state = SolverState.PROPAGATING
        self._changed: List[str] = [self.root]
        self._conflict: Optional[Incompatibility] = None
        self._pending: Optional[_Pending] = None
        self._failure: Optional[Incompatibility] = None

        self._fetched: Dict[Tuple[str, Version], Candidate] = {}
        self._dependencies: Dict[Tuple[str, Version], Tuple[Dependency, ...]] = {}
        self._registered: Dict[Tuple[str, Version], Tuple[Incompatibility, ...]] = {}
        self._sources: Dict[str, Source] = {}
        self._not_found: Dict[str, str] = {}
        self._referenced: Dict[str, int] = {}
        self._tick = 0

        self._store.create_and_add(
            [Term(self.root, VersionRange.any(), positive=False)], RootCause()
        )

    @property
    def state(self) -> SolverState:
        return self._state

    @property
    def store(self) -> IncompatibilityStore:
        return self._store

    @property
    def solution(self) -> PartialSolution:
        return self._solution

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    async def run(self) -> SolverOutcome:
        """Run until success, failure or a fork request."""
        while True:
            self.context.check_cancelled()
            state = self._state

            if state is SolverState.PROPAGATING:
                self._propagate()
            elif state is SolverState.RESOLVING_CONFLICT:
                self._resolve_conflict()
            elif state is SolverState.DECIDING:
                await self._decide()
            elif state is SolverState.REGISTERING:
                request = self._register()
                if request is not None:
                    self._state = SolverState.FORKING
                    return request
            elif state is SolverState.DONE_SUCCESS:
                return self._success()
            elif state is SolverState.DONE_FAILURE:
                assert self._failure is not None
                return ForkFailure(self.environment, self._failure, self._store)
            else:
                raise InternalInvariantError(
                    f"Solver cannot continue from state {state.value}",
                    invariant="solver-state",
                )

    def split(self, request: ForkRequest) -> Tuple["Solver", "Solver"]:
        """Create the two child solvers for *request*.

        Each child inherits a snapshot of this solver's partial solution
        and incompatibility store and resumes registering the pending
        candidate against its narrower environment. When the child's
        Python range differs from this solver's, Requires-Python facts are
        dropped and the child backtracks below their first consequence.
        """
        if self._state is not SolverState.FORKING:
            raise InternalInvariantError(
                "Only a solver that requested a fork can be split",
                invariant="solver-state",
            )
        return self._child(request.subset), self._child(request.complement)

    def _child(self, environment: EnvironmentSet) -> "Solver":
        child = copy.copy(self)
        child.environment = environment
        child._solution = self._solution.snapshot()
        child._state = SolverState.REGISTERING

        # Requires-Python facts hold only for the interpreter range they were
        # checked against. Forget them (and everything learned from them) so
        # the child checks again against its own range.
        stale = self._python_facts(str(environment.python_coverage()))
        child._store = self._store.without(stale)
        if stale and child._solution.retract(stale):
            logger.debug(
                "Fork %s dropped %d Requires-Python fact(s)", environment, len(stale)
            )
            child._pending = None
            child._changed = child._store.packages()
            child._state = SolverState.PROPAGATING

        child._fetched = dict(self._fetched)
        child._dependencies = dict(self._dependencies)
        child._registered = dict(self._registered)
        child._sources = dict(self._sources)
        child._not_found = dict(self._not_found)
        child._referenced = dict(self._referenced)
        return child

    def _python_facts(self, coverage: str) -> FrozenSet[int]:
        """Ids of Requires-Python facts not checked against *coverage*.

        Includes every incompatibility derived from one of them; derived
        incompatibilities always come after their causes in the arena.
        """
        stale = set()
        for incompatibility in self._store:
            cause = incompatibility.cause
            if isinstance(cause, RequiresPythonCause):
                if cause.target != coverage:
                    stale.add(incompatibility.id)
            elif isinstance(cause, ConflictCause):
                if cause.conflict in stale or cause.other in stale:
                    stale.add(incompatibility.id)
        return frozenset(stale)

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def _propagate(self) -> None:
        changed = self._changed
        while changed:
            package = changed.pop(0)
            # Most recently added incompatibilities are the most likely to
            # produce conflicts, so try them first.
            for incompatibility in reversed(self._store.for_package(package)):
                result = self._propagate_incompatibility(incompatibility)
                if result is _CONFLICT:
                    logger.debug("conflict: %s", incompatibility)
                    self._conflict = incompatibility
                    self._changed = []
                    self._state = SolverState.RESOLVING_CONFLICT
                    return
                if result is not None and result not in changed:
                    changed.append(result)
        self._state = SolverState.DECIDING

    def _propagate_incompatibility(self, incompatibility: Incompatibility) -> object:
        """Derive the one term left unsatisfied by *incompatibility*, if any.

        Returns the changed package, :data:`_CONFLICT` when every term is
        satisfied, or ``None`` when nothing can be derived.
        """
        unsatisfied: Optional[Term] = None
        for term in incompatibility.terms:
            relation = self._solution.relation(term)
            if relation is SetRelation.DISJOINT:
                return None
            if relation is SetRelation.OVERLAPPING:
                if unsatisfied is not None:
                    return None
                unsatisfied = term

        if unsatisfied is None:
            return _CONFLICT

        logger.debug("derived: %s", unsatisfied.inverse)
        self._solution.derive(unsatisfied.inverse, incompatibility)
        return unsatisfied.package

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    def _resolve_conflict(self) -> None:
        assert self._conflict is not None
        incompatibility = self._conflict
        self._conflict = None
        logger.debug("resolving conflict: %s", incompatibility)

        new_incompatibility = False
        while not incompatibility.is_failure():
            most_recent_term: Optional[Term] = None
            most_recent_satisfier = None
            difference: Optional[Term] = None
            previous_satisfier_level = 1

            for term in incompatibility.terms:
                satisfier = self._solution.satisfier(term)
                if most_recent_satisfier is None:
                    most_recent_term, most_recent_satisfier = term, satisfier
                elif most_recent_satisfier.index < satisfier.index:
                    previous_satisfier_level = max(
                        previous_satisfier_level, most_recent_satisfier.decision_level
                    )
                    most_recent_term, most_recent_satisfier = term, satisfier
                    difference = None
                else:
                    previous_satisfier_level = max(
                        previous_satisfier_level, satisfier.decision_level
                    )

                if most_recent_term is term:
                    # The satisfier may be more general than the term; what
                    # it allows beyond the term is still to be explained.
                    difference = most_recent_satisfier.difference(most_recent_term)
                    if difference is not None:
                        previous_satisfier_level = max(
                            previous_satisfier_level,
                            self._solution.satisfier(difference.inverse).decision_level,
                        )

            assert most_recent_satisfier is not None and most_recent_term is not None
            if (
                previous_satisfier_level < most_recent_satisfier.decision_level
                or most_recent_satisfier.cause is None
            ):
                logger.debug(
                    "backjumping from level %d to %d",
                    self._solution.decision_level,
                    previous_satisfier_level,
                )
                self._solution.backtrack(previous_satisfier_level)
                if new_incompatibility:
                    self._store.add(incompatibility)
                    logger.debug("learned: %s", incompatibility)

                derived = self._propagate_incompatibility(incompatibility)
                if not isinstance(derived, str):
                    raise InternalInvariantError(
                        f"Learned incompatibility {incompatibility!r} derived nothing",
                        invariant="backjump",
                    )
                self._changed = [derived]
                self._state = SolverState.PROPAGATING
                return

            new_terms = [t for t in incompatibility.terms if t is not most_recent_term]
            new_terms.extend(
                t
                for t in most_recent_satisfier.cause.terms
                if t.package != most_recent_satisfier.package
            )
            if difference is not None:
                new_terms.append(difference.inverse)

            incompatibility = self._store.create(
                new_terms,
                ConflictCause(incompatibility.id, most_recent_satisfier.cause.id),
            )
            new_incompatibility = True
            logger.debug(
                "derived incompatibility %s from %s", incompatibility,
                most_recent_satisfier.cause,
            )

        logger.debug("version solving failed: %s", incompatibility)
        self._failure = incompatibility
        self._state = SolverState.DONE_FAILURE

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def _decide(self) -> None:
        unsatisfied = self._solution.unsatisfied()
        if not unsatisfied:
            self._state = SolverState.DONE_SUCCESS
            return

        # Let sibling forks progress even when every answer is cached.
        await asyncio.sleep(0)
        self.context.check_cancelled()

        term, versions = await self._choose_package(unsatisfied)
        package = term.package

        if package == self.root:
            self._pending = _Pending(package, self.context.root_candidate)
            self._state = SolverState.REGISTERING
            return

        if versions is None:
            self._learn(
                [Term(package, VersionRange.any())],
                NotFoundCause(self._not_found.get(package, "package not found")),
                package,
            )
            return

        allowed = self._allowed_versions(package, term, versions)
        if not allowed:
            self._learn([Term(package, term.version_range)], NoVersionsCause(), package)
            return

        version = self._preferred_version(package, allowed)
        candidate = await self._fetch_candidate(package, version)
        if candidate is None:
            return

        coverage = self.environment.python_coverage()
        if not candidate.requires_python_range.allows_all(coverage):
            self._learn(
                [Term(package, VersionRange.exact(version))],
                RequiresPythonCause(candidate.requires_python or "", str(coverage)),
                package,
            )
            return

        self._pending = _Pending(package, candidate)
        self._state = SolverState.REGISTERING

    async def _choose_package(
        self, unsatisfied: Sequence[Term]
    ) -> Tuple[Term, Optional[Tuple[Version, ...]]]:
        """Pick the undecided package with the fewest candidate versions.

        Ties go to the most recently referenced package, then to the name.
        Version lists for every undecided package are fetched concurrently.
        """
        listings = await self.context.guard(
            asyncio.gather(*(self._list_versions(term.package) for term in unsatisfied))
        )

        def rank(item: Tuple[Term, Optional[Tuple[Version, ...]]]) -> tuple:
            term, versions = item
            if versions is None:
                count = -1
            else:
                count = len(self._allowed_versions(term.package, term, versions))
            return (count, -self._referenced.get(term.package, 0), term.package)

        return min(zip(unsatisfied, listings), key=rank)

    async def _list_versions(self, package: str) -> Optional[Tuple[Version, ...]]:
        if package == self.root:
            return (ROOT_VERSION,)
        name, _ = split_package_key(package)
        try:
            return await self.context.provider.list_versions(name, self._source(name))
        except ProviderNotFoundError as exc:
            self._not_found[package] = exc.message
            return None

    async def _fetch_candidate(self, package: str, version: Version) -> Optional[Candidate]:
        """Fetch ``package==version``; learn an incompatibility on failure."""
        key = (package, version)
        if key in self._fetched:
            return self._fetched[key]

        name, _ = split_package_key(package)
        exact = [Term(package, VersionRange.exact(version))]
        try:
            candidate = await self.context.guard(
                self.context.provider.fetch_candidate(name, version, self._source(name))
            )
        except ProviderNotFoundError as exc:
            self._learn(exact, NotFoundCause(exc.message), package)
            return None
        except (ProviderUnavailableError, ProviderMalformedError) as exc:
            logger.warning("Skipping %s==%s: %s", name, version, exc)
            self._learn(exact, UnavailableCause(exc.message), package)
            return None

        self._fetched[key] = candidate
        return candidate

    def _allowed_versions(
        self, package: str, term: Term, versions: Sequence[Version]
    ) -> List[Version]:
        """Versions in *term*'s range admitted by the pre-release policy."""
        name, _ = split_package_key(package)
        in_range = [v for v in versions if v in term.version_range]
        finals = [v for v in in_range if not v.is_prerelease]

        mode = self.context.manifest.prerelease_mode
        explicit = name in self.context.explicit_prereleases
        if mode is PrereleaseMode.ALLOW:
            return in_range
        if mode is PrereleaseMode.DISALLOW:
            return finals
        if mode is PrereleaseMode.EXPLICIT:
            return in_range if explicit else finals
        if mode is PrereleaseMode.IF_NECESSARY:
            return finals or in_range
        return in_range if explicit else (finals or in_range)

    def _preferred_version(self, package: str, allowed: Sequence[Version]) -> Version:
        name, _ = split_package_key(package)
        manifest = self.context.manifest

        for preference in manifest.preferences.get(name, ()):
            if preference.environment is not None and preference.environment.is_disjoint(
                self.environment
            ):
                continue
            if preference.version in allowed:
                return preference.version

        mode = manifest.resolution_mode
        lowest = mode is ResolutionMode.LOWEST or (
            mode is ResolutionMode.LOWEST_DIRECT and name in self.context.direct_names
        )
        return allowed[-1] if lowest else allowed[0]

    def _learn(self, terms: List[Term], cause, package: str) -> None:
        incompatibility = self._store.create_and_add(terms, cause)
        logger.debug("fact: %s", incompatibility)
        self._changed = [package]
        self._state = SolverState.PROPAGATING

    def _source(self, name: str) -> Source:
        return self._sources.get(name, Source())

    def _touch(self, package: str) -> None:
        self._tick += 1
        self._referenced[package] = self._tick

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _register(self) -> Optional[ForkRequest]:
        assert self._pending is not None
        package, candidate = self._pending.package, self._pending.candidate
        key = (package, candidate.version)

        incompatibilities = self._registered.get(key)
        if incompatibilities is None:
            applied = self._applicable_dependencies(package, candidate)
            if isinstance(applied, ForkRequest):
                logger.info(
                    "Forking on %s (%s): %s | %s",
                    applied.requirement,
                    package,
                    applied.subset,
                    applied.complement,
                )
                return applied

            depender = (
                VersionRange.any()
                if package == self.root
                else VersionRange.exact(candidate.version)
            )
            created: List[Incompatibility] = []
            for dependency in applied:
                for target in dependency.targets:
                    self._touch(target)
                    terms = [Term(package, depender)]
                    # "not in no version" always holds, so an empty range
                    # forbids the depender outright.
                    if not dependency.version_range.is_empty():
                        terms.append(
                            Term(target, dependency.version_range, positive=False)
                        )
                    created.append(
                        self._store.create_and_add(
                            terms, DependencyCause(str(dependency.requirement))
                        )
                    )
            incompatibilities = tuple(created)
            self._registered[key] = incompatibilities
            self._dependencies[key] = applied
            self._fetched[key] = candidate

        # Do not decide if a dependency is already impossible; propagation
        # will rule the version out instead.
        conflict = any(
            all(
                term.package == package or self._solution.satisfies(term)
                for term in incompatibility.terms
            )
            for incompatibility in incompatibilities
        )
        if not conflict:
            logger.debug("selecting %s==%s", package, candidate.version)
            self._solution.decide(package, candidate.version)

        self._pending = None
        self._changed = [package]
        self._state = SolverState.PROPAGATING
        return None

    def _applicable_dependencies(
        self, package: str, candidate: Candidate
    ) -> Union[Tuple[Dependency, ...], ForkRequest]:
        """Evaluate the candidate's requirements over this fork's environments.

        Returns the dependencies that hold everywhere in the fork, or a
        fork request for the first requirement that holds only partly.
        """
        name, extra = split_package_key(package)
        environment = self.environment
        declared: List[Tuple[Requirement, MarkerResult]] = []
        requires: Sequence[Requirement] = candidate.requires
        if (
            package != self.root
            and self.context.manifest.dependency_mode is DependencyMode.DIRECT
        ):
            requires = ()

        if package == self.root:
            for requirement in self._override(candidate.requires):
                declared.append(
                    (requirement, evaluate(requirement.marker, environment, self.context.target.extras))
                )
        elif extra is None:
            for requirement in self._override(requires):
                declared.append((requirement, evaluate(requirement.marker, environment)))
        else:
            if candidate.extras and not candidate.provides_extra(extra):
                logger.warning("%s does not provide the extra '%s'", candidate, extra)
            pin = Requirement(
                name=name,
                specifier=SpecifierSet(f"=={candidate.version}"),
                source=candidate.source,
            )
            declared.append((pin, classify(environment, environment)))
            for requirement in self._override(requires):
                # Only requirements the extra switches on belong to it.
                gated = marker_subset(requirement.marker, environment, {extra}).difference(
                    marker_subset(requirement.marker, environment)
                )
                declared.append((requirement, classify(gated, environment)))

        applied: List[Dependency] = []
        for requirement, result in declared:
            if result.is_never:
                continue
            if result.is_conditional:
                return ForkRequest(package, requirement, result.subset, result.complement)

            self._record_source(requirement)
            targets = tuple(
                target
                for target in [requirement.name]
                + [package_key(requirement.name, e) for e in sorted(requirement.extras)]
                if target != package
            )
            if not targets:
                logger.debug("Ignoring self-dependency %s of %s", requirement, package)
                continue
            applied.append(
                Dependency(
                    requirement=requirement,
                    version_range=self._constrained(requirement),
                    targets=targets,
                    extra=extra,
                )
            )
        return tuple(applied)

    def _override(self, requirements: Sequence[Requirement]) -> List[Requirement]:
        overrides = self.context.overrides
        result: List[Requirement] = []
        for requirement in requirements:
            replacement = overrides.get(requirement.name)
            if replacement is None:
                result.append(requirement)
            else:
                logger.debug("Overriding %s with %s", requirement, replacement)
                result.extend(replacement)
        return result

    def _constrained(self, requirement: Requirement) -> VersionRange:
        version_range = requirement.version_range
        for constraint in self.context.constraints.get(requirement.name, ()):
            if not evaluate(constraint.marker, self.environment).is_never:
                version_range = version_range.intersect(constraint.version_range)
        return version_range

    def _record_source(self, requirement: Requirement) -> None:
        if not requirement.source.is_direct:
            return
        existing = self._sources.get(requirement.name)
        if existing is not None and existing != requirement.source:
            raise ConflictingSourcesError(
                f"'{requirement.name}' is required from more than one source",
                package_name=requirement.name,
                sources=sorted([str(existing), str(requirement.source)]),
            )
        self._sources[requirement.name] = requirement.source

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _success(self) -> ForkSolution:
        selections: Dict[str, Candidate] = {}
        dependencies: Dict[str, Tuple[Dependency, ...]] = {}
        for package, version in self._solution.decisions.items():
            key = (package, version)
            try:
                selections[package] = self._fetched[key]
                dependencies[package] = self._dependencies[key]
            except KeyError:
                raise InternalInvariantError(
                    f"{package}=={version} was decided without being registered",
                    invariant="decision-registered",
                ) from None

        logger.debug(
            "solved %s after %d attempt(s)",
            self.environment,
            self._solution.attempted_solutions,
        )
        return ForkSolution(
            environment=self.environment,
            root=self.root,
            selections=selections,
            dependencies=dependencies,
            attempted_solutions=self._solution.attempted_solutions,
        )
