"""Fork management: solving disjoint parts of the environment space.

A resolution starts as a single fork covering every target environment.
When the solver meets a requirement whose marker holds on only part of its
environments, it asks for a split; :class:`ForkManager` replaces the fork
with two children (the part where the requirement applies and the rest),
each continuing from a snapshot of the parent's state. Children run
concurrently as asyncio tasks.

The manager guarantees that the forks it returns partition the target
space: pairwise disjoint and together covering all of it.
"""

from __future__ import annotations

import asyncio
from typing import List, Sequence, Union

from deplock.core.solver import (
    ForkFailure,
    ForkRequest,
    ForkSolution,
    Solver,
    SolverContext,
)
from deplock.exceptions import InternalInvariantError
from deplock.models.environment import EnvironmentSet
from deplock.utils.logger import get_logger

logger = get_logger("forks")

__all__ = ["ForkManager", "ForkResult", "check_partition"]

ForkResult = Union[ForkSolution, ForkFailure]


class ForkManager:
    """Drives solvers and splits them on request.

    Args:
        context: Run-wide solver inputs.

    Example::

        manager = ForkManager(context)
        results = await manager.solve(target.environment_set())
        failures = [r for r in results if isinstance(r, ForkFailure)]
    """

    def __init__(self, context: SolverContext) -> None:
        self.context = context
        self.fork_count = 0

    async def solve(self, environment: EnvironmentSet) -> List[ForkResult]:
        """Solve *environment*, returning one result per final fork.

        Results are ordered by environment so output does not depend on
        which fork finished first.

        Raises:
            InternalInvariantError: The final forks do not partition
                *environment*.
        """
        if environment.is_empty():
            raise InternalInvariantError(
                "Cannot resolve for an empty environment set",
                invariant="non-empty-target",
            )

        results = await self._run(Solver(self.context, environment))
        results.sort(key=lambda result: result.environment.sort_key())
        check_partition(environment, [result.environment for result in results])

        logger.info(
            "Resolved %d fork(s): %d succeeded, %d failed",
            len(results),
            sum(isinstance(r, ForkSolution) for r in results),
            sum(isinstance(r, ForkFailure) for r in results),
        )
        return results

    async def _run(self, solver: Solver) -> List[ForkResult]:
        outcome = await solver.run()
        if not isinstance(outcome, ForkRequest):
            return [outcome]

        self.fork_count += 1
        logger.info(
            "Splitting %s on '%s' into %s and %s",
            solver.environment,
            outcome.requirement,
            outcome.subset,
            outcome.complement,
        )
        children = [asyncio.ensure_future(self._run(child)) for child in solver.split(outcome)]
        try:
            parts = await asyncio.gather(*children)
        except BaseException:
            for child in children:
                child.cancel()
            raise
        return [result for part in parts for result in part]


def check_partition(
    environment: EnvironmentSet, parts: Sequence[EnvironmentSet]
) -> None:
    """Verify that *parts* are disjoint and cover *environment*.

    Raises:
        InternalInvariantError: Two parts overlap or some environment is
            left uncovered.
    """
    covered = EnvironmentSet.empty()
    for part in parts:
        if not part.is_disjoint(covered):
            raise InternalInvariantError(
                f"Fork {part} overlaps another fork",
                invariant="fork-partition",
            )
        covered = covered.union(part)

    if covered != environment:
        missing = environment.difference(covered)
        raise InternalInvariantError(
            f"Forks do not cover {missing}",
            invariant="fork-partition",
        )
