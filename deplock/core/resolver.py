"""Public entry point of the resolution engine.

Typical usage::

    registry = InMemoryRegistry()
    registry.add("a", "1.0", requires=["b>=1"])
    registry.add("b", "1.0")

    manifest = Manifest.from_strings(["a"])
    target = TargetEnvironment.create(">=3.9", ["linux"])
    async with MetadataProvider([registry]) as provider:
        graph = await resolve(manifest, target, provider)
    print(graph.versions("b"))   # ['1.0']
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from deplock.core.explanation import Explanation, explain
from deplock.core.forks import ForkManager
from deplock.core.graph_builder import build_graph
from deplock.core.provider import MetadataProvider
from deplock.core.solver import ForkFailure, ForkSolution, SolverContext
from deplock.exceptions import RequirementParseError, UnsatisfiableError
from deplock.models.environment import TargetEnvironment
from deplock.models.graph import ResolutionGraph
from deplock.models.manifest import Manifest
from deplock.utils.logger import get_logger

logger = get_logger("resolver")

__all__ = ["resolve"]


async def resolve(
    manifest: Manifest,
    environment: TargetEnvironment,
    provider: MetadataProvider,
    *,
    cancel_event: Optional[asyncio.Event] = None,
) -> ResolutionGraph:
    """Resolve *manifest* for every environment in *environment*.

    Args:
        manifest: Root requirements, constraints, overrides, preferences
            and version-selection policies.
        environment: The interpreter range, platforms and extras to
            resolve for.
        provider: Metadata source. Its cache outlives the call, so a
            provider can be shared by successive resolutions.
        cancel_event: Optional event; once set, the run stops at its next
            suspension point.

    Returns:
        The merged, environment-partitioned resolution graph.

    Raises:
        UnsatisfiableError: At least one part of the environment space has
            no solution. Carries one explanation per failed fork.
        ResolutionCancelledError: *cancel_event* was set.
        ProviderUnavailableError: A package's versions could not be listed.
        ConflictingSourcesError: A package is pinned to two direct sources.
        InternalInvariantError: An engine invariant was violated.
    """
    for requirement in manifest.requirements:
        if requirement.name == manifest.name:
            raise RequirementParseError(
                "The project cannot depend on itself",
                requirement=str(requirement),
                source=requirement.origin,
            )

    env_set = environment.environment_set()
    logger.info(
        "Resolving %d requirement(s) for %s",
        len(manifest.requirements),
        env_set,
    )

    context = SolverContext(
        manifest=manifest,
        target=environment,
        provider=provider,
        cancel_event=cancel_event,
    )
    results = await ForkManager(context).solve(env_set)

    solutions: List[ForkSolution] = [r for r in results if isinstance(r, ForkSolution)]
    failures: List[ForkFailure] = [r for r in results if isinstance(r, ForkFailure)]

    if failures:
        explanations: List[Explanation] = [
            explain(failure.incompatibility, failure.store, failure.environment)
            for failure in failures
        ]
        if len(failures) == 1 and not solutions:
            message = "No solution found"
        else:
            message = f"No solution found for {len(failures)} of {len(results)} environment group(s)"
        raise UnsatisfiableError(
            message,
            explanations=explanations,
            resolved_environments=[str(s.environment) for s in solutions],
        )

    graph = build_graph(solutions, env_set)
    logger.info(
        "Resolved %d package(s) across %d fork(s)",
        len(graph.package_names()),
        len(graph.forks),
    )
    return graph
