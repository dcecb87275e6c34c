"""Resolve command implementation for deplock.

Resolves a set of requirements into one installation plan covering every
target interpreter version and platform, and prints it as a table or as
JSON.

The command wires three pieces together:

1. **Manifest**: requirements from the command line and ``-r`` files,
   plus constraints (``-c``) and overrides (``--override``).
2. **MetadataProvider**: backed by PyPI, or by an offline JSON index
   when ``--index-file`` is given.
3. **resolve**: the multi-environment solver.

Typical usage::

    # Resolve two packages for the configured targets
    $ deplock resolve "flask>=2" "requests"

    # Resolve a requirements file for Linux and Windows only
    $ deplock resolve -r requirements.txt --platform linux --platform windows

    # Offline resolution against a JSON package index
    $ deplock resolve -r requirements.txt --index-file index.json --format json

    # Only the listed packages, as they were on 1 March 2024
    $ deplock resolve --no-deps --exclude-newer 2024-03-01 "flask>=2"
"""

from __future__ import annotations

import sys
import json
import click
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from deplock.core import (
    DirectSourceBackend,
    MetadataProvider,
    PyPIBackend,
    SourceBackend,
    load_index,
    resolve as resolve_graph,
)
from deplock.context import DeplockContext, pass_context
from deplock.exceptions import DeplockError, UnsatisfiableError
from deplock.models import (
    DependencyMode,
    ExcludeNewer,
    Manifest,
    PrereleaseMode,
    Requirement,
    ResolutionGraph,
    ResolutionMode,
    TargetEnvironment,
)
from deplock.constants import KNOWN_PLATFORMS
from deplock.utils import (
    HTTPClient,
    get_logger,
    print_error,
    print_plain,
    print_success,
    print_table,
)

logger = get_logger("commands.resolve")


@click.command()
@click.argument("requirements", nargs=-1)
@click.option(
    "--requirement",
    "-r",
    "requirement_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read requirements from a file (repeatable).",
)
@click.option(
    "--constraint",
    "-c",
    "constraint_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read constraints from a file (repeatable).",
)
@click.option(
    "--override",
    "override_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read overrides from a file (repeatable).",
)
@click.option(
    "--python",
    "requires_python",
    default=None,
    help="Interpreter range to resolve for, e.g. '>=3.9,<3.13'.",
)
@click.option(
    "--platform",
    "platforms",
    multiple=True,
    type=click.Choice(sorted(KNOWN_PLATFORMS)),
    help="Target platform (repeatable).",
)
@click.option(
    "--extra",
    "extras",
    multiple=True,
    help="Project extra to activate (repeatable).",
)
@click.option(
    "--resolution",
    type=click.Choice([m.value for m in ResolutionMode]),
    default=None,
    help="Which version to prefer for each package.",
)
@click.option(
    "--prerelease",
    type=click.Choice([m.value for m in PrereleaseMode]),
    default=None,
    help="When pre-release versions may be selected.",
)
@click.option(
    "--deps/--no-deps",
    "follow_deps",
    default=None,
    help="Follow the requirements of selected packages, or only resolve the "
    "requirements given.",
)
@click.option(
    "--exclude-newer",
    default=None,
    metavar="DATE",
    callback=lambda ctx, param, value: _parse_cutoff(value),
    help="Ignore releases uploaded on or after DATE (YYYY-MM-DD or RFC 3339).",
)
@click.option(
    "--index-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Resolve offline against a JSON package index instead of PyPI.",
)
@click.option(
    "--format",
    "-f",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@pass_context
def resolve(
    ctx: DeplockContext,
    requirements: Tuple[str, ...],
    requirement_files: Tuple[Path, ...],
    constraint_files: Tuple[Path, ...],
    override_files: Tuple[Path, ...],
    requires_python: Optional[str],
    platforms: Tuple[str, ...],
    extras: Tuple[str, ...],
    resolution: Optional[str],
    prerelease: Optional[str],
    follow_deps: Optional[bool],
    exclude_newer: Optional[ExcludeNewer],
    index_file: Optional[Path],
    format: str,
) -> None:
    """Resolve requirements into a multi-environment installation plan.

    Command-line options take precedence over the ``[deplock]``
    configuration, which takes precedence over built-in defaults.

    Exits:
        0 if a resolution was found for every target environment, 1 if
        some environment has no solution or an error occurred.
    """
    config = ctx.config
    if follow_deps is None:
        dependency_mode = config.dependency_mode
    else:
        dependency_mode = (
            DependencyMode.TRANSITIVE if follow_deps else DependencyMode.DIRECT
        )
    exclude_newer = exclude_newer or config.exclude_newer
    try:
        manifest = _build_manifest(
            requirements,
            requirement_files,
            constraint_files,
            override_files,
            resolution_mode=ResolutionMode(resolution) if resolution else config.resolution_mode,
            prerelease_mode=PrereleaseMode(prerelease) if prerelease else config.prerelease_mode,
            dependency_mode=dependency_mode,
        )
        if not manifest.requirements:
            raise click.UsageError("No requirements given")

        try:
            target = TargetEnvironment.create(
                requires_python or config.requires_python,
                platforms or config.platforms,
                extras or config.extras,
            )
        except ValueError as exc:
            raise click.BadParameter(str(exc)) from exc

        graph = asyncio.run(
            _resolve_async(
                manifest, target, index_file, config.concurrent_limit, exclude_newer
            )
        )

    except UnsatisfiableError as e:
        if format == "json":
            _echo_json(
                {
                    "error": e.message,
                    "resolved_environments": e.resolved_environments,
                    "explanations": [x.to_json() for x in e.explanations],
                }
            )
        else:
            print_error(e.message)
            for explanation in e.explanations:
                print_plain("")
                print_plain(explanation.render())
        sys.exit(1)
    except DeplockError as e:
        print_error(f"{e}")
        logger.debug("Resolution failed", exc_info=True)
        sys.exit(1)

    if format == "json":
        _echo_json(graph.to_json())
    else:
        _display_table(graph)
        print_success(
            f"Resolved {len(graph.package_names())} package(s) "
            f"for {graph.environment} in {len(graph.forks)} fork(s)"
        )


# ---------------------------------------------------------------------------
# Input assembly
# ---------------------------------------------------------------------------


def _parse_cutoff(value: Optional[str]) -> Optional[ExcludeNewer]:
    if value is None:
        return None
    try:
        return ExcludeNewer.parse(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="'--exclude-newer'") from exc


def _read_requirements(paths: Sequence[Path]) -> List[str]:
    lines: List[str] = []
    for path in paths:
        logger.info("Reading %s", path)
        lines.extend(
            str(req)
            for req in Requirement.parse_many(
                path.read_text(encoding="utf-8").splitlines(), origin=str(path)
            )
        )
    return lines


def _build_manifest(
    requirements: Sequence[str],
    requirement_files: Sequence[Path],
    constraint_files: Sequence[Path],
    override_files: Sequence[Path],
    *,
    resolution_mode: ResolutionMode,
    prerelease_mode: PrereleaseMode,
    dependency_mode: DependencyMode,
) -> Manifest:
    """Collect every requirement source into one :class:`Manifest`.

    Raises:
        RequirementParseError: A requirement string is invalid.
    """
    return Manifest.from_strings(
        list(requirements) + _read_requirements(requirement_files),
        constraints=_read_requirements(constraint_files),
        overrides=_read_requirements(override_files),
        resolution_mode=resolution_mode,
        prerelease_mode=prerelease_mode,
        dependency_mode=dependency_mode,
    )


# ---------------------------------------------------------------------------
# Async orchestration
# ---------------------------------------------------------------------------


async def _resolve_async(
    manifest: Manifest,
    target: TargetEnvironment,
    index_file: Optional[Path],
    concurrent_limit: int,
    exclude_newer: Optional[ExcludeNewer] = None,
) -> ResolutionGraph:
    backends: List[SourceBackend]
    if exclude_newer is not None:
        logger.info("Ignoring releases uploaded on or after %s", exclude_newer)
    if index_file is not None:
        registry, direct = load_index(index_file, exclude_newer=exclude_newer)
        backends = [registry, direct]
        logger.info(
            "Using offline index %s (%d package(s))",
            index_file,
            len(registry.packages()),
        )
    else:
        http = HTTPClient(max_concurrency=concurrent_limit)
        backends = [
            PyPIBackend(http, owns_client=True, exclude_newer=exclude_newer),
            DirectSourceBackend(),
        ]

    async with MetadataProvider(backends, concurrent_limit=concurrent_limit) as provider:
        graph = await resolve_graph(manifest, target, provider)
        logger.info("Fetched metadata %d time(s)", provider.fetch_count)
    return graph


# ---------------------------------------------------------------------------
# Display renderers
# ---------------------------------------------------------------------------


def _display_table(graph: ResolutionGraph) -> None:
    """Render the resolution graph as a Rich table.

    Packages selected on every target environment show ``all`` in the
    Environments column; the others show the environments they apply to.
    """
    data = [
        {
            "Package": node.name,
            "Version": str(node.version),
            "Source": str(node.source) if node.source.is_direct else "",
            "Extras": ", ".join(sorted(node.extras)),
            "Environments": "all" if graph.is_unconditional(node) else str(node.environment),
        }
        for node in graph.nodes
    ]

    column_styles: Dict[str, Dict[str, Any]] = {
        "Package": {"style": "bold cyan", "no_wrap": True},
        "Version": {"justify": "center", "style": "bold green"},
        "Source": {"style": "dim"},
        "Extras": {"justify": "left"},
        "Environments": {"justify": "left"},
    }

    print_table(
        data,
        title="Resolution",
        caption=str(graph.environment),
        column_styles=column_styles,
    )

    if graph.cycle_edges:
        print_plain("Dependency cycles broken at:")
        for edge in graph.cycle_edges:
            print_plain(f"  {edge.source[0]} -> {edge.target[0]} ({edge.requirement})")


def _echo_json(payload: Dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=False))
