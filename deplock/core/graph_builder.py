"""Merge per-fork solutions into one :class:`ResolutionGraph`.

Every fork selects at most one ``(version, source)`` per package for its
environments. Merging keeps one node per distinct selection, annotated
with the union of the environments of the forks that chose it, so a
package every fork agrees on ends up as a single unconditional node.
Edges are merged the same way.

Dependency cycles are legal in package metadata but not in an installation
plan, so the builder breaks them deterministically: a depth-first walk
from the root (children in sorted order) classifies back edges, which are
moved to ``cycle_edges``.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, List, Sequence, Set, Tuple

from deplock.core.solver import ForkSolution
from deplock.exceptions import InternalInvariantError
from deplock.models.candidate import Candidate
from deplock.models.environment import EnvironmentSet
from deplock.models.graph import Edge, Node, NodeKey, ResolutionGraph
from deplock.models.requirement import split_package_key
from deplock.utils.logger import get_logger

logger = get_logger("graph_builder")

__all__ = ["build_graph"]

_EdgeId = Tuple[NodeKey, NodeKey, str, str, str]


def _node_key(candidate: Candidate) -> NodeKey:
    return (candidate.name, str(candidate.version), str(candidate.source))


def build_graph(
    solutions: Sequence[ForkSolution], environment: EnvironmentSet
) -> ResolutionGraph:
    """Build the resolution graph from successful forks.

    Args:
        solutions: One solution per fork; their environments must
            partition *environment*.
        environment: The full target environment set.

    Raises:
        InternalInvariantError: Two nodes of the same package would apply
            to overlapping environments.
    """
    if not solutions:
        raise InternalInvariantError("No fork solutions to merge", invariant="graph-input")

    root_candidate = solutions[0].selections[solutions[0].root]
    root = Node(
        name=root_candidate.name,
        version=root_candidate.version,
        source=root_candidate.source,
        environment=environment,
    )

    candidates: Dict[NodeKey, Candidate] = {}
    node_envs: Dict[NodeKey, EnvironmentSet] = {}
    node_extras: Dict[NodeKey, Set[str]] = {}
    edge_envs: Dict[_EdgeId, EnvironmentSet] = {}
    edge_data: Dict[_EdgeId, Tuple[str, str, str]] = {}

    for solution in solutions:
        fork_env = solution.environment
        selected: Dict[str, NodeKey] = {}

        for package, candidate in solution.selections.items():
            if package == solution.root:
                continue
            name, extra = split_package_key(package)
            key = _node_key(candidate)
            selected[name] = key
            candidates[key] = candidate
            node_envs[key] = node_envs.get(key, EnvironmentSet.empty()).union(fork_env)
            extras = node_extras.setdefault(key, set())
            if extra:
                extras.add(extra)

        for package, dependencies in solution.dependencies.items():
            name, extra = split_package_key(package)
            source = root.key if package == solution.root else selected[name]
            for dependency in dependencies:
                requirement = dependency.requirement
                # The pin from an extra to its own base package is not an edge.
                if extra is not None and requirement.name == name:
                    continue
                target = selected.get(requirement.name)
                if target is None:
                    raise InternalInvariantError(
                        f"{requirement} of {package} has no selected package",
                        invariant="edge-endpoints",
                    )
                text = requirement.to_string(include_marker=False)
                edge_id = (source, target, text, requirement.marker or "", extra or "")
                edge_envs[edge_id] = edge_envs.get(
                    edge_id, EnvironmentSet.empty()
                ).union(fork_env)
                edge_data[edge_id] = (text, requirement.marker or "", extra or "")

    nodes = [
        Node(
            name=candidate.name,
            version=candidate.version,
            source=candidate.source,
            environment=node_envs[key],
            extras=frozenset(node_extras[key]),
            artifact=candidate.artifact,
            hashes=candidate.hashes,
        )
        for key, candidate in candidates.items()
    ]
    nodes.sort(key=Node.sort_key)
    _check_disjoint(nodes)

    edges = [
        Edge(
            source=edge_id[0],
            target=edge_id[1],
            requirement=text,
            environment=edge_envs[edge_id],
            marker=marker or None,
            extra=extra or None,
        )
        for edge_id, (text, marker, extra) in edge_data.items()
    ]
    edges.sort(key=Edge.sort_key)

    back_edges = _back_edges(root.key, [node.key for node in nodes], edges)
    acyclic = tuple(e for e in edges if (e.source, e.target) not in back_edges)
    cycles = tuple(e for e in edges if (e.source, e.target) in back_edges)
    if cycles:
        logger.info(
            "Broke %d dependency cycle edge(s): %s",
            len(cycles),
            ", ".join(f"{e.source[0]} -> {e.target[0]}" for e in cycles),
        )

    return ResolutionGraph(
        root=root,
        environment=environment,
        nodes=tuple(nodes),
        edges=acyclic,
        cycle_edges=cycles,
        forks=tuple(sorted((s.environment for s in solutions), key=EnvironmentSet.sort_key)),
    )


def _check_disjoint(nodes: Sequence[Node]) -> None:
    by_name: Dict[str, List[Node]] = {}
    for node in nodes:
        for other in by_name.get(node.name, ()):
            if not node.environment.is_disjoint(other.environment):
                raise InternalInvariantError(
                    f"{node} and {other} are both selected on "
                    f"{node.environment.intersect(other.environment)}",
                    invariant="node-disjointness",
                )
        by_name.setdefault(node.name, []).append(node)


def _back_edges(
    root: NodeKey, keys: Sequence[NodeKey], edges: Sequence[Edge]
) -> FrozenSet[Tuple[NodeKey, NodeKey]]:
    """Return the ``(source, target)`` pairs closing a cycle in a sorted DFS."""
    children: Dict[NodeKey, List[NodeKey]] = {}
    for edge in edges:
        targets = children.setdefault(edge.source, [])
        if edge.target not in targets:
            targets.append(edge.target)
    for targets in children.values():
        targets.sort()

    visited: Set[NodeKey] = set()
    on_stack: Set[NodeKey] = set()
    back: Set[Tuple[NodeKey, NodeKey]] = set()

    for start in [root] + sorted(keys):
        if start in visited:
            continue
        # Iterative DFS: (node, index of next child to visit).
        stack: List[Tuple[NodeKey, int]] = [(start, 0)]
        visited.add(start)
        on_stack.add(start)
        while stack:
            node, index = stack[-1]
            successors = children.get(node, [])
            if index == len(successors):
                stack.pop()
                on_stack.discard(node)
                continue
            stack[-1] = (node, index + 1)
            child = successors[index]
            if child in on_stack:
                back.add((node, child))
            elif child not in visited:
                visited.add(child)
                on_stack.add(child)
                stack.append((child, 0))
    return frozenset(back)
