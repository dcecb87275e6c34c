"""
Resolution graph data model for deplock.

The :class:`ResolutionGraph` is the engine's successful output and the
input of downstream installers and lock-file writers. It guarantees:

- one node per distinct ``(package, version, source)`` selection, each
  annotated with the environments where it is selected;
- edges that correspond to real declared requirements, annotated with the
  environments where they hold;
- no two nodes of the same package overlap in environment;
- ``edges`` is acyclic (dependency cycles are reported separately in
  ``cycle_edges``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from packaging.version import Version

from deplock.models.environment import EnvironmentSet
from deplock.models.manifest import Preference
from deplock.models.requirement import Source

__all__ = ["Edge", "Node", "NodeKey", "ResolutionGraph"]

#: ``(name, version, source)`` identity of a node.
NodeKey = Tuple[str, str, str]


@dataclass(frozen=True)
class Node:
    """One selected package release.

    Attributes:
        name: Normalized package name.
        version: Selected version.
        source: Artifact origin.
        environment: Environments where this selection applies.
        extras: Extras activated on this package anywhere in the graph.
        artifact: Artifact file name or URL, if known.
        hashes: Artifact hashes.
    """

    name: str
    version: Version
    source: Source
    environment: EnvironmentSet
    extras: FrozenSet[str] = frozenset()
    artifact: Optional[str] = None
    hashes: Tuple[str, ...] = ()

    @property
    def key(self) -> NodeKey:
        return (self.name, str(self.version), str(self.source))

    def sort_key(self) -> tuple:
        return (self.name, self.version, self.source.sort_key())

    def __str__(self) -> str:
        return f"{self.name}=={self.version}"


@dataclass(frozen=True)
class Edge:
    """A requirement edge between two nodes.

    Attributes:
        source: Key of the depending node.
        target: Key of the node satisfying the requirement.
        requirement: The declared requirement text (without marker).
        environment: Environments where the edge holds.
        marker: The declared marker text, if any.
        extra: Extra of the source package that introduced the edge.
    """

    source: NodeKey
    target: NodeKey
    requirement: str
    environment: EnvironmentSet
    marker: Optional[str] = None
    extra: Optional[str] = None

    def sort_key(self) -> tuple:
        return (self.source, self.target, self.requirement, self.extra or "")


@dataclass(frozen=True)
class ResolutionGraph:
    """The merged, environment-partitioned installation plan.

    Attributes:
        root: The virtual project node.
        environment: The full target environment set.
        nodes: Package nodes, sorted by name, version and source.
        edges: Acyclic requirement edges, sorted.
        cycle_edges: Requirement edges removed to break dependency cycles.
        forks: The final fork partition of ``environment``.
    """

    root: Node
    environment: EnvironmentSet
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()
    cycle_edges: Tuple[Edge, ...] = ()
    forks: Tuple[EnvironmentSet, ...] = field(default=())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> List[Node]:
        """Return every node selected for *name*."""
        return [node for node in self.nodes if node.name == name]

    def versions(self, name: str) -> List[str]:
        return [str(node.version) for node in self.get(name)]

    def node(self, key: NodeKey) -> Optional[Node]:
        if key == self.root.key:
            return self.root
        for candidate in self.nodes:
            if candidate.key == key:
                return candidate
        return None

    def is_unconditional(self, node: Node) -> bool:
        return node.environment == self.environment

    def dependencies(self, node: Node) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node.key]

    def package_names(self) -> List[str]:
        return sorted({node.name for node in self.nodes})

    def topological_order(self) -> List[Node]:
        """Return nodes with every dependency before its dependents."""
        by_key = {node.key: node for node in self.nodes}
        remaining = {
            key: {
                edge.target
                for edge in self.edges
                if edge.source == key and edge.target in by_key
            }
            for key in by_key
        }
        ordered: List[Node] = []
        while remaining:
            ready = sorted(
                (key for key, deps in remaining.items() if not deps),
                key=lambda k: by_key[k].sort_key(),
            )
            if not ready:
                break
            for key in ready:
                ordered.append(by_key[key])
                del remaining[key]
            for deps in remaining.values():
                deps.difference_update(ready)
        return ordered

    def to_preferences(self) -> Dict[str, Tuple[Preference, ...]]:
        """Return this graph's selections as preferences for a new run."""
        result: Dict[str, List[Preference]] = {}
        for node in self.nodes:
            environment = None if self.is_unconditional(node) else node.environment
            result.setdefault(node.name, []).append(
                Preference(node.version, environment)
            )
        return {name: tuple(prefs) for name, prefs in result.items()}

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self) -> Dict[str, Any]:
        """Return a deterministic JSON-serializable representation."""

        def env(value: EnvironmentSet) -> Optional[str]:
            return None if value == self.environment else value.to_marker()

        return {
            "root": self.root.name,
            "environment": str(self.environment),
            "forks": [str(fork) for fork in self.forks],
            "packages": [
                {
                    "name": node.name,
                    "version": str(node.version),
                    "source": str(node.source),
                    "extras": sorted(node.extras),
                    "marker": env(node.environment),
                    "artifact": node.artifact,
                    "hashes": list(node.hashes),
                }
                for node in self.nodes
            ],
            "dependencies": [
                {
                    "from": list(edge.source),
                    "to": list(edge.target),
                    "requirement": edge.requirement,
                    "marker": env(edge.environment),
                    "extra": edge.extra,
                }
                for edge in self.edges
            ],
            "cycles": [
                {"from": list(edge.source), "to": list(edge.target)}
                for edge in self.cycle_edges
            ],
        }

    def summary(self) -> str:
        """Generate a human-readable summary of the plan."""
        lines = [
            "Resolution Summary:",
            "=" * 50,
            f"Packages: {len(self.package_names())}",
            f"Forks: {len(self.forks)}",
            "",
        ]
        for node in self.nodes:
            if self.is_unconditional(node):
                lines.append(f"  • {node}")
            else:
                lines.append(f"  • {node}  [{node.environment}]")
        return "\n".join(lines)
