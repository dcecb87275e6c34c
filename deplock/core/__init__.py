"""
Core functionality exports for deplock.

This module provides convenient access to the resolution engine and its
metadata sources. Importing from here keeps user-facing imports clean and
stable:

    from deplock.core import InMemoryRegistry, MetadataProvider, resolve
"""

from __future__ import annotations

from deplock.core.term import SetRelation, Term
from deplock.core.markers import MarkerOutcome, MarkerResult, classify, evaluate
from deplock.core.incompatibility import Incompatibility, IncompatibilityStore
from deplock.core.partial_solution import Assignment, PartialSolution
from deplock.core.provider import MetadataProvider, SourceBackend
from deplock.core.registry import DirectSourceBackend, InMemoryRegistry, load_index
from deplock.core.data_store import PyPIBackend
from deplock.core.solver import Solver, SolverContext, SolverState
from deplock.core.forks import ForkManager
from deplock.core.graph_builder import build_graph
from deplock.core.explanation import Explanation, explain
from deplock.core.resolver import resolve

__all__ = [
    "Assignment",
    "DirectSourceBackend",
    "Explanation",
    "ForkManager",
    "InMemoryRegistry",
    "Incompatibility",
    "IncompatibilityStore",
    "MarkerOutcome",
    "MarkerResult",
    "MetadataProvider",
    "PartialSolution",
    "PyPIBackend",
    "SetRelation",
    "Solver",
    "SolverContext",
    "SolverState",
    "SourceBackend",
    "Term",
    "build_graph",
    "classify",
    "evaluate",
    "explain",
    "load_index",
    "resolve",
]
