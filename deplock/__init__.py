"""
deplock: deterministic, multi-environment dependency resolution.

deplock turns a project's requirements into a single installation plan
that is valid on every interpreter version and platform the project
targets. The engine is a conflict-driven version solver that learns
incompatibilities, backjumps over failed decisions, and forks the search
when environment markers make the dependency graph diverge.

Typical usage::

    from deplock import Manifest, TargetEnvironment, resolve
    from deplock.core import InMemoryRegistry, MetadataProvider

    graph = await resolve(manifest, environment, provider)
"""

from __future__ import annotations

from deplock.__version__ import __version__

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "deplock Contributors"
__license__ = "Apache-2.0"
__description__ = "Deterministic multi-environment dependency resolution."

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

from deplock.core.resolver import resolve
from deplock.models import (
    Candidate,
    Manifest,
    Requirement,
    ResolutionGraph,
    TargetEnvironment,
)

__all__ = [
    "__version__",
    "resolve",
    "Candidate",
    "Manifest",
    "Requirement",
    "ResolutionGraph",
    "TargetEnvironment",
]
