"""
Unified data model exports for deplock.

Example:
    >>> from deplock.models import Requirement, Manifest, TargetEnvironment
"""

from __future__ import annotations

from deplock.models.requirement import (
    Requirement,
    Source,
    SourceKind,
    normalize_name,
    package_key,
    split_package_key,
)
from deplock.models.candidate import Candidate
from deplock.models.environment import EnvironmentSet, Platform, TargetEnvironment
from deplock.models.manifest import (
    DependencyMode,
    ExcludeNewer,
    Manifest,
    Preference,
    PrereleaseMode,
    ResolutionMode,
)
from deplock.models.graph import Edge, Node, ResolutionGraph

__all__ = [
    "Candidate",
    "DependencyMode",
    "Edge",
    "EnvironmentSet",
    "ExcludeNewer",
    "Manifest",
    "Node",
    "Platform",
    "Preference",
    "PrereleaseMode",
    "Requirement",
    "ResolutionGraph",
    "ResolutionMode",
    "Source",
    "SourceKind",
    "TargetEnvironment",
    "normalize_name",
    "package_key",
    "split_package_key",
]
