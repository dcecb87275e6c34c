"""Unit tests for deplock.core.solver and the resolve entry point.

Each test describes a small package universe with an in-memory registry
and resolves a manifest against it end to end.

Test Coverage:
- Dependency pins, direct contradictions and backtracking
- Marker forks and per-fork results
- Idempotence with preferences taken from a previous graph
- Resolution modes, pre-release policies, constraints and overrides
- Extras, Requires-Python, direct sources
- Provider failures, cancellation and determinism
"""

from __future__ import annotations

import asyncio
import json
import random
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pytest
from packaging.requirements import Requirement
from packaging.version import Version

from deplock.core import DirectSourceBackend, InMemoryRegistry, MetadataProvider, resolve
from deplock.exceptions import (
    ConflictingSourcesError,
    ProviderUnavailableError,
    RequirementParseError,
    ResolutionCancelledError,
    UnsatisfiableError,
)
from deplock.models import (
    DependencyMode,
    Manifest,
    PrereleaseMode,
    ResolutionGraph,
    ResolutionMode,
    SourceKind,
    TargetEnvironment,
)
from deplock.utils.version_utils import VersionRange


# ============================================================================
# Helpers
# ============================================================================


async def _resolve(
    requirements: Sequence[str],
    packages: Dict[str, Dict[str, Any]],
    *,
    python: str = ">=3.9,<3.13",
    platforms: Iterable[str] = ("linux",),
    extras: Iterable[str] = (),
    registry: Optional[InMemoryRegistry] = None,
    direct: Optional[DirectSourceBackend] = None,
    cancel_event: Optional[asyncio.Event] = None,
    manifest: Optional[Manifest] = None,
    **manifest_kwargs: Any,
) -> ResolutionGraph:
    registry = registry or InMemoryRegistry.from_json({"packages": packages})
    backends = [registry] + ([direct] if direct is not None else [])
    manifest = manifest or Manifest.from_strings(requirements, **manifest_kwargs)
    target = TargetEnvironment.create(python, platforms, extras)
    async with MetadataProvider(backends) as provider:
        return await resolve(manifest, target, provider, cancel_event=cancel_event)


def _selected(graph: ResolutionGraph) -> Dict[str, Sequence[str]]:
    return {name: graph.versions(name) for name in graph.package_names()}


async def _outcome(
    requirements: Sequence[str], packages: Dict[str, Dict[str, Any]]
) -> Optional[Dict[str, Sequence[str]]]:
    """Selections on success, ``None`` when the requirements are unsatisfiable."""
    try:
        return _selected(await _resolve(requirements, packages))
    except UnsatisfiableError:
        return None


class _SlowRegistry(InMemoryRegistry):
    """Registry whose version listings take seconds to answer."""

    async def list_versions(self, name, source):
        await asyncio.sleep(3)
        return await super().list_versions(name, source)


class _ShuffledRegistry(InMemoryRegistry):
    """Registry that answers in random order and after random delays."""

    def __init__(self, seed: int) -> None:
        super().__init__()
        self._random = random.Random(seed)

    async def list_versions(self, name, source):
        versions = await super().list_versions(name, source)
        self._random.shuffle(versions)
        for _ in range(self._random.randint(0, 3)):
            await asyncio.sleep(0)
        return versions

    async def fetch_candidate(self, name, version, source):
        for _ in range(self._random.randint(0, 3)):
            await asyncio.sleep(0)
        return await super().fetch_candidate(name, version, source)

    @classmethod
    def shuffled(
        cls, packages: Dict[str, Dict[str, Any]], seed: int
    ) -> "_ShuffledRegistry":
        registry = cls(seed)
        releases = [
            (name, version, meta)
            for name, versions in packages.items()
            for version, meta in versions.items()
        ]
        registry._random.shuffle(releases)
        for name, version, meta in releases:
            registry.add(name, version, **meta)
        return registry


def _random_universe(rng: random.Random) -> Dict[str, Dict[str, Any]]:
    """A small acyclic universe; specifiers may name versions that do not exist."""
    names = ["p0", "p1", "p2", "p3", "p4"]
    specs = ["", ">=2.0", "<2.0", "==1.0", "!=2.0", ">=3.0"]
    packages: Dict[str, Dict[str, Any]] = {}
    for index, name in enumerate(names):
        releases = {}
        for major in range(1, rng.randint(1, 3) + 1):
            later = names[index + 1:]
            requires = [
                dependency + rng.choice(specs)
                for dependency in rng.sample(later, min(len(later), rng.randint(0, 2)))
            ]
            releases[f"{major}.0"] = {"requires": requires}
        packages[name] = releases
    return packages


# ============================================================================
# Test: reference scenarios
# ============================================================================


class TestScenarios:
    """End-to-end behaviour on the canonical small universes."""

    @pytest.mark.asyncio
    async def test_dependency_pin_narrows_direct_range(self) -> None:
        """A transitive pin selects a version inside the direct range."""
        graph = await _resolve(
            ["a>=1,<2", "b==1.0"],
            {
                "a": {"1.0": {}, "1.5": {}, "1.9": {}},
                "b": {"1.0": {"requires": ["a==1.5"]}},
            },
        )

        assert _selected(graph) == {"a": ["1.5"], "b": ["1.0"]}
        assert len(graph.forks) == 1

    @pytest.mark.asyncio
    async def test_direct_contradiction_is_unsatisfiable(self) -> None:
        """Two incompatible root pins fail with an explanation citing both."""
        with pytest.raises(UnsatisfiableError) as exc_info:
            await _resolve(
                ["a==1.0", "a==2.0"],
                {"a": {"1.0": {}, "2.0": {}}},
            )

        error = exc_info.value
        assert len(error.explanations) == 1
        report = error.render()
        assert "root depends on both" in report
        assert "a==1.0" in report
        assert "a==2.0" in report
        assert error.explanations[0].lines[-1].endswith("version solving failed.")

    @pytest.mark.asyncio
    async def test_backtracks_to_older_version(self) -> None:
        """A newest version with an impossible dependency is abandoned."""
        graph = await _resolve(
            ["c"],
            {
                "c": {
                    "1.0": {"requires": ["d>=1"]},
                    "2.0": {"requires": ["d>=2"]},
                },
                "d": {"1.0": {}},
            },
        )

        assert _selected(graph) == {"c": ["1.0"], "d": ["1.0"]}

    @pytest.mark.asyncio
    async def test_marker_forks_environment(self) -> None:
        """A python-gated requirement splits the run into two forks."""
        graph = await _resolve(
            ['e; python_version >= "3.11"'],
            {"e": {"1.0": {}}},
            python=">=3.9,<3.13",
        )

        assert len(graph.forks) == 2
        (node,) = graph.get("e")
        assert not graph.is_unconditional(node)
        assert node.environment.python_coverage() == VersionRange.from_specifier(
            ">=3.11,<3.13"
        )
        coverages = {str(fork.python_coverage()) for fork in graph.forks}
        assert coverages == {">=3.9,<3.11", ">=3.11,<3.13"}

    @pytest.mark.asyncio
    async def test_preferences_from_previous_graph_are_idempotent(self) -> None:
        """Re-resolving with the previous graph as preferences changes nothing."""
        packages = {
            "a": {"1.0": {"requires": ["b"]}, "2.0": {"requires": ["b<2"]}},
            "b": {"1.0": {}, "1.5": {}, "2.0": {}},
            "e": {"1.0": {}, "1.1": {}},
        }
        requirements = ["a", 'e; python_version >= "3.11"']

        first = await _resolve(requirements, packages)
        manifest = Manifest.from_strings(requirements).with_preferences(
            first.to_preferences()
        )
        second = await _resolve(requirements, packages, manifest=manifest)

        assert second.to_json() == first.to_json()


# ============================================================================
# Test: version selection policies
# ============================================================================


class TestResolutionModes:
    """Tests for highest, lowest and lowest-direct ordering."""

    PACKAGES = {
        "a": {"1.0": {"requires": ["b>=1"]}, "2.0": {"requires": ["b>=1"]}},
        "b": {"1.0": {}, "2.0": {}},
    }

    @pytest.mark.asyncio
    async def test_highest_is_default(self) -> None:
        graph = await _resolve(["a"], self.PACKAGES)
        assert _selected(graph) == {"a": ["2.0"], "b": ["2.0"]}

    @pytest.mark.asyncio
    async def test_lowest(self) -> None:
        graph = await _resolve(
            ["a"], self.PACKAGES, resolution_mode=ResolutionMode.LOWEST
        )
        assert _selected(graph) == {"a": ["1.0"], "b": ["1.0"]}

    @pytest.mark.asyncio
    async def test_lowest_direct_only_affects_direct_requirements(self) -> None:
        graph = await _resolve(
            ["a"], self.PACKAGES, resolution_mode=ResolutionMode.LOWEST_DIRECT
        )
        assert _selected(graph) == {"a": ["1.0"], "b": ["2.0"]}

    @pytest.mark.asyncio
    async def test_preference_wins_over_mode(self) -> None:
        first = await _resolve(
            ["a"], self.PACKAGES, resolution_mode=ResolutionMode.LOWEST
        )
        manifest = Manifest.from_strings(["a"]).with_preferences(first.to_preferences())

        graph = await _resolve(["a"], self.PACKAGES, manifest=manifest)

        assert _selected(graph) == {"a": ["1.0"], "b": ["1.0"]}

    @pytest.mark.asyncio
    async def test_preference_outside_range_is_ignored(self) -> None:
        first = await _resolve(["a"], self.PACKAGES)
        manifest = Manifest.from_strings(["a<2"]).with_preferences(first.to_preferences())

        graph = await _resolve(["a<2"], self.PACKAGES, manifest=manifest)

        assert graph.versions("a") == ["1.0"]


class TestDependencyMode:
    """Tests for resolving direct requirements only."""

    PACKAGES = {
        "a": {"1.0": {"requires": ["b>=2"]}, "2.0": {"requires": ["b>=2", "c"]}},
        "b": {"1.0": {}, "2.0": {"requires": ["c<1"]}},
        "c": {"1.0": {}},
    }

    @pytest.mark.asyncio
    async def test_transitive_is_default(self) -> None:
        with pytest.raises(UnsatisfiableError):
            await _resolve(["a"], self.PACKAGES)

    @pytest.mark.asyncio
    async def test_direct_skips_dependencies_of_dependencies(self) -> None:
        graph = await _resolve(
            ["a"], self.PACKAGES, dependency_mode=DependencyMode.DIRECT
        )

        assert _selected(graph) == {"a": ["2.0"]}
        assert [edge.target[0] for edge in graph.edges] == ["a"]

    @pytest.mark.asyncio
    async def test_direct_still_honors_project_requirements(self) -> None:
        graph = await _resolve(
            ["a", "b<2"], self.PACKAGES, dependency_mode=DependencyMode.DIRECT
        )

        assert _selected(graph) == {"a": ["2.0"], "b": ["1.0"]}

    @pytest.mark.asyncio
    async def test_direct_extra_keeps_its_base_package_only(self) -> None:
        graph = await _resolve(
            ["a[fast]"],
            TestExtras.PACKAGES,
            dependency_mode=DependencyMode.DIRECT,
        )

        assert _selected(graph) == {"a": ["1.0"]}


class TestPrereleases:
    """Tests for the pre-release admission policies."""

    @pytest.mark.asyncio
    async def test_final_release_preferred_by_default(self) -> None:
        graph = await _resolve(["a"], {"a": {"1.0": {}, "2.0b1": {}}})
        assert graph.versions("a") == ["1.0"]

    @pytest.mark.asyncio
    async def test_explicit_prerelease_specifier_admits_prereleases(self) -> None:
        graph = await _resolve(["a>=2.0b1"], {"a": {"1.0": {}, "2.0b1": {}}})
        assert graph.versions("a") == ["2.0b1"]

    @pytest.mark.asyncio
    async def test_prerelease_used_when_necessary(self) -> None:
        graph = await _resolve(
            ["a"],
            {"a": {"2.0b1": {}}},
            prerelease_mode=PrereleaseMode.IF_NECESSARY,
        )
        assert graph.versions("a") == ["2.0b1"]

    @pytest.mark.asyncio
    async def test_disallow_rejects_prerelease_only_package(self) -> None:
        with pytest.raises(UnsatisfiableError):
            await _resolve(
                ["a"],
                {"a": {"2.0b1": {}}},
                prerelease_mode=PrereleaseMode.DISALLOW,
            )

    @pytest.mark.asyncio
    async def test_allow_picks_newest_prerelease(self) -> None:
        graph = await _resolve(
            ["a"],
            {"a": {"1.0": {}, "2.0b1": {}}},
            prerelease_mode=PrereleaseMode.ALLOW,
        )
        assert graph.versions("a") == ["2.0b1"]


# ============================================================================
# Test: manifest inputs
# ============================================================================


class TestConstraintsAndOverrides:
    """Tests for constraints and overrides."""

    PACKAGES = {
        "a": {"1.0": {"requires": ["b>=2"]}},
        "b": {"1.0": {}, "2.0": {}, "3.0": {}},
        "c": {"1.0": {}},
    }

    @pytest.mark.asyncio
    async def test_constraint_narrows_range(self) -> None:
        graph = await _resolve(["a"], self.PACKAGES, constraints=["b<3"])
        assert graph.versions("b") == ["2.0"]

    @pytest.mark.asyncio
    async def test_constraint_does_not_add_package(self) -> None:
        graph = await _resolve(["a"], self.PACKAGES, constraints=["c==1.0"])
        assert "c" not in graph.package_names()

    @pytest.mark.asyncio
    async def test_conflicting_constraint_is_unsatisfiable(self) -> None:
        with pytest.raises(UnsatisfiableError):
            await _resolve(["a"], self.PACKAGES, constraints=["b<2"])

    @pytest.mark.asyncio
    async def test_override_replaces_transitive_requirement(self) -> None:
        graph = await _resolve(["a"], self.PACKAGES, overrides=["b==1.0"])
        assert graph.versions("b") == ["1.0"]

    @pytest.mark.asyncio
    async def test_project_cannot_depend_on_itself(self) -> None:
        with pytest.raises(RequirementParseError):
            await _resolve(["root"], {"root": {"1.0": {}}})


class TestExtras:
    """Tests for package and project extras."""

    PACKAGES = {
        "a": {"1.0": {"requires": ['c; extra == "fast"', "b"], "extras": ["fast"]}},
        "b": {"1.0": {}},
        "c": {"1.0": {}},
    }

    @pytest.mark.asyncio
    async def test_extra_pulls_in_gated_requirement(self) -> None:
        graph = await _resolve(["a[fast]"], self.PACKAGES)

        assert _selected(graph) == {"a": ["1.0"], "b": ["1.0"], "c": ["1.0"]}
        (node,) = graph.get("a")
        assert node.extras == frozenset({"fast"})
        assert any(edge.extra == "fast" and edge.target[0] == "c" for edge in graph.edges)

    @pytest.mark.asyncio
    async def test_without_extra_gated_requirement_is_skipped(self) -> None:
        graph = await _resolve(["a"], self.PACKAGES)
        assert "c" not in graph.package_names()

    @pytest.mark.asyncio
    async def test_project_extra_activates_root_requirement(self) -> None:
        requirements = ["b", 'c; extra == "dev"']

        without = await _resolve(requirements, self.PACKAGES)
        with_dev = await _resolve(requirements, self.PACKAGES, extras=["dev"])

        assert "c" not in without.package_names()
        assert "c" in with_dev.package_names()


class TestRequiresPython:
    """Tests for interpreter compatibility checks."""

    @pytest.mark.asyncio
    async def test_skips_release_not_supporting_every_target(self) -> None:
        graph = await _resolve(
            ["a"],
            {"a": {"1.0": {}, "2.0": {"requires_python": ">=3.11"}}},
            python=">=3.9,<3.13",
        )
        assert graph.versions("a") == ["1.0"]

    @pytest.mark.asyncio
    async def test_release_supporting_every_target_is_used(self) -> None:
        graph = await _resolve(
            ["a"],
            {"a": {"1.0": {}, "2.0": {"requires_python": ">=3.11"}}},
            python=">=3.11,<3.13",
        )
        assert graph.versions("a") == ["2.0"]

    @pytest.mark.asyncio
    async def test_explanation_mentions_python(self) -> None:
        with pytest.raises(UnsatisfiableError) as exc_info:
            await _resolve(
                ["a"],
                {"a": {"2.0": {"requires_python": ">=3.11"}}},
                python=">=3.9,<3.13",
            )
        assert "requires Python >=3.11" in exc_info.value.render()


# ============================================================================
# Test: forks and graph shape
# ============================================================================


class TestForking:
    """Tests for environment forks."""

    @pytest.mark.asyncio
    async def test_platform_marker_forks_by_platform(self) -> None:
        graph = await _resolve(
            ['w; sys_platform == "win32"', "b"],
            {"w": {"1.0": {}}, "b": {"1.0": {}}},
            platforms=["linux", "windows"],
        )

        assert len(graph.forks) == 2
        (w,) = graph.get("w")
        assert [p.tag for p in w.environment.platforms] == ["windows"]
        (b,) = graph.get("b")
        assert graph.is_unconditional(b)

    @pytest.mark.asyncio
    async def test_divergent_versions_per_fork(self) -> None:
        graph = await _resolve(
            [
                'a<2; python_version < "3.11"',
                'a>=2; python_version >= "3.11"',
            ],
            {"a": {"1.0": {}, "2.0": {}}},
        )

        nodes = graph.get("a")
        assert [str(n.version) for n in nodes] == ["1.0", "2.0"]
        assert nodes[0].environment.is_disjoint(nodes[1].environment)

    @pytest.mark.asyncio
    async def test_failure_in_one_fork_reports_that_fork(self) -> None:
        with pytest.raises(UnsatisfiableError) as exc_info:
            await _resolve(
                ['missing; python_version >= "3.11"', "b"],
                {"b": {"1.0": {}}},
            )

        error = exc_info.value
        assert len(error.explanations) == 1
        assert len(error.resolved_environments) == 1
        assert "missing" in error.render()

    @pytest.mark.asyncio
    async def test_requires_python_rechecked_in_narrower_fork(self) -> None:
        """A release ruled out for the whole range is usable in a newer fork."""
        graph = await _resolve(
            ["a", "c"],
            {
                "a": {"1.0": {}, "2.0": {"requires_python": ">=3.11"}},
                "c": {
                    version: {"requires": ['d; python_version >= "3.11"']}
                    for version in ("1.0", "1.1", "1.2")
                },
                "d": {"1.0": {"requires": ["a>=2"]}},
            },
            python=">=3.9,<3.13",
        )

        assert len(graph.forks) == 2
        assert graph.versions("a") == ["1.0", "2.0"]
        assert graph.versions("c") == ["1.2"]
        assert graph.versions("d") == ["1.0"]
        newer = VersionRange.from_specifier(">=3.11,<3.13")
        a_new = [n for n in graph.get("a") if str(n.version) == "2.0"]
        (d,) = graph.get("d")
        assert a_new[0].environment.python_coverage() == newer
        assert d.environment.python_coverage() == newer

    @pytest.mark.asyncio
    async def test_marker_never_true_adds_nothing(self) -> None:
        graph = await _resolve(
            ['w; sys_platform == "win32"'],
            {"w": {"1.0": {}}},
            platforms=["linux"],
        )
        assert graph.nodes == ()
        assert len(graph.forks) == 1

    @pytest.mark.asyncio
    async def test_dependency_cycle_is_broken(self) -> None:
        graph = await _resolve(
            ["a"],
            {"a": {"1.0": {"requires": ["b"]}}, "b": {"1.0": {"requires": ["a"]}}},
        )

        assert _selected(graph) == {"a": ["1.0"], "b": ["1.0"]}
        assert len(graph.cycle_edges) == 1
        assert graph.cycle_edges[0].source[0] == "b"
        assert graph.cycle_edges[0].target[0] == "a"


# ============================================================================
# Test: sources and providers
# ============================================================================


class TestSources:
    """Tests for direct sources."""

    @pytest.mark.asyncio
    async def test_direct_url_requirement_uses_direct_backend(self) -> None:
        direct = DirectSourceBackend()
        direct.add("git+https://example.com/c.git", "c", "0.3", requires=["b"])

        graph = await _resolve(
            ["c @ git+https://example.com/c.git"],
            {"b": {"1.0": {}}},
            direct=direct,
        )

        (node,) = graph.get("c")
        assert node.source.kind is SourceKind.GIT
        assert str(node.version) == "0.3"
        assert graph.versions("b") == ["1.0"]

    @pytest.mark.asyncio
    async def test_conflicting_direct_sources_raise(self) -> None:
        direct = DirectSourceBackend()
        direct.add("git+https://example.com/c.git", "c", "0.3")
        direct.add("git+https://mirror.example.com/c.git", "c", "0.3")

        with pytest.raises(ConflictingSourcesError) as exc_info:
            await _resolve(
                ["c @ git+https://example.com/c.git", "b"],
                {"b": {"1.0": {"requires": ["c @ git+https://mirror.example.com/c.git"]}}},
                direct=direct,
            )
        assert exc_info.value.package_name == "c"


class TestProviderFailures:
    """Tests for how provider errors reach the caller."""

    @pytest.mark.asyncio
    async def test_missing_package_is_unsatisfiable(self) -> None:
        with pytest.raises(UnsatisfiableError) as exc_info:
            await _resolve(["a"], {"a": {"1.0": {"requires": ["ghost"]}}})
        assert "ghost" in exc_info.value.render()

    @pytest.mark.asyncio
    async def test_unavailable_listing_propagates(self) -> None:
        registry = InMemoryRegistry.from_json({"packages": {"a": {"1.0": {}}}})
        registry.mark_unavailable("a")

        with pytest.raises(ProviderUnavailableError):
            await _resolve(["a"], {}, registry=registry)

    @pytest.mark.asyncio
    async def test_unavailable_release_is_skipped(self) -> None:
        registry = InMemoryRegistry.from_json({"packages": {"a": {"1.0": {}, "2.0": {}}}})
        registry.mark_unavailable("a", "2.0")

        graph = await _resolve(["a"], {}, registry=registry)

        assert graph.versions("a") == ["1.0"]

    @pytest.mark.asyncio
    async def test_malformed_release_is_skipped(self) -> None:
        registry = InMemoryRegistry.from_json({"packages": {"a": {"1.0": {}, "2.0": {}}}})
        registry.mark_malformed("a", "2.0")

        graph = await _resolve(["a"], {}, registry=registry)

        assert graph.versions("a") == ["1.0"]

    @pytest.mark.asyncio
    async def test_yanked_release_is_not_selected(self) -> None:
        graph = await _resolve(["a"], {"a": {"1.0": {}, "2.0": {"yanked": True}}})
        assert graph.versions("a") == ["1.0"]


class TestRunControl:
    """Tests for cancellation and determinism."""

    @pytest.mark.asyncio
    async def test_cancel_event_stops_resolution(self) -> None:
        event = asyncio.Event()
        event.set()

        with pytest.raises(ResolutionCancelledError):
            await _resolve(["a"], {"a": {"1.0": {}}}, cancel_event=event)

    @pytest.mark.asyncio
    async def test_repeated_runs_are_identical(self) -> None:
        packages = {
            "a": {"1.0": {"requires": ["b", 'c; sys_platform == "darwin"']}},
            "b": {"1.0": {}, "2.0": {}},
            "c": {"1.0": {}},
        }
        requirements = ["a", 'b<2; python_version < "3.10"']

        runs = [
            (await _resolve(requirements, packages, platforms=["linux", "macos"])).to_json()
            for _ in range(3)
        ]

        assert runs[0] == runs[1] == runs[2]

    @pytest.mark.asyncio
    async def test_cancel_interrupts_slow_provider(self) -> None:
        """Setting the event mid-request cancels without waiting for the answer."""
        registry = _SlowRegistry()
        registry.add("a", "1.0")
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, event.set)

        started = time.monotonic()
        with pytest.raises(ResolutionCancelledError):
            await _resolve(["a"], {}, registry=registry, cancel_event=event)

        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(5))
    async def test_answer_order_does_not_change_result(self, seed: int) -> None:
        packages = {
            "a": {
                "1.0": {"requires": ["b", 'c; sys_platform == "darwin"']},
                "2.0": {"requires": ["b>=2", "d<2"]},
            },
            "b": {"1.0": {}, "2.0": {}, "2.1": {"requires": ["d>=2"]}},
            "c": {"1.0": {}, "1.1": {"requires_python": ">=3.11"}},
            "d": {"1.0": {}, "2.0": {}},
        }
        requirements = ["a", 'b<2; python_version < "3.10"']

        async def run(registry: InMemoryRegistry) -> str:
            graph = await _resolve(
                requirements, {}, registry=registry, platforms=["linux", "macos"]
            )
            return json.dumps(graph.to_json())

        expected = await run(InMemoryRegistry.from_json({"packages": packages}))
        shuffled = await run(_ShuffledRegistry.shuffled(packages, seed))

        assert shuffled == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(30))
    async def test_adding_requirement_never_relaxes_result(self, seed: int) -> None:
        """More root requirements never turn a failure into a success.

        A success must honour every root requirement, and pinning the
        previous selections reproduces them exactly.
        """
        rng = random.Random(seed)
        packages = _random_universe(rng)
        specs = ["", ">=2.0", "<2.0", "==1.0", "!=1.0"]
        base: List[str] = [
            name + rng.choice(specs) for name in rng.sample(sorted(packages), 2)
        ]
        extended = base + [rng.choice(sorted(packages)) + rng.choice(specs)]

        before = await _outcome(base, packages)
        after = await _outcome(extended, packages)

        if before is None:
            assert after is None
            return
        if after is not None:
            for text in extended:
                requirement = Requirement(text)
                (version,) = after[requirement.name]
                assert Version(version) in requirement.specifier

        pins = [f"{name}=={versions[0]}" for name, versions in before.items()]
        assert await _outcome(base + pins, packages) == before
