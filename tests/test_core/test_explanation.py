"""Unit tests for deplock.core.explanation.

The derivation DAGs here are built by hand so the rendered report is
independent of solver search order.
"""

from __future__ import annotations

import pytest

from deplock.core.explanation import _implies, explain
from deplock.core.incompatibility import (
    ConflictCause,
    DependencyCause,
    IncompatibilityStore,
    NoVersionsCause,
)
from deplock.core.term import Term
from deplock.models.environment import TargetEnvironment
from deplock.utils.version_utils import VersionRange

ANY = VersionRange.any()
ENV = TargetEnvironment.create(">=3.9,<3.13", ["linux"]).environment_set()


def r(spec: str) -> VersionRange:
    return VersionRange.from_specifier(spec)


@pytest.fixture
def store() -> IncompatibilityStore:
    return IncompatibilityStore("root")


class TestImplies:
    """Tests for the pruning predicate."""

    def test_narrower_conclusion_is_implied(self, store: IncompatibilityStore) -> None:
        premise = store.create([Term("a", r(">=1"))], NoVersionsCause())
        conclusion = store.create(
            [Term("a", r("==1.5")), Term("b", ANY)], ConflictCause(0, 0)
        )
        assert _implies(premise, conclusion)

    def test_extra_premise_term_is_not_implied(self, store: IncompatibilityStore) -> None:
        premise = store.create(
            [Term("a", r("==1.0")), Term("b", r(">=2"), False)], DependencyCause("b>=2")
        )
        conclusion = store.create([Term("a", r("==1.0"))], ConflictCause(0, 0))
        assert not _implies(premise, conclusion)

    def test_failure_implies_everything(self, store: IncompatibilityStore) -> None:
        premise = store.create([], ConflictCause(0, 0))
        conclusion = store.create([Term("a", ANY)], NoVersionsCause())
        assert _implies(premise, conclusion)


class TestExplain:
    """Tests for explain and the rendered report."""

    def test_root_depends_on_both(self, store: IncompatibilityStore) -> None:
        first = store.create_and_add(
            [Term("root", ANY), Term("a", r("==1.0"), False)], DependencyCause("a==1.0")
        )
        second = store.create_and_add(
            [Term("root", ANY), Term("a", r("==2.0"), False)], DependencyCause("a==2.0")
        )
        failure = store.create([Term("root", ANY)], ConflictCause(first.id, second.id))

        explanation = explain(failure, store, ENV)

        assert explanation.lines == (
            "(1) Because root depends on both a==1.0 and a==2.0, version solving failed.",
        )
        assert explanation.premises == {failure.id: (first.id, second.id)}
        assert explanation.render().splitlines()[0] == (
            "No solution found for python>=3.9,<3.13 on linux:"
        )

    def test_external_failure_has_single_line(self, store: IncompatibilityStore) -> None:
        failure = store.create([Term("root", ANY)], NoVersionsCause())

        explanation = explain(failure, store, ENV)

        assert explanation.lines == ("Because there are no versions of root, version solving failed.",)
        assert explanation.premises == {}

    def test_chain_collapses_into_two_lines(self, store: IncompatibilityStore) -> None:
        a_needs_b = store.create(
            [Term("a", r("==1.0")), Term("b", r(">=2"), False)], DependencyCause("b>=2")
        )
        b_needs_c = store.create(
            [Term("b", r(">=2")), Term("c", r("==1.0"), False)], DependencyCause("c==1.0")
        )
        a_needs_c = store.create(
            [Term("a", r("==1.0")), Term("c", r("==1.0"), False)],
            ConflictCause(a_needs_b.id, b_needs_c.id),
        )
        root_needs_c = store.create(
            [Term("root", ANY), Term("c", r("==2.0"), False)], DependencyCause("c==2.0")
        )
        a_forbidden = store.create(
            [Term("root", ANY), Term("a", r("==1.0"))],
            ConflictCause(a_needs_c.id, root_needs_c.id),
        )
        root_needs_a = store.create(
            [Term("root", ANY), Term("a", r("==1.0"), False)], DependencyCause("a==1.0")
        )
        failure = store.create(
            [Term("root", ANY)], ConflictCause(a_forbidden.id, root_needs_a.id)
        )

        explanation = explain(failure, store, ENV)

        assert [line.strip() for line in explanation.lines] == [
            "Because a==1.0 depends on b>=2 which depends on c==1.0, "
            "a==1.0 requires c==1.0.",
            "(1) So, because root depends on both c==2.0 and a==1.0, "
            "version solving failed.",
        ]
        assert set(explanation.incompatibilities) == {
            failure.id,
            a_forbidden.id,
            root_needs_a.id,
            a_needs_c.id,
            root_needs_c.id,
            a_needs_b.id,
            b_needs_c.id,
        }

    def test_redundant_step_is_pruned(self, store: IncompatibilityStore) -> None:
        missing = store.create([Term("a", r(">=1"))], NoVersionsCause())
        unrelated = store.create(
            [Term("b", r("==1.0")), Term("d", ANY, False)], DependencyCause("d")
        )
        redundant = store.create(
            [Term("a", r("==1.5")), Term("b", r("==1.0"))],
            ConflictCause(missing.id, unrelated.id),
        )
        root_needs_a = store.create(
            [Term("root", ANY), Term("a", r("==1.5"), False)], DependencyCause("a==1.5")
        )
        failure = store.create(
            [Term("root", ANY)], ConflictCause(redundant.id, root_needs_a.id)
        )

        explanation = explain(failure, store, ENV)

        assert redundant.id not in explanation.incompatibilities
        assert unrelated.id not in explanation.incompatibilities
        assert explanation.premises == {failure.id: (missing.id, root_needs_a.id)}
        assert "no versions of a>=1 are available" in explanation.lines[0]

    def test_to_json(self, store: IncompatibilityStore) -> None:
        first = store.create(
            [Term("root", ANY), Term("a", r("==1.0"), False)], DependencyCause("a==1.0")
        )
        second = store.create([Term("a", r("==1.0"))], NoVersionsCause())
        failure = store.create([Term("root", ANY)], ConflictCause(first.id, second.id))

        data = explain(failure, store, ENV).to_json()

        assert data["environment"] == "python>=3.9,<3.13 on linux"
        assert data["failure"] == failure.id
        assert [item["id"] for item in data["incompatibilities"]] == [0, 1, 2]
        assert data["incompatibilities"][2]["premises"] == [0, 1]
        assert data["incompatibilities"][0]["cause"] == "DependencyCause"
        assert data["report"][-1].endswith("version solving failed.")
