"""Human-readable and machine-readable explanations of solver failures.

When a fork fails, its final incompatibility is the root of a derivation
DAG: every derived incompatibility names the two incompatibilities it was
resolved from, down to external facts (dependencies, missing versions,
unsupported interpreters). :class:`Explanation` walks that DAG and renders
it as numbered lines in the style of PubGrub's error reporting::

    Because a==1.0 depends on b>=2 and b>=2 depends on c==1.0, a==1.0 requires c==1.0.
    And because root depends on c==2.0, a==1.0 is forbidden.
    So, because root depends on a==1.0, version solving failed.

Before rendering, derivation steps whose conclusion already follows from
one of their premises alone are pruned, so the report only contains steps
that combine two facts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from deplock.core.incompatibility import (
    ConflictCause,
    Incompatibility,
    IncompatibilityStore,
)
from deplock.models.environment import EnvironmentSet

__all__ = ["Explanation", "explain"]


def _implies(premise: Incompatibility, conclusion: Incompatibility) -> bool:
    """Whether *premise* alone forbids everything *conclusion* forbids."""
    if premise.is_failure():
        return True
    for term in premise.terms:
        match = conclusion.get(term.package)
        if match is None or not match.satisfies(term):
            return False
    return True


class _Report:
    """Renders a (pruned) derivation DAG as numbered lines."""

    def __init__(
        self,
        root: Incompatibility,
        premises: Dict[int, Tuple[Incompatibility, Incompatibility]],
    ) -> None:
        self._root = root
        self._premises = premises
        self._derivations: Dict[int, int] = {}
        self._lines: List[Tuple[str, Optional[int]]] = []
        self._line_numbers: Dict[int, int] = {}
        self._count(root)

    def _is_derived(self, incompatibility: Incompatibility) -> bool:
        return incompatibility.id in self._premises

    def _count(self, incompatibility: Incompatibility) -> None:
        self._derivations[incompatibility.id] = self._derivations.get(incompatibility.id, 0) + 1
        if self._derivations[incompatibility.id] == 1 and self._is_derived(incompatibility):
            for premise in self._premises[incompatibility.id]:
                self._count(premise)

    def lines(self) -> List[str]:
        if not self._is_derived(self._root):
            return [f"Because {self._root}, version solving failed."]

        self._visit(self._root, conclusion=True)

        numbered = [number for _, number in self._lines if number is not None]
        padding = len(f"({max(numbered)})") if numbered else 0
        result = []
        for message, number in self._lines:
            if not message:
                result.append("")
                continue
            if padding:
                prefix = f"({number})" if number is not None else ""
                message = f"{prefix:<{padding}} {message}"
            result.append(message)
        return result

    def _write(
        self, incompatibility: Incompatibility, message: str, numbered: bool
    ) -> None:
        if numbered:
            number = len(self._line_numbers) + 1
            self._line_numbers[incompatibility.id] = number
            self._lines.append((message, number))
        else:
            self._lines.append((message, None))

    def _visit(self, incompatibility: Incompatibility, conclusion: bool = False) -> None:
        numbered = conclusion or self._derivations[incompatibility.id] > 1
        conjunction = "So," if conclusion or incompatibility is self._root else "And"
        text = str(incompatibility)

        conflict, other = self._premises[incompatibility.id]
        conflict_line = self._line_numbers.get(conflict.id)
        other_line = self._line_numbers.get(other.id)

        if self._is_derived(conflict) and self._is_derived(other):
            if conflict_line is not None and other_line is not None:
                self._write(
                    incompatibility,
                    f"Because {conflict.and_to_string(other, conflict_line, other_line)}, {text}.",
                    numbered,
                )
            elif conflict_line is not None or other_line is not None:
                if conflict_line is not None:
                    with_line, without_line, line = conflict, other, conflict_line
                else:
                    with_line, without_line, line = other, conflict, other_line
                self._visit(without_line)
                self._write(
                    incompatibility,
                    f"{conjunction} because {with_line} ({line}), {text}.",
                    numbered,
                )
            else:
                single_conflict = self._is_single_line(conflict)
                single_other = self._is_single_line(other)
                if single_conflict or single_other:
                    first, second = (other, conflict) if single_other else (conflict, other)
                    self._visit(first)
                    self._visit(second)
                    self._write(incompatibility, f"Thus, {text}.", numbered)
                else:
                    self._visit(conflict, conclusion=True)
                    self._lines.append(("", None))
                    self._visit(other)
                    self._write(
                        incompatibility,
                        f"{conjunction} because {conflict} "
                        f"({self._line_numbers[conflict.id]}), {text}.",
                        numbered,
                    )
        elif self._is_derived(conflict) or self._is_derived(other):
            derived, external = (conflict, other) if self._is_derived(conflict) else (other, conflict)
            derived_line = self._line_numbers.get(derived.id)
            if derived_line is not None:
                self._write(
                    incompatibility,
                    f"Because {external.and_to_string(derived, None, derived_line)}, {text}.",
                    numbered,
                )
            elif self._is_collapsible(derived):
                inner_conflict, inner_other = self._premises[derived.id]
                if self._is_derived(inner_conflict):
                    collapsed_derived, collapsed_external = inner_conflict, inner_other
                else:
                    collapsed_derived, collapsed_external = inner_other, inner_conflict
                self._visit(collapsed_derived)
                self._write(
                    incompatibility,
                    f"{conjunction} because "
                    f"{collapsed_external.and_to_string(external, None, None)}, {text}.",
                    numbered,
                )
            else:
                self._visit(derived)
                self._write(
                    incompatibility, f"{conjunction} because {external}, {text}.", numbered
                )
        else:
            self._write(
                incompatibility,
                f"Because {conflict.and_to_string(other, conflict_line, other_line)}, {text}.",
                numbered,
            )

    def _is_single_line(self, incompatibility: Incompatibility) -> bool:
        conflict, other = self._premises[incompatibility.id]
        return not self._is_derived(conflict) and not self._is_derived(other)

    def _is_collapsible(self, incompatibility: Incompatibility) -> bool:
        if self._derivations[incompatibility.id] > 1:
            return False
        conflict, other = self._premises[incompatibility.id]
        if self._is_derived(conflict) == self._is_derived(other):
            return False
        complex_premise = conflict if self._is_derived(conflict) else other
        return complex_premise.id not in self._line_numbers


@dataclass(frozen=True)
class Explanation:
    """Why one fork of the resolution failed.

    Attributes:
        environment: The environments the failure concerns.
        failure: The (pruned) failing incompatibility.
        lines: Rendered report lines.
        premises: Pruned derivation DAG, keyed by incompatibility id.
        incompatibilities: Every incompatibility reachable in the DAG.
    """

    environment: EnvironmentSet
    failure: Incompatibility
    lines: Tuple[str, ...]
    premises: Dict[int, Tuple[int, int]] = field(default_factory=dict)
    incompatibilities: Dict[int, Incompatibility] = field(default_factory=dict)

    def render(self) -> str:
        header = f"No solution found for {self.environment}:"
        return "\n".join([header] + [f"  {line}" if line else "" for line in self.lines])

    def __str__(self) -> str:
        return self.render()

    def to_json(self) -> Dict[str, Any]:
        """Return the explanation DAG as JSON-serializable data."""
        return {
            "environment": str(self.environment),
            "failure": self.failure.id,
            "incompatibilities": [
                {
                    "id": incompatibility.id,
                    "terms": [str(term) for term in incompatibility.terms],
                    "cause": type(incompatibility.cause).__name__,
                    "description": str(incompatibility),
                    "premises": list(self.premises.get(incompatibility.id, ())),
                }
                for _, incompatibility in sorted(self.incompatibilities.items())
            ],
            "report": list(self.lines),
        }


def explain(
    failure: Incompatibility,
    store: IncompatibilityStore,
    environment: EnvironmentSet,
) -> Explanation:
    """Build the explanation for a failed fork.

    Args:
        failure: The failing incompatibility returned by the solver.
        store: The fork's incompatibility store.
        environment: The environments of the failed fork.
    """
    premises: Dict[int, Tuple[Incompatibility, Incompatibility]] = {}
    simplified: Dict[int, Incompatibility] = {}

    def simplify(incompatibility: Incompatibility) -> Incompatibility:
        if incompatibility.id in simplified:
            return simplified[incompatibility.id]
        cause = incompatibility.cause
        result = incompatibility
        if isinstance(cause, ConflictCause):
            conflict = simplify(store[cause.conflict])
            other = simplify(store[cause.other])
            if _implies(conflict, incompatibility):
                result = conflict
            elif _implies(other, incompatibility):
                result = other
            else:
                premises[incompatibility.id] = (conflict, other)
        simplified[incompatibility.id] = result
        return result

    root = simplify(failure)

    reachable: Dict[int, Incompatibility] = {}
    pending = [root]
    while pending:
        current = pending.pop()
        if current.id in reachable:
            continue
        reachable[current.id] = current
        pending.extend(premises.get(current.id, ()))

    lines = _Report(root, {k: v for k, v in premises.items() if k in reachable}).lines()
    return Explanation(
        environment=environment,
        failure=root,
        lines=tuple(lines),
        premises={
            key: (left.id, right.id)
            for key, (left, right) in sorted(premises.items())
            if key in reachable
        },
        incompatibilities=reachable,
    )
