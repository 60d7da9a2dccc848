"""Dependency solving.

The orchestrator only depends on the ``Solver`` protocol.  The default
implementation drives ``resolvelib``'s backtracking resolver over conda
repodata; any object with the same ``solve`` signature can replace it.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence

from resolvelib import BaseReporter, ResolutionImpossible, ResolutionTooDeep, Resolver

from solve_server.models.conda.matchspec import InvalidMatchSpec, MatchSpec, package_name_of
from solve_server.models.conda.virtual import GenericVirtualPackage
from solve_server.models.repodata.document import RepoData, RepoDataRecord
from solve_server.solver.provider import Candidate, CandidateIndex, CondaProvider, Requirement

logger = logging.getLogger(__name__)


class UnsolvableError(Exception):
    """No package set satisfies the specs; ``explanations`` says why."""

    def __init__(self, explanations: list[str]) -> None:
        self.explanations = explanations
        super().__init__("; ".join(explanations))


class Solver(Protocol):
    def solve(
        self,
        specs: Sequence[MatchSpec],
        virtual_packages: Sequence[GenericVirtualPackage],
        repodata: Sequence[RepoData],
    ) -> list[RepoDataRecord]:
        """Return the resolved records in topological order.

        Raises:
            UnsolvableError: when the specs cannot be satisfied together.
        """
        ...


class ResolvelibSolver:
    def __init__(self, max_rounds: int = 20000) -> None:
        self._max_rounds = max_rounds

    def solve(
        self,
        specs: Sequence[MatchSpec],
        virtual_packages: Sequence[GenericVirtualPackage],
        repodata: Sequence[RepoData],
    ) -> list[RepoDataRecord]:
        index = CandidateIndex(repodata, virtual_packages)
        resolver = Resolver(CondaProvider(index), BaseReporter())
        try:
            result = resolver.resolve(
                [Requirement(spec) for spec in specs], max_rounds=self._max_rounds
            )
        except ResolutionImpossible as exc:
            raise UnsolvableError(_explain(exc.causes, index)) from exc
        except ResolutionTooDeep as exc:
            raise UnsolvableError(
                [f"gave up after {self._max_rounds} resolution rounds without finding a solution"]
            ) from exc

        chosen = {candidate.name: candidate for candidate in result.mapping.values()}
        violations = _constraint_violations(chosen)
        if violations:
            raise UnsolvableError(violations)

        records = [c.record for c in chosen.values() if c.record is not None]
        logger.debug("Resolved %d package(s) for %d spec(s)", len(records), len(specs))
        return sort_topologically(records)


def _explain(causes: Iterable, index: CandidateIndex) -> list[str]:
    lines: list[str] = []
    for cause in causes:
        spec = cause.requirement.spec
        if cause.parent is None:
            line = f"{spec} cannot be installed because there are no viable options"
        elif not index.get(spec.name):
            line = f"{cause.parent} requires {spec}, but nothing provides {spec.name}"
        else:
            line = f"{cause.parent} requires {spec}, but no available {spec.name} satisfies it"
        if line not in lines:
            lines.append(line)
    return lines


def _constraint_violations(chosen: dict[str, Candidate]) -> list[str]:
    violations = []
    for candidate in chosen.values():
        for constraint in candidate.constrains:
            try:
                spec = MatchSpec.parse(constraint)
            except InvalidMatchSpec:
                logger.debug("Ignoring unparseable constraint %r of %s", constraint, candidate)
                continue
            other = chosen.get(spec.name)
            if other is not None and not spec.match(other):
                violations.append(f"{candidate} constrains {spec}, which conflicts with {other}")
    return violations


def sort_topologically(records: Sequence[RepoDataRecord]) -> list[RepoDataRecord]:
    """Order *records* so every package follows the packages it depends on.

    Ties are broken by name.  Dependency cycles are cut where they are found.
    """
    by_name = {record.name: record for record in records}

    def dependencies(name: str) -> list[str]:
        names = {package_name_of(dep) for dep in by_name[name].depends}
        return sorted(n for n in names if n in by_name)

    ordered: list[RepoDataRecord] = []
    visited: set[str] = set()
    for root in sorted(by_name):
        if root in visited:
            continue
        visited.add(root)
        stack = [(root, iter(dependencies(root)))]
        while stack:
            name, children = stack[-1]
            for child in children:
                if child not in visited:
                    visited.add(child)
                    stack.append((child, iter(dependencies(child))))
                    break
            else:
                stack.pop()
                ordered.append(by_name[name])
    return ordered
