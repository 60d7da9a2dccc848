"""resolvelib provider over conda repodata and virtual packages."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence, Union

from resolvelib import AbstractProvider

from solve_server.models.conda.matchspec import InvalidMatchSpec, MatchSpec
from solve_server.models.conda.version import Version, parse_version
from solve_server.models.conda.virtual import GenericVirtualPackage
from solve_server.models.repodata.document import RepoData, RepoDataRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Candidate:
    """A record the resolver may pick; ``record`` is None for virtual packages."""

    name: str
    version: str
    build: str
    build_number: int
    channel: Optional[str]
    priority: int
    timestamp: int = 0
    depends: tuple[str, ...] = ()
    constrains: tuple[str, ...] = ()
    record: Optional[RepoDataRecord] = field(default=None, repr=False)

    @classmethod
    def from_record(cls, record: RepoDataRecord, priority: int) -> Candidate:
        return cls(
            name=record.name,
            version=record.version,
            build=record.build,
            build_number=record.build_number,
            channel=record.channel,
            priority=priority,
            timestamp=record.timestamp or 0,
            depends=record.depends,
            constrains=record.constrains,
            record=record,
        )

    @classmethod
    def from_virtual(cls, package: GenericVirtualPackage) -> Candidate:
        return cls(
            name=package.name,
            version=package.version,
            build=package.build,
            build_number=0,
            channel=None,
            priority=-1,
        )

    @property
    def is_virtual(self) -> bool:
        return self.record is None

    @cached_property
    def parsed_version(self) -> Version:
        return parse_version(self.version)

    @cached_property
    def requirements(self) -> tuple[MatchSpec, ...]:
        return tuple(MatchSpec.parse(dep) for dep in self.depends)

    def sort_key(self) -> tuple[Any, ...]:
        # Best first once sorted ascending.
        return (self.priority, _Descending(self.parsed_version), -self.build_number, -self.timestamp)

    def __str__(self) -> str:
        return f"{self.name} {self.version} {self.build}"


@dataclass(frozen=True)
class _Descending:
    version: Version

    def __lt__(self, other: _Descending) -> bool:
        return other.version < self.version


@dataclass(frozen=True)
class Requirement:
    spec: MatchSpec
    parent: Optional[Candidate] = None

    @property
    def name(self) -> str:
        return self.spec.name


class CandidateIndex:
    """Candidates by name, built on first use and ordered best first.

    Virtual packages come first, then repodata in the given order (earlier
    channels win), then highest version, build number and timestamp.
    """

    def __init__(
        self, repodata: Sequence[RepoData], virtual_packages: Sequence[GenericVirtualPackage]
    ) -> None:
        self._repodata = repodata
        self._virtual: dict[str, list[Candidate]] = {}
        for package in virtual_packages:
            self._virtual.setdefault(package.name, []).append(Candidate.from_virtual(package))
        self._cache: dict[str, list[Candidate]] = {}

    def get(self, name: str) -> list[Candidate]:
        candidates = self._cache.get(name)
        if candidates is None:
            candidates = list(self._virtual.get(name, ()))
            for priority, document in enumerate(self._repodata):
                candidates.extend(
                    Candidate.from_record(record, priority)
                    for record in document.by_name.get(name, ())
                )
            candidates.sort(key=Candidate.sort_key)
            self._cache[name] = candidates
        return candidates


class CondaProvider(AbstractProvider):
    def __init__(self, index: CandidateIndex) -> None:
        self._index = index

    def identify(self, requirement_or_candidate: Union[Requirement, Candidate]) -> str:
        return requirement_or_candidate.name

    def get_preference(
        self,
        identifier: str,
        resolutions: Mapping[str, Candidate],
        candidates: Mapping[str, Iterator[Candidate]],
        information: Mapping[str, Iterator[Any]],
        backtrack_causes: Sequence[Any],
    ) -> Any:
        # Virtual packages are fixed; settle them first, then go by name
        # so the search order never depends on dict ordering.
        return (not identifier.startswith("__"), identifier)

    def find_matches(
        self,
        identifier: str,
        requirements: Mapping[str, Iterator[Requirement]],
        incompatibilities: Mapping[str, Iterator[Candidate]],
    ) -> Iterable[Candidate]:
        specs = [requirement.spec for requirement in requirements[identifier]]
        excluded = {id(candidate) for candidate in incompatibilities[identifier]}
        return [
            candidate
            for candidate in self._index.get(identifier)
            if id(candidate) not in excluded
            and all(spec.match(candidate) for spec in specs)
            and _has_valid_depends(candidate)
        ]

    def is_satisfied_by(self, requirement: Requirement, candidate: Candidate) -> bool:
        return requirement.spec.match(candidate)

    def get_dependencies(self, candidate: Candidate) -> Iterable[Requirement]:
        return [Requirement(spec, candidate) for spec in candidate.requirements]


def _has_valid_depends(candidate: Candidate) -> bool:
    try:
        candidate.requirements
    except InvalidMatchSpec as exc:
        logger.debug("Ignoring %s, unparseable dependency: %s", candidate, exc)
        return False
    return True
