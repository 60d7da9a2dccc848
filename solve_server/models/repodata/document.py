from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from solve_server.models.conda.version import InvalidVersion, parse_version

logger = logging.getLogger(__name__)


class PackageRecord(BaseModel):
    """One entry of a ``repodata.json`` ``packages`` mapping."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    version: str
    build: str = ""
    build_number: int = 0
    subdir: str = ""
    md5: Optional[str] = None
    sha256: Optional[str] = None
    size: Optional[int] = None
    depends: tuple[str, ...] = ()
    constrains: tuple[str, ...] = ()
    license: Optional[str] = None
    license_family: Optional[str] = None
    timestamp: Optional[int] = None
    noarch: Optional[Any] = None


class RepoDataRecord(PackageRecord):
    """A ``PackageRecord`` together with where it can be downloaded from."""

    filename: str
    url: str
    channel: str


class RepoDataJson(BaseModel):
    """Wire shape of ``repodata.json``; only the parts the solver needs."""

    model_config = ConfigDict(extra="ignore")

    info: dict[str, Any] = Field(default_factory=dict)
    packages: dict[str, PackageRecord] = Field(default_factory=dict)
    packages_conda: dict[str, PackageRecord] = Field(
        default_factory=dict, alias="packages.conda"
    )
    removed: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class RepoData:
    """Immutable snapshot of the records of one channel subdir.

    Instances are shared between the cache and every request that obtained
    them; a refresh builds a new instance instead of touching this one.
    """

    channel: str
    subdir: str
    url: str
    records: tuple[RepoDataRecord, ...]
    by_name: Mapping[str, tuple[RepoDataRecord, ...]] = field(repr=False, compare=False)

    @classmethod
    def from_records(
        cls, channel: str, subdir: str, url: str, records: list[RepoDataRecord]
    ) -> RepoData:
        grouped: dict[str, list[RepoDataRecord]] = {}
        for record in records:
            grouped.setdefault(record.name, []).append(record)
        return cls(
            channel=channel,
            subdir=subdir,
            url=url,
            records=tuple(records),
            by_name=MappingProxyType({k: tuple(v) for k, v in grouped.items()}),
        )

    @classmethod
    def from_json(cls, document: RepoDataJson, channel: str, subdir: str, url: str) -> RepoData:
        """Flatten ``packages`` and ``packages.conda`` into download-ready records.

        Records with versions that are not valid conda versions are skipped.
        """
        records: list[RepoDataRecord] = []
        skipped = 0
        for entries in (document.packages, document.packages_conda):
            for filename, package in entries.items():
                try:
                    parse_version(package.version)
                except InvalidVersion:
                    skipped += 1
                    continue
                records.append(
                    RepoDataRecord(
                        **package.model_dump(),
                        filename=filename,
                        url=f"{url}{filename}",
                        channel=channel,
                    )
                )
        if skipped:
            logger.warning("Skipped %d record(s) with invalid versions in %s", skipped, url)
        return cls.from_records(channel=channel, subdir=subdir, url=url, records=records)
