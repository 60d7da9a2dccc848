from __future__ import annotations

import re
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Optional, Protocol

from solve_server.models.conda.version import (
    InvalidVersion,
    InvalidVersionSpec,
    VersionSpec,
    parse_version,
)

_NAME_RE = re.compile(r"^([A-Za-z0-9_][A-Za-z0-9_.\-]*)")
_BRACKET_RE = re.compile(r"\[(?P<body>[^\]]*)\]\s*$")
_BRACKET_ITEM_RE = re.compile(r"\s*(\w+)\s*=\s*(['\"]?)(.*?)\2\s*(?:,|$)")
_BUILD_RE = re.compile(r"^[A-Za-z0-9_.*+!\-]+$")
# ">=3.6, <4" is one version constraint, not a version and a build.
_VERSION_JOIN_RE = re.compile(r"\s*([,|])\s*")


class InvalidMatchSpec(ValueError):
    pass


class MatchableRecord(Protocol):
    name: str
    version: str
    build: str
    channel: Optional[str]


def is_valid_package_name(name: str) -> bool:
    match = _NAME_RE.match(name)
    return match is not None and match.end() == len(name)


def _parse_brackets(body: str, source: str) -> dict[str, str]:
    items: dict[str, str] = {}
    position = 0
    while position < len(body):
        match = _BRACKET_ITEM_RE.match(body, position)
        if match is None or match.end() == position:
            raise InvalidMatchSpec(f"'{source}': cannot parse bracket expression")
        items[match.group(1)] = match.group(3)
        position = match.end()
    return items


@dataclass(frozen=True)
class MatchSpec:
    """A query against package records, e.g. ``numpy >=1.20,<2 py39*``."""

    name: str
    version: Optional[VersionSpec] = None
    build: Optional[str] = None
    channel: Optional[str] = None
    source: str = field(default="", compare=False)

    @classmethod
    def parse(cls, spec: str) -> MatchSpec:
        source = spec.strip()
        if not source:
            raise InvalidMatchSpec("empty match spec")

        text = source
        channel = None
        if "::" in text:
            channel, _, text = text.rpartition("::")
            channel = channel.strip() or None

        extras: dict[str, str] = {}
        bracket = _BRACKET_RE.search(text)
        if bracket is not None:
            extras = _parse_brackets(bracket.group("body"), source)
            text = text[: bracket.start()]

        match = _NAME_RE.match(text.strip())
        if match is None:
            raise InvalidMatchSpec(f"'{source}': missing or invalid package name")
        name = match.group(1).lower()
        rest = text.strip()[match.end():].strip()

        version: Optional[str] = None
        build: Optional[str] = None
        if rest.startswith("=") and not rest.startswith("=="):
            version, _, build = rest[1:].partition("=")
            if "=" in build:
                raise InvalidMatchSpec(f"'{source}': too many '=' separators")
            if version and not any(c in version for c in "*<>!|,"):
                version += ".*"
        elif rest:
            tokens = _VERSION_JOIN_RE.sub(r"\1", rest).split()
            if len(tokens) > 2:
                raise InvalidMatchSpec(f"'{source}': unexpected trailing text '{tokens[2]}'")
            version = tokens[0]
            build = tokens[1] if len(tokens) == 2 else None

        unknown = set(extras) - {"version", "build"}
        if unknown:
            raise InvalidMatchSpec(f"'{source}': unsupported key(s) {sorted(unknown)}")
        version = extras.get("version", version) or None
        build = extras.get("build", build) or None

        if build is not None and not _BUILD_RE.match(build):
            raise InvalidMatchSpec(f"'{source}': invalid build string '{build}'")
        try:
            version_spec = VersionSpec(version) if version else None
        except InvalidVersionSpec as exc:
            raise InvalidMatchSpec(str(exc)) from exc

        return cls(name=name, version=version_spec, build=build, channel=channel, source=source)

    def match(self, record: MatchableRecord) -> bool:
        if record.name != self.name:
            return False
        if self.version is not None:
            try:
                if not self.version.match(parse_version(record.version)):
                    return False
            except InvalidVersion:
                return False
        if self.build is not None and not fnmatchcase(record.build, self.build):
            return False
        if self.channel is not None:
            if record.channel is None:
                return False
            base = record.channel.rstrip("/")
            wanted = self.channel.rstrip("/")
            if base != wanted and not base.endswith("/" + wanted):
                return False
        return True

    def __str__(self) -> str:
        if self.source:
            return self.source
        return " ".join(
            part for part in (self.name, str(self.version or ""), self.build or "") if part
        )


def package_name_of(spec: str) -> str:
    """Best-effort package name of a dependency string, without full parsing."""
    text = spec.strip().rpartition("::")[2]
    match = _NAME_RE.match(text)
    return match.group(1).lower() if match else text
