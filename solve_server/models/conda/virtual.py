from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from solve_server.models.conda.matchspec import is_valid_package_name
from solve_server.models.conda.version import InvalidVersion, parse_version


class InvalidVirtualPackage(ValueError):
    pass


@dataclass(frozen=True)
class GenericVirtualPackage:
    """A system capability (``__glibc``, ``__cuda``...) offered to the solver."""

    name: str
    version: str
    build: str

    # Virtual packages belong to no channel; present for matching.
    channel: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.name}={self.version}={self.build}"


def parse_virtual_package(virtual_package: str) -> GenericVirtualPackage:
    """Parse ``name[=version[=build]]``; version and build default to ``0``."""
    parts = virtual_package.strip().split("=")
    if len(parts) > 3:
        raise InvalidVirtualPackage("too many equals signs")

    name = parts[0].lower()
    version = parts[1] if len(parts) > 1 else "0"
    build = parts[2] if len(parts) > 2 else "0"

    if not is_valid_package_name(name):
        raise InvalidVirtualPackage(f"invalid package name '{parts[0]}'")
    try:
        parse_version(version)
    except InvalidVersion as exc:
        raise InvalidVirtualPackage(f"invalid version - {exc}") from exc
    if not build:
        raise InvalidVirtualPackage("empty build string")

    return GenericVirtualPackage(name=name, version=version, build=build)
