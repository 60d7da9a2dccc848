from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from solve_server.core.errors import (
    ApiError,
    InternalError,
    InvalidInput,
    MetadataError,
    SolverError,
    ValidationError,
)
from solve_server.models.conda.channel import (
    NOARCH,
    Channel,
    InvalidChannel,
    InvalidPlatform,
    parse_channel,
    parse_platform,
)
from solve_server.models.conda.matchspec import InvalidMatchSpec, MatchSpec
from solve_server.models.conda.virtual import (
    GenericVirtualPackage,
    InvalidVirtualPackage,
    parse_virtual_package,
)
from solve_server.models.repodata.document import RepoDataRecord
from solve_server.models.solve.schemas import SolveRequest
from solve_server.repositories.repodata.cache import MetadataCache, MetadataKey
from solve_server.solver.solver import Solver, UnsolvableError
from solve_server.workers.fetcher import FetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatedRequest:
    specs: list[MatchSpec]
    virtual_packages: list[GenericVirtualPackage]
    channels: list[Channel]
    platform: str


@dataclass(frozen=True)
class SolveOutcome:
    """Either the resolved records or the error that ended the request."""

    records: Optional[list[RepoDataRecord]] = None
    error: Optional[ApiError] = None


def metadata_keys(channels: list[Channel], platform: str) -> list[MetadataKey]:
    """Every (channel, subdir) pair whose repodata the request needs.

    A channel without an explicit platform list contributes the target
    platform and ``noarch``.
    """
    default_platforms = (platform, NOARCH)
    keys = [
        MetadataKey(channel.base_url, subdir)
        for channel in channels
        for subdir in (channel.platforms or default_platforms)
    ]
    return list(dict.fromkeys(keys))


class SolveOrchestrator:
    """Validation, repodata retrieval and solving for one ``POST /solve``."""

    def __init__(self, cache: MetadataCache, solver: Solver, channel_alias: str) -> None:
        self._cache = cache
        self._solver = solver
        self._channel_alias = channel_alias

    async def handle(self, request: SolveRequest) -> SolveOutcome:
        """Run the request to completion; failures are returned, not raised."""
        try:
            return SolveOutcome(records=await self.solve(request))
        except ApiError as exc:
            return SolveOutcome(error=exc)
        except Exception as exc:
            logger.exception("Unexpected error while solving %s", request.specs)
            return SolveOutcome(error=InternalError(str(exc)))

    async def solve(self, request: SolveRequest) -> list[RepoDataRecord]:
        """Resolve *request* into topologically ordered records.

        Raises:
            ValidationError: before any network or solver work.
            MetadataError: if repodata for any required key cannot be fetched.
            SolverError: if the solver finds no solution.
            InternalError: for anything unexpected.
        """
        validated = self.validate(request)
        keys = metadata_keys(validated.channels, validated.platform)

        try:
            documents = await self._cache.get_all(keys)
        except FetchError as exc:
            logger.warning("Error fetching repodata.json: %s", exc)
            raise MetadataError(exc.url, exc.reason) from exc

        repodata = [documents[key] for key in keys]
        try:
            # The solver is CPU-bound and can take seconds.
            return await asyncio.to_thread(
                self._solver.solve, validated.specs, validated.virtual_packages, repodata
            )
        except UnsolvableError as exc:
            raise SolverError(exc.explanations) from exc
        except Exception as exc:
            logger.exception("Solver failed unexpectedly for specs %s", request.specs)
            raise InternalError("solver failed") from exc

    def validate(self, request: SolveRequest) -> ValidatedRequest:
        specs: list[MatchSpec] = []
        invalid: list[InvalidInput] = []
        for spec in request.specs:
            try:
                specs.append(MatchSpec.parse(spec))
            except InvalidMatchSpec as exc:
                invalid.append(InvalidInput(input=spec, error=str(exc)))
        if invalid:
            raise ValidationError("match specs", invalid)

        virtual_packages: list[GenericVirtualPackage] = []
        for package in request.virtual_packages:
            try:
                virtual_packages.append(parse_virtual_package(package))
            except InvalidVirtualPackage as exc:
                raise ValidationError(
                    "virtual package", [InvalidInput(input=package, error=str(exc))]
                ) from exc

        channels: list[Channel] = []
        if not request.channels:
            invalid.append(InvalidInput(input="", error="at least one channel is required"))
        for channel in request.channels:
            try:
                channels.append(parse_channel(channel, self._channel_alias))
            except InvalidChannel as exc:
                invalid.append(InvalidInput(input=channel, error=str(exc)))
        if invalid:
            raise ValidationError("channels", invalid)

        try:
            platform = parse_platform(request.platform)
        except InvalidPlatform as exc:
            raise ValidationError(
                "platform", [InvalidInput(input=request.platform, error=str(exc))]
            ) from exc

        return ValidatedRequest(
            specs=specs, virtual_packages=virtual_packages, channels=channels, platform=platform
        )
