"""Translate a ``SolveOutcome`` into an HTTP status and JSON body.

Pure functions; nothing here touches the cache, the network or the solver.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, NamedTuple

from solve_server.core.errors import (
    ApiError,
    MetadataError,
    SolverError,
    ValidationError,
)
from solve_server.models.common import ErrorResponse
from solve_server.models.solve.schemas import SolveResponse
from solve_server.services.solve.orchestrator import SolveOutcome


class WireResponse(NamedTuple):
    status_code: int
    body: dict[str, Any]


def map_outcome(outcome: SolveOutcome) -> WireResponse:
    if outcome.error is not None:
        return map_error(outcome.error)
    # Order is the solver's topological order; never re-sorted here.
    body = SolveResponse(packages=outcome.records or [])
    return WireResponse(200, body.model_dump(mode="json"))


def map_error(error: ApiError) -> WireResponse:
    if isinstance(error, ValidationError):
        status, body = 400, ErrorResponse(
            error_kind="validation",
            message=str(error),
            additional_info=[asdict(detail) for detail in error.details],
        )
    elif isinstance(error, MetadataError):
        status, body = 400, ErrorResponse(
            error_kind="metadata",
            message="unable to retrieve repodata.json",
            additional_info=[f"url: {error.url}", error.reason],
        )
    elif isinstance(error, SolverError):
        status, body = 409, ErrorResponse(
            error_kind="solver",
            message="no solution found for the specified dependencies",
            additional_info=list(error.explanations),
        )
    else:
        status, body = 500, ErrorResponse(error_kind="internal")
    return WireResponse(status, body.model_dump(mode="json"))
