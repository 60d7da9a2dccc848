from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from solve_server.models.common import ErrorResponse
from solve_server.models.solve.schemas import SolveRequest, SolveResponse
from solve_server.services.solve.orchestrator import SolveOrchestrator
from solve_server.services.solve.responses import map_outcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/solve", tags=["solve"])


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> SolveOrchestrator:
    """FastAPI dependency returning the orchestrator built at startup."""
    return request.app.state.orchestrator


# ---------------------------------------------------------------------------
# POST /solve
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=SolveResponse,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Solve a conda environment",
)
async def solve_environment(
    payload: SolveRequest,
    orchestrator: SolveOrchestrator = Depends(_get_orchestrator),
) -> JSONResponse:
    """Resolve the requested specs against the given channels and platform.

    - **200** — packages in installation order (dependencies first)
    - **400** — invalid request (``validation``) or repodata unavailable (``metadata``)
    - **409** — no solution exists (``solver``), with the solver's explanation
    - **422** — request body is not the expected JSON shape
    - **500** — unexpected failure (``internal``)
    """
    outcome = await orchestrator.handle(payload)
    response = map_outcome(outcome)
    if outcome.error is not None:
        logger.info(
            "POST /solve %s for %s: %s", response.status_code, payload.specs, outcome.error
        )
    return JSONResponse(status_code=response.status_code, content=response.body)
