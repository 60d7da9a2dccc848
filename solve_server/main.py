from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from solve_server.api.router import router
from solve_server.core.config import settings
from solve_server.repositories.repodata.cache import MetadataCache, run_periodic_gc
from solve_server.services.solve.orchestrator import SolveOrchestrator
from solve_server.solver.solver import ResolvelibSolver
from solve_server.workers.fetcher import close_http_client, fetch_repodata
from solve_server.workers.limiter import FetchLimiter


def _configure_logging() -> None:
    """Configure the ``solve_server`` logger namespace.

    ``logging.basicConfig`` is a no-op when the root logger already has
    handlers (e.g. when uvicorn sets up its own handlers before our lifespan
    runs).  Configuring the ``solve_server`` namespace directly, with
    ``propagate = False``, ensures all application logs reach stdout
    regardless of uvicorn's root-logger setup.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )
    app_log = logging.getLogger("solve_server")
    app_log.setLevel(level)
    if not app_log.handlers:
        app_log.addHandler(handler)
    app_log.propagate = False


_configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # ── Startup ──────────────────────────────────────────────────────
    cache = MetadataCache(
        fetch_repodata,
        FetchLimiter(settings.concurrent_repodata_downloads),
        ttl=settings.repodata_cache_ttl_seconds,
    )
    app.state.repodata_cache = cache
    app.state.orchestrator = SolveOrchestrator(
        cache,
        ResolvelibSolver(max_rounds=settings.solver_max_rounds),
        channel_alias=settings.channel_alias,
    )
    gc_task = None
    if settings.cache_gc_interval_seconds > 0:
        gc_task = asyncio.create_task(
            run_periodic_gc(cache, settings.cache_gc_interval_seconds), name="repodata cache gc"
        )
    yield
    # ── Shutdown ─────────────────────────────────────────────────────
    if gc_task is not None:
        gc_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await gc_task
    await cache.aclose()
    await close_http_client()


app = FastAPI(
    title="Conda Solve Server",
    description="Solves conda environments against cached channel repodata.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port)
