"""FastAPI application for the Knowledge Sorter backend.

The app serves the review/pipeline API under /api/v1 and, for its lifetime,
runs the extraction router and the retention sweep as periodic jobs.
"""

import secrets
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from starlette import status

from knowledge_sorter import __version__
from knowledge_sorter.backend.scheduler import PeriodicJob
from knowledge_sorter.backend.services import get_router, get_sweep, shutdown_services
from knowledge_sorter.config import SecurityMode, get_config
from knowledge_sorter.errors import SorterError
from knowledge_sorter.log_config import get_logger

log = get_logger("backend.app")

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str | None:
    """Check X-API-Key when the config requires auth (prod mode with a key set)."""
    config = get_config()
    if not config.require_auth:
        return None
    if not api_key:
        raise _unauthorized("Missing API key")
    if not secrets.compare_digest(api_key, config.api_key or ""):
        raise _unauthorized("Invalid API key")
    return api_key


def _announce_mode() -> None:
    config = get_config()
    if config.mode == SecurityMode.DEV:
        log.warning(
            f"DEV mode: auth disabled, verbose errors, bound to {config.host}. "
            "Set KNOWLEDGE_SORTER_MODE=prod before exposing this service."
        )
        return
    log.info(
        f"PROD mode: auth {'required' if config.require_auth else 'not configured'}, "
        f"sanitized errors, bound to {config.host}"
    )


def build_jobs() -> list[PeriodicJob]:
    """Background jobs for the router and the sweep.

    Jobs look their component up on every tick so a registry reload is
    picked up without restarting the loop.
    """
    config = get_config()

    async def route_batch():
        return await get_router().process_pending()

    async def sweep_cycle():
        return await get_sweep().run_cycle()

    return [
        PeriodicJob(
            name="router",
            job=route_batch,
            interval_seconds=config.router_interval_seconds,
            initial_delay_seconds=config.router_initial_delay_seconds,
            enabled=config.router_enabled,
        ),
        PeriodicJob(
            name="sweep",
            job=sweep_cycle,
            interval_seconds=config.sweep_interval_seconds,
            initial_delay_seconds=config.sweep_initial_delay_seconds,
            enabled=config.sweep_enabled,
        ),
    ]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the periodic jobs on startup; stop them and close services on shutdown."""
    _announce_mode()

    app.state.jobs = build_jobs()
    for job in app.state.jobs:
        await job.start()
    try:
        yield
    finally:
        for job in app.state.jobs:
            await job.stop()
        await shutdown_services()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SorterError)
    async def sorter_error(request: Request, exc: SorterError) -> JSONResponse:
        if exc.status_code >= 500:
            log.error(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc.detail}")
        else:
            log.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        # Dev mode echoes the exception; prod only logs it
        if get_config().verbose_errors:
            log.exception(f"Unhandled error on {request.url.path}: {exc}")
            content = {"detail": str(exc), "type": type(exc).__name__}
        else:
            log.error(f"Unhandled error on {request.url.path}: {type(exc).__name__}: {exc}")
            content = {"detail": "Internal server error"}
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def create_app() -> FastAPI:
    """Build the FastAPI app.

    Auth is decided here: in prod mode with an API key configured, every
    /api/v1 route requires X-API-Key. /health is always open.
    """
    from knowledge_sorter.backend.api import router as api_router

    config = get_config()
    app = FastAPI(
        title="Knowledge Sorter Backend",
        description="Attribution, routing and review gating for captured knowledge",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    _register_error_handlers(app)

    auth = [Depends(verify_api_key)] if config.require_auth else []
    app.include_router(api_router, prefix="/api/v1", dependencies=auth)

    @app.get("/health")
    async def health(request: Request) -> dict:
        jobs = getattr(request.app.state, "jobs", [])
        return {
            "status": "healthy",
            "service": "knowledge-sorter",
            "version": __version__,
            "mode": get_config().mode.value,
            "jobs": [job.status() for job in jobs],
        }

    return app
