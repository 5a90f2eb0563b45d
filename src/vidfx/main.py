"""Main entry point for the vidfx backend."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vidfx import __version__
from vidfx.api.deps import (
    AppServices,
    PrincipalResolver,
    init_services,
    static_token_resolver,
)
from vidfx.api.routes import health, transformations
from vidfx.config import Settings, settings
from vidfx.errors import VidFXError
from vidfx.jobs.manager import JobManager
from vidfx.jobs.repository import TransformationRepository
from vidfx.jobs.tokens import AccessTokenIssuer
from vidfx.services.interfaces import IObjectStorage
from vidfx.services.storage import HTTPObjectStorage, LocalObjectStorage
from vidfx.worker.task import TransformWorker

logger = logging.getLogger(__name__)


def build_storage(config: Settings) -> IObjectStorage:
    """Pick the HTTP storage API when configured, the filesystem otherwise."""
    if config.storage_url:
        if not config.storage_service_key:
            raise ValueError("VIDFX_STORAGE_SERVICE_KEY is required with VIDFX_STORAGE_URL")
        return HTTPObjectStorage(config.storage_url, config.storage_service_key, bucket=config.bucket)
    return LocalObjectStorage(config.storage_root, bucket=config.bucket)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Clean up background jobs and clients on shutdown."""
    yield
    services: AppServices = app.state.services
    await services.job_manager.shutdown()
    if isinstance(services.storage, HTTPObjectStorage):
        await services.storage.aclose()


async def _vidfx_error_handler(request: Request, exc: VidFXError) -> JSONResponse:
    logger.error("Unhandled %s on %s: %s", exc.kind, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc), "kind": exc.kind})


def create_app(
    config: Settings | None = None,
    *,
    storage: IObjectStorage | None = None,
    repository: TransformationRepository | None = None,
    worker: TransformWorker | None = None,
    principal_resolver: PrincipalResolver | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Record creation schedules the worker through the repository's
    insert hook.
    """
    config = config or settings
    storage = storage or build_storage(config)
    repository = repository or TransformationRepository()
    worker = worker or TransformWorker(
        storage,
        repository,
        ffmpeg_binary=config.ffmpeg_binary,
        scratch_dir=config.scratch_dir,
        throttle_interval=config.progress_throttle_seconds,
    )
    job_manager = JobManager(worker, max_concurrent=config.max_concurrent_jobs)
    repository.add_insert_hook(job_manager.schedule)

    app = FastAPI(
        title="vidfx",
        description="Video effect pipeline with server-side processing",
        version=__version__,
        lifespan=lifespan,
    )
    init_services(
        app,
        AppServices(
            repository=repository,
            job_manager=job_manager,
            tokens=AccessTokenIssuer(ttl_seconds=config.access_token_ttl_seconds),
            storage=storage,
            resolve_principal=principal_resolver or static_token_resolver(config.api_tokens),
            signed_url_ttl=config.signed_url_ttl_seconds,
        ),
    )
    app.add_exception_handler(VidFXError, _vidfx_error_handler)

    # Include API routes
    app.include_router(health.router)
    app.include_router(transformations.router)

    return app


def main() -> None:
    """Run the application."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings.ensure_directories()
    uvicorn.run(
        "vidfx.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
