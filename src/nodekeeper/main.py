"""nodekeeper FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from nodekeeper import __version__
from nodekeeper.api.dependencies import close_runtime, init_runtime
from nodekeeper.api.errors import NodeKeeperError
from nodekeeper.api.v1 import backups_router, health_router
from nodekeeper.config import get_config
from nodekeeper.infra import ContainerAPI, close_docker
from nodekeeper.logging import setup_logging
from nodekeeper.logging_schema import LogEvent
from nodekeeper.runtimes.docker.runner import LABEL_MANAGED

# Import metrics to ensure they are registered
import nodekeeper.metrics  # noqa: F401

_config = get_config()
setup_logging(_config.logging)
logger = logging.getLogger(__name__)


async def cleanup_orphaned_containers() -> None:
    """Startup cleanup for orphaned snapshot containers.

    Containers created by the runner may be left behind if nodekeeper
    exits while a backup is running. They still hold the target service's
    volumes, so they are force-removed.
    """
    import asyncio

    logger.info("Cleaning up orphaned containers", extra={"event": LogEvent.CLEANUP_STARTED})
    api = ContainerAPI()
    try:
        containers = await api.list(filters={"label": [f"{LABEL_MANAGED}=true"]})
        if not containers:
            logger.info(
                "Cleanup complete",
                extra={"event": LogEvent.CLEANUP_COMPLETED, "removed_count": 0},
            )
            return

        ids = [c["Id"] for c in containers]
        for container_id in ids:
            logger.info(
                "Removing orphaned container",
                extra={"event": LogEvent.CONTAINER_REMOVED, "container": container_id},
            )

        await asyncio.gather(
            *[api.remove(container_id, force=True) for container_id in ids],
            return_exceptions=True,
        )

        logger.info(
            "Cleanup complete",
            extra={"event": LogEvent.CLEANUP_COMPLETED, "removed_count": len(ids)},
        )
    except Exception as e:
        logger.warning(
            "Failed to cleanup orphaned containers",
            extra={"event": LogEvent.CLEANUP_FAILED, "error": str(e)},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "Starting nodekeeper",
        extra={"event": LogEvent.APP_STARTED, "version": __version__},
    )
    init_runtime()
    await cleanup_orphaned_containers()

    yield
    logger.info("Shutting down nodekeeper", extra={"event": LogEvent.APP_STOPPED})
    close_runtime()
    await close_docker()


app = FastAPI(
    title="nodekeeper",
    description="Lifecycle and backup agent for dockerized AVS node instances",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(NodeKeeperError)
async def nodekeeper_error_handler(request: Request, exc: NodeKeeperError) -> JSONResponse:
    """Handle NodeKeeperError exceptions."""
    logger.warning(
        "Request failed",
        extra={
            "event": LogEvent.NODEKEEPER_ERROR,
            "error_code": exc.code.value,
            "error_message": exc.message,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions with logging."""
    logger.exception(
        "Unhandled exception",
        extra={
            "event": LogEvent.UNHANDLED_EXCEPTION,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.middleware("http")
async def api_key_middleware(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    """Validate API key for non-health endpoints."""
    config = get_config()

    if request.url.path in ("/health", "/metrics"):
        return await call_next(request)

    if config.server.api_key:
        auth_header = request.headers.get("Authorization", "")
        expected = f"Bearer {config.server.api_key}"
        if auth_header != expected:
            return Response(
                content='{"detail": "Invalid API key"}',
                status_code=401,
                media_type="application/json",
            )

    return await call_next(request)


# /health endpoint without prefix (for health checks)
app.include_router(health_router)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


app.include_router(backups_router, prefix="/api/v1")


def main() -> None:
    """Run the nodekeeper server."""
    config = get_config()
    uvicorn.run(
        "nodekeeper.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
