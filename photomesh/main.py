"""Photomesh API - photo to 3D mesh via an upstream generation provider."""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photomesh.config import Settings, settings
from photomesh.api.v1.router import v1_router
from photomesh.api.v1.health import router as health_root_router
from photomesh.api.v1 import health as health_api
from photomesh.api.v1 import meshes as meshes_api
from photomesh.api.v1 import proxy as proxy_api
from photomesh.jobs.creation import JobCreator
from photomesh.jobs.failover import FailoverService
from photomesh.jobs.orchestrator import StatusOrchestrator
from photomesh.jobs.registry import JobRegistry
from photomesh.jobs.store import InMemoryJobStore
from photomesh.logger import configure_logging
from photomesh.providers.client import ProviderClient

log = structlog.get_logger(__name__)


def build_services(
    http: httpx.AsyncClient,
    config: Settings = settings,
    registry: Optional[JobRegistry] = None,
):
    """Construct the job services around one shared HTTP client.

    Returns (registry, client, creator, orchestrator).
    """
    if registry is None:
        registry = JobRegistry(
            store=InMemoryJobStore(),
            retention_ms=config.job_retention_ms,
        )
    client = ProviderClient(config.tier, http, progress_mode=config.progress_mode)
    failover = FailoverService(client, max_image_bytes=config.max_image_bytes)
    orchestrator = StatusOrchestrator(
        registry,
        client,
        failover,
        threshold_ms=config.failover_threshold_ms,
        failover_enabled=not config.disable_failover,
        failover_on_primary_failure=config.failover_on_primary_failure,
    )
    creator = JobCreator(
        registry,
        client,
        config.tier,
        max_image_bytes=config.max_image_bytes,
        eta_seconds=config.eta_seconds,
    )
    return registry, client, creator, orchestrator


def wire_services(registry, client, creator, orchestrator, http) -> None:
    """Hand the services to the route modules."""
    meshes_api.set_creator(creator)
    meshes_api.set_orchestrator(orchestrator)
    health_api.set_registry(registry)
    health_api.set_client(client)
    proxy_api.set_http_client(http)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging(settings.log_level, settings.log_json)
    log.info(
        "startup",
        port=settings.port,
        failover_enabled=not settings.disable_failover,
        failover_threshold_ms=settings.failover_threshold_ms,
        progress_mode=settings.progress_mode,
    )

    http = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    registry, client, creator, orchestrator = build_services(http)
    wire_services(registry, client, creator, orchestrator, http)

    yield

    log.info("shutdown", tracked_jobs=len(registry))
    registry.sweep()
    await client.aclose()


app = FastAPI(
    title="Photomesh",
    description="Photo to 3D mesh generation with transparent provider failover",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
