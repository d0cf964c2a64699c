"""Mesh job API: create a job from a photo, poll its status, convert the result."""

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Any, Optional

import structlog

from photomesh.errors import (
    ConfigurationError,
    ImageTooLargeError,
    NotFoundError,
    PhotomeshError,
    ProviderClientError,
    ProviderRejected,
    ValidationError,
)

log = structlog.get_logger(__name__)

router = APIRouter()

# These will be set by main.py during lifespan
_creator = None
_orchestrator = None


def set_creator(creator):
    global _creator
    _creator = creator


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


class MeshOptions(BaseModel):
    quality: str = "fast"
    target_format: Optional[str] = None


class MeshCreateRequest(BaseModel):
    image: Any = None
    options: Optional[MeshOptions] = None


class ConvertRequest(BaseModel):
    format: str = "USDZ"


def to_http_error(exc: PhotomeshError) -> HTTPException:
    """Translate a service error into the HTTP status the browser expects."""
    if isinstance(exc, ImageTooLargeError):
        return HTTPException(status_code=413, detail=f"Image too large: {exc}")
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        log.error("server_misconfigured", error=str(exc))
        return HTTPException(status_code=500, detail="Server configuration error")
    if isinstance(exc, ProviderRejected) and exc.quota_exceeded:
        return HTTPException(status_code=402, detail="Quota/credits exceeded")
    if isinstance(exc, ProviderClientError):
        return HTTPException(status_code=502, detail=f"Provider error: {exc}")
    return HTTPException(status_code=500, detail="Internal server error")


def _require(service, name: str):
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return service


@router.post("/meshes", status_code=202)
async def create_mesh(request: MeshCreateRequest):
    """Submit a photo (base64 data URL) for mesh generation.

    Returns:
        {taskId, status, etaSeconds}
    """
    creator = _require(_creator, "Job creator")
    quality = request.options.quality if request.options else "fast"
    try:
        created = await creator.create(request.image, quality)
    except PhotomeshError as exc:
        raise to_http_error(exc)
    return JSONResponse(status_code=202, content=created.model_dump(mode="json", by_alias=True))


async def _status_response(job_id: str) -> dict:
    orchestrator = _require(_orchestrator, "Status orchestrator")
    if not job_id:
        raise HTTPException(status_code=400, detail="Missing or invalid id")
    try:
        payload = await orchestrator.get_status(job_id)
    except PhotomeshError as exc:
        raise to_http_error(exc)
    return payload.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/status/{job_id}")
async def get_status(job_id: str):
    """Poll a mesh job.

    Returns:
        {taskId, jobId, status, progress (0-1), message, asset?, error?,
         provider?, stage?, fallback?, queueWaitMs?, degraded}
    """
    return await _status_response(job_id)


@router.get("/status")
async def get_status_by_query(id: str = Query("")):
    """Same as GET /status/{job_id}, for clients that pass ?id=."""
    return await _status_response(id)


@router.post("/meshes/{job_id}/convert", status_code=202)
async def convert_mesh(job_id: str, request: Optional[ConvertRequest] = None):
    """Start a format conversion (USDZ by default) of a finished mesh."""
    creator = _require(_creator, "Job creator")
    fmt = request.format if request else "USDZ"
    try:
        created = await creator.convert(job_id, fmt)
    except PhotomeshError as exc:
        raise to_http_error(exc)
    content = created.model_dump(mode="json", by_alias=True)
    content["message"] = f"{fmt.upper()} conversion started"
    return JSONResponse(status_code=202, content=content)
