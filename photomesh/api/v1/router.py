"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from photomesh.api.v1.health import provider_router
from photomesh.api.v1.meshes import router as meshes_router
from photomesh.api.v1.proxy import router as proxy_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(meshes_router, tags=["meshes"])
v1_router.include_router(proxy_router, tags=["proxy"])
v1_router.include_router(provider_router, tags=["health"])
