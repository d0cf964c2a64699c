"""Health check and provider credential check endpoints."""

from fastapi import APIRouter, HTTPException
import platform
import sys

from photomesh.config import settings
from photomesh.errors import ConfigurationError, ProviderError
from photomesh.jobs.models import Provider

router = APIRouter()
provider_router = APIRouter()

# Set by main.py during lifespan
_registry = None
_client = None


def set_registry(registry):
    global _registry
    _registry = registry


def set_client(client):
    global _client
    _client = client


@router.get("/health")
async def health_check():
    """Service health, configured provider tiers and registry size."""
    return {
        "status": "healthy",
        "providers": {
            p.value: settings.tier_configured(p) for p in Provider
        },
        "failover": {
            "enabled": not settings.disable_failover,
            "threshold_ms": settings.failover_threshold_ms,
        },
        "tracked_jobs": len(_registry) if _registry is not None else 0,
        "python_version": sys.version,
        "platform": platform.platform(),
    }


@provider_router.get("/provider/check")
async def check_provider_keys():
    """Ask each configured tier whether its API key is accepted."""
    if _client is None:
        raise HTTPException(status_code=503, detail="Provider client not initialized")

    results = []
    for provider in Provider:
        try:
            results.append(await _client.check_credentials(provider))
        except ConfigurationError:
            results.append({"provider": provider.value, "configured": False, "keyValid": False})
        except ProviderError as exc:
            results.append({"provider": provider.value, "keyValid": False, "error": str(exc)})
    return {"providers": results}
