"""Model proxy: serves CDN-hosted meshes from our origin so the viewer avoids CORS."""

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from photomesh.config import settings
from photomesh.errors import ProviderError, ValidationError
from photomesh.providers.assets import fetch_model

router = APIRouter()

# Set by main.py during lifespan (same pattern as meshes.py)
_http = None


def set_http_client(http):
    global _http
    _http = http


@router.get("/proxy-model")
async def proxy_model(url: str = Query(""), format: str = Query("glb")):
    """Stream a model file from the provider CDN.

    format is one of: glb | usdz
    """
    if _http is None:
        raise HTTPException(status_code=503, detail="HTTP client not initialized")

    try:
        content, content_type = await fetch_model(
            _http, url, format, settings.asset_cdn_prefixes
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ProviderError as exc:
        status = exc.status_code if exc.status_code in (403, 404) else 502
        raise HTTPException(status_code=status, detail=str(exc))

    return Response(
        content=content,
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=31536000"},
    )
