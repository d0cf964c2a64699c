"""Fetch finished models from the provider CDN on behalf of the browser."""

import re
from typing import Sequence, Tuple

import httpx
import structlog

from photomesh.errors import ProviderError, ValidationError

log = structlog.get_logger(__name__)

CONTENT_TYPES = {
    "glb": "model/gltf-binary",
    "usdz": "model/vnd.usdz+zip",
}

_GLB_SUFFIX = re.compile(r"\.glb(?=$|\?)", re.IGNORECASE)


def resolve_model_url(url: str, fmt: str, allowed_prefixes: Sequence[str]) -> Tuple[str, str]:
    """Check the URL against the CDN allow-list and pick the variant to fetch.

    Returns (fetch_url, content_type). format="usdz" swaps the .glb suffix.
    """
    if not url:
        raise ValidationError("Missing url parameter")
    if not any(url.startswith(prefix) for prefix in allowed_prefixes):
        raise ValidationError("Invalid URL - must be from the provider CDN")

    fmt = (fmt or "glb").lower()
    if fmt not in CONTENT_TYPES:
        raise ValidationError(f"Unknown format '{fmt}'. Valid: {list(CONTENT_TYPES)}")

    fetch_url = _GLB_SUFFIX.sub(".usdz", url) if fmt == "usdz" else url
    return fetch_url, CONTENT_TYPES[fmt]


async def fetch_model(
    http: httpx.AsyncClient,
    url: str,
    fmt: str,
    allowed_prefixes: Sequence[str],
) -> Tuple[bytes, str]:
    """Download a model file. Returns (content, content_type)."""
    fetch_url, content_type = resolve_model_url(url, fmt, allowed_prefixes)
    try:
        resp = await http.get(fetch_url)
    except httpx.HTTPError as exc:
        raise ProviderError(f"Failed to fetch model: {type(exc).__name__}") from exc

    if not resp.is_success:
        log.warning("model_fetch_failed", status_code=resp.status_code, format=fmt)
        raise ProviderError(
            f"Failed to fetch model: HTTP {resp.status_code}",
            status_code=resp.status_code,
        )

    log.info("model_fetched", format=fmt, size_bytes=len(resp.content))
    return resp.content, content_type
