"""Upstream provider client: job submission and status queries per tier.

This is a pure translation layer over the provider REST API. It performs no
retries; every call is a single request bounded by the client timeout, and
every failure surfaces as one of the typed errors in photomesh.errors.
"""

from typing import Any, Callable, Dict

import httpx
import structlog

from photomesh.errors import (
    NotFoundError,
    ProviderError,
    ProviderRejected,
    UploadError,
)
from photomesh.io.image_payload import ImagePayload
from photomesh.jobs.models import NormalizedStatus, Provider
from photomesh.providers.extraction import (
    TASK_ID_RULES,
    UPLOAD_TOKEN_RULES,
    first_match,
    normalize_task,
)
from photomesh.providers.tiers import UPLOAD, ProviderTier

log = structlog.get_logger(__name__)

QUALITY_FAST = "fast"
QUALITY_HIGH = "high"

# Provider error codes meaning "out of credits"
_QUOTA_CODES = {2010}

TierResolver = Callable[[Provider], ProviderTier]


class ProviderClient:
    """Talks to the provider on behalf of one of its configured tiers.

    Usage:
        client = ProviderClient(settings.tier, httpx.AsyncClient(timeout=30))
        task_id = await client.submit_job(Provider.PRIMARY, image, "fast")
        status = await client.query_status(Provider.PRIMARY, task_id)
    """

    def __init__(
        self,
        tiers: TierResolver,
        http: httpx.AsyncClient,
        progress_mode: str = "auto",
    ):
        self._tiers = tiers
        self._http = http
        self._progress_mode = progress_mode

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_job(
        self,
        provider: Provider,
        image: ImagePayload,
        quality: str = QUALITY_FAST,
    ) -> str:
        """Create an image-to-model task and return the upstream task id.

        Raises:
            UploadError: the upload leg of an upload-mode tier failed
            ProviderRejected: the provider refused the task
            ProviderError: timeout, transport failure or malformed response
        """
        tier = self._tiers(provider)

        if tier.submission_mode == UPLOAD:
            file_token = await self._upload_image(tier, image)
        else:
            file_token = image.base64_data

        body: Dict[str, Any] = {
            "type": "image_to_model",
            "file": {"type": image.file_type, "file_token": file_token},
        }
        if tier.model_version:
            body["model_version"] = tier.model_version
        if quality == QUALITY_HIGH:
            body.update({"texture": True, "pbr": True, "texture_quality": "detailed"})

        task_id = await self._create_task(tier, body)
        log.info(
            "provider_task_created",
            provider=provider.value,
            task_id=task_id,
            mode=tier.submission_mode,
            quality=quality,
        )
        return task_id

    async def request_conversion(
        self,
        provider: Provider,
        original_task_id: str,
        fmt: str = "USDZ",
    ) -> str:
        """Start a task exporting an existing model to another format."""
        tier = self._tiers(provider)
        body = {
            "type": "convert_model",
            "original_model_task_id": original_task_id,
            "format": fmt.upper(),
        }
        task_id = await self._create_task(tier, body)
        log.info(
            "provider_conversion_created",
            provider=provider.value,
            original_task_id=original_task_id,
            task_id=task_id,
            format=fmt,
        )
        return task_id

    async def _upload_image(self, tier: ProviderTier, image: ImagePayload) -> str:
        files = {"file": (image.filename, image.raw_bytes(), image.mime_type)}
        try:
            resp = await self._http.post(
                f"{tier.api_base}/upload", headers=tier.headers, files=files
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"Image upload failed: {type(exc).__name__}") from exc

        if not resp.is_success:
            log.warning(
                "provider_upload_failed",
                provider=tier.provider.value,
                status_code=resp.status_code,
                body=resp.text[:500],
            )
            raise UploadError(
                f"Image upload failed with HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        data = _json(resp)
        token = first_match(UPLOAD_TOKEN_RULES, data)
        if not token:
            raise UploadError("Image upload response did not include a file token")
        return str(token)

    async def _create_task(self, tier: ProviderTier, body: Dict[str, Any]) -> str:
        try:
            resp = await self._http.post(
                f"{tier.api_base}/task", headers=tier.headers, json=body
            )
        except httpx.TimeoutException as exc:
            raise ProviderError("Provider timed out creating the task") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider request failed: {type(exc).__name__}") from exc

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            if resp.is_success:
                raise ProviderError("Provider returned a non-JSON response")
            data = {}
        code = data.get("code") if isinstance(data, dict) else None

        if not resp.is_success or (code not in (None, 0)):
            detail = (data.get("message") if isinstance(data, dict) else None) or resp.text[:500]
            quota = resp.status_code == 402 or code in _QUOTA_CODES
            log.warning(
                "provider_task_rejected",
                provider=tier.provider.value,
                status_code=resp.status_code,
                code=code,
                quota_exceeded=quota,
                detail=detail,
            )
            if quota:
                raise ProviderRejected(
                    "Quota/credits exceeded",
                    status_code=resp.status_code,
                    quota_exceeded=True,
                )
            raise ProviderRejected(
                f"Provider rejected the task: {detail or 'Unknown error'}",
                status_code=resp.status_code,
            )

        task_id = first_match(TASK_ID_RULES, data)
        if not task_id:
            raise ProviderError("Provider response did not include a task id")
        return str(task_id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def query_status(self, provider: Provider, task_id: str) -> NormalizedStatus:
        """Fetch and normalize the status of an upstream task.

        Raises:
            NotFoundError: the provider does not know the task
            ProviderError: any other failure, including timeouts
        """
        tier = self._tiers(provider)
        try:
            resp = await self._http.get(
                f"{tier.api_base}/task/{task_id}", headers=tier.headers
            )
        except httpx.TimeoutException as exc:
            raise ProviderError("Provider timed out reporting task status") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider request failed: {type(exc).__name__}") from exc

        if resp.status_code == 404:
            raise NotFoundError(f"Unknown taskId {task_id} (expired or never existed)")
        if not resp.is_success:
            log.warning(
                "provider_status_failed",
                provider=provider.value,
                task_id=task_id,
                status_code=resp.status_code,
                body=resp.text[:500],
            )
            raise ProviderError(
                f"Provider returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        data = _json(resp)
        status = normalize_task(provider, data, task_id, self._progress_mode)
        log.debug(
            "provider_status",
            provider=provider.value,
            task_id=task_id,
            status=status.status.value,
            progress=status.progress,
        )
        return status

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def check_credentials(self, provider: Provider) -> Dict[str, Any]:
        """Call the balance endpoint to see whether the tier's key works."""
        tier = self._tiers(provider)
        try:
            resp = await self._http.get(
                f"{tier.api_base}/user/balance", headers=tier.headers
            )
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider request failed: {type(exc).__name__}") from exc

        balance = None
        if resp.is_success:
            data = _json(resp)
            balance = data.get("data") if isinstance(data, dict) else None
        return {
            "provider": provider.value,
            "status": resp.status_code,
            "keyValid": resp.is_success,
            "balance": balance,
        }


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderError("Provider returned a non-JSON response") from exc
