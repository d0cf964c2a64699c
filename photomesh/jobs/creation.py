"""Job creation: validate the submitted photo, start a primary job, register it."""

from typing import Callable

import structlog

from photomesh.io.image_payload import parse_data_url
from photomesh.jobs.models import CreatedJob, JobStatus, Provider
from photomesh.jobs.registry import JobRegistry
from photomesh.providers.client import QUALITY_FAST, QUALITY_HIGH, ProviderClient
from photomesh.providers.tiers import ProviderTier

log = structlog.get_logger(__name__)

QUALITIES = (QUALITY_FAST, QUALITY_HIGH)


class JobCreator:
    def __init__(
        self,
        registry: JobRegistry,
        client: ProviderClient,
        tiers: Callable[[Provider], ProviderTier],
        max_image_bytes: int,
        eta_seconds: int = 60,
    ):
        self._registry = registry
        self._client = client
        self._tiers = tiers
        self._max_image_bytes = max_image_bytes
        self._eta_seconds = eta_seconds

    async def create(self, image: str, quality: str = QUALITY_FAST) -> CreatedJob:
        """Submit a new mesh job on the primary tier.

        Raises:
            ValidationError / ImageTooLargeError: bad input
            ConfigurationError: primary tier credentials missing
            UploadError / ProviderRejected / ProviderError: upstream failure
        """
        payload = parse_data_url(image, self._max_image_bytes)
        if quality not in QUALITIES:
            quality = QUALITY_FAST

        # Fail on missing credentials before touching the network
        self._tiers(Provider.PRIMARY)

        self._registry.sweep()

        task_id = await self._client.submit_job(Provider.PRIMARY, payload, quality)
        self._registry.create(task_id, Provider.PRIMARY, original_image=payload.data_url)
        log.info(
            "mesh_job_submitted",
            job_id=task_id,
            file_type=payload.file_type,
            size_bytes=payload.size_bytes,
            width=payload.width,
            height=payload.height,
        )
        return CreatedJob(
            task_id=task_id,
            status=JobStatus.QUEUED,
            eta_seconds=self._eta_seconds,
        )

    async def convert(self, job_id: str, fmt: str = "USDZ") -> CreatedJob:
        """Start a format conversion for a finished job.

        The conversion task runs on whichever tier produced the model and is
        registered with its fallback locked, so it is polled like any other job
        but never fails over.
        """
        record = self._registry.get(job_id)
        if record is not None:
            provider, source_task = record.provider, record.task_id
        else:
            provider, source_task = Provider.PRIMARY, job_id

        task_id = await self._client.request_conversion(provider, source_task, fmt)
        self._registry.create(task_id, provider)
        self._registry.update(task_id, fallback_locked=True)
        return CreatedJob(task_id=task_id, status=JobStatus.QUEUED, eta_seconds=self._eta_seconds)
