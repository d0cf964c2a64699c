"""Failover policy and the resubmission subroutine.

The policy functions are pure: they look only at the record and the numbers
passed in. FailoverService does the network work and reports the outcome as a
FailoverResult instead of raising.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from photomesh.errors import ConfigurationError, ProviderClientError, ValidationError
from photomesh.io.image_payload import parse_data_url
from photomesh.jobs.models import JobRecord, Provider
from photomesh.providers.client import QUALITY_HIGH, ProviderClient

log = structlog.get_logger(__name__)


def should_failover(record: JobRecord, elapsed_queue_ms: int, threshold_ms: int) -> bool:
    """True when a queued primary job has waited long enough to be replaced."""
    if record.fallback.attempted:
        return False
    if record.fallback_locked:
        return False
    return elapsed_queue_ms >= threshold_ms


def should_failover_on_failure(record: JobRecord) -> bool:
    """True when a primary job failed before it ever started running."""
    return (
        record.provider == Provider.PRIMARY
        and not record.fallback.attempted
        and not record.fallback_locked
    )


@dataclass(frozen=True)
class FailoverResult:
    succeeded: bool
    task_id: Optional[str] = None
    error: Optional[str] = None


class FailoverService:
    """Resubmits a record's original image to the secondary tier."""

    def __init__(self, client: ProviderClient, max_image_bytes: int):
        self._client = client
        self._max_image_bytes = max_image_bytes

    async def attempt(self, record: JobRecord) -> FailoverResult:
        if not record.original_image:
            log.warning("failover_impossible", job_id=record.job_id, reason="no original image")
            return FailoverResult(succeeded=False, error="Original image not retained")

        try:
            image = parse_data_url(record.original_image, self._max_image_bytes)
            task_id = await self._client.submit_job(
                Provider.SECONDARY, image, quality=QUALITY_HIGH
            )
        except (ValidationError, ConfigurationError, ProviderClientError) as exc:
            log.warning(
                "failover_failed",
                job_id=record.job_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return FailoverResult(succeeded=False, error=str(exc))

        log.info(
            "failover_submitted",
            job_id=record.job_id,
            old_task_id=record.task_id,
            new_task_id=task_id,
        )
        return FailoverResult(succeeded=True, task_id=task_id)
