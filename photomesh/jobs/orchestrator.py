"""Status orchestrator: the per-poll job state machine.

Each call to get_status() is one poll from the client:

    QUEUED --(queue timeout, failover)--> QUEUED (stage FALLBACK)
    QUEUED / FALLBACK --(upstream running)--> RUNNING (fallback locked)
    RUNNING --> SUCCEEDED | FAILED | TIMEOUT (terminal)

A queued job may also go straight to RUNNING without failover. Polls after the
lock or a terminal state only re-read; they never trigger another failover.
"""

from typing import Dict, Optional, Set

import structlog

from photomesh.errors import NotFoundError, ProviderClientError
from photomesh.jobs.failover import (
    FailoverResult,
    FailoverService,
    should_failover,
    should_failover_on_failure,
)
from photomesh.jobs.models import (
    FallbackInfo,
    FallbackReason,
    JobRecord,
    JobStatus,
    NormalizedStatus,
    Provider,
    Stage,
    StatusPayload,
)
from photomesh.jobs.registry import JobRegistry
from photomesh.providers.client import ProviderClient
from photomesh.providers.extraction import status_message

log = structlog.get_logger(__name__)

# Best guess at the upstream status when only the stage is known
_STAGE_STATUS: Dict[Stage, JobStatus] = {
    Stage.INIT: JobStatus.QUEUED,
    Stage.QUEUED: JobStatus.QUEUED,
    Stage.FALLBACK: JobStatus.QUEUED,
    Stage.GENERATING: JobStatus.RUNNING,
    Stage.COMPLETE: JobStatus.SUCCEEDED,
    Stage.ERROR: JobStatus.FAILED,
}

DEGRADED_MESSAGE = "Provider temporarily unavailable; showing last known status"


class StatusOrchestrator:
    """Resolves a client job id to a normalized status, failing over when needed."""

    def __init__(
        self,
        registry: JobRegistry,
        client: ProviderClient,
        failover: FailoverService,
        threshold_ms: int = 16000,
        failover_enabled: bool = True,
        failover_on_primary_failure: bool = False,
    ):
        self._registry = registry
        self._client = client
        self._failover = failover
        self._threshold_ms = threshold_ms
        self._failover_enabled = failover_enabled
        self._failover_on_primary_failure = failover_on_primary_failure
        # job ids with a secondary submission currently awaiting the provider
        self._failovers_in_flight: Set[str] = set()

    async def get_status(self, job_id: str) -> StatusPayload:
        """Poll one job.

        Raises:
            NotFoundError: the id is unknown upstream (definitive, stop polling)
            ProviderError: an untracked id could not be queried
        """
        record = self._registry.get(job_id)
        if record is None:
            # Not tracked (expired or created elsewhere): ask the provider directly
            status = await self._client.query_status(Provider.PRIMARY, job_id)
            return StatusPayload(**status.model_dump())

        try:
            status = await self._client.query_status(record.provider, record.task_id)
        except NotFoundError:
            log.info(
                "job_not_found_upstream",
                job_id=record.job_id,
                task_id=record.task_id,
                provider=record.provider.value,
            )
            raise
        except ProviderClientError as exc:
            log.warning(
                "status_query_degraded",
                job_id=record.job_id,
                task_id=record.task_id,
                error=str(exc),
            )
            return self._degraded(record)

        current = self._registry.get(record.job_id)
        if current is not None and current.task_id != record.task_id:
            # Another poll switched tiers while this one was waiting
            return self._merge(status, current)
        record = current or record

        if status.status == JobStatus.QUEUED:
            return await self._on_queued(record, status)
        if status.status == JobStatus.FAILED and self._can_fail_over_failure(record):
            result = await self._attempt_failover(record)
            if result is not None and result.succeeded:
                return await self._switch_to_secondary(
                    record, result.task_id, FallbackReason.PRIMARY_FAILED
                )

        record = self._advance(record, status)
        return self._merge(status, record)

    async def _on_queued(self, record: JobRecord, status: NormalizedStatus) -> StatusPayload:
        elapsed = self._registry.elapsed_queue_ms(record)
        if self._failover_enabled and should_failover(record, elapsed, self._threshold_ms):
            log.info(
                "failover_triggered",
                job_id=record.job_id,
                queue_wait_ms=elapsed,
                threshold_ms=self._threshold_ms,
            )
            result = await self._attempt_failover(record)
            if result is not None and result.succeeded:
                return await self._switch_to_secondary(
                    record, result.task_id, FallbackReason.QUEUE_TIMEOUT
                )
            # attempted stays False, so the next poll retries

        record = self._advance(record, status)
        return self._merge(status, record, queue_wait_ms=elapsed)

    async def _attempt_failover(self, record: JobRecord) -> Optional[FailoverResult]:
        """Run the failover subroutine unless another poll already is.

        Returns None when a failover for this job is in flight.
        """
        if record.job_id in self._failovers_in_flight:
            log.debug("failover_in_flight", job_id=record.job_id)
            return None
        self._failovers_in_flight.add(record.job_id)
        try:
            return await self._failover.attempt(record)
        finally:
            self._failovers_in_flight.discard(record.job_id)

    async def _switch_to_secondary(
        self,
        record: JobRecord,
        new_task_id: str,
        reason: FallbackReason,
    ) -> StatusPayload:
        changes = {
            "task_id": new_task_id,
            "provider": Provider.SECONDARY,
            "stage": Stage.FALLBACK,
            "fallback": FallbackInfo(
                attempted=True,
                reason=reason,
                attempted_at=self._registry.now(),
            ),
            "original_image": None,
        }
        updated = self._registry.update(record.job_id, **changes)
        if updated is None:
            updated = record.model_copy(update=changes)
        self._registry.alias(new_task_id, record.job_id)
        log.info(
            "failover_completed",
            job_id=record.job_id,
            task_id=new_task_id,
            reason=reason.value,
        )

        try:
            status = await self._client.query_status(Provider.SECONDARY, new_task_id)
        except (NotFoundError, ProviderClientError) as exc:
            # The new task was just accepted; report it as queued until it shows up
            log.info("failover_status_pending", job_id=record.job_id, error=str(exc))
            status = NormalizedStatus(
                task_id=new_task_id,
                status=JobStatus.QUEUED,
                progress=0.0,
                message=status_message(JobStatus.QUEUED, 0.0),
            )

        updated = self._advance(updated, status)
        queue_wait = (
            self._registry.elapsed_queue_ms(updated)
            if status.status == JobStatus.QUEUED
            else None
        )
        return self._merge(status, updated, queue_wait_ms=queue_wait)

    def _can_fail_over_failure(self, record: JobRecord) -> bool:
        return (
            self._failover_enabled
            and self._failover_on_primary_failure
            and should_failover_on_failure(record)
        )

    def _advance(self, record: JobRecord, status: NormalizedStatus) -> JobRecord:
        """Apply the stage transition implied by an upstream status."""
        changes = {"last_status": status}

        if status.status == JobStatus.QUEUED:
            if record.stage == Stage.INIT:
                changes["stage"] = Stage.QUEUED
        elif status.status == JobStatus.RUNNING:
            if not record.fallback_locked:
                changes["fallback_locked"] = True
                changes["stage"] = Stage.GENERATING
                changes["original_image"] = None
                log.info("fallback_locked", job_id=record.job_id, provider=record.provider.value)
        elif status.status == JobStatus.SUCCEEDED:
            changes["stage"] = Stage.COMPLETE
            changes["original_image"] = None
        else:
            changes["stage"] = Stage.ERROR

        if changes.get("stage") not in (None, record.stage):
            log.info(
                "job_stage_changed",
                job_id=record.job_id,
                old=record.stage.value,
                new=changes["stage"].value,
            )

        updated = self._registry.update(record.job_id, **changes)
        return updated if updated is not None else record.model_copy(update=changes)

    def _merge(
        self,
        status: NormalizedStatus,
        record: JobRecord,
        queue_wait_ms: Optional[int] = None,
    ) -> StatusPayload:
        payload = StatusPayload(**status.model_dump())
        payload.task_id = record.task_id
        payload.job_id = record.job_id
        payload.provider = record.provider
        payload.stage = record.stage
        payload.fallback = record.fallback
        payload.queue_wait_ms = queue_wait_ms
        return payload

    def _degraded(self, record: JobRecord) -> StatusPayload:
        if record.last_status is not None:
            base = record.last_status
        else:
            guessed = _STAGE_STATUS[record.stage]
            base = NormalizedStatus(
                task_id=record.task_id,
                status=guessed,
                progress=1.0 if guessed == JobStatus.SUCCEEDED else 0.0,
                message=status_message(guessed, 0.0),
                error=status_message(guessed, 0.0) if guessed == JobStatus.FAILED else None,
            )
        payload = self._merge(base, record)
        payload.message = DEGRADED_MESSAGE
        payload.degraded = True
        return payload
