"""Job registry: create, read, update and expire job records."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog

from photomesh.jobs.models import JobRecord, Provider, Stage
from photomesh.jobs.store import InMemoryJobStore, JobStore

log = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobRegistry:
    """Owns every JobRecord in the process.

    - Records are keyed by the client-visible job id (the first upstream task id)
    - Upstream ids introduced by failover are aliased to the same record
    - Updates are shallow merges with last-write-wins semantics
    - Records are only removed by the age-based expiry sweep
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        clock: Clock = utc_now,
        retention_ms: int = 60 * 60 * 1000,
    ):
        self._store = store if store is not None else InMemoryJobStore()
        self._clock = clock
        self._retention_ms = retention_ms

    def now(self) -> datetime:
        return self._clock()

    def create(
        self,
        task_id: str,
        provider: Provider,
        original_image: Optional[str] = None,
    ) -> JobRecord:
        record = JobRecord(
            job_id=task_id,
            task_id=task_id,
            provider=provider,
            stage=Stage.INIT,
            queue_started_at=self.now(),
            original_image=original_image,
        )
        self._store.set(task_id, record)
        log.info("job_created", job_id=task_id, provider=provider.value)
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        record = self._store.get(job_id)
        if record is None:
            target = self._store.resolve_alias(job_id)
            if target is not None:
                record = self._store.get(target)
        if record is None:
            log.debug("job_not_tracked", job_id=job_id)
        return record

    def update(self, job_id: str, **fields: Any) -> Optional[JobRecord]:
        record = self.get(job_id)
        if record is None:
            log.warning("job_update_skipped", job_id=job_id, reason="unknown id")
            return None

        updated = record.model_copy(update=fields)
        self._store.set(record.job_id, updated)
        log.debug("job_updated", job_id=record.job_id, fields=sorted(fields))
        return updated

    def alias(self, alias: str, job_id: str) -> None:
        """Make `alias` (e.g. a failover task id) resolve to job_id."""
        if alias != job_id:
            self._store.set_alias(alias, job_id)

    def elapsed_queue_ms(self, record: JobRecord) -> int:
        delta = self.now() - record.queue_started_at
        return int(delta.total_seconds() * 1000)

    def expire_older_than(self, max_age_ms: int) -> int:
        """Remove records whose queue start predates now - max_age_ms.

        Returns the number of records removed.
        """
        cutoff = self.now() - timedelta(milliseconds=max_age_ms)
        removed = 0
        for job_id, record in self._store.items():
            if record.queue_started_at < cutoff:
                self._store.delete(job_id)
                self._store.drop_aliases(job_id)
                removed += 1
        if removed:
            log.info("jobs_expired", count=removed, max_age_ms=max_age_ms)
        return removed

    def sweep(self) -> int:
        return self.expire_older_than(self._retention_ms)

    def __len__(self) -> int:
        return len(self._store)
