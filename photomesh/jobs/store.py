"""Job store interface and in-memory implementation."""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from photomesh.jobs.models import JobRecord


class JobStore(ABC):
    """Abstract key/value store for job records (in-memory or durable).

    Aliases map an upstream task id that replaced the original one
    to the job id the record is stored under.
    """

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    def set(self, job_id: str, record: JobRecord) -> None:
        ...

    @abstractmethod
    def delete(self, job_id: str) -> None:
        ...

    @abstractmethod
    def items(self) -> Iterable[Tuple[str, JobRecord]]:
        ...

    @abstractmethod
    def set_alias(self, alias: str, job_id: str) -> None:
        ...

    @abstractmethod
    def resolve_alias(self, alias: str) -> Optional[str]:
        ...

    @abstractmethod
    def drop_aliases(self, job_id: str) -> None:
        """Remove every alias pointing at job_id."""
        ...

    def __len__(self) -> int:
        return sum(1 for _ in self.items())


class InMemoryJobStore(JobStore):
    """Process-local store. Contents are lost on restart."""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._aliases: Dict[str, str] = {}

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def set(self, job_id: str, record: JobRecord) -> None:
        self._jobs[job_id] = record

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def items(self) -> List[Tuple[str, JobRecord]]:
        # Snapshot so callers may delete while iterating
        return list(self._jobs.items())

    def set_alias(self, alias: str, job_id: str) -> None:
        self._aliases[alias] = job_id

    def resolve_alias(self, alias: str) -> Optional[str]:
        return self._aliases.get(alias)

    def drop_aliases(self, job_id: str) -> None:
        for alias in [a for a, target in self._aliases.items() if target == job_id]:
            del self._aliases[alias]

    def __len__(self) -> int:
        return len(self._jobs)
