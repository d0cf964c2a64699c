"""Job record and status data models for the mesh generation lifecycle."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    """Canonical upstream status vocabulary exposed to callers."""
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMEOUT)


class Provider(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Stage(str, Enum):
    INIT = "INIT"
    QUEUED = "QUEUED"
    FALLBACK = "FALLBACK"
    GENERATING = "GENERATING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class FallbackReason(str, Enum):
    QUEUE_TIMEOUT = "queue-timeout"
    PRIMARY_FAILED = "primary-failed"


class CamelModel(BaseModel):
    """Serializes to camelCase for the browser client."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FallbackInfo(CamelModel):
    attempted: bool = False
    reason: Optional[FallbackReason] = None
    attempted_at: Optional[datetime] = None


class Asset(CamelModel):
    url: str
    format: str = "glb"
    size_bytes: int = 0
    secondary_format_url: Optional[str] = None


class NormalizedStatus(CamelModel):
    """A provider status translated into the canonical shape."""
    task_id: str
    status: JobStatus
    progress: float = 0.0
    message: str = ""
    asset: Optional[Asset] = None
    error: Optional[str] = None


class JobRecord(BaseModel):
    """Tracks one client-visible job across provider tiers."""
    job_id: str
    task_id: str
    provider: Provider = Provider.PRIMARY
    stage: Stage = Stage.INIT
    queue_started_at: datetime
    fallback_locked: bool = False
    fallback: FallbackInfo = Field(default_factory=FallbackInfo)
    original_image: Optional[str] = Field(default=None, repr=False)
    last_status: Optional[NormalizedStatus] = None


class StatusPayload(NormalizedStatus):
    """What the status endpoint returns: upstream status plus record metadata."""
    job_id: Optional[str] = None
    provider: Optional[Provider] = None
    stage: Optional[Stage] = None
    fallback: Optional[FallbackInfo] = None
    queue_wait_ms: Optional[int] = None
    degraded: bool = False


class CreatedJob(CamelModel):
    task_id: str
    status: JobStatus = JobStatus.QUEUED
    eta_seconds: int = 60
