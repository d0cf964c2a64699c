"""Connection settings for a single provider tier."""

from dataclasses import dataclass
from typing import Optional

from photomesh.jobs.models import Provider

INLINE = "inline"
UPLOAD = "upload"


@dataclass(frozen=True)
class ProviderTier:
    provider: Provider
    api_base: str
    api_key: str
    submission_mode: str = INLINE
    model_version: Optional[str] = None

    def __post_init__(self):
        if self.submission_mode not in (INLINE, UPLOAD):
            raise ValueError(
                f"Unknown submission mode '{self.submission_mode}'. "
                f"Available: {[INLINE, UPLOAD]}"
            )

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def __repr__(self) -> str:
        # never include api_key
        return (
            f"ProviderTier(provider={self.provider.value!r}, api_base={self.api_base!r}, "
            f"submission_mode={self.submission_mode!r})"
        )
