"""Error taxonomy shared by the registry, provider client and routes."""

from typing import Optional


class PhotomeshError(Exception):
    """Base class for all service errors."""


class ValidationError(PhotomeshError):
    """Bad input from the caller. Never retried."""


class ImageTooLargeError(ValidationError):
    def __init__(self, size_bytes: int, max_bytes: int):
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        super().__init__(
            f"Image is {size_bytes / 1_000_000:.1f} MB; "
            f"the limit is {max_bytes / 1_000_000:.1f} MB"
        )


class ConfigurationError(PhotomeshError):
    """Server misconfiguration, e.g. missing upstream credentials.

    Messages name the missing setting, never its value.
    """


class NotFoundError(PhotomeshError):
    """The job id is unknown to the registry and to the upstream provider."""


class ProviderClientError(PhotomeshError):
    """Any failure talking to the upstream provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UploadError(ProviderClientError):
    """The image-upload leg of a submission failed."""


class ProviderRejected(ProviderClientError):
    """The provider refused to create a job."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        quota_exceeded: bool = False,
    ):
        super().__init__(message, status_code)
        self.quota_exceeded = quota_exceeded


class ProviderError(ProviderClientError):
    """Transport failure, timeout or unexpected provider response."""
