"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Literal, Optional

from photomesh.errors import ConfigurationError
from photomesh.jobs.models import Provider
from photomesh.providers.tiers import ProviderTier


class Settings(BaseSettings):
    # Upstream provider (primary / free tier)
    provider_api_base: str = "https://api.tripo3d.ai/v2/openapi"
    provider_api_key: str = ""
    primary_submission_mode: Literal["inline", "upload"] = "inline"
    primary_model_version: Optional[str] = None

    # Secondary / paid tier (falls back to the primary values when unset)
    secondary_api_base: Optional[str] = None
    secondary_api_key: Optional[str] = None
    secondary_submission_mode: Literal["inline", "upload"] = "upload"
    secondary_model_version: Optional[str] = "v2.5-20250123"

    provider_timeout_seconds: float = 30.0

    # Failover
    failover_threshold_ms: int = 16000
    disable_failover: bool = False
    failover_on_primary_failure: bool = False

    # Status normalization
    progress_mode: Literal["auto", "percent", "fraction"] = "auto"

    # Job creation
    max_image_bytes: int = 3_000_000
    eta_seconds: int = 60

    # Registry retention
    job_retention_minutes: int = 60

    # Model proxy
    asset_cdn_prefixes: List[str] = ["https://tripo-data.rg1.data.tripo3d.com/"]

    # HTTP
    allowed_origins: List[str] = ["http://localhost:5173"]
    port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def job_retention_ms(self) -> int:
        return self.job_retention_minutes * 60 * 1000

    def tier(self, provider: Provider) -> ProviderTier:
        """Build the connection settings for one provider tier.

        Raises ConfigurationError when the tier has no base URL or key.
        """
        if provider == Provider.PRIMARY:
            base = self.provider_api_base
            key = self.provider_api_key
            mode = self.primary_submission_mode
            version = self.primary_model_version
        else:
            base = self.secondary_api_base or self.provider_api_base
            key = self.secondary_api_key or self.provider_api_key
            mode = self.secondary_submission_mode
            version = self.secondary_model_version

        if not base or not key:
            raise ConfigurationError(
                f"Missing API base URL or key for the {provider.value} provider tier"
            )
        return ProviderTier(
            provider=provider,
            api_base=base.rstrip("/"),
            api_key=key,
            submission_mode=mode,
            model_version=version,
        )

    def tier_configured(self, provider: Provider) -> bool:
        try:
            self.tier(provider)
        except ConfigurationError:
            return False
        return True


settings = Settings()
