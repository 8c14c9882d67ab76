"""
Client configuration via pydantic-settings.
Read from environment variables / .env, same conventions as the API service.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

from tastelog.stays import DEFAULT_DWELL_THRESHOLD_MS, DEFAULT_RADIUS_M, StayConfig


class ClientSettings(BaseSettings):
    # API
    api_base_url: str = "http://localhost:3000"
    api_timeout_s: float = Field(default=15.0, gt=0)

    # Persisted auth snapshot
    auth_storage_path: str = "~/.tastelog/auth.json"

    # Stay detection. 600_000 (10 minutes) is the usual production threshold.
    stay_radius_m: float = Field(default=DEFAULT_RADIUS_M, ge=0)
    stay_dwell_threshold_ms: int = Field(default=DEFAULT_DWELL_THRESHOLD_MS, ge=0)

    # Live location
    live_location_interval_ms: int = Field(default=15_000, ge=0)

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    def stay_config(self) -> StayConfig:
        return StayConfig(radius_m=self.stay_radius_m, dwell_threshold_ms=self.stay_dwell_threshold_ms)


settings = ClientSettings()
