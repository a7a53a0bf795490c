# file: weather_pipeline/config.py

import os
from pydantic import BaseModel, ConfigDict, Field
from dotenv import load_dotenv

load_dotenv()

OPEN_METEO_GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
OPEN_METEO_FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
OPEN_METEO_AIR_QUALITY_URL = "https://air-quality-api.open-meteo.com/v1/air-quality"
MAPBOX_GEOCODING_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class PipelineConfig(BaseModel):
    """Options recognized by the orchestrator and the provider client."""
    model_config = ConfigDict(frozen=True)

    use_backend: bool = Field(True, description="Query the aggregating backend before the public provider")
    fallback_enabled: bool = Field(True, description="Degrade to the public provider when the backend fails")
    request_timeout_ms: int = Field(10000, gt=0, description="Bound for every upstream call")
    history_timeout_ms: int = Field(5000, gt=0, description="Bound for a single historical slice request")
    api_base_url: str | None = Field(None, description="Base URL of the aggregating backend")
    geocoding_url: str = OPEN_METEO_GEOCODING_URL
    forecast_url: str = OPEN_METEO_FORECAST_URL
    air_quality_url: str = OPEN_METEO_AIR_QUALITY_URL
    mapbox_url: str = MAPBOX_GEOCODING_URL
    mapbox_token: str | None = None
    target_country: str = Field("IN", min_length=2, max_length=2)
    max_concurrent_requests: int = Field(8, ge=1, description="In-flight historical slice requests")
    show_progress: bool = False

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000

    @property
    def history_timeout(self) -> float:
        return self.history_timeout_ms / 1000

    def validate_backend(self) -> None:
        if self.use_backend and not self.api_base_url:
            raise ValueError("WEATHER_API_BASE_URL is required when the backend path is enabled")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build the configuration from environment variables (.env supported)."""
        config = cls(
            use_backend=_env_flag("WEATHER_USE_BACKEND", True),
            fallback_enabled=_env_flag("WEATHER_FALLBACK_ENABLED", True),
            request_timeout_ms=int(os.getenv("WEATHER_REQUEST_TIMEOUT_MS", "10000")),
            history_timeout_ms=int(os.getenv("WEATHER_HISTORY_TIMEOUT_MS", "5000")),
            api_base_url=os.getenv("WEATHER_API_BASE_URL"),
            mapbox_token=os.getenv("WEATHER_MAPBOX_TOKEN") or None,
            target_country=os.getenv("WEATHER_TARGET_COUNTRY", "IN"),
            max_concurrent_requests=int(os.getenv("WEATHER_MAX_CONCURRENCY", "8")),
            show_progress=_env_flag("WEATHER_SHOW_PROGRESS", False),
        )
        config.validate_backend()
        return config
