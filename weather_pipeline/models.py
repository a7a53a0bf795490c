# file: weather_pipeline/models.py

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ReadingStatus(str, Enum):
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class DataOrigin(str, Enum):
    AGGREGATED_BACKEND = "aggregatedBackend"
    FALLBACK_PROVIDER = "fallbackProvider"


class Mode(str, Enum):
    BACKEND = "backend"
    FALLBACK = "fallback"


class Resolution(str, Enum):
    H12 = "12h"
    H24 = "24h"
    H48 = "48h"
    D7 = "7d"
    D14 = "14d"
    D30 = "30d"


class InsightType(str, Enum):
    ALERT = "alert"
    RECORD = "record"
    TREND = "trend"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SourceReading(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric_id: str = Field(..., description="Metric this reading belongs to")
    source_id: str = Field(..., description="Stable provider identifier")
    display_name: str
    is_official: bool = False
    value: Optional[float] = None
    unit: str = ""
    status: ReadingStatus = ReadingStatus.ACTIVE
    observed_at: str = Field(..., description="Observation time label or ISO timestamp")


class MetricRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric_id: str
    label: str
    readings: List[SourceReading] = Field(..., min_length=1, description="Provider-priority order")


class AqiBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str
    aqi: float
    pm25: float = 0
    pm10: float = 0
    no2: float = 0
    status: str = Field(..., description="Safe, Moderate or Hazardous")


class TimePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp_label: str
    per_source_value: Dict[str, float] = {}


TimeSeries = Dict[str, Dict[str, List[TimePoint]]]
ForecastSeries = Dict[str, List[TimePoint]]


class Insight(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: InsightType
    severity: Severity
    message: str
    timestamp_label: str
    source_label: Optional[str] = None


class WeatherAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    level: Severity
    message: str


class Snapshot(BaseModel):
    """Complete result of one fetch for one city."""
    model_config = ConfigDict(frozen=True)

    city_name: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    observed_at: str
    metric_rows: List[MetricRow]
    aqi_breakdown: List[AqiBreakdown]
    history: TimeSeries
    forecast: ForecastSeries
    insights: List[Insight] = Field(..., max_length=4)
    alerts: List[WeatherAlert] = []
    data_origin: DataOrigin


class CitySuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    region: str = ""
    lat: float = 0
    lng: float = 0


class GeoLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    lat: float
    lng: float
    region: str = ""
    resolved: bool = Field(True, description="False when the default location was substituted")


class PrimaryPayload(BaseModel):
    """Success envelope of the backend's /data/current endpoint."""
    model_config = ConfigDict(frozen=True)

    city_id: str
    city: str
    timestamp: str
    data: List[Dict[str, Any]] = Field(..., min_length=1)


class FallbackPayload(BaseModel):
    """Whatever arrived from the public provider; a failed side is None."""
    model_config = ConfigDict(frozen=True)

    location: GeoLocation
    weather: Optional[Dict[str, Any]] = None
    air_quality: Optional[Dict[str, Any]] = None

    @property
    def responses_received(self) -> int:
        return sum(1 for block in (self.weather, self.air_quality) if block is not None)
