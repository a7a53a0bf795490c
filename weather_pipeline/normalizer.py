# file: weather_pipeline/normalizer.py

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from weather_pipeline.models import (AqiBreakdown, FallbackPayload, MetricRow, Mode, PrimaryPayload,
                                     ReadingStatus, SourceReading)
from weather_pipeline.utils import aqi_status


@dataclass(frozen=True)
class MetricSpec:
    metric_id: str
    label: str
    unit: str
    backend_fields: Tuple[str, ...]
    fallback_key: str
    fallback_block: str = "weather"


METRICS: Tuple[MetricSpec, ...] = (
    MetricSpec("temperature", "Temperature", "°C", ("temperature",), "temperature_2m"),
    MetricSpec("humidity", "Humidity", "%", ("humidity",), "relative_humidity_2m"),
    MetricSpec("pressure", "Pressure", "hPa", ("pressure",), "surface_pressure"),
    MetricSpec("wind", "Wind Speed", "km/h", ("windSpeed", "wind"), "wind_speed_10m"),
    MetricSpec("precipitation", "Precipitation", "mm", ("precipitation", "rainfall"), "precipitation"),
    MetricSpec("uv", "UV Index", "UV", ("uvIndex", "uv"), "uv_index"),
    MetricSpec("aqi", "Air Quality", "AQI", ("aqi",), "us_aqi", "air_quality"),
)
METRICS_BY_ID = {spec.metric_id: spec for spec in METRICS}

# Government / authoritative providers
OFFICIAL_SOURCES = frozenset({"IMD", "KSNDMC"})

# State-level authorities and the administrative region they cover
REGIONAL_SOURCES = {"KSNDMC": "Karnataka"}

# Display sources synthesized per metric in fallback mode, in priority order.
# uv has no current reading upstream and only appears in the time series.
FALLBACK_SOURCES: Dict[str, Tuple[str, ...]] = {
    "temperature": ("IMD", "KSNDMC", "WeatherUnion", "OpenWeather"),
    "humidity": ("IMD", "KSNDMC", "WeatherUnion", "OpenWeather"),
    "pressure": ("IMD", "KSNDMC", "WeatherUnion"),
    "wind": ("IMD", "WeatherUnion", "OpenWeather"),
    "precipitation": ("IMD", "WeatherUnion", "OpenWeather"),
    "aqi": ("OpenAQ", "UrbanEmission", "Google"),
}

# Every source drawn on the fallback charts
SERIES_SOURCES: Tuple[str, ...] = ("IMD", "KSNDMC", "WeatherUnion", "OpenWeather", "OpenAQ", "UrbanEmission",
                                   "Google")

SOURCE_BIAS = {"IMD": 0.0, "KSNDMC": -0.2, "WeatherUnion": 0.3}

FALLBACK_PROVIDER_ID = "Open-Meteo"


def simulate_source_value(base_value: float, source_id: str, metric_id: str) -> float:
    """Spread one measured value over a display source.

    The deviation is a pure function of the source and metric names plus the
    fixed per-source biases, rounded to one decimal. Same inputs always give
    the same output.
    """
    seed = len(source_id) + len(metric_id)
    deviation = 0.0
    if metric_id == "temperature":
        deviation = (seed % 3 - 1.5) * 0.3
    elif metric_id == "humidity":
        deviation = seed % 5 - 2.5
    elif metric_id == "aqi":
        deviation = (seed % 10 - 5) * 2
    elif metric_id == "precipitation":
        deviation = 0.0 if seed % 2 == 0 else 0.2

    deviation += SOURCE_BIAS.get(source_id, 0.0)
    if source_id == "UrbanEmission" and metric_id == "aqi":
        deviation += 5
    return round(base_value + deviation, 1)


def is_official(source_id: str, region: str | None = None) -> bool:
    """Official status; state authorities only count inside their region when one is given."""
    if source_id not in OFFICIAL_SOURCES:
        return False
    if region is None or source_id not in REGIONAL_SOURCES:
        return True
    return REGIONAL_SOURCES[source_id] == region


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, dict):
        value = value.get("current")
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _entry_value(entry: Dict[str, Any], spec: MetricSpec) -> Optional[float]:
    for field in spec.backend_fields:
        value = _as_number(entry.get(field))
        if value is not None:
            return value
    return None


def _entry_status(entry: Dict[str, Any]) -> ReadingStatus:
    try:
        return ReadingStatus(entry.get("status", ReadingStatus.ACTIVE.value))
    except ValueError:
        return ReadingStatus.ACTIVE


def _source_id(entry: Dict[str, Any]) -> str | None:
    return entry.get("sourceApi") or entry.get("source")


def normalize_backend(payload: PrimaryPayload) -> List[MetricRow]:
    rows = []
    for spec in METRICS:
        readings = []
        for entry in payload.data:
            source_id = _source_id(entry)
            value = _entry_value(entry, spec)
            if source_id is None or value is None:
                continue
            readings.append(SourceReading(
                metric_id=spec.metric_id,
                source_id=source_id,
                display_name=entry.get("displayName") or source_id,
                is_official=is_official(source_id),
                value=value,
                unit=spec.unit,
                status=_entry_status(entry),
                observed_at=str(entry.get("timestamp") or payload.timestamp),
            ))
        if readings:
            rows.append(MetricRow(metric_id=spec.metric_id, label=spec.label, readings=readings))
    return rows


def _current_block(payload: FallbackPayload, block: str) -> Dict[str, Any]:
    source = payload.weather if block == "weather" else payload.air_quality
    return (source or {}).get("current") or {}


def normalize_fallback(payload: FallbackPayload) -> List[MetricRow]:
    region = payload.location.region
    rows = []
    for spec in METRICS:
        sources = FALLBACK_SOURCES.get(spec.metric_id)
        if not sources:
            continue
        current = _current_block(payload, spec.fallback_block)
        base_value = _as_number(current.get(spec.fallback_key))
        if base_value is None:
            continue
        observed_at = str(current.get("time") or "Live")
        readings = [
            SourceReading(
                metric_id=spec.metric_id,
                source_id=source_id,
                display_name=source_id,
                is_official=source_id in OFFICIAL_SOURCES,
                value=simulate_source_value(base_value, source_id, spec.metric_id),
                unit=spec.unit,
                observed_at=observed_at,
            )
            for source_id in sources
            if source_id not in REGIONAL_SOURCES or is_official(source_id, region)
        ]
        rows.append(MetricRow(metric_id=spec.metric_id, label=spec.label, readings=readings))
    return rows


def normalize(payload: PrimaryPayload | FallbackPayload, mode: Mode) -> List[MetricRow]:
    """Convert a provider payload into per-metric rows, omitting metrics with no readings."""
    if mode is Mode.BACKEND:
        return normalize_backend(payload)
    return normalize_fallback(payload)


def build_aqi_breakdown(payload: PrimaryPayload | FallbackPayload, mode: Mode) -> List[AqiBreakdown]:
    """Per-provider AQI and pollutant values."""
    if mode is Mode.BACKEND:
        breakdown = []
        for entry in payload.data:
            aqi = _as_number(entry.get("aqi"))
            if aqi is None or _source_id(entry) is None:
                continue
            breakdown.append(AqiBreakdown(
                source_id=_source_id(entry),
                aqi=aqi,
                pm25=_as_number(entry.get("pm25")) or 0,
                pm10=_as_number(entry.get("pm10")) or 0,
                no2=_as_number(entry.get("no2")) or 0,
                status=aqi_status(aqi),
            ))
        return breakdown

    current = _current_block(payload, "air_quality")
    aqi = _as_number(current.get("us_aqi"))
    if aqi is None:
        return []
    return [AqiBreakdown(
        source_id=FALLBACK_PROVIDER_ID,
        aqi=aqi,
        pm25=_as_number(current.get("pm2_5")) or 0,
        pm10=_as_number(current.get("pm10")) or 0,
        no2=_as_number(current.get("nitrogen_dioxide")) or 0,
        status=aqi_status(aqi),
    )]
