# file: weather_pipeline/timeseries.py

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from tqdm.asyncio import tqdm

from weather_pipeline.models import FallbackPayload, ForecastSeries, Mode, Resolution, TimePoint, TimeSeries
from weather_pipeline.normalizer import METRICS, METRICS_BY_ID, SERIES_SOURCES, simulate_source_value
from weather_pipeline.result import Failure
from weather_pipeline.utils import (FALLBACK_RESOLUTION_HOURS, forecast_label, parse_timestamp,
                                    point_label)

FORECAST_HORIZON = 168

# Index used when the current hour is missing from the hourly timestamps
SAFE_HISTORY_INDEX = 100
SAFE_FORECAST_INDEX = 0

HISTORY_FIELDS: Dict[str, Tuple[str, ...]] = {
    "temperature": ("avgTemperature",),
    "humidity": ("avgHumidity",),
    "pressure": ("avgPressure",),
    "wind": ("avgWind", "avgWindSpeed"),
    "precipitation": ("avgPrecipitation", "totalRainfall"),
    "uv": ("avgUv", "avgUvIndex"),
    "aqi": ("avgAqi",),
}

FORECAST_FIELDS: Dict[str, Tuple[str, ...]] = {
    "temperature": ("predictedTemperature",),
    "humidity": ("predictedHumidity",),
    "pressure": ("predictedPressure",),
    "wind": ("predictedWindSpeed", "predictedWind"),
    "precipitation": ("predictedPrecipitation",),
    "uv": (),
    "aqi": ("predictedAqi",),
}

# Backend series hold one authoritative value per instant; spread it over the chart sources
BACKEND_SOURCE_SCALE = {
    "IMD": 1.0,
    "KSNDMC": 0.98,
    "WeatherUnion": 1.02,
    "OpenWeather": 0.99,
    "OpenAQ": 1.0,
    "UrbanEmission": 1.0,
    "Google": 1.01,
}


def empty_history() -> TimeSeries:
    return {spec.metric_id: {resolution.value: [] for resolution in Resolution} for spec in METRICS}


def _first_number(record: Dict[str, Any], fields: Tuple[str, ...]) -> Optional[float]:
    for field in fields:
        value = record.get(field)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def _scaled_sources(value: Optional[float]) -> Dict[str, float]:
    if value is None:
        return {}
    return {source: round(value * scale, 2) for source, scale in BACKEND_SOURCE_SCALE.items()}


def _simulated_sources(value: Optional[float], metric_id: str) -> Dict[str, float]:
    if value is None:
        return {}
    return {source: simulate_source_value(value, source, metric_id) for source in SERIES_SOURCES}


# ---------- Backend mode ----------

def historical_points(records: List[Dict[str, Any]], metric_id: str, resolution: Resolution) -> List[TimePoint]:
    """Chronological points for one (metric, resolution) slice of backend history."""
    dated = []
    for record in records:
        if not isinstance(record, dict) or not record.get("date"):
            continue
        dated.append((parse_timestamp(str(record["date"])), record))
    dated.sort(key=lambda item: item[0])
    return [
        TimePoint(timestamp_label=point_label(moment, resolution),
                  per_source_value=_scaled_sources(_first_number(record, HISTORY_FIELDS[metric_id])))
        for moment, record in dated
    ]


async def build_history_backend(client, city_id: str, max_concurrency: int = 8,
                                show_progress: bool = False) -> TimeSeries:
    """Fetch every (metric, resolution) slice concurrently; a failed slice stays empty."""
    semaphore = asyncio.Semaphore(max_concurrency)

    async def fetch_slice(metric_id: str, resolution: Resolution) -> Tuple[str, Resolution, List[TimePoint]]:
        async with semaphore:
            result = await client.fetch_historical(city_id, resolution)
        if isinstance(result, Failure):
            logging.warning(f"History slice {metric_id}/{resolution.value} unavailable: {result}")
            return metric_id, resolution, []
        try:
            return metric_id, resolution, historical_points(result.value, metric_id, resolution)
        except (AttributeError, TypeError, ValueError) as e:
            logging.warning(f"History slice {metric_id}/{resolution.value} malformed: {e}")
            return metric_id, resolution, []

    history = empty_history()
    tasks = [asyncio.ensure_future(fetch_slice(spec.metric_id, resolution))
             for spec in METRICS for resolution in Resolution]
    try:
        with tqdm(total=len(tasks), desc="Fetching history", disable=not show_progress) as pbar:
            for future in asyncio.as_completed(tasks):
                metric_id, resolution, points = await future
                history[metric_id][resolution.value] = points
                pbar.update(1)
    finally:
        for task in tasks:
            task.cancel()
    return history


def build_forecast_backend(predictions: List[Dict[str, Any]]) -> ForecastSeries:
    forecast = {}
    usable = [prediction for prediction in predictions if isinstance(prediction, dict)]
    for spec in METRICS:
        fields = FORECAST_FIELDS[spec.metric_id]
        if not fields:
            forecast[spec.metric_id] = []
            continue
        forecast[spec.metric_id] = [
            TimePoint(timestamp_label=forecast_label(offset),
                      per_source_value=_scaled_sources(_first_number(prediction, fields)))
            for offset, prediction in enumerate(usable[:FORECAST_HORIZON])
        ]
    return forecast


# ---------- Fallback mode ----------

def find_now_index(current_time: Optional[str], hourly_times: List[str], default: int) -> int:
    """Index of the hourly timestamp sharing the current hour, else a safe default."""
    if current_time:
        prefix = current_time[:13]
        for index, timestamp in enumerate(hourly_times):
            if timestamp.startswith(prefix):
                return index
    if not hourly_times:
        return 0
    return min(default, len(hourly_times) - 1)


def _hourly_axis(payload: FallbackPayload) -> Tuple[Optional[str], List[str]]:
    for block in (payload.weather, payload.air_quality):
        if block and (block.get("hourly") or {}).get("time"):
            return (block.get("current") or {}).get("time"), list(block["hourly"]["time"])
    return None, []


def _hourly_value(payload: FallbackPayload, metric_id: str, index: int) -> Optional[float]:
    spec = METRICS_BY_ID[metric_id]
    block = payload.weather if spec.fallback_block == "weather" else payload.air_quality
    series = ((block or {}).get("hourly") or {}).get(spec.fallback_key) or []
    if index >= len(series):
        return None
    value = series[index]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def build_history_fallback(payload: FallbackPayload) -> TimeSeries:
    """Slice every resolution backward from the current hour of the bulk hourly block."""
    current_time, times = _hourly_axis(payload)
    history = empty_history()
    if not times:
        return history

    now_index = find_now_index(current_time, times, SAFE_HISTORY_INDEX)
    for spec in METRICS:
        for resolution in Resolution:
            start = max(0, now_index - FALLBACK_RESOLUTION_HOURS[resolution])
            history[spec.metric_id][resolution.value] = [
                TimePoint(
                    timestamp_label=point_label(parse_timestamp(times[i]), resolution),
                    per_source_value=_simulated_sources(_hourly_value(payload, spec.metric_id, i), spec.metric_id),
                )
                for i in range(start, now_index + 1)
            ]
    return history


def build_forecast_fallback(payload: FallbackPayload) -> ForecastSeries:
    current_time, times = _hourly_axis(payload)
    now_index = find_now_index(current_time, times, SAFE_FORECAST_INDEX)
    end = min(len(times), now_index + FORECAST_HORIZON)
    return {
        spec.metric_id: [
            TimePoint(timestamp_label=forecast_label(i - now_index),
                      per_source_value=_simulated_sources(_hourly_value(payload, spec.metric_id, i), spec.metric_id))
            for i in range(now_index, end)
        ]
        for spec in METRICS
    }


# ---------- Entry points ----------

async def build_history(source, mode: Mode, client=None, max_concurrency: int = 8,
                        show_progress: bool = False) -> TimeSeries:
    """Historical series for every metric and resolution.

    ``source`` is the backend city id in backend mode (slices are fetched via
    ``client``) and the FallbackPayload in fallback mode.
    """
    if mode is Mode.BACKEND:
        return await build_history_backend(client, source, max_concurrency, show_progress)
    return build_history_fallback(source)


def build_forecast(source, mode: Mode) -> ForecastSeries:
    """Forward series: backend predictions list, or the FallbackPayload hourly block."""
    if mode is Mode.BACKEND:
        return build_forecast_backend(source)
    return build_forecast_fallback(source)
