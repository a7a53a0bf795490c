# file: weather_pipeline/orchestrator.py

import asyncio
import logging
from typing import Any, Dict, List, Tuple

from weather_pipeline.config import PipelineConfig
from weather_pipeline.consensus import display_values
from weather_pipeline.errors import BackendUnavailable, FallbackUnavailable
from weather_pipeline.insights import generate, generate_alerts
from weather_pipeline.models import (AqiBreakdown, DataOrigin, FallbackPayload, ForecastSeries, MetricRow, Mode,
                                     PrimaryPayload, Snapshot, TimeSeries)
from weather_pipeline.normalizer import METRICS, build_aqi_breakdown, normalize
from weather_pipeline.provider_client import ProviderClient
from weather_pipeline.result import Failure, FailureReason, Ok
from weather_pipeline.timeseries import build_forecast, build_history
from weather_pipeline.utils import get_current_time

# Coordinates used when the backend's city list has no match
DEFAULT_BACKEND_COORDINATES = (12.9716, 77.5946)


class Orchestrator:
    """Primary fetch, fallback decision and snapshot assembly for one city at a time."""

    def __init__(self, config: PipelineConfig, client: ProviderClient):
        self.config = config
        self.client = client
        self._current: asyncio.Task | None = None

    async def fetch_city_data(self, city: str) -> Snapshot:
        """Build a snapshot from the backend, degrading to the public provider."""
        logging.info(f"Fetching data for {city}")
        primary = await self.client.fetch_primary(city)
        if isinstance(primary, Ok) and not normalize(primary.value, Mode.BACKEND):
            primary = Failure(FailureReason.EMPTY, "no usable metric values in provider entries")
        if isinstance(primary, Ok):
            logging.info(f"Using backend data for {primary.value.city} ({len(primary.value.data)} provider entries)")
            return await self._assemble_backend(primary.value)

        logging.warning(f"Backend unusable for {city}: {primary}")
        if not self.config.fallback_enabled:
            raise BackendUnavailable(f"Backend unavailable for {city} and fallback is disabled", primary)

        logging.info(f"Falling back to public provider for {city}")
        fallback = await self.client.fetch_fallback(city)
        if isinstance(fallback, Failure):
            raise FallbackUnavailable(f"No weather data available for {city}", fallback)
        return await self._assemble_fallback(fallback.value)

    async def load(self, city: str) -> Snapshot | None:
        """Fetch a city, cancelling any fetch still running for an earlier request.

        Returns None when this request is superseded before it completes, so a
        stale snapshot never replaces the one for the newer city.

        This is the entry point for single-view callers, such as one dashboard
        session switching between cities. The HTTP surface calls
        fetch_city_data instead: every request there is independent and no
        later request can supersede it.
        """
        previous = self._current
        if previous is not None and not previous.done():
            logging.info(f"Cancelling superseded fetch before loading {city}")
            previous.cancel()

        task = asyncio.ensure_future(self.fetch_city_data(city))
        self._current = task
        try:
            snapshot = await task
        except asyncio.CancelledError:
            if task.cancelled() and self._current is not task:
                logging.info(f"Discarded superseded fetch for {city}")
                return None
            raise
        if self._current is not task:
            logging.info(f"Discarded stale snapshot for {city}")
            return None
        return snapshot

    async def search_suggestions(self, query: str):
        return await self.client.search_suggestions(query)

    # ---------- Assembly ----------

    @staticmethod
    def _coordinates(cities: List[Dict[str, Any]], payload: PrimaryPayload) -> Tuple[float, float]:
        for city in cities:
            if not isinstance(city, dict):
                continue
            if city.get("cityId") == payload.city_id or str(city.get("name", "")).lower() == payload.city.lower():
                coordinates = city.get("coordinates") or {}
                return (coordinates.get("latitude") or DEFAULT_BACKEND_COORDINATES[0],
                        coordinates.get("longitude") or DEFAULT_BACKEND_COORDINATES[1])
        return DEFAULT_BACKEND_COORDINATES

    async def _assemble_backend(self, payload: PrimaryPayload) -> Snapshot:
        rows = normalize(payload, Mode.BACKEND)
        cities, history, forecast_result = await asyncio.gather(
            self.client.fetch_cities(),
            build_history(payload.city_id, Mode.BACKEND, client=self.client,
                          max_concurrency=self.config.max_concurrent_requests,
                          show_progress=self.config.show_progress),
            self.client.fetch_forecast(payload.city_id),
        )
        if isinstance(forecast_result, Ok):
            forecast = build_forecast(forecast_result.value, Mode.BACKEND)
        else:
            logging.warning(f"Forecast unavailable for {payload.city}: {forecast_result}")
            forecast = {spec.metric_id: [] for spec in METRICS}

        lat, lng = self._coordinates(cities, payload)
        return self._assemble(
            city_name=payload.city, lat=lat, lng=lng, observed_at=payload.timestamp, rows=rows,
            aqi_breakdown=build_aqi_breakdown(payload, Mode.BACKEND), history=history, forecast=forecast,
            raw_readings_count=len(payload.data), origin=DataOrigin.AGGREGATED_BACKEND,
        )

    async def _assemble_fallback(self, payload: FallbackPayload) -> Snapshot:
        rows = normalize(payload, Mode.FALLBACK)
        location = payload.location
        return self._assemble(
            city_name=location.name, lat=location.lat, lng=location.lng, observed_at=get_current_time(),
            rows=rows, aqi_breakdown=build_aqi_breakdown(payload, Mode.FALLBACK),
            history=await build_history(payload, Mode.FALLBACK), forecast=build_forecast(payload, Mode.FALLBACK),
            raw_readings_count=payload.responses_received, origin=DataOrigin.FALLBACK_PROVIDER,
        )

    @staticmethod
    def _assemble(*, city_name: str, lat: float, lng: float, observed_at: str, rows: List[MetricRow],
                  aqi_breakdown: List[AqiBreakdown], history: TimeSeries, forecast: ForecastSeries,
                  raw_readings_count: int, origin: DataOrigin) -> Snapshot:
        return Snapshot(
            city_name=city_name,
            lat=lat,
            lng=lng,
            observed_at=observed_at,
            metric_rows=rows,
            aqi_breakdown=aqi_breakdown,
            history=history,
            forecast=forecast,
            insights=generate(rows, raw_readings_count),
            alerts=generate_alerts(display_values(rows), city_name),
            data_origin=origin,
        )
