"""End-to-end pipeline tests: primary path, fallback degradation, superseded requests."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from weather_pipeline.config import PipelineConfig
from weather_pipeline.errors import BackendUnavailable, FallbackUnavailable
from weather_pipeline.models import DataOrigin, InsightType
from weather_pipeline.orchestrator import DEFAULT_BACKEND_COORDINATES, Orchestrator
from weather_pipeline.provider_client import ProviderClient
from weather_pipeline.result import Failure, FailureReason, Ok
from tests.conftest import FakeResponse, FakeSession, backend_entries, envelope

CURRENT_ENVELOPE = {"cityId": "bengaluru", "city": "Bengaluru", "timestamp": "2024-12-08T10:05:00Z"}


def orchestrator_for(config, routes) -> tuple[Orchestrator, FakeSession]:
    session = FakeSession(routes)
    return Orchestrator(config, ProviderClient(config, session=session)), session


def backend_routes():
    return {
        "/data/current": envelope(backend_entries(), **CURRENT_ENVELOPE),
        "/data/cities": envelope([{"cityId": "bengaluru", "name": "Bengaluru",
                                   "coordinates": {"latitude": 12.98, "longitude": 77.6}}]),
        "/data/historical/": envelope([{"date": "2024-12-08T09:00:00Z", "avgTemperature": 25.0}]),
        "/data/forecast/": envelope({"predictions": [{"predictedTemperature": 31.0}]}),
    }


# =============================================================================
# PRIMARY PATH
# =============================================================================

class TestBackendSnapshot:

    @pytest.mark.asyncio
    async def test_rows_follow_provider_coverage(self, config):
        orchestrator, session = orchestrator_for(config, backend_routes())
        snapshot = await orchestrator.fetch_city_data("Bengaluru")

        rows = {row.metric_id: row for row in snapshot.metric_rows}
        assert snapshot.data_origin is DataOrigin.AGGREGATED_BACKEND
        assert len(rows["temperature"].readings) == 2
        assert [r.is_official for r in rows["temperature"].readings] == [True, False]
        assert "pressure" not in rows
        assert session.calls_to("open-meteo") == []

    @pytest.mark.asyncio
    async def test_history_forecast_and_coordinates(self, config):
        orchestrator, session = orchestrator_for(config, backend_routes())
        snapshot = await orchestrator.fetch_city_data("Bengaluru")

        assert len(session.calls_to("/data/historical/")) == 42
        assert snapshot.history["temperature"]["24h"][0].per_source_value["IMD"] == 25.0
        assert snapshot.forecast["temperature"][0].timestamp_label == "Now"
        assert (snapshot.lat, snapshot.lng) == (12.98, 77.6)
        assert snapshot.observed_at == "2024-12-08T10:05:00Z"
        assert [b.source_id for b in snapshot.aqi_breakdown] == ["OpenWeather"]
        assert snapshot.insights[-1].message == "Aggregated from 2 source readings."

    @pytest.mark.asyncio
    async def test_secondary_backend_failures_do_not_abort(self, config):
        routes = backend_routes()
        routes["/data/cities"] = FakeResponse(500, {})
        routes["/data/historical/"] = asyncio.TimeoutError()
        routes["/data/forecast/"] = envelope(None, success=False, message="no model")
        orchestrator, _ = orchestrator_for(config, routes)
        snapshot = await orchestrator.fetch_city_data("Bengaluru")

        assert snapshot.data_origin is DataOrigin.AGGREGATED_BACKEND
        assert (snapshot.lat, snapshot.lng) == DEFAULT_BACKEND_COORDINATES
        assert all(points == [] for slices in snapshot.history.values() for points in slices.values())
        assert all(points == [] for points in snapshot.forecast.values())


# =============================================================================
# FALLBACK PATH
# =============================================================================

class TestFallbackSnapshot:

    @pytest.mark.asyncio
    async def test_rejected_primary_degrades_to_fallback(self, config, fallback_routes):
        routes = {"/data/current": envelope(None, success=False, message="upstream down"), **fallback_routes}
        orchestrator, session = orchestrator_for(config, routes)
        snapshot = await orchestrator.fetch_city_data("Bengaluru")

        assert snapshot.data_origin is DataOrigin.FALLBACK_PROVIDER
        assert len(snapshot.aqi_breakdown) == 1
        assert snapshot.city_name == "Bengaluru"
        assert len(snapshot.history["temperature"]["24h"]) == 25
        assert len(session.calls_to("air-quality-api")) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("primary_route", [
        FakeResponse(502, {}),
        asyncio.TimeoutError(),
        envelope([], cityId="x", city="X"),
    ])
    async def test_every_primary_failure_triggers_fallback(self, config, fallback_routes, primary_route):
        orchestrator, _ = orchestrator_for(config, {"/data/current": primary_route, **fallback_routes})
        snapshot = await orchestrator.fetch_city_data("Bengaluru")

        assert snapshot.data_origin is DataOrigin.FALLBACK_PROVIDER

    @pytest.mark.asyncio
    async def test_backend_disabled_goes_straight_to_fallback(self, fallback_routes):
        orchestrator, session = orchestrator_for(PipelineConfig(use_backend=False), fallback_routes)
        snapshot = await orchestrator.fetch_city_data("Bengaluru")

        assert snapshot.data_origin is DataOrigin.FALLBACK_PROVIDER
        assert session.calls_to("/data/") == []
        assert snapshot.insights[-1].type is InsightType.TREND

    @pytest.mark.asyncio
    async def test_fallback_disabled_raises(self, fallback_routes):
        config = PipelineConfig(api_base_url="http://backend.test", fallback_enabled=False)
        orchestrator, _ = orchestrator_for(config, {"/data/current": FakeResponse(500, {}), **fallback_routes})

        with pytest.raises(BackendUnavailable) as excinfo:
            await orchestrator.fetch_city_data("Bengaluru")
        assert excinfo.value.failure.reason is FailureReason.HTTP_STATUS

    @pytest.mark.asyncio
    async def test_fallback_failure_surfaces(self, config, fallback_routes):
        fallback_routes["api.open-meteo.com/v1/forecast"] = FakeResponse(500, {})
        fallback_routes["air-quality-api.open-meteo.com"] = FakeResponse(500, {})
        orchestrator, _ = orchestrator_for(config, {"/data/current": FakeResponse(500, {}), **fallback_routes})

        with pytest.raises(FallbackUnavailable):
            await orchestrator.fetch_city_data("Bengaluru")

    @pytest.mark.asyncio
    async def test_geocoding_failure_alone_still_builds_snapshot(self, config, fallback_routes):
        fallback_routes["geocoding-api.open-meteo.com"] = FakeResponse(500, {})
        orchestrator, _ = orchestrator_for(config, {"/data/current": FakeResponse(500, {}), **fallback_routes})
        snapshot = await orchestrator.fetch_city_data("Smalltown")

        assert snapshot.city_name == "Smalltown"
        assert snapshot.data_origin is DataOrigin.FALLBACK_PROVIDER


# =============================================================================
# SUPERSEDED REQUESTS
# =============================================================================

@pytest.mark.asyncio
async def test_newer_request_cancels_and_discards_older(config, fallback_payload):
    never = asyncio.Event()

    async def fetch_primary(city):
        if city == "Mumbai":
            await never.wait()
        return Failure(FailureReason.DISABLED)

    client = MagicMock()
    client.fetch_primary = AsyncMock(side_effect=fetch_primary)
    client.fetch_fallback = AsyncMock(return_value=Ok(fallback_payload))
    orchestrator = Orchestrator(config, client)

    first = asyncio.ensure_future(orchestrator.load("Mumbai"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    second = await orchestrator.load("Bengaluru")

    assert await first is None
    assert second.city_name == "Bengaluru"
    client.fetch_fallback.assert_awaited_once_with("Bengaluru")


@pytest.mark.asyncio
async def test_entries_without_usable_values_trigger_fallback(config, fallback_routes):
    entries = [{"sourceApi": "IMD", "temperature": None, "aqi": None}]
    orchestrator, _ = orchestrator_for(config, {"/data/current": envelope(entries, **CURRENT_ENVELOPE),
                                                **fallback_routes})
    snapshot = await orchestrator.fetch_city_data("Bengaluru")

    assert snapshot.data_origin is DataOrigin.FALLBACK_PROVIDER


@pytest.mark.asyncio
async def test_non_object_history_records_keep_the_snapshot(config):
    routes = backend_routes()
    routes["/data/historical/"] = envelope([None, {"date": "2024-12-08T09:00:00Z", "avgTemperature": 25.0}])
    orchestrator, _ = orchestrator_for(config, routes)
    snapshot = await orchestrator.fetch_city_data("Bengaluru")

    assert snapshot.data_origin is DataOrigin.AGGREGATED_BACKEND
    assert len(snapshot.history["temperature"]["24h"]) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("predictions", [[None], "abc"])
async def test_malformed_forecast_leaves_empty_series(config, predictions):
    routes = backend_routes()
    routes["/data/forecast/"] = envelope({"predictions": predictions})
    orchestrator, _ = orchestrator_for(config, routes)
    snapshot = await orchestrator.fetch_city_data("Bengaluru")

    assert snapshot.data_origin is DataOrigin.AGGREGATED_BACKEND
    assert all(points == [] for points in snapshot.forecast.values())


@pytest.mark.asyncio
async def test_numeric_envelope_timestamp_stays_on_backend(config):
    routes = backend_routes()
    routes["/data/current"] = envelope(backend_entries(), cityId="bengaluru", city="Bengaluru",
                                       timestamp=1733650000)
    orchestrator, _ = orchestrator_for(config, routes)
    snapshot = await orchestrator.fetch_city_data("Bengaluru")

    assert snapshot.data_origin is DataOrigin.AGGREGATED_BACKEND
    assert snapshot.observed_at == "1733650000"


@pytest.mark.asyncio
async def test_envelope_failing_validation_runs_fallback(config, fallback_routes):
    orchestrator, session = orchestrator_for(config, {"/data/current": envelope(backend_entries(),
                                                                                **CURRENT_ENVELOPE),
                                                      **fallback_routes})
    with patch("weather_pipeline.provider_client.PrimaryPayload",
               side_effect=ValidationError.from_exception_data("PrimaryPayload", [])):
        snapshot = await orchestrator.fetch_city_data("Bengaluru")

    assert snapshot.data_origin is DataOrigin.FALLBACK_PROVIDER
    assert session.calls_to("open-meteo")
