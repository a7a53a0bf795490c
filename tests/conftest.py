"""Shared fixtures: upstream payload builders and a scripted aiohttp session."""

from datetime import datetime, timedelta
from typing import Any, Dict, List

import pytest

from weather_pipeline.config import PipelineConfig
from weather_pipeline.models import FallbackPayload, GeoLocation, PrimaryPayload

BACKEND_URL = "http://backend.test/api"

# Hourly axis of the fallback fixture: 7 past days + 7 forecast days
HOURLY_START = datetime(2024, 12, 1, 0, 0)
HOURLY_COUNT = 14 * 24
NOW_TIME = "2024-12-08T10:15"
NOW_INDEX = 7 * 24 + 10


# =============================================================================
# SCRIPTED HTTP SESSION
# =============================================================================

class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None):
        self.status = status
        self.body = body

    async def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Routes GET calls by URL substring; first matching route wins.

    A route is a FakeResponse, an exception to raise, or a callable
    ``(url, params) -> FakeResponse | Exception``.
    """

    def __init__(self, routes: Dict[str, Any] | None = None):
        self.routes = routes or {}
        self.calls: List[tuple] = []

    def get(self, url: str, params: Dict[str, Any] | None = None, timeout=None):
        self.calls.append((url, params))
        for key, route in self.routes.items():
            if key not in url:
                continue
            if callable(route) and not isinstance(route, FakeResponse):
                route = route(url, params)
            if isinstance(route, BaseException):
                raise route
            return route
        return FakeResponse(404, {"success": False, "message": "not found"})

    def calls_to(self, fragment: str) -> List[tuple]:
        return [call for call in self.calls if fragment in call[0]]

    async def close(self):
        pass


def envelope(data: Any, success: bool = True, **extra) -> FakeResponse:
    return FakeResponse(200, {"success": success, "data": data, **extra})


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

def hourly_times(count: int = HOURLY_COUNT) -> List[str]:
    return [(HOURLY_START + timedelta(hours=i)).strftime("%Y-%m-%dT%H:%M") for i in range(count)]


def weather_block(current_time: str = NOW_TIME, count: int = HOURLY_COUNT, **current_overrides) -> Dict[str, Any]:
    current = {
        "time": current_time,
        "temperature_2m": 28.0,
        "relative_humidity_2m": 60.0,
        "surface_pressure": 1012.0,
        "wind_speed_10m": 14.0,
        "precipitation": 0.0,
        "weather_code": 1,
    }
    current.update(current_overrides)
    return {
        "current": current,
        "hourly": {
            "time": hourly_times(count),
            "temperature_2m": [20.0 + i % 10 for i in range(count)],
            "relative_humidity_2m": [55.0 + i % 5 for i in range(count)],
            "precipitation": [0.0 for _ in range(count)],
            "surface_pressure": [1010.0 for _ in range(count)],
            "wind_speed_10m": [12.0 for _ in range(count)],
            "uv_index": [float(i % 8) for i in range(count)],
        },
        "daily": {"time": [], "temperature_2m_max": [], "temperature_2m_min": []},
    }


def air_quality_block(current_time: str = NOW_TIME, count: int = HOURLY_COUNT, us_aqi: float = 100.0):
    return {
        "current": {"time": current_time, "us_aqi": us_aqi, "pm2_5": 35.0, "pm10": 60.0, "nitrogen_dioxide": 18.0},
        "hourly": {
            "time": hourly_times(count),
            "us_aqi": [80.0 + i % 5 for i in range(count)],
            "pm2_5": [30.0 for _ in range(count)],
            "pm10": [55.0 for _ in range(count)],
            "nitrogen_dioxide": [15.0 for _ in range(count)],
        },
    }


def backend_entries() -> List[Dict[str, Any]]:
    return [
        {"sourceApi": "IMD", "timestamp": "2024-12-08T10:00:00Z", "temperature": 29.5, "humidity": 62,
         "pressure": None, "windSpeed": 11.0, "aqi": None},
        {"sourceApi": "OpenWeather", "timestamp": "2024-12-08T10:05:00Z", "temperature": {"current": 30.1},
         "humidity": 58, "pressure": None, "windSpeed": 13.0, "aqi": 120, "pm25": 48.0, "pm10": None},
    ]


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(api_base_url=BACKEND_URL, request_timeout_ms=2000, history_timeout_ms=1000,
                          max_concurrent_requests=4)


@pytest.fixture
def fallback_payload() -> FallbackPayload:
    return FallbackPayload(
        location=GeoLocation(name="Bengaluru", lat=12.97, lng=77.59, region="Karnataka"),
        weather=weather_block(),
        air_quality=air_quality_block(),
    )


@pytest.fixture
def primary_payload() -> PrimaryPayload:
    return PrimaryPayload(city_id="bengaluru", city="Bengaluru", timestamp="2024-12-08T10:05:00Z",
                          data=backend_entries())


@pytest.fixture
def geocoding_response() -> FakeResponse:
    return FakeResponse(200, {"results": [
        {"id": 1, "name": "Bangalore", "latitude": 45.0, "longitude": -93.0, "country_code": "US",
         "admin1": "Minnesota"},
        {"id": 2, "name": "Bengaluru", "latitude": 12.97, "longitude": 77.59, "country_code": "IN",
         "admin1": "Karnataka"},
    ]})


@pytest.fixture
def fallback_routes(geocoding_response) -> Dict[str, Any]:
    return {
        "geocoding-api.open-meteo.com": geocoding_response,
        "api.open-meteo.com/v1/forecast": FakeResponse(200, weather_block()),
        "air-quality-api.open-meteo.com": FakeResponse(200, air_quality_block()),
    }
