# file: weather_pipeline/provider_client.py

import asyncio
import logging
import ssl
from typing import Any, Dict, List
from urllib.parse import quote

import aiohttp
import certifi
from pydantic import ValidationError

from weather_pipeline.config import PipelineConfig
from weather_pipeline.models import (CitySuggestion, FallbackPayload, GeoLocation, PrimaryPayload,
                                     Resolution)
from weather_pipeline.result import Failure, FailureReason, Ok, Result
from weather_pipeline.utils import get_current_time, history_window

# Used when geocoding yields nothing; keeps the pipeline on a renderable location
DEFAULT_LOCATION = {"lat": 20.5937, "lng": 78.9629}

WEATHER_CURRENT = "temperature_2m,relative_humidity_2m,surface_pressure,wind_speed_10m,precipitation,weather_code"
WEATHER_HOURLY = "temperature_2m,relative_humidity_2m,precipitation,surface_pressure,wind_speed_10m,uv_index,weather_code"
WEATHER_DAILY = "temperature_2m_max,temperature_2m_min"
AIR_QUALITY_FIELDS = "us_aqi,pm2_5,pm10,nitrogen_dioxide"


class ProviderClient:
    """Typed access to the aggregating backend and the public fallback provider.

    Upstream problems never raise out of this class: every call returns either
    ``Ok(value)`` or ``Failure(reason, detail)``, except ``geocode`` and
    ``search_suggestions`` which degrade to a default location or an empty list.
    """

    def __init__(self, config: PipelineConfig, session: aiohttp.ClientSession | None = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ProviderClient":
        self.session  # opens the owned session
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=ssl_context),
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _get_json(self, url: str, params: Dict[str, Any] | None = None,
                        timeout: float | None = None) -> Result[Any]:
        bound = timeout or self.config.request_timeout
        query = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            async with self.session.get(url, params=query, timeout=aiohttp.ClientTimeout(total=bound)) as response:
                if response.status != 200:
                    logging.warning(f"GET {url} returned HTTP {response.status}")
                    return Failure(FailureReason.HTTP_STATUS, f"HTTP {response.status}")
                return Ok(await response.json())
        except asyncio.TimeoutError:
            logging.warning(f"GET {url} timed out after {bound:.1f}s")
            return Failure(FailureReason.TIMEOUT, f"no response within {bound:.1f}s")
        except aiohttp.ContentTypeError as e:
            logging.warning(f"GET {url} returned a non-JSON body: {e}")
            return Failure(FailureReason.REJECTED, "response body is not JSON")
        except aiohttp.ClientError as e:
            logging.error(f"Error fetching {url}: {e}")
            return Failure(FailureReason.CONNECTION, str(e))
        except ValueError as e:
            logging.warning(f"GET {url} returned malformed JSON: {e}")
            return Failure(FailureReason.REJECTED, "malformed JSON body")

    @staticmethod
    def _unwrap_envelope(result: Result[Any]) -> Result[Dict[str, Any]]:
        """Turn a backend ``{success, data, message?}`` envelope into a Result."""
        if isinstance(result, Failure):
            return result
        body = result.value
        if not isinstance(body, dict):
            return Failure(FailureReason.REJECTED, "envelope is not an object")
        if not body.get("success"):
            return Failure(FailureReason.REJECTED, body.get("message") or "success=false")
        return Ok(body)

    def _backend_url(self, path: str) -> str:
        return f"{(self.config.api_base_url or '').rstrip('/')}{path}"

    # ---------- Aggregating backend ----------

    async def fetch_primary(self, city_query: str) -> Result[PrimaryPayload]:
        """Fetch the current multi-provider readings for a city."""
        if not self.config.use_backend or not self.config.api_base_url:
            return Failure(FailureReason.DISABLED, "backend integration disabled")

        result = self._unwrap_envelope(
            await self._get_json(self._backend_url("/data/current"), {"city": city_query})
        )
        if isinstance(result, Failure):
            return result
        body = result.value
        entries = body.get("data") or []
        entries = [entry for entry in entries if isinstance(entry, dict)] if isinstance(entries, list) else []
        if not entries:
            return Failure(FailureReason.EMPTY, f"no provider entries for {city_query}")

        try:
            payload = PrimaryPayload(
                city_id=str(body.get("cityId") or ""),
                city=str(body.get("city") or city_query),
                timestamp=str(body.get("timestamp") or get_current_time()),
                data=entries,
            )
        except ValidationError as e:
            logging.warning(f"Backend envelope for {city_query} failed validation: {e}")
            return Failure(FailureReason.REJECTED, "malformed backend envelope")
        return Ok(payload)

    async def fetch_cities(self) -> List[Dict[str, Any]]:
        """Fetch the backend's city list; empty on any failure."""
        result = self._unwrap_envelope(await self._get_json(self._backend_url("/data/cities")))
        if isinstance(result, Failure):
            logging.warning(f"City list unavailable: {result}")
            return []
        cities = result.value.get("data") or []
        return cities if isinstance(cities, list) else []

    async def fetch_historical(self, city_id: str, resolution: Resolution) -> Result[List[Dict[str, Any]]]:
        """Fetch the historical window matching one resolution."""
        start_date, end_date = history_window(resolution)
        result = self._unwrap_envelope(await self._get_json(
            self._backend_url(f"/data/historical/{quote(city_id)}"),
            {"startDate": start_date, "endDate": end_date},
            timeout=self.config.history_timeout,
        ))
        if isinstance(result, Failure):
            return result
        data = result.value.get("data")
        if not isinstance(data, list):
            return Failure(FailureReason.EMPTY, "historical envelope carries no list")
        return Ok(data)

    async def fetch_forecast(self, city_id: str) -> Result[List[Dict[str, Any]]]:
        """Fetch the backend's hourly predictions for a city."""
        result = self._unwrap_envelope(
            await self._get_json(self._backend_url(f"/data/forecast/{quote(city_id)}"))
        )
        if isinstance(result, Failure):
            return result
        data = result.value.get("data") or {}
        predictions = data.get("predictions") if isinstance(data, dict) else None
        if not isinstance(predictions, list):
            return Failure(FailureReason.EMPTY, "no forecast predictions")
        predictions = [prediction for prediction in predictions if isinstance(prediction, dict)]
        if not predictions:
            return Failure(FailureReason.EMPTY, "no forecast predictions")
        return Ok(predictions)

    # ---------- Public fallback provider ----------

    async def _geocode_open_meteo(self, city: str) -> GeoLocation | None:
        result = await self._get_json(self.config.geocoding_url,
                                      {"name": city, "count": 10, "language": "en", "format": "json"})
        if isinstance(result, Failure):
            return None
        results = (result.value or {}).get("results") or []
        if not results:
            return None
        preferred = next((item for item in results if item.get("country_code") == self.config.target_country),
                         results[0])
        return GeoLocation(name=preferred.get("name") or city, lat=preferred["latitude"],
                           lng=preferred["longitude"], region=preferred.get("admin1") or "")

    async def _geocode_mapbox(self, city: str) -> GeoLocation | None:
        if not self.config.mapbox_token:
            return None
        result = await self._get_json(
            f"{self.config.mapbox_url}/{quote(city)}.json",
            {"access_token": self.config.mapbox_token, "country": self.config.target_country.lower(), "limit": 1},
        )
        if isinstance(result, Failure):
            return None
        features = (result.value or {}).get("features") or []
        if not features:
            return None
        feature = features[0]
        lng, lat = feature["center"][:2]
        region = next((c.get("text", "") for c in feature.get("context") or []
                       if str(c.get("id", "")).startswith("region")), "")
        return GeoLocation(name=feature.get("text") or city, lat=lat, lng=lng, region=region)

    async def geocode(self, city: str) -> GeoLocation:
        """Resolve a free-text city name; never fails."""
        for geocoder in (self._geocode_open_meteo, self._geocode_mapbox):
            try:
                location = await geocoder(city)
            except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
                logging.warning(f"Unusable geocoding result for {city}: {e}")
                location = None
            if location is not None:
                return location
        logging.warning(f"Could not geocode {city}, using approximate coordinates")
        return GeoLocation(name=city, lat=DEFAULT_LOCATION["lat"], lng=DEFAULT_LOCATION["lng"],
                           region="", resolved=False)

    async def fetch_fallback(self, city_query: str) -> Result[FallbackPayload]:
        """Fetch weather and air quality concurrently; one side failing leaves it None."""
        location = await self.geocode(city_query)
        coordinates = {"latitude": location.lat, "longitude": location.lng}
        weather_params = {**coordinates, "current": WEATHER_CURRENT, "hourly": WEATHER_HOURLY,
                          "daily": WEATHER_DAILY, "past_days": 7, "forecast_days": 7}
        air_quality_params = {**coordinates, "current": AIR_QUALITY_FIELDS, "hourly": AIR_QUALITY_FIELDS,
                              "past_days": 7}

        outcomes = await asyncio.gather(
            self._get_json(self.config.forecast_url, weather_params),
            self._get_json(self.config.air_quality_url, air_quality_params),
            return_exceptions=True,
        )
        blocks: List[Dict[str, Any] | None] = []
        failures: List[str] = []
        for name, outcome in zip(("weather", "air quality"), outcomes):
            if isinstance(outcome, Ok) and isinstance(outcome.value, dict):
                blocks.append(outcome.value)
                continue
            if isinstance(outcome, BaseException):
                logging.error(f"Fallback {name} request raised: {outcome!r}")
            failures.append(f"{name}: {outcome}")
            blocks.append(None)

        weather, air_quality = blocks
        if weather is None and air_quality is None:
            return Failure(FailureReason.CONNECTION, "; ".join(failures))
        if failures:
            logging.warning(f"Partial fallback data for {location.name}: {'; '.join(failures)}")
        return Ok(FallbackPayload(location=location, weather=weather, air_quality=air_quality))

    # ---------- Suggestions ----------

    async def search_suggestions(self, query: str) -> List[CitySuggestion]:
        """City suggestions for a partial query; empty on any upstream problem."""
        if len(query.strip()) < 2:
            return []

        if self.config.use_backend and self.config.api_base_url:
            result = self._unwrap_envelope(await self._get_json(self._backend_url("/data/search"), {"q": query}))
            if isinstance(result, Ok) and isinstance(result.value.get("data"), list):
                try:
                    return [
                        CitySuggestion(
                            id=str(city["cityId"]),
                            name=city["name"],
                            region=city.get("state") or "",
                            lat=(city.get("coordinates") or {}).get("latitude") or 0,
                            lng=(city.get("coordinates") or {}).get("longitude") or 0,
                        )
                        for city in result.value["data"]
                    ]
                except (KeyError, TypeError, ValueError) as e:
                    logging.warning(f"Malformed backend search results: {e}")
            else:
                logging.warning("Backend search failed, using public geocoding")

        result = await self._get_json(self.config.geocoding_url,
                                      {"name": query, "count": 10, "language": "en", "format": "json"})
        if isinstance(result, Failure):
            return []
        try:
            return [
                CitySuggestion(id=str(item["id"]), name=item["name"], region=item.get("admin1") or "",
                               lat=item["latitude"], lng=item["longitude"])
                for item in (result.value or {}).get("results") or []
                if item.get("country_code") == self.config.target_country
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logging.error(f"Error fetching suggestions: {e}")
            return []
