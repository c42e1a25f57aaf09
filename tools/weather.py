"""
Weather tool.

Provides:
- WeatherAPIClient.get_weather(city): current weather for a city name.

Uses a WeatherAPI.com-compatible HTTP API with key from settings.WEATHER_API_KEY.
The response is normalized into models.weather.WeatherSnapshot:
    temperature  <- current.temp_c
    humidity     <- current.humidity
    description  <- current.condition.text

Failures are raised as core.errors.UpstreamFailure, classified by status:
    400 -> INVALID_REQUEST, 404 -> NOT_FOUND, anything else -> SERVICE_ERROR
"""

import logging
from typing import Any, Dict, Optional

import httpx

from core.errors import UpstreamErrorKind, UpstreamFailure
from models.weather import WeatherSnapshot

logger = logging.getLogger(__name__)


def _normalize_weather_response(data: Dict[str, Any]) -> WeatherSnapshot:
    """
    Convert raw provider JSON into a WeatherSnapshot.
    A body missing the expected fields counts as a service error.
    """
    try:
        current = data["current"]
        return WeatherSnapshot(
            temperature=float(current["temp_c"]),
            humidity=int(current["humidity"]),
            description=str(current["condition"]["text"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise UpstreamFailure(UpstreamErrorKind.SERVICE_ERROR, "Malformed weather service response") from e


def _classify_status(status_code: int) -> UpstreamErrorKind:
    if status_code == 400:
        return UpstreamErrorKind.INVALID_REQUEST
    if status_code == 404:
        return UpstreamErrorKind.NOT_FOUND
    return UpstreamErrorKind.SERVICE_ERROR


class WeatherAPIClient:
    """Async weather provider; one shared httpx.AsyncClient per instance."""

    def __init__(self, base_url: str, api_key: Optional[str], timeout: float = 5.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def get_weather(self, city: str) -> WeatherSnapshot:
        logger.info('Fetching weather for city="%s"', city)
        if not self.api_key:
            logger.warning("WEATHER_API_KEY not configured; weather lookups will fail.")
            raise UpstreamFailure(UpstreamErrorKind.SERVICE_ERROR, "Weather service is not configured")

        params = {"key": self.api_key, "q": city, "aqi": "no"}
        try:
            resp = await self._client.get(f"{self.base_url}/current.json", params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error('Weather fetch failed for city="%s": status=%s body=%s', city, status, e.response.text)
            raise UpstreamFailure(_classify_status(status)) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error('Weather fetch failed for city="%s": %s', city, e)
            raise UpstreamFailure(UpstreamErrorKind.SERVICE_ERROR) from e

        snapshot = _normalize_weather_response(data)
        logger.info('Weather fetched successfully for city="%s"', city)
        return snapshot

    async def aclose(self) -> None:
        await self._client.aclose()
