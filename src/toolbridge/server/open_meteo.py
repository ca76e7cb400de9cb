"""
Open-Meteo client - external data source of the reference weather tools.

Geocoding and forecast APIs are free and keyless. Failures never raise:
searches degrade to [] and weather lookups to None, and the tool layer
turns those into "No ... found" text.
"""

from typing import Any

import httpx
import structlog

from ..config.schema import ToolServerConfig

logger = structlog.get_logger()

CURRENT_FIELDS = (
    "temperature_2m,relative_humidity_2m,apparent_temperature,precipitation,"
    "weather_code,wind_speed_10m,wind_direction_10m"
)
DAILY_FIELDS = (
    "temperature_2m_max,temperature_2m_min,precipitation_sum,weather_code,wind_speed_10m_max"
)

DEFAULT_COUNT = 5
DEFAULT_DAYS = 7
MAX_DAYS = 16


class OpenMeteoClient:
    """Thin httpx wrapper over the Open-Meteo geocoding and forecast APIs."""

    def __init__(self, config: ToolServerConfig | None = None, http: httpx.Client | None = None):
        self.config = config or ToolServerConfig()
        self.log = logger.bind(component="open_meteo")
        self._owns_http = http is None
        self.http = http or httpx.Client(timeout=self.config.timeout)

    def search_locations(self, name: str, count: int | None = None) -> list[dict[str, Any]]:
        """Geocode a place name. Returns [] when nothing matches or on error."""
        if count is None or count <= 0:
            count = DEFAULT_COUNT

        self.log.info("open_meteo.search.start", name=name, count=count)
        data = self._get(
            self.config.geocoding_api_url,
            {"name": name, "count": count, "format": "json"},
        )
        if data is None:
            return []

        results = data.get("results")
        if not isinstance(results, list):
            return []
        return [r for r in results if isinstance(r, dict)]

    def current_weather(self, latitude: float, longitude: float) -> dict[str, Any] | None:
        """Current conditions for a coordinate, or None."""
        self.log.info("open_meteo.current.start", latitude=latitude, longitude=longitude)
        return self._get(
            self.config.weather_api_url,
            {
                "latitude": latitude,
                "longitude": longitude,
                "current": CURRENT_FIELDS,
                "timezone": "auto",
            },
        )

    def forecast(
        self, latitude: float, longitude: float, days: int | None = None
    ) -> dict[str, Any] | None:
        """Daily forecast for a coordinate, or None.

        Out-of-range day counts (outside 1..16) fall back to 7.
        """
        if days is None or days <= 0 or days > MAX_DAYS:
            days = DEFAULT_DAYS

        self.log.info("open_meteo.forecast.start", latitude=latitude, longitude=longitude, days=days)
        return self._get(
            self.config.weather_api_url,
            {
                "latitude": latitude,
                "longitude": longitude,
                "daily": DAILY_FIELDS,
                "timezone": "auto",
                "forecast_days": days,
            },
        )

    def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any] | None:
        try:
            response = self.http.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            self.log.error("open_meteo.request_failed", url=url, error=str(e))
            return None
        except ValueError as e:
            self.log.error("open_meteo.invalid_response", url=url, error=str(e))
            return None

        if not isinstance(data, dict):
            self.log.error("open_meteo.invalid_response", url=url, error="not a JSON object")
            return None
        return data

    def close(self) -> None:
        if self._owns_http:
            self.http.close()
