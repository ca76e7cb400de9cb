"""
Tool catalog of the reference MCP endpoint.

A ToolCatalog maps tool names to (schema, handler). Handlers receive the
`arguments` object of a tools/call request and return plain text, which
the catalog wraps as MCP content: {"content": [{"type": "text", "text": ...}]}.

The built-in catalog exposes three weather tools backed by Open-Meteo.
"""

from dataclasses import dataclass
from typing import Any, Callable

import structlog

from .open_meteo import DEFAULT_COUNT, DEFAULT_DAYS, OpenMeteoClient
from .weather_codes import describe

logger = structlog.get_logger()

ToolHandler = Callable[[dict[str, Any]], str]


class ToolArgumentError(ValueError):
    """Error raised when a tool receives missing or invalid arguments."""

    pass


@dataclass(frozen=True)
class ToolSpec:
    """A tool served by the endpoint."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler

    def to_mcp(self) -> dict[str, Any]:
        """Entry of a tools/list result."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolCatalog:
    """Fixed set of tools served by the endpoint."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    def list_tools(self) -> list[dict[str, Any]]:
        return [spec.to_mcp() for spec in self._tools.values()]

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def call(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Invoke a tool and wrap its text output as MCP content.

        An unknown name yields an `isError` result. Exceptions raised by
        the handler propagate to the dispatcher.
        """
        spec = self._tools.get(name)
        if spec is None:
            logger.warning("server.tool.unknown", tool=name)
            return text_content(f"Unknown tool: {name}", is_error=True)

        logger.info("server.tool.call", tool=name, arguments=arguments)
        return text_content(spec.handler(arguments))

    def __len__(self) -> int:
        return len(self._tools)


def text_content(text: str, is_error: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


# ── Argument helpers ──────────────────────────────────────────────────────


def _required(arguments: dict[str, Any], key: str) -> Any:
    value = arguments.get(key)
    if value is None:
        raise ToolArgumentError(f"Missing required argument: {key}")
    return value


def _number(arguments: dict[str, Any], key: str) -> float:
    value = _required(arguments, key)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ToolArgumentError(f"Argument '{key}' must be a number") from e


def _integer(arguments: dict[str, Any], key: str, default: int) -> int:
    value = arguments.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ToolArgumentError(f"Argument '{key}' must be an integer") from e


# ── Formatting ────────────────────────────────────────────────────────────


def format_locations(locations: list[dict[str, Any]]) -> str:
    if not locations:
        return "No locations found"

    lines = [f"Found {len(locations)} location(s):", ""]
    for i, loc in enumerate(locations, start=1):
        header = f"{i}. {loc.get('name', '')}"
        if loc.get("country") is not None:
            header += f", {loc['country']}"
            if loc.get("country_code") is not None:
                header += f" ({loc['country_code']})"
        if loc.get("admin1") is not None:
            header += f" - {loc['admin1']}"
        lines.append(header)

        if loc.get("latitude") is not None and loc.get("longitude") is not None:
            lines.append(f"   Coordinates: {loc['latitude']:.4f}, {loc['longitude']:.4f}")
        if loc.get("timezone") is not None:
            lines.append(f"   Timezone: {loc['timezone']}")
        if loc.get("elevation") is not None:
            lines.append(f"   Elevation: {loc['elevation']}m")
        lines.append("")

    return "\n".join(lines) + "\n"


def format_current_weather(weather: dict[str, Any]) -> str:
    current = weather.get("current") or {}
    lines = ["Current Weather", "═══════════════", ""]

    if weather.get("latitude") is not None and weather.get("longitude") is not None:
        lines.append(f"Location: {weather['latitude']:.4f}, {weather['longitude']:.4f}")
    if weather.get("timezone") is not None:
        lines.append(f"Timezone: {weather['timezone']}")
    if current.get("time") is not None:
        lines.append(f"Time: {current['time']}")
    lines.append("")

    if current.get("temperature_2m") is not None:
        line = f"Temperature: {current['temperature_2m']:.1f}°C"
        if current.get("apparent_temperature") is not None:
            line += f" (feels like {current['apparent_temperature']:.1f}°C)"
        lines.append(line)
    if current.get("weather_code") is not None:
        lines.append(f"Conditions: {describe(current['weather_code'])}")
    if current.get("relative_humidity_2m") is not None:
        lines.append(f"Humidity: {current['relative_humidity_2m']}%")
    if current.get("precipitation") is not None:
        lines.append(f"Precipitation: {current['precipitation']} mm")
    if current.get("wind_speed_10m") is not None:
        line = f"Wind: {current['wind_speed_10m']:.1f} km/h"
        if current.get("wind_direction_10m") is not None:
            line += f" from {current['wind_direction_10m']}°"
        lines.append(line)

    return "\n".join(lines) + "\n"


def format_forecast(weather: dict[str, Any]) -> str:
    daily = weather.get("daily") or {}
    times = daily.get("time") or []

    def _at(key: str, index: int) -> Any:
        values = daily.get(key) or []
        return values[index] if index < len(values) else None

    lines = [f"{len(times)}-Day Weather Forecast", "═══════════════════════", ""]
    if weather.get("latitude") is not None and weather.get("longitude") is not None:
        lines.append(f"Location: {weather['latitude']:.4f}, {weather['longitude']:.4f}")
    lines.append("")

    for i, day in enumerate(times):
        lines.append(f"{day}:")
        code = _at("weather_code", i)
        if code is not None:
            lines.append(f"  Conditions: {describe(code)}")
        t_min, t_max = _at("temperature_2m_min", i), _at("temperature_2m_max", i)
        if t_min is not None and t_max is not None:
            lines.append(f"  Temperature: {t_min:.1f}°C to {t_max:.1f}°C")
        precipitation = _at("precipitation_sum", i)
        if precipitation is not None:
            lines.append(f"  Precipitation: {precipitation:.1f} mm")
        wind = _at("wind_speed_10m_max", i)
        if wind is not None:
            lines.append(f"  Max Wind: {wind:.1f} km/h")
        lines.append("")

    return "\n".join(lines) + "\n"


# ── Weather tools ─────────────────────────────────────────────────────────


_COORDINATES = {
    "latitude": {
        "type": "number",
        "description": "Latitude coordinate (e.g., 52.52)",
    },
    "longitude": {
        "type": "number",
        "description": "Longitude coordinate (e.g., 13.41)",
    },
}


def weather_catalog(client: OpenMeteoClient) -> ToolCatalog:
    """Catalog with search_location, get_current_weather and get_weather_forecast."""

    def search_location(arguments: dict[str, Any]) -> str:
        name = str(_required(arguments, "name"))
        count = _integer(arguments, "count", DEFAULT_COUNT)
        return format_locations(client.search_locations(name, count))

    def get_current_weather(arguments: dict[str, Any]) -> str:
        latitude = _number(arguments, "latitude")
        longitude = _number(arguments, "longitude")
        weather = client.current_weather(latitude, longitude)
        if not weather or not weather.get("current"):
            return f"No weather data found for coordinates: {latitude}, {longitude}"
        return format_current_weather(weather)

    def get_weather_forecast(arguments: dict[str, Any]) -> str:
        latitude = _number(arguments, "latitude")
        longitude = _number(arguments, "longitude")
        days = _integer(arguments, "days", DEFAULT_DAYS)
        weather = client.forecast(latitude, longitude, days)
        if not weather or not weather.get("daily"):
            return f"No forecast data found for coordinates: {latitude}, {longitude}"
        return format_forecast(weather)

    catalog = ToolCatalog()
    catalog.register(
        ToolSpec(
            name="search_location",
            description=(
                "Search for a location by name to get coordinates for weather queries. "
                "Returns location details including latitude, longitude, country, and "
                "timezone. IMPORTANT: Only works with city names in English."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": (
                            "Location name to search for in English only "
                            "(e.g., 'Berlin', 'New York', 'Tokyo', 'Moscow', 'Paris')"
                        ),
                    },
                    "count": {
                        "type": "integer",
                        "description": "Maximum number of results to return (default: 5)",
                        "default": DEFAULT_COUNT,
                    },
                },
                "required": ["name"],
            },
            handler=search_location,
        )
    )
    catalog.register(
        ToolSpec(
            name="get_current_weather",
            description=(
                "Get current weather conditions for a specific location using coordinates. "
                "Includes temperature, humidity, precipitation, wind, and weather conditions."
            ),
            input_schema={
                "type": "object",
                "properties": dict(_COORDINATES),
                "required": ["latitude", "longitude"],
            },
            handler=get_current_weather,
        )
    )
    catalog.register(
        ToolSpec(
            name="get_weather_forecast",
            description=(
                "Get weather forecast for a specific location using coordinates. Provides "
                "daily forecast including temperature range, precipitation, and conditions."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    **_COORDINATES,
                    "days": {
                        "type": "integer",
                        "description": "Number of forecast days (1-16, default: 7)",
                        "default": DEFAULT_DAYS,
                        "minimum": 1,
                        "maximum": 16,
                    },
                },
                "required": ["latitude", "longitude"],
            },
            handler=get_weather_forecast,
        )
    )
    return catalog
