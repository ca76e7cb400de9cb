"""
Tests for the reference MCP endpoint.

Covers:
- JsonRpcDispatcher (initialize/session, tools/list, tools/call, ping,
  notifications, error codes -32600/-32601/-32603,
  bounded session map)
- FastAPI app (session header, parse error, 202 for notifications,
  SSE framing, health)
- weather tools (formatting, missing data, argument errors)
- OpenMeteoClient query parameters and degraded results
"""

from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from toolbridge.config.schema import ToolServerConfig
from toolbridge.mcp.protocol import PROTOCOL_VERSION, SESSION_HEADER, decode_body
from toolbridge.server.app import create_app
from toolbridge.server.dispatcher import JsonRpcDispatcher
from toolbridge.server.open_meteo import CURRENT_FIELDS, DAILY_FIELDS, OpenMeteoClient
from toolbridge.server.tools import (
    ToolCatalog,
    ToolSpec,
    format_current_weather,
    format_forecast,
    format_locations,
    weather_catalog,
)
from toolbridge.server.weather_codes import describe

BERLIN = {
    "name": "Berlin",
    "latitude": 52.52437,
    "longitude": 13.41053,
    "country": "Germany",
    "country_code": "DE",
    "admin1": "Land Berlin",
    "timezone": "Europe/Berlin",
    "elevation": 74.0,
}

CURRENT = {
    "latitude": 52.52,
    "longitude": 13.419998,
    "timezone": "Europe/Berlin",
    "current": {
        "time": "2026-10-19T14:00",
        "temperature_2m": 21.3,
        "apparent_temperature": 20.1,
        "relative_humidity_2m": 45,
        "precipitation": 0.0,
        "weather_code": 2,
        "wind_speed_10m": 11.5,
        "wind_direction_10m": 250,
    },
}

FORECAST = {
    "latitude": 52.52,
    "longitude": 13.41,
    "daily": {
        "time": ["2026-10-19", "2026-10-20"],
        "weather_code": [61, 3],
        "temperature_2m_min": [8.0, 6.5],
        "temperature_2m_max": [15.2, 13.0],
        "precipitation_sum": [2.4, 0.0],
        "wind_speed_10m_max": [20.0, 14.3],
    },
}


# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def weather() -> MagicMock:
    mock = MagicMock(spec=OpenMeteoClient)
    mock.search_locations.return_value = [BERLIN]
    mock.current_weather.return_value = CURRENT
    mock.forecast.return_value = FORECAST
    return mock


@pytest.fixture
def dispatcher(weather) -> JsonRpcDispatcher:
    return JsonRpcDispatcher(weather_catalog(weather), ToolServerConfig())


def _request(method: str, params=None, request_id="1") -> dict:
    body = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        body["params"] = params
    return body


# -- Dispatcher --------------------------------------------------------------


class TestInitialize:
    def test_result_and_session(self, dispatcher):
        dispatch = dispatcher.handle(_request("initialize", {"protocolVersion": PROTOCOL_VERSION}))

        result = dispatch.response.result
        assert result["protocolVersion"] == "2024-11-05"
        assert result["capabilities"] == {"tools": {"listChanged": False}}
        assert result["serverInfo"] == {"name": "weather-mcp-server", "version": "1.0.0"}
        assert dispatch.session_id
        assert dispatcher.has_session(dispatch.session_id)

    def test_each_initialize_opens_a_new_session(self, dispatcher):
        first = dispatcher.handle(_request("initialize")).session_id
        second = dispatcher.handle(_request("initialize")).session_id
        assert first != second
        assert dispatcher.session_count() == 2

    def test_unknown_session_is_still_served(self, dispatcher):
        dispatch = dispatcher.handle(_request("ping"), session_id="not-a-real-session")
        assert dispatch.response.result == {"status": "ok"}

    def test_session_map_is_bounded(self, weather):
        dispatcher = JsonRpcDispatcher(weather_catalog(weather), ToolServerConfig(max_sessions=2))
        sessions = [dispatcher.handle(_request("initialize")).session_id for _ in range(3)]

        assert dispatcher.session_count() == 2
        assert not dispatcher.has_session(sessions[0])
        assert dispatcher.has_session(sessions[1])
        assert dispatcher.has_session(sessions[2])

        # An evicted session id is still answered
        assert dispatcher.handle(_request("ping"), session_id=sessions[0]).response.result == {"status": "ok"}


class TestToolsList:
    def test_lists_three_weather_tools(self, dispatcher):
        tools = dispatcher.handle(_request("tools/list")).response.result["tools"]
        assert [t["name"] for t in tools] == [
            "search_location",
            "get_current_weather",
            "get_weather_forecast",
        ]
        forecast = tools[2]["inputSchema"]
        assert forecast["required"] == ["latitude", "longitude"]
        assert forecast["properties"]["days"]["maximum"] == 16


class TestToolsCall:
    def test_current_weather(self, dispatcher, weather):
        dispatch = dispatcher.handle(
            _request("tools/call", {"name": "get_current_weather", "arguments": {"latitude": 52.52, "longitude": 13.41}})
        )
        content = dispatch.response.result["content"]
        assert content[0]["type"] == "text"
        assert "Temperature: 21.3°C" in content[0]["text"]
        weather.current_weather.assert_called_once_with(52.52, 13.41)

    def test_forecast_days_default(self, dispatcher, weather):
        dispatcher.handle(
            _request("tools/call", {"name": "get_weather_forecast", "arguments": {"latitude": 1, "longitude": 2}})
        )
        weather.forecast.assert_called_once_with(1.0, 2.0, 7)

    def test_search_count_default(self, dispatcher, weather):
        dispatcher.handle(_request("tools/call", {"name": "search_location", "arguments": {"name": "Berlin"}}))
        weather.search_locations.assert_called_once_with("Berlin", 5)

    def test_unknown_tool_is_error_result(self, dispatcher):
        dispatch = dispatcher.handle(_request("tools/call", {"name": "nope", "arguments": {}}))
        assert dispatch.response.error is None
        assert dispatch.response.result["isError"] is True
        assert dispatch.response.result["content"][0]["text"] == "Unknown tool: nope"

    def test_missing_params(self, dispatcher):
        error = dispatcher.handle(_request("tools/call")).response.error
        assert error.code == -32603
        assert error.message == "Internal error: Missing params"

    def test_missing_name(self, dispatcher):
        error = dispatcher.handle(_request("tools/call", {"arguments": {}})).response.error
        assert error.code == -32603
        assert error.message == "Internal error: Missing tool name"

    def test_handler_failure_is_internal_error(self, dispatcher):
        dispatch = dispatcher.handle(
            _request("tools/call", {"name": "get_current_weather", "arguments": {"longitude": 13.41}})
        )
        error = dispatch.response.error
        assert error.code == -32603
        assert error.message == "Internal error: Missing required argument: latitude"
        assert dispatch.response.id == "1"

    def test_non_numeric_coordinate(self, dispatcher):
        dispatch = dispatcher.handle(
            _request("tools/call", {"name": "get_current_weather", "arguments": {"latitude": "north", "longitude": 1}})
        )
        assert dispatch.response.error.code == -32603

    def test_no_data_message(self, dispatcher, weather):
        weather.current_weather.return_value = None
        dispatch = dispatcher.handle(
            _request("tools/call", {"name": "get_current_weather", "arguments": {"latitude": 0, "longitude": 0}})
        )
        text = dispatch.response.result["content"][0]["text"]
        assert text == "No weather data found for coordinates: 0.0, 0.0"


class TestDispatcherErrors:
    def test_ping(self, dispatcher):
        response = dispatcher.handle(_request("ping", request_id=42)).response
        assert response.to_dict() == {"jsonrpc": "2.0", "id": 42, "result": {"status": "ok"}}

    def test_method_not_found(self, dispatcher):
        error = dispatcher.handle(_request("resources/list")).response.error
        assert error.code == -32601
        assert error.message == "Method not found: resources/list"

    def test_invalid_request(self, dispatcher):
        error = dispatcher.handle({"jsonrpc": "2.0", "id": "1"}).response.error
        assert error.code == -32600

    def test_non_object_request(self, dispatcher):
        assert dispatcher.handle([1, 2]).response.error.code == -32600

    def test_notification_has_no_response(self, dispatcher):
        dispatch = dispatcher.handle({"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert dispatch.response is None

    def test_failing_handler_never_escapes(self):
        def explode(arguments):
            raise RuntimeError("disk on fire")

        catalog = ToolCatalog()
        catalog.register(ToolSpec("explode", "fails", {"type": "object"}, explode))
        dispatch = JsonRpcDispatcher(catalog).handle(
            _request("tools/call", {"name": "explode", "arguments": {}})
        )
        assert dispatch.response.error.code == -32603
        assert "disk on fire" in dispatch.response.error.message


# -- HTTP app ----------------------------------------------------------------


@pytest.fixture
def http(dispatcher) -> TestClient:
    return TestClient(create_app(ToolServerConfig(), dispatcher))


class TestApp:
    def test_initialize_sets_session_header(self, http):
        response = http.post("/mcp", json=_request("initialize"))
        assert response.status_code == 200
        assert response.headers[SESSION_HEADER]
        assert response.json()["result"]["protocolVersion"] == PROTOCOL_VERSION

    def test_error_responses_are_http_200(self, http):
        response = http.post("/mcp", json=_request("does/not/exist"))
        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601

    def test_parse_error(self, http):
        response = http.post(
            "/mcp", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["error"] == {"code": -32700, "message": "Parse error"}
        assert body["id"] is None

    def test_notification_is_accepted(self, http):
        response = http.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response.status_code == 202
        assert response.content == b""

    def test_health(self, http):
        response = http.get("/mcp/health")
        assert response.json() == {"status": "UP", "service": "weather-mcp-server"}

    def test_json_mode_ignores_sse_accept(self, http):
        response = http.post(
            "/mcp",
            json=_request("ping"),
            headers={"Accept": "application/json, text/event-stream"},
        )
        assert response.headers["content-type"].startswith("application/json")

    def test_sse_mode(self, dispatcher):
        http = TestClient(create_app(ToolServerConfig(response_format="sse"), dispatcher))
        response = http.post(
            "/mcp",
            json=_request("tools/list"),
            headers={"Accept": "application/json, text/event-stream"},
        )
        assert response.headers["content-type"].startswith("text/event-stream")
        body = decode_body(response.headers["content-type"], response.text)
        assert len(body["result"]["tools"]) == 3

    def test_sse_mode_falls_back_to_json(self, dispatcher):
        http = TestClient(create_app(ToolServerConfig(response_format="sse"), dispatcher))
        response = http.post("/mcp", json=_request("ping"), headers={"Accept": "application/json"})
        assert response.headers["content-type"].startswith("application/json")

    def test_custom_path(self, dispatcher):
        http = TestClient(create_app(ToolServerConfig(path="rpc"), dispatcher))
        assert http.post("/rpc", json=_request("ping")).json()["result"] == {"status": "ok"}
        assert http.get("/rpc/health").status_code == 200


# -- Formatting --------------------------------------------------------------


class TestFormatting:
    def test_locations(self):
        text = format_locations([BERLIN])
        assert text.startswith("Found 1 location(s):")
        assert "1. Berlin, Germany (DE) - Land Berlin" in text
        assert "Coordinates: 52.5244, 13.4105" in text
        assert "Timezone: Europe/Berlin" in text
        assert "Elevation: 74.0m" in text

    def test_no_locations(self):
        assert format_locations([]) == "No locations found"

    def test_current_weather(self):
        text = format_current_weather(CURRENT)
        assert text.startswith("Current Weather\n")
        assert "Temperature: 21.3°C (feels like 20.1°C)" in text
        assert "Conditions: Partly cloudy" in text
        assert "Humidity: 45%" in text
        assert "Wind: 11.5 km/h from 250°" in text

    def test_forecast(self):
        text = format_forecast(FORECAST)
        assert text.startswith("2-Day Weather Forecast")
        assert "2026-10-19:" in text
        assert "  Conditions: Slight rain" in text
        assert "  Temperature: 8.0°C to 15.2°C" in text
        assert "  Max Wind: 14.3 km/h" in text

    def test_forecast_with_short_arrays(self):
        data = {"daily": {"time": ["2026-10-19", "2026-10-20"], "weather_code": [0]}}
        text = format_forecast(data)
        assert "Clear sky" in text
        assert text.count("Conditions:") == 1

    def test_describe(self):
        assert describe(0) == "Clear sky"
        assert describe(99) == "Thunderstorm with heavy hail"
        assert describe(42) == "Unknown (42)"
        assert describe(None) == "Unknown"


# -- Open-Meteo client -------------------------------------------------------


class RecordingTransport:
    def __init__(self, response: httpx.Response | Exception):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _open_meteo(response) -> tuple[OpenMeteoClient, RecordingTransport]:
    transport = RecordingTransport(response)
    http = httpx.Client(transport=httpx.MockTransport(transport))
    return OpenMeteoClient(ToolServerConfig(), http=http), transport


class TestOpenMeteoClient:
    def test_search_params(self):
        client, transport = _open_meteo(httpx.Response(200, json={"results": [BERLIN]}))
        assert client.search_locations("Berlin", 3) == [BERLIN]

        params = transport.requests[0].url.params
        assert transport.requests[0].url.host == "geocoding-api.open-meteo.com"
        assert params["name"] == "Berlin"
        assert params["count"] == "3"
        assert params["format"] == "json"

    def test_search_count_fallback(self):
        client, transport = _open_meteo(httpx.Response(200, json={}))
        assert client.search_locations("Nowhere", 0) == []
        assert transport.requests[0].url.params["count"] == "5"

    def test_current_params(self):
        client, transport = _open_meteo(httpx.Response(200, json=CURRENT))
        assert client.current_weather(52.52, 13.41) == CURRENT

        params = transport.requests[0].url.params
        assert params["current"] == CURRENT_FIELDS
        assert params["timezone"] == "auto"

    @pytest.mark.parametrize("days, sent", [(3, "3"), (16, "16"), (0, "7"), (17, "7")])
    def test_forecast_days(self, days, sent):
        client, transport = _open_meteo(httpx.Response(200, json=FORECAST))
        client.forecast(52.52, 13.41, days)

        params = transport.requests[0].url.params
        assert params["forecast_days"] == sent
        assert params["daily"] == DAILY_FIELDS

    def test_http_error_degrades(self):
        client, _ = _open_meteo(httpx.Response(500, text="boom"))
        assert client.search_locations("Berlin") == []
        assert client.current_weather(0, 0) is None

    def test_connection_error_degrades(self):
        client, _ = _open_meteo(httpx.ConnectError("unreachable"))
        assert client.forecast(0, 0) is None

    def test_invalid_json_degrades(self):
        client, _ = _open_meteo(httpx.Response(200, text="<html>"))
        assert client.current_weather(0, 0) is None
