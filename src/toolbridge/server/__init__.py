"""
Server module - Reference MCP tool endpoint (weather tools over Open-Meteo).
"""

from .app import create_app, run_server
from .dispatcher import Dispatch, JsonRpcDispatcher
from .open_meteo import OpenMeteoClient
from .tools import ToolCatalog, ToolSpec, weather_catalog

__all__ = [
    "create_app",
    "run_server",
    "Dispatch",
    "JsonRpcDispatcher",
    "OpenMeteoClient",
    "ToolCatalog",
    "ToolSpec",
    "weather_catalog",
]
