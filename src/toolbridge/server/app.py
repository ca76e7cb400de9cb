"""
FastAPI application serving the reference MCP endpoint.

    POST {path}          JSON-RPC requests (JSON or SSE-framed responses)
    GET  {path}/health   liveness probe

The HTTP status is 200 for every request, including JSON-RPC errors;
notifications are acknowledged with 202 and an empty body.
"""

import json

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ..config.schema import ToolServerConfig
from ..mcp.protocol import (
    PARSE_ERROR,
    SESSION_HEADER,
    SSE_MEDIA_TYPE,
    JsonRpcResponse,
    encode_sse,
)
from .dispatcher import Dispatch, JsonRpcDispatcher
from .open_meteo import OpenMeteoClient
from .tools import weather_catalog

logger = structlog.get_logger()


def create_app(
    config: ToolServerConfig | None = None,
    dispatcher: JsonRpcDispatcher | None = None,
) -> FastAPI:
    """Build the endpoint application.

    Args:
        config: Endpoint configuration (path, response format, data source)
        dispatcher: Prebuilt dispatcher. Defaults to the weather catalog.
    """
    config = config or ToolServerConfig()
    if dispatcher is None:
        dispatcher = JsonRpcDispatcher(weather_catalog(OpenMeteoClient(config)), config)

    app = FastAPI(title=config.name, version=config.version)
    app.state.dispatcher = dispatcher
    log = logger.bind(component="mcp_server")

    @app.post(config.path)
    async def handle_rpc(request: Request) -> Response:
        raw = await request.body()
        try:
            payload = json.loads(raw)
        except ValueError as e:
            log.warning("server.request.parse_error", error=str(e))
            dispatch = Dispatch(JsonRpcResponse.failure(None, PARSE_ERROR, "Parse error"))
        else:
            # Tool handlers block on outbound HTTP
            dispatch = await run_in_threadpool(
                dispatcher.handle, payload, request.headers.get(SESSION_HEADER)
            )

        if dispatch.response is None:
            return Response(status_code=202)

        headers = {SESSION_HEADER: dispatch.session_id} if dispatch.session_id else {}
        body = dispatch.response.to_dict()

        accept = request.headers.get("accept", "")
        if config.response_format == "sse" and SSE_MEDIA_TYPE in accept:
            return Response(content=encode_sse(body), media_type=SSE_MEDIA_TYPE, headers=headers)
        return JSONResponse(content=body, headers=headers)

    @app.get(config.path.rstrip("/") + "/health")
    async def health() -> dict[str, str]:
        return {"status": "UP", "service": config.name}

    return app


def run_server(config: ToolServerConfig) -> None:
    """Serve the endpoint with uvicorn (blocking)."""
    logger.info(
        "server.start",
        host=config.host,
        port=config.port,
        path=config.path,
        response_format=config.response_format,
    )
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="warning")
