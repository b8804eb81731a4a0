"""F1 MCP Server - Provides access to OpenF1 and Ergast Formula 1 data."""
import asyncio
import contextlib
import json
import logging
import sys
from typing import Any, Dict, Optional, Union

import httpx
import uvicorn
from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.sse import SseServerTransport
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.types import CallToolResult, TextContent
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route

from f1_mcp import resources
from f1_mcp.auth import OpenF1TokenProvider
from f1_mcp.cache import Cache
from f1_mcp.config import Settings, TransportMode
from f1_mcp.errors import F1MCPError
from f1_mcp.gateway import FetchGateway
from f1_mcp.metrics import MetricsCollector
from f1_mcp.service import F1DataService
from f1_mcp.tools import ToolRegistry, build_registry

SERVER_NAME = "f1-mcp-server"
SERVER_VERSION = "1.0.0"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("f1_mcp")


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """
    Configure logging to stderr.

    stdout carries the stdio transport, so nothing may log there.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=log_level, handlers=[handler])

    logger.setLevel(log_level)

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.info(f"F1 MCP server logging initialized at level: {level.upper()}")
    return logger


class F1MCPApp:
    """Owns every long-lived object of one server process."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(
            timeout=settings.http_timeout,
            headers={"Accept": "application/json", "User-Agent": f"{SERVER_NAME}/{SERVER_VERSION}"},
            follow_redirects=True,
        )
        self.cache = Cache(default_ttl=settings.cache_ttl)
        self.metrics = MetricsCollector(enabled=settings.metrics_enabled)

        self.token_provider: Optional[OpenF1TokenProvider] = None
        if settings.openf1_username and settings.openf1_password:
            self.token_provider = OpenF1TokenProvider(
                self.client,
                settings.openf1_username,
                settings.openf1_password,
                token_url=settings.openf1_token_url,
            )

        self.gateway = FetchGateway(
            self.client,
            self.cache,
            self.metrics,
            max_retries=settings.max_retries,
            cache_enabled=settings.cache_enabled,
            token_provider=self.token_provider,
        )
        self.service = F1DataService(self.gateway, settings)
        self.registry: ToolRegistry = build_registry(self.service, self.metrics)

    async def aclose(self) -> None:
        """Close the HTTP client and drop cached data."""
        self.cache.clear()
        await self.gateway.aclose()
        logger.info("F1 MCP server resources released")


def _error_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=True)


async def handle_call_tool(
    container: F1MCPApp, name: str, arguments: Optional[Dict[str, Any]]
) -> Union[list[TextContent], CallToolResult]:
    """
    Dispatch one tool call.

    Failures come back as an error result whose text carries the
    "[Exxxx] message" line and the recovery suggestion.
    """
    try:
        return await container.registry.dispatch(name, arguments)
    except F1MCPError as e:
        logger.warning(f"Tool {name} failed: [{e.code.value}] {e.message}")
        return _error_result(e.to_response())
    except Exception as e:
        logger.error(f"Error in {name}: {e}", exc_info=True)
        return _error_result(f"Internal error: {e}")


def create_server(container: F1MCPApp) -> Server:
    """Create the MCP server and register its handlers."""
    app = Server(SERVER_NAME, version=SERVER_VERSION)

    @app.list_resources()
    async def list_resources():
        return resources.list_resources()

    @app.read_resource()
    async def read_resource(uri):
        text = resources.read_resource(str(uri))
        return [ReadResourceContents(content=text, mime_type="text/markdown")]

    @app.list_prompts()
    async def list_prompts():
        return resources.list_prompts()

    @app.get_prompt()
    async def get_prompt(name: str, arguments: Optional[Dict[str, str]] = None):
        return resources.get_prompt(name, arguments)

    @app.list_tools()
    async def list_tools():
        return container.registry.list_tools()

    # Arguments are checked and coerced by the registry
    @app.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Any) -> Union[list[TextContent], CallToolResult]:
        return await handle_call_tool(container, name, arguments)

    return app


async def run_stdio(container: F1MCPApp) -> None:
    """Run the MCP server over stdin/stdout."""
    server = create_server(container)
    logger.info("Starting F1 MCP server (stdio)")
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await container.aclose()


class _StreamableHTTPEndpoint:
    """ASGI endpoint forwarding /mcp requests to the session manager."""

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self._session_manager = session_manager

    async def __call__(self, scope, receive, send):
        await self._session_manager.handle_request(scope, receive, send)


def build_starlette_app(container: F1MCPApp, mode: TransportMode) -> Starlette:
    """
    Build the HTTP application for the SSE or streamable HTTP transport.

    Both modes serve ``GET /health`` and ``GET /.well-known/mcp-config``.
    SSE mode adds ``GET /sse`` and ``POST /messages/``; HTTP mode adds
    ``/mcp``.
    """
    if mode is TransportMode.STDIO:
        raise ValueError("The stdio transport does not use an HTTP application")

    server = create_server(container)
    session_manager: Optional[StreamableHTTPSessionManager] = None
    endpoint = "/sse" if mode is TransportMode.SSE else "/mcp"

    async def handle_health(request: Request):
        return JSONResponse({
            "status": "ok",
            "service": SERVER_NAME,
            "version": SERVER_VERSION,
            "transport": mode.value,
            "tools_count": len(container.registry.names()),
            "cache_entries": len(container.cache),
        })

    async def handle_mcp_config(request: Request):
        return JSONResponse({"name": SERVER_NAME, "version": SERVER_VERSION, "endpoint": endpoint})

    routes = [
        Route("/health", handle_health, methods=["GET"]),
        Route("/.well-known/mcp-config", handle_mcp_config, methods=["GET"]),
    ]

    if mode is TransportMode.SSE:
        sse_transport = SseServerTransport("/messages/")

        async def handle_sse(request: Request):
            async with sse_transport.connect_sse(
                request.scope, request.receive, request._send
            ) as streams:
                await server.run(streams[0], streams[1], server.create_initialization_options())
            return Response()

        routes += [
            Route("/sse", handle_sse, methods=["GET"]),
            Mount("/messages/", app=sse_transport.handle_post_message),
        ]
    else:
        session_manager = StreamableHTTPSessionManager(app=server, json_response=True, stateless=True)
        routes.append(Route("/mcp", endpoint=_StreamableHTTPEndpoint(session_manager)))

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette):
        logger.info(f"Starting F1 MCP server ({mode.value}) with endpoint {endpoint}")
        try:
            if session_manager is None:
                yield
            else:
                async with session_manager.run():
                    yield
        finally:
            await container.aclose()

    return Starlette(routes=routes, lifespan=lifespan)


def main() -> None:
    """Run the MCP server with the transport selected by the environment."""
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_format)
    container = F1MCPApp(settings)

    if settings.transport is TransportMode.STDIO:
        asyncio.run(run_stdio(container))
        return

    app = build_starlette_app(container, settings.transport)
    logger.info(f"Listening on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
