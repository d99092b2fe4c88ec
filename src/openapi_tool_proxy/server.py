"""MCP server setup for the OpenAPI tool proxy."""

import logging
from typing import Any, Dict, Optional

import httpx
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent
from pydantic import PrivateAttr
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from .auth import AuthResolver
from .config import Settings
from .errors import TransportFailure
from .executors import RestExecutor
from .models import ToolDescriptor
from .openapi import load_spec
from .service import ProxyService
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


class ProxyTool(Tool):
    """MCP tool whose arguments are forwarded to the dispatcher unchanged."""

    _service: Optional[ProxyService] = PrivateAttr(default=None)

    @classmethod
    def from_descriptor(cls, descriptor: ToolDescriptor, service: ProxyService) -> "ProxyTool":
        tool = cls(
            name=descriptor.name,
            description=descriptor.description,
            parameters=descriptor.input_schema,
        )
        tool._service = service
        return tool

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        if self._service is None:
            raise ToolError(f"Tool {self.name} is not bound to a dispatcher")
        try:
            result = await self._service.call(self.name, arguments)
        except TransportFailure as exc:
            raise ToolError(exc.render()) from exc
        if result.is_error:
            raise ToolError(result.joined_text())
        return ToolResult(
            content=[TextContent(type="text", text=block.text) for block in result.content]
        )


def build_server(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[FastMCP, object | None]:
    auth = AuthResolver(settings.auth_config())
    document = load_spec(settings.openapi_spec_path)
    registry = ToolRegistry.from_document(document, allowlist=settings.operation_allowlist_set())

    executor = RestExecutor(
        timeout_seconds=settings.request_timeout_seconds,
        max_retries=settings.max_retries,
        backoff_seconds=settings.retry_backoff_seconds,
        backoff_max_seconds=settings.retry_backoff_max_seconds,
        transport=transport,
    )
    base_url = auth.base_url or (document.servers[0] if document.servers else None)
    service = ProxyService(registry, auth, base_url=base_url, executor=executor)
    logger.info("Dispatching to %s", service.base_url)

    mcp = build_mcp(registry, service, settings.service_name, settings.service_version)
    app = _get_http_app(mcp, settings)
    _attach_healthcheck(app)
    return mcp, app


def build_mcp(
    registry: ToolRegistry,
    service: ProxyService,
    name: str,
    version: Optional[str] = None,
) -> FastMCP:
    mcp = FastMCP(name, instructions=_instructions(name), version=version)
    for descriptor in registry.list_tools():
        mcp.add_tool(ProxyTool.from_descriptor(descriptor, service))
        logger.debug("Registered tool: %s", descriptor.name)
    logger.info("Registered %d tools", len(registry))
    return mcp


def _attach_healthcheck(app) -> None:  # type: ignore[no-untyped-def]
    if not app:
        return

    async def healthcheck(_request):  # type: ignore[no-untyped-def]
        return JSONResponse({"status": "ok"})

    app.add_route("/health", healthcheck, methods=["GET"])


def _instructions(name: str) -> str:
    return (
        f"{name} tools generated from an OpenAPI description. "
        "Each tool performs one HTTP operation against the upstream API."
    )


def _get_http_app(mcp: FastMCP, settings: Settings):  # type: ignore[no-untyped-def]
    transport = settings.transport.lower()
    if transport in {"http"}:
        app = mcp.http_app(transport="http", stateless_http=True, json_response=True)
        _attach_cors(app)
        return app
    if transport in {"streamable-http", "streamablehttp"}:
        app = mcp.http_app(
            transport="streamable-http", stateless_http=True, json_response=True
        )
        _attach_cors(app)
        return app
    if transport in {"sse"}:
        app = mcp.http_app(transport="sse")
        _attach_cors(app)
        return app
    return None


def _attach_cors(app) -> None:  # type: ignore[no-untyped-def]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
