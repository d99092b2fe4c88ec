"""Expose OpenAPI 3.1 operations as MCP tools."""

from .auth import AuthConfig, AuthResolver
from .errors import (
    ConfigInvalid,
    InvalidArguments,
    ProxyError,
    SpecInvalid,
    SpecMalformed,
    TransportFailure,
    UnknownTool,
    UpstreamError,
    Violation,
)
from .executors import RestExecutor
from .models import OperationBinding, SpecDocument, ToolDescriptor, ToolResult
from .openapi import OpenAPILoader, load_spec
from .service import ProxyService
from .tool_registry import ToolRegistry, synthesize_tools

__all__ = [
    "AuthConfig",
    "AuthResolver",
    "ConfigInvalid",
    "InvalidArguments",
    "OpenAPILoader",
    "OperationBinding",
    "ProxyError",
    "ProxyService",
    "RestExecutor",
    "SpecDocument",
    "SpecInvalid",
    "SpecMalformed",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResult",
    "TransportFailure",
    "UnknownTool",
    "UpstreamError",
    "Violation",
    "load_spec",
    "synthesize_tools",
]
