"""CLI entry point for the OpenAPI tool proxy."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

import uvicorn

from .config import Settings, get_settings
from .errors import ProxyError
from .logging import configure_logging
from .server import build_server

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve an OpenAPI 3.1 API as MCP tools.")
    parser.add_argument("--spec", help="Path to the OpenAPI JSON document (OPENAPI_SPEC_PATH)")
    parser.add_argument("--base-url", help="Override the API origin (BASE_URL)")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http", "streamable-http", "sse"],
        help="MCP transport (TRANSPORT)",
    )
    parser.add_argument("--port", type=int, help="Port for HTTP transports (PORT)")
    return parser.parse_args(argv)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {
        "openapi_spec_path": args.spec,
        "base_url": args.base_url,
        "transport": args.transport,
        "port": args.port,
    }
    return settings.model_copy(update={key: value for key, value in overrides.items() if value is not None})


async def _run(settings: Settings) -> None:
    mcp, app = build_server(settings)
    transport = settings.transport.lower()

    if transport == "stdio":
        await mcp.run_stdio_async()
        return
    if not app:
        raise RuntimeError(f"HTTP app unavailable for transport={transport}")
    config = uvicorn.Config(app, host=settings.host, port=settings.port)
    server = uvicorn.Server(config)
    await server.serve()


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)

    try:
        settings = _apply_overrides(get_settings(), args)
        configure_logging(settings.log_level)
        asyncio.run(_run(settings))
    except ProxyError as exc:
        # no-op when settings already configured logging
        configure_logging("INFO")
        logger.error("Startup failed: %s", exc.render())
        sys.exit(2)


if __name__ == "__main__":
    main()
