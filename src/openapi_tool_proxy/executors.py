"""HTTP execution layer for bound tool calls."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from .auth import AuthResolver
from .errors import InvalidArguments, TransportFailure
from .logging import redact_headers, redact_payload
from .models import BODY_METHODS, OperationBinding

logger = logging.getLogger(__name__)

# failures raised before any byte of the request reached the server
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    url: str
    params: Tuple[Tuple[str, str], ...] = ()
    headers: Dict[str, str] = field(default_factory=dict)
    json_body: Any = None
    form_body: Optional[Dict[str, str]] = None
    content: Optional[bytes] = None


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _query_values(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [_to_text(item) for item in value if item is not None]
    return [_to_text(value)]


def _is_json(content_type: Optional[str]) -> bool:
    return content_type is None or content_type == "application/json" or content_type.endswith("+json")


class _BorrowedTransport(httpx.AsyncBaseTransport):
    """Lends a caller-owned transport to per-call clients; closing is left to the owner."""

    def __init__(self, transport: httpx.AsyncBaseTransport) -> None:
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.handle_async_request(request)


class RestExecutor:
    """Sends bound tool calls upstream.

    Each attempt opens its own ``httpx.AsyncClient``. An injected
    ``transport`` is shared by those clients and never closed here; the
    caller that created it closes it.
    """

    def __init__(
        self,
        timeout_seconds: float = 30,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        backoff_max_seconds: float = 6,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._transport = _BorrowedTransport(transport) if transport is not None else None

    def prepare(
        self,
        binding: OperationBinding,
        arguments: Dict[str, Any],
        base_url: str,
        auth: AuthResolver,
    ) -> PreparedRequest:
        path = binding.path
        params: List[Tuple[str, str]] = []
        headers: Dict[str, str] = dict(auth.headers)
        body_fields: Dict[str, Any] = {}
        whole_body: Any = None
        allows_body = binding.method in BODY_METHODS

        for arg_name, value in arguments.items():
            arg = binding.arguments.get(arg_name)
            if arg is None:
                if allows_body and binding.body_mode != "whole":
                    body_fields[arg_name] = value
                else:
                    logger.debug("Dropping unbound argument %s for tool %s", arg_name, binding.tool_name)
                continue

            if arg.location == "path":
                path = path.replace(f"{{{arg.wire_name}}}", quote(_to_text(value), safe=""))
            elif arg.location == "query":
                params.extend((arg.wire_name, item) for item in _query_values(value))
            elif arg.location == "header":
                if auth.is_protected(arg.wire_name) and not arg.overridable:
                    logger.warning(
                        "Ignoring argument %s: header %s is fixed for tool %s",
                        arg_name,
                        arg.wire_name,
                        binding.tool_name,
                    )
                    continue
                text = _to_text(value)
                if not text.isascii():
                    raise InvalidArguments(
                        [arg_name], [f"{arg_name}: header values must be ASCII text"]
                    )
                for existing in [name for name in headers if name.lower() == arg.wire_name.lower()]:
                    del headers[existing]
                headers[arg.wire_name] = text
            elif not allows_body:
                logger.warning("Dropping body argument %s: %s takes no body", arg_name, binding.method)
            elif binding.body_mode == "whole":
                whole_body = value
            else:
                body_fields[arg.wire_name] = value

        url = base_url.rstrip("/") + path
        payload = whole_body if binding.body_mode == "whole" else (body_fields or None)
        if payload is None:
            return PreparedRequest(binding.method, url, tuple(params), headers)

        content_type = binding.content_type
        if _is_json(content_type):
            return PreparedRequest(binding.method, url, tuple(params), headers, json_body=payload)
        if content_type == "application/x-www-form-urlencoded" and isinstance(payload, dict):
            form = {key: _to_text(value) for key, value in payload.items() if value is not None}
            return PreparedRequest(binding.method, url, tuple(params), headers, form_body=form)

        headers["Content-Type"] = content_type or "application/octet-stream"
        raw = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        content = raw.encode("utf-8") if isinstance(raw, str) else raw
        return PreparedRequest(binding.method, url, tuple(params), headers, content=content)

    async def send(
        self,
        request: PreparedRequest,
        idempotent: bool,
        tool_name: str = "",
    ) -> httpx.Response:
        max_attempts = 1 + self.max_retries if idempotent else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout_seconds, transport=self._transport
                ) as client:
                    response = await client.request(
                        request.method,
                        request.url,
                        params=list(request.params),
                        headers=request.headers,
                        json=request.json_body,
                        data=request.form_body,
                        content=request.content,
                    )
                logger.debug(
                    "%s %s -> %s tool=%s", request.method, request.url, response.status_code, tool_name
                )
                return response
            except httpx.TransportError as exc:
                reason = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
                if attempt >= max_attempts:
                    unknown_outcome = not idempotent and not isinstance(exc, _NOT_SENT)
                    logger.error(
                        "REST call failed tool=%s %s %s attempts=%s headers=%s: %s",
                        tool_name,
                        request.method,
                        request.url,
                        attempt,
                        redact_headers(request.headers),
                        reason,
                    )
                    raise TransportFailure(
                        request.method,
                        request.url,
                        attempt,
                        reason,
                        unknown_outcome=unknown_outcome,
                    ) from exc
                backoff = min(self.backoff_seconds * 2 ** (attempt - 1), self.backoff_max_seconds)
                logger.warning(
                    "REST call failed (attempt %s/%s). Retrying in %ss. tool=%s body=%s",
                    attempt,
                    max_attempts,
                    backoff,
                    tool_name,
                    redact_payload(request.json_body) if isinstance(request.json_body, dict) else None,
                )
                await asyncio.sleep(backoff)
