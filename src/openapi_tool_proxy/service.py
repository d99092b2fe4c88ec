"""Dispatch of tool calls to the upstream API."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from .auth import AuthResolver
from .errors import ConfigInvalid, InvalidArguments, ProxyError, UnknownTool, UpstreamError
from .executors import RestExecutor
from .logging import redact_payload
from .models import ToolDescriptor, ToolResult
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

_MESSAGE_KEYS = ("message", "error", "detail", "error_description", "title")


class ProxyService:
    """
    Routes tool calls to HTTP requests.

    ``call`` never raises for per-call problems (unknown tool, bad
    arguments, non-2xx upstream responses); those come back as error
    results. Network-level failures raise ``TransportFailure`` so the
    protocol layer can tell them apart from tool-level errors.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        auth: AuthResolver,
        base_url: Optional[str] = None,
        executor: Optional[RestExecutor] = None,
    ) -> None:
        resolved_base_url = base_url or auth.base_url
        if not resolved_base_url:
            raise ConfigInvalid(
                "No base URL configured and the OpenAPI document declares no servers", fields=("base_url",)
            )
        self.registry = registry
        self.auth = auth
        self.base_url = resolved_base_url.rstrip("/")
        self.executor = executor or RestExecutor()
        self._validators: Dict[str, Draft202012Validator] = {
            descriptor.name: _validator_for(descriptor) for descriptor in registry.list_tools()
        }

    async def call(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> ToolResult:
        """
        Execute one tool call.

        Args:
            name: Registered tool name
            arguments: JSON object of tool arguments

        Returns:
            ToolResult with the rendered upstream response or the error
        """
        binding = self.registry.get_binding(name)
        if binding is None:
            logger.warning("Call to unknown tool %s", name)
            return self._format_error(UnknownTool(name))

        payload = {key: value for key, value in (arguments or {}).items() if value is not None}
        logger.info("Executing tool=%s payload=%s", name, redact_payload(payload))

        try:
            self._validate(name, payload)
            request = self.executor.prepare(binding, payload, self.base_url, self.auth)
        except InvalidArguments as exc:
            logger.warning("Invalid arguments for tool=%s: %s", name, exc)
            return self._format_error(exc)

        response = await self.executor.send(
            request, idempotent=binding.idempotent, tool_name=binding.tool_name
        )

        if response.is_success:
            return self._format_result(response)

        error = UpstreamError(response.status_code, _upstream_message(response))
        logger.warning("Upstream error for tool=%s: %s", name, error)
        return self._format_error(error)

    def _validate(self, name: str, payload: Dict[str, Any]) -> None:
        validator = self._validators[name]
        fields: List[str] = []
        problems: List[str] = []
        for error in sorted(validator.iter_errors(payload), key=lambda e: list(map(str, e.absolute_path))):
            if error.validator == "required" and not error.absolute_path:
                missing = [field for field in error.validator_value if field not in payload]
                fields.extend(missing)
                problems.extend(f"missing required argument '{field}'" for field in missing)
                continue
            location = ".".join(str(part) for part in error.absolute_path) or "<arguments>"
            if error.absolute_path:
                fields.append(str(error.absolute_path[0]))
            problems.append(f"{location}: {error.message}")
        if problems:
            raise InvalidArguments(list(dict.fromkeys(fields)), problems)

    def _format_result(self, response: httpx.Response) -> ToolResult:
        if not response.content:
            return ToolResult.success(json.dumps({"status": response.status_code}))
        try:
            data = response.json()
        except ValueError:
            return ToolResult.success(response.text)
        return ToolResult.success(json.dumps(data, indent=2, ensure_ascii=False))

    def _format_error(self, error: ProxyError) -> ToolResult:
        return ToolResult.error(error.render())


def _validator_for(descriptor: ToolDescriptor) -> Draft202012Validator:
    try:
        Draft202012Validator.check_schema(descriptor.input_schema)
    except SchemaError as exc:
        logger.warning(
            "Input schema of tool %s is not valid JSON Schema (%s); checking required arguments only",
            descriptor.name,
            exc.message,
        )
        return Draft202012Validator(
            {"type": "object", "required": descriptor.input_schema.get("required", [])}
        )
    return Draft202012Validator(descriptor.input_schema)


def _upstream_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in _MESSAGE_KEYS:
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
        return json.dumps(data, ensure_ascii=False)
    text = response.text.strip()
    return text or response.reason_phrase or "no response body"
