"""Tool synthesis and registry for the OpenAPI tool proxy."""

from __future__ import annotations

import copy
import logging
import re
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import ArgumentBinding, Operation, OperationBinding, SpecDocument, ToolDescriptor


logger = logging.getLogger(__name__)

MAX_TOOL_NAME_LENGTH = 64

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_UNDERSCORES = re.compile(r"_+")


def synthesize_tools(
    document: SpecDocument,
) -> Tuple[Tuple[ToolDescriptor, ...], Dict[str, OperationBinding]]:
    """Turn every operation of ``document`` into a descriptor and a binding.

    Pure and deterministic: operations are visited in document order, and a
    name collision is settled by suffixing the later operation with its
    method and path (then a counter), so no operation is ever dropped.
    """
    descriptors: List[ToolDescriptor] = []
    bindings: Dict[str, OperationBinding] = {}

    for operation in document.operations:
        name = _unique_name(_base_name(operation), operation, bindings)
        descriptor, binding = _build_tool(operation, name)
        descriptors.append(descriptor)
        bindings[name] = binding

    return tuple(descriptors), bindings


def _base_name(operation: Operation) -> str:
    if operation.operation_id:
        return _truncate(_sanitize_name(operation.operation_id))
    return _truncate(_fallback_operation_id(operation.method, operation.path))


def _unique_name(base: str, operation: Operation, taken: Mapping[str, Any]) -> str:
    if base not in taken:
        return base
    suffix = _sanitize_name(f"{operation.method}_{operation.path}")
    candidate = _with_suffix(base, suffix)
    counter = 2
    while candidate in taken:
        candidate = _with_suffix(base, f"{suffix}_{counter}")
        counter += 1
    logger.debug("Tool name %r already taken; using %r", base, candidate)
    return candidate


def _with_suffix(base: str, suffix: str) -> str:
    suffix = suffix[-(MAX_TOOL_NAME_LENGTH - 2):]
    head = base[: MAX_TOOL_NAME_LENGTH - len(suffix) - 1].rstrip("_") or base[0]
    return f"{head}_{suffix}"


def _truncate(name: str) -> str:
    return name[:MAX_TOOL_NAME_LENGTH].rstrip("_") or "tool"


def _sanitize_name(name: str) -> str:
    snake = _CAMEL_BOUNDARY.sub("_", name)
    cleaned = "".join(ch.lower() if ch.isascii() and ch.isalnum() else "_" for ch in snake)
    return _UNDERSCORES.sub("_", cleaned).strip("_") or "tool"


def _fallback_operation_id(method: str, path: str) -> str:
    sanitized = _sanitize_name(path.replace("{", "").replace("}", ""))
    return f"{method.lower()}_{sanitized if sanitized != 'tool' else 'root'}"


def _describe(operation: Operation) -> str:
    parts: List[str] = []
    for text in (operation.summary.strip(), operation.description.strip()):
        if text and text not in parts:
            parts.append(text)
    return "\n\n".join(parts) or f"{operation.method.upper()} {operation.path}"


def _free_name(candidates: Iterable[str], taken: Mapping[str, Any]) -> str:
    options = list(candidates)
    for option in options:
        if option not in taken:
            return option
    counter = 2
    while f"{options[-1]}_{counter}" in taken:
        counter += 1
    return f"{options[-1]}_{counter}"


def _property_schema(schema: Dict[str, Any], description: str) -> Dict[str, Any]:
    prop = copy.deepcopy(schema)
    if description and "description" not in prop:
        prop["description"] = description
    return prop


def _is_promotable(schema: Dict[str, Any]) -> bool:
    if schema.get("type", "object") != "object":
        return False
    if any(keyword in schema for keyword in ("oneOf", "anyOf", "allOf")):
        return False
    properties = schema.get("properties")
    return isinstance(properties, dict) and bool(properties)


def _build_tool(operation: Operation, name: str) -> Tuple[ToolDescriptor, OperationBinding]:
    properties: Dict[str, Any] = {}
    required: List[str] = []
    arguments: Dict[str, ArgumentBinding] = {}

    for parameter in operation.parameters:
        if parameter.location == "cookie":
            continue
        arg_name = _free_name(
            [parameter.name, f"{parameter.location}_{parameter.name}"], arguments
        )
        properties[arg_name] = _property_schema(
            parameter.schema or {"type": "string"}, parameter.description
        )
        arguments[arg_name] = ArgumentBinding(
            location=parameter.location,
            wire_name=parameter.name,
            overridable=parameter.overridable,
        )
        if parameter.required:
            required.append(arg_name)

    body_mode = "none"
    content_type: Optional[str] = None
    body = operation.request_body
    if body is not None:
        content_type = body.content_type
        if _is_promotable(body.schema):
            body_mode = "fields"
            body_required = set(body.schema.get("required") or []) if body.required else set()
            for field_name, field_schema in body.schema["properties"].items():
                arg_name = _free_name([field_name, f"body_{field_name}"], arguments)
                properties[arg_name] = _property_schema(
                    field_schema if isinstance(field_schema, dict) else {}, ""
                )
                arguments[arg_name] = ArgumentBinding(location="body", wire_name=field_name)
                if field_name in body_required:
                    required.append(arg_name)
        else:
            body_mode = "whole"
            arg_name = _free_name(["body", "request_body"], arguments)
            properties[arg_name] = _property_schema(
                body.schema or {"type": "object"}, body.description or "Request body"
            )
            arguments[arg_name] = ArgumentBinding(location="body", wire_name="")
            if body.required:
                required.append(arg_name)

    input_schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        input_schema["required"] = list(dict.fromkeys(required))

    descriptor = ToolDescriptor(
        name=name,
        description=_describe(operation),
        input_schema=input_schema,
    )
    binding = OperationBinding(
        tool_name=name,
        method=operation.method.upper(),
        path=operation.path,
        arguments=MappingProxyType(arguments),
        required=frozenset(required),
        body_mode=body_mode,
        content_type=content_type,
    )
    return descriptor, binding


class ToolRegistry:
    """Read-only mapping of tool names to descriptors and bindings."""

    def __init__(
        self,
        descriptors: Sequence[ToolDescriptor],
        bindings: Mapping[str, OperationBinding],
    ) -> None:
        names = [descriptor.name for descriptor in descriptors]
        if len(set(names)) != len(names):
            raise ValueError("Tool descriptor names must be unique")
        if set(names) != set(bindings):
            missing = sorted(set(names) ^ set(bindings))
            raise ValueError(f"Descriptors and bindings do not match: {missing}")

        self._descriptors: Tuple[ToolDescriptor, ...] = tuple(descriptors)
        self._by_name = MappingProxyType({descriptor.name: descriptor for descriptor in descriptors})
        self._bindings = MappingProxyType({name: bindings[name] for name in names})

    @classmethod
    def from_document(
        cls,
        document: SpecDocument,
        allowlist: Optional[Iterable[str]] = None,
    ) -> "ToolRegistry":
        descriptors, bindings = synthesize_tools(document)

        allowed = set(allowlist or ())
        if allowed:
            kept = [
                descriptor
                for descriptor, operation in zip(descriptors, document.operations)
                if descriptor.name in allowed or operation.operation_id in allowed
            ]
            known = {descriptor.name for descriptor in descriptors} | {
                operation.operation_id for operation in document.operations
            }
            for entry in sorted(allowed - known):
                logger.warning("Allowlist entry matches no operation: %s", entry)
            descriptors = tuple(kept)
            bindings = {descriptor.name: bindings[descriptor.name] for descriptor in kept}

        for descriptor in descriptors:
            binding = bindings[descriptor.name]
            logger.debug("Synthesized tool %s -> %s %s", descriptor.name, binding.method, binding.path)
        logger.info("Synthesized %d tools from %d operations", len(descriptors), len(document.operations))
        return cls(descriptors, bindings)

    def list_tools(self) -> Tuple[ToolDescriptor, ...]:
        return self._descriptors

    def get_descriptor(self, name: str) -> Optional[ToolDescriptor]:
        return self._by_name.get(name)

    def get_binding(self, name: str) -> Optional[OperationBinding]:
        return self._bindings.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._bindings

    def __len__(self) -> int:
        return len(self._descriptors)
