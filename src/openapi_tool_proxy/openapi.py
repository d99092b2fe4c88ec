"""OpenAPI spec loader, validator and operation parser."""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import unquote

from jsonschema import Draft202012Validator

from .errors import SpecInvalid, SpecMalformed, Violation
from .models import HTTP_METHODS, Operation, Parameter, RequestBody, SpecDocument


logger = logging.getLogger(__name__)

SpecSource = Union[str, bytes, "os.PathLike[str]", Mapping[str, Any]]

_SCHEMA_NAME = "openapi-3.1.json"
_PLACEHOLDER = re.compile(r"{([^{}]+)}")


@lru_cache(maxsize=1)
def _document_validator() -> Draft202012Validator:
    resource = resources.files("openapi_tool_proxy").joinpath("schemas").joinpath(_SCHEMA_NAME)
    with resource.open("r", encoding="utf-8") as handle:
        schema = json.load(handle)
    return Draft202012Validator(schema)


def json_pointer(parts: Iterable[Any]) -> str:
    escaped = (str(part).replace("~", "~0").replace("/", "~1") for part in parts)
    return "".join(f"/{part}" for part in escaped)


class _RefResolver:
    """Inlines local ``$ref``s, recording unresolvable ones as violations."""

    def __init__(self, document: Dict[str, Any]) -> None:
        self.document = document
        self.violations: List[Violation] = []

    def deref(self, node: Any, pointer: str) -> Any:
        seen: List[str] = []
        while isinstance(node, dict) and isinstance(node.get("$ref"), str):
            ref = node["$ref"]
            if ref in seen:
                self._violation(pointer, f"circular reference {ref!r}")
                return {}
            seen.append(ref)
            target = self._lookup(ref, pointer)
            if target is None:
                return {}
            siblings = {key: value for key, value in node.items() if key != "$ref"}
            node = {**target, **siblings} if isinstance(target, dict) else target
        return node

    def inline(self, node: Any, pointer: str, stack: Tuple[str, ...] = ()) -> Any:
        if isinstance(node, list):
            return [self.inline(item, f"{pointer}/{index}", stack) for index, item in enumerate(node)]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            if ref in stack:
                # recursive schema, cut here
                return {}
            target = self._lookup(ref, pointer)
            if target is None:
                return {}
            resolved = self.inline(target, pointer, stack + (ref,))
            siblings = {
                key: self.inline(value, f"{pointer}/{json_pointer([key])[1:]}", stack)
                for key, value in node.items()
                if key != "$ref"
            }
            if isinstance(resolved, dict):
                return {**resolved, **siblings}
            return resolved

        return {
            key: self.inline(value, f"{pointer}/{json_pointer([key])[1:]}", stack)
            for key, value in node.items()
        }

    def _lookup(self, ref: str, pointer: str) -> Optional[Any]:
        if not ref.startswith("#"):
            self._violation(pointer, f"external reference {ref!r} is not supported")
            return None

        node: Any = self.document
        fragment = ref[1:]
        if fragment and not fragment.startswith("/"):
            self._violation(pointer, f"unresolvable reference {ref!r}")
            return None
        for raw_part in fragment.split("/")[1:]:
            part = unquote(raw_part).replace("~1", "/").replace("~0", "~")
            if isinstance(node, dict) and part in node:
                node = node[part]
            elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
                node = node[int(part)]
            else:
                self._violation(pointer, f"unresolvable reference {ref!r}")
                return None
        return node

    def _violation(self, pointer: str, message: str) -> None:
        violation = Violation(pointer=pointer, message=message)
        if violation not in self.violations:
            self.violations.append(violation)


class OpenAPILoader:
    """Reads, validates and parses an OpenAPI 3.1 document.

    Loading is all-or-nothing: malformed input raises ``SpecMalformed``,
    schema violations raise ``SpecInvalid`` carrying every violation found,
    and no ``SpecDocument`` is produced in either case.
    """

    def load(self, source: SpecSource) -> SpecDocument:
        raw = self.read(source)
        self.validate(raw)
        document = self.parse(raw)
        logger.info(
            "Loaded OpenAPI spec %r (version %s) with %d operations",
            document.title,
            document.version,
            len(document.operations),
        )
        return document

    def read(self, source: SpecSource) -> Dict[str, Any]:
        if isinstance(source, Mapping):
            data: Any = copy.deepcopy(dict(source))
        elif isinstance(source, bytes):
            data = self._decode(source, "<bytes>")
        elif isinstance(source, str) and source.lstrip().startswith(("{", "[")):
            data = self._parse_json(source, "<string>")
        else:
            path = Path(os.fspath(source)).expanduser()
            try:
                content = path.read_bytes()
            except OSError as exc:
                raise SpecMalformed(f"cannot read spec file {str(path)!r}: {exc}") from exc
            data = self._decode(content, str(path))

        if not isinstance(data, dict):
            raise SpecMalformed(
                f"spec document must be a JSON object, got {type(data).__name__}"
            )
        return data

    def validate(self, raw: Dict[str, Any]) -> None:
        errors = sorted(
            _document_validator().iter_errors(raw),
            key=lambda error: (json_pointer(error.absolute_path), error.message),
        )
        if errors:
            raise SpecInvalid(
                [Violation(json_pointer(error.absolute_path), error.message) for error in errors]
            )

    def parse(self, raw: Dict[str, Any]) -> SpecDocument:
        resolver = _RefResolver(raw)
        operations: List[Operation] = []

        for path, item in (raw.get("paths") or {}).items():
            if path.startswith("x-"):
                continue
            item_pointer = json_pointer(["paths", path])
            item = resolver.deref(item, item_pointer)
            if not isinstance(item, dict):
                continue
            shared_parameters = item.get("parameters") or []

            for method, operation in item.items():
                if method not in HTTP_METHODS:
                    continue
                operations.append(
                    self._build_operation(
                        resolver,
                        method,
                        path,
                        operation or {},
                        shared_parameters,
                        f"{item_pointer}/{method}",
                    )
                )

        if resolver.violations:
            raise SpecInvalid(resolver.violations)

        info = raw.get("info") or {}
        return SpecDocument(
            title=info.get("title", ""),
            version=info.get("version", ""),
            operations=tuple(operations),
            servers=self._extract_servers(raw),
        )

    def _build_operation(
        self,
        resolver: _RefResolver,
        method: str,
        path: str,
        operation: Dict[str, Any],
        shared_parameters: List[Any],
        pointer: str,
    ) -> Operation:
        merged: Dict[Tuple[str, str], Parameter] = {}
        sources = [
            (shared_parameters, pointer.rsplit("/", 1)[0] + "/parameters"),
            (operation.get("parameters") or [], f"{pointer}/parameters"),
        ]
        for raw_parameters, parameters_pointer in sources:
            for index, raw_parameter in enumerate(raw_parameters):
                parameter_pointer = f"{parameters_pointer}/{index}"
                resolved = resolver.deref(raw_parameter, parameter_pointer)
                if not isinstance(resolved, dict) or not resolved.get("name") or not resolved.get("in"):
                    continue
                parameter = self._build_parameter(resolver, resolved, parameter_pointer)
                merged[(parameter.name, parameter.location)] = parameter

        # placeholders the document forgot to declare still need a value
        for name in _PLACEHOLDER.findall(path):
            if (name, "path") not in merged:
                logger.debug("Undeclared path parameter %r on %s %s", name, method, path)
                merged[(name, "path")] = Parameter(
                    name=name, location="path", required=True, schema={"type": "string"}
                )

        request_body = None
        if operation.get("requestBody") is not None:
            body_pointer = f"{pointer}/requestBody"
            raw_body = resolver.deref(operation["requestBody"], body_pointer)
            if isinstance(raw_body, dict):
                request_body = self._build_request_body(resolver, raw_body, body_pointer)

        return Operation(
            operation_id=operation.get("operationId"),
            method=method.lower(),
            path=path,
            summary=operation.get("summary") or "",
            description=operation.get("description") or "",
            parameters=tuple(merged.values()),
            request_body=request_body,
        )

    def _build_parameter(
        self, resolver: _RefResolver, raw: Dict[str, Any], pointer: str
    ) -> Parameter:
        schema = raw.get("schema")
        schema_pointer = f"{pointer}/schema"
        if schema is None and raw.get("content"):
            media_type, media = next(iter(raw["content"].items()))
            schema = (media or {}).get("schema")
            schema_pointer = json_pointer(["content", media_type, "schema"])
            schema_pointer = f"{pointer}{schema_pointer}"
        location = raw["in"]
        return Parameter(
            name=raw["name"],
            location=location,
            required=bool(raw.get("required")) or location == "path",
            schema=self._schema(resolver, schema, schema_pointer),
            description=raw.get("description") or "",
            overridable=bool(raw.get("x-overridable", False)),
        )

    def _build_request_body(
        self, resolver: _RefResolver, raw: Dict[str, Any], pointer: str
    ) -> RequestBody:
        content = raw.get("content") or {}
        content_type = self._select_content_type(content)
        media = content.get(content_type) or {} if content_type else {}
        schema_pointer = f"{pointer}{json_pointer(['content', content_type or '', 'schema'])}"
        return RequestBody(
            schema=self._schema(resolver, media.get("schema"), schema_pointer),
            required=bool(raw.get("required", False)),
            content_type=content_type or "application/json",
            description=raw.get("description") or "",
        )

    def _select_content_type(self, content: Dict[str, Any]) -> Optional[str]:
        if not content:
            return None
        if "application/json" in content:
            return "application/json"
        for content_type in content:
            if content_type.endswith("+json"):
                return content_type
        if "application/x-www-form-urlencoded" in content:
            return "application/x-www-form-urlencoded"
        return next(iter(content))

    def _schema(self, resolver: _RefResolver, schema: Any, pointer: str) -> Dict[str, Any]:
        if not isinstance(schema, dict):
            return {}
        return resolver.inline(schema, pointer)

    def _extract_servers(self, raw: Dict[str, Any]) -> Tuple[str, ...]:
        servers: List[str] = []
        for server in raw.get("servers") or []:
            url = server.get("url")
            if not url:
                continue
            for name, variable in (server.get("variables") or {}).items():
                url = url.replace(f"{{{name}}}", str(variable.get("default", "")))
            servers.append(url)
        return tuple(servers)

    def _decode(self, content: bytes, origin: str) -> Any:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise SpecMalformed(f"spec {origin} is not UTF-8 text: {exc}") from exc
        return self._parse_json(text, origin)

    def _parse_json(self, text: str, origin: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise SpecMalformed(
                f"spec {origin} is not valid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})"
            ) from exc


def load_spec(source: SpecSource) -> SpecDocument:
    """Load, validate and parse an OpenAPI 3.1 document."""
    return OpenAPILoader().load(source)
