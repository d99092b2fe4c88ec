"""Shared fixtures for the proxy tests.

Every test talks to an ``httpx.MockTransport`` instead of a live API; the
``make_service`` factory wires a dispatcher to a handler and records the
requests it issued.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from openapi_tool_proxy.auth import AuthConfig, AuthResolver
from openapi_tool_proxy.executors import RestExecutor
from openapi_tool_proxy.models import SpecDocument
from openapi_tool_proxy.openapi import load_spec
from openapi_tool_proxy.service import ProxyService
from openapi_tool_proxy.tool_registry import ToolRegistry


BASE_URL = "https://api.example.test"

ITEMS_SPEC: Dict[str, Any] = {
    "openapi": "3.1.0",
    "info": {"title": "Items API", "version": "1.0.0"},
    "servers": [{"url": BASE_URL}],
    "paths": {
        "/v1/items/{id}": {
            "parameters": [
                {
                    "name": "id",
                    "in": "path",
                    "required": True,
                    "description": "Item id",
                    "schema": {"type": "string"},
                }
            ],
            "get": {
                "operationId": "getItems",
                "summary": "Fetch one item",
                "parameters": [
                    {"name": "expand", "in": "query", "schema": {"type": "boolean"}},
                    {"name": "X-Trace-Id", "in": "header", "schema": {"type": "string"}},
                ],
                "responses": {"200": {"description": "The item"}},
            },
            "patch": {
                "operationId": "updateItem",
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/ItemUpdate"}}
                    },
                },
                "responses": {"200": {"description": "Updated"}},
            },
        },
        "/v1/items": {
            "post": {
                "operationId": "createItem",
                "description": "Create a new item",
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/ItemCreate"}}
                    },
                },
                "responses": {"201": {"description": "Created"}},
            }
        },
        "/v1/search": {
            "post": {
                "summary": "Search items",
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {"type": "array", "items": {"type": "string"}}
                        }
                    }
                },
                "responses": {"200": {"description": "Matches"}},
            }
        },
    },
    "components": {
        "schemas": {
            "ItemCreate": {
                "type": "object",
                "required": ["title"],
                "properties": {
                    "title": {"type": "string"},
                    "parent_id": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                },
            },
            "ItemUpdate": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "archived": {"type": "boolean"},
                },
            },
        }
    },
}


def minimal_spec(paths: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
    spec: Dict[str, Any] = {
        "openapi": "3.1.0",
        "info": {"title": "Test API", "version": "0.1.0"},
        "paths": paths,
    }
    spec.update(extra)
    return spec


@pytest.fixture
def build_spec() -> Callable[..., Dict[str, Any]]:
    return minimal_spec


@pytest.fixture
def items_spec() -> Dict[str, Any]:
    return copy.deepcopy(ITEMS_SPEC)


@pytest.fixture
def items_document(items_spec) -> SpecDocument:
    return load_spec(items_spec)


@pytest.fixture
def requests_seen() -> List[httpx.Request]:
    return []


@pytest.fixture
def make_service(items_document, requests_seen):
    """Return a factory building a ``ProxyService`` around a mock handler."""

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        document: Optional[SpecDocument] = None,
        auth_config: Optional[AuthConfig] = None,
        max_retries: int = 2,
    ) -> ProxyService:
        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests_seen.append(request)
            return handler(request)

        registry = ToolRegistry.from_document(document or items_document)
        auth = AuthResolver(auth_config or AuthConfig(token="abc"))
        executor = RestExecutor(
            max_retries=max_retries,
            backoff_seconds=0,
            transport=httpx.MockTransport(recording_handler),
        )
        return ProxyService(registry, auth, base_url=BASE_URL, executor=executor)

    return _make
