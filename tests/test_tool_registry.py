"""Tests for tool synthesis and the registry."""

import json
from dataclasses import asdict

import pytest

from openapi_tool_proxy.openapi import load_spec
from openapi_tool_proxy.tool_registry import (
    MAX_TOOL_NAME_LENGTH,
    ToolRegistry,
    synthesize_tools,
)


OK = {"200": {"description": "OK"}}


def _names(document):
    descriptors, _ = synthesize_tools(document)
    return [descriptor.name for descriptor in descriptors]


class TestNaming:
    def test_names_from_operation_ids_and_fallbacks(self, items_document):
        assert _names(items_document) == [
            "get_items",
            "update_item",
            "create_item",
            "post_v1_search",
        ]

    def test_fallback_name_for_root_path(self, build_spec):
        document = load_spec(build_spec({"/": {"get": {"responses": OK}}}))

        assert _names(document) == ["get_root"]

    def test_camel_case_acronyms(self, build_spec):
        spec = build_spec({"/x": {"get": {"operationId": "listHTTPThings", "responses": OK}}})

        assert _names(load_spec(spec)) == ["list_http_things"]

    def test_long_names_are_truncated(self, build_spec):
        operation_id = "retrieve" + "VeryLongResourceName" * 5
        spec = build_spec({"/x": {"get": {"operationId": operation_id, "responses": OK}}})

        (name,) = _names(load_spec(spec))

        assert len(name) <= MAX_TOOL_NAME_LENGTH
        assert name.startswith("retrieve_very_long_resource_name")

    def test_colliding_operation_ids_get_distinct_stable_names(self, build_spec):
        spec = build_spec(
            {
                "/widgets/{id}": {
                    "get": {"operationId": "widget", "responses": OK},
                    "post": {"operationId": "widget", "responses": OK},
                }
            }
        )
        document = load_spec(spec)

        first = _names(document)
        second = _names(document)

        assert first == ["widget", "widget_post_widgets_id"]
        assert first == second

    def test_fallback_names_for_same_path_differ_by_method(self, build_spec):
        spec = build_spec(
            {"/widgets/{id}": {"get": {"responses": OK}, "post": {"responses": OK}}}
        )

        assert _names(load_spec(spec)) == ["get_widgets_id", "post_widgets_id"]

    def test_counter_after_suffix_collision(self, build_spec):
        spec = build_spec(
            {
                "/a-b": {"get": {"operationId": "x", "responses": OK}},
                "/a_b": {"get": {"operationId": "x", "responses": OK}},
                "/a.b": {"get": {"operationId": "x", "responses": OK}},
            }
        )

        assert _names(load_spec(spec)) == ["x", "x_get_a_b", "x_get_a_b_2"]

    def test_collision_suffix_respects_length_limit(self, build_spec):
        operation_id = "a" * 70
        spec = build_spec(
            {
                "/first": {"get": {"operationId": operation_id, "responses": OK}},
                "/second": {"get": {"operationId": operation_id, "responses": OK}},
            }
        )

        names = _names(load_spec(spec))

        assert len(set(names)) == 2
        assert all(len(name) <= MAX_TOOL_NAME_LENGTH for name in names)
        assert names[1].endswith("_get_second")


class TestSchemas:
    def test_scenario_get_items_schema(self, items_document):
        descriptors, bindings = synthesize_tools(items_document)
        get_items = descriptors[0]

        assert get_items.description == "Fetch one item"
        assert get_items.input_schema == {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Item id"},
                "expand": {"type": "boolean"},
                "X-Trace-Id": {"type": "string"},
            },
            "required": ["id"],
        }
        binding = bindings["get_items"]
        assert binding.method == "GET"
        assert binding.path == "/v1/items/{id}"
        assert binding.required == frozenset({"id"})
        assert binding.body_mode == "none"
        assert {name: arg.location for name, arg in binding.arguments.items()} == {
            "id": "path",
            "expand": "query",
            "X-Trace-Id": "header",
        }

    def test_object_body_is_promoted(self, items_document):
        descriptors, bindings = synthesize_tools(items_document)
        create = descriptors[2]

        assert create.description == "Create a new item"
        assert list(create.input_schema["properties"]) == ["title", "parent_id", "tags"]
        assert create.input_schema["required"] == ["title"]
        assert bindings["create_item"].body_mode == "fields"
        assert bindings["create_item"].arguments["tags"].location == "body"

    def test_optional_body_fields_stay_optional(self, items_document):
        descriptors, _ = synthesize_tools(items_document)
        update = descriptors[1]

        assert list(update.input_schema["properties"]) == ["id", "title", "archived"]
        assert update.input_schema["required"] == ["id"]

    def test_body_required_list_ignored_when_body_optional(self, build_spec):
        spec = build_spec(
            {
                "/notes": {
                    "post": {
                        "requestBody": {
                            "content": {
                                "application/json": {
                                    "schema": {
                                        "type": "object",
                                        "required": ["text"],
                                        "properties": {"text": {"type": "string"}},
                                    }
                                }
                            }
                        },
                        "responses": OK,
                    }
                }
            }
        )

        (descriptor,), _ = synthesize_tools(load_spec(spec))

        assert "required" not in descriptor.input_schema

    def test_non_object_body_is_nested(self, items_document):
        descriptors, bindings = synthesize_tools(items_document)
        search = descriptors[3]

        assert search.description == "Search items"
        assert search.input_schema["properties"]["body"]["type"] == "array"
        assert "required" not in search.input_schema
        assert bindings["post_v1_search"].body_mode == "whole"

    def test_body_field_colliding_with_parameter_is_prefixed(self, build_spec):
        spec = build_spec(
            {
                "/pages/{id}": {
                    "patch": {
                        "operationId": "updatePage",
                        "parameters": [
                            {"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}
                        ],
                        "requestBody": {
                            "required": True,
                            "content": {
                                "application/json": {
                                    "schema": {
                                        "type": "object",
                                        "required": ["id"],
                                        "properties": {"id": {"type": "integer"}},
                                    }
                                }
                            },
                        },
                        "responses": OK,
                    }
                }
            }
        )

        (descriptor,), bindings = synthesize_tools(load_spec(spec))

        assert descriptor.input_schema["properties"]["body_id"] == {"type": "integer"}
        assert descriptor.input_schema["required"] == ["id", "body_id"]
        assert bindings["update_page"].arguments["body_id"].wire_name == "id"

    def test_same_name_in_two_locations(self, build_spec):
        spec = build_spec(
            {
                "/things/{id}": {
                    "get": {
                        "parameters": [
                            {"name": "id", "in": "path", "required": True},
                            {"name": "id", "in": "query"},
                        ],
                        "responses": OK,
                    }
                }
            }
        )

        _, bindings = synthesize_tools(load_spec(spec))
        arguments = bindings["get_things_id"].arguments

        assert arguments["id"].location == "path"
        assert arguments["query_id"].location == "query"
        assert arguments["query_id"].wire_name == "id"

    def test_cookie_parameters_are_not_exposed(self, build_spec):
        spec = build_spec(
            {"/x": {"get": {"parameters": [{"name": "session", "in": "cookie"}], "responses": OK}}}
        )

        (descriptor,), _ = synthesize_tools(load_spec(spec))

        assert descriptor.input_schema == {"type": "object", "properties": {}}

    def test_description_falls_back_to_method_and_path(self, build_spec):
        (descriptor,), _ = synthesize_tools(load_spec(build_spec({"/x": {"delete": {"responses": OK}}})))

        assert descriptor.description == "DELETE /x"


class TestSynthesis:
    def test_one_descriptor_and_binding_per_operation(self, items_document):
        descriptors, bindings = synthesize_tools(items_document)

        assert len(descriptors) == len(items_document.operations)
        assert len({d.name for d in descriptors}) == len(descriptors)
        assert set(bindings) == {d.name for d in descriptors}
        for descriptor in descriptors:
            assert bindings[descriptor.name].tool_name == descriptor.name

    def test_synthesis_is_deterministic(self, items_document):
        first, first_bindings = synthesize_tools(items_document)
        second, second_bindings = synthesize_tools(items_document)

        assert json.dumps([asdict(d) for d in first]) == json.dumps([asdict(d) for d in second])
        assert list(first_bindings) == list(second_bindings)
        for name, binding in first_bindings.items():
            other = second_bindings[name]
            assert (binding.method, binding.path, binding.required, binding.body_mode) == (
                other.method,
                other.path,
                other.required,
                other.body_mode,
            )
            assert dict(binding.arguments) == dict(other.arguments)

    def test_descriptor_schema_does_not_alias_document(self, items_document):
        (descriptor, *_), _ = synthesize_tools(items_document)

        descriptor.input_schema["properties"]["id"]["type"] = "integer"

        assert items_document.operations[0].parameters[0].schema == {"type": "string"}


class TestToolRegistry:
    def test_from_document(self, items_document):
        registry = ToolRegistry.from_document(items_document)

        assert len(registry) == 4
        assert "get_items" in registry
        assert "missing" not in registry
        assert registry.get_binding("missing") is None
        assert registry.get_descriptor("create_item").name == "create_item"

    def test_listing_is_stable(self, items_document):
        registry = ToolRegistry.from_document(items_document)

        assert registry.list_tools() == registry.list_tools()
        assert [d.name for d in registry.list_tools()][0] == "get_items"

    def test_allowlist_by_tool_name_or_operation_id(self, items_document):
        registry = ToolRegistry.from_document(items_document, allowlist={"getItems", "create_item"})

        assert [d.name for d in registry.list_tools()] == ["get_items", "create_item"]
        assert registry.get_binding("update_item") is None

    def test_rejects_descriptor_without_binding(self, items_document):
        descriptors, bindings = synthesize_tools(items_document)
        bindings.pop("create_item")

        with pytest.raises(ValueError, match="do not match"):
            ToolRegistry(descriptors, bindings)

    def test_rejects_duplicate_descriptors(self, items_document):
        descriptors, bindings = synthesize_tools(items_document)

        with pytest.raises(ValueError, match="unique"):
            ToolRegistry(descriptors + descriptors[:1], bindings)

    def test_binding_map_is_read_only(self, items_document):
        registry = ToolRegistry.from_document(items_document)
        binding = registry.get_binding("get_items")

        with pytest.raises(TypeError):
            binding.arguments["extra"] = binding.arguments["id"]
