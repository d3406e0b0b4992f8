from __future__ import annotations

import pytest
from conduit_core.errors import ProtocolError, SchemaValidationError
from conduit_mcp.json_schema import model_from_json_schema
from conduit_runtime.schema import validate_passthrough

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "What to look for"},
        "limit": {"type": "integer", "default": 10},
        "order": {"enum": ["asc", "desc"]},
        "tags": {"type": "array", "items": {"type": "string"}},
        "filter": {
            "type": "object",
            "properties": {"owner": {"type": "string"}},
            "required": ["owner"],
        },
        "from": {"type": ["string", "null"]},
    },
    "required": ["query"],
}


class TestModelFromJsonSchema:
    def test_required_and_optional_fields(self):
        model = model_from_json_schema("search", SEARCH_SCHEMA)
        assert validate_passthrough(model, {"query": "cats"}) == {
            "query": "cats",
            "limit": 10,
        }
        with pytest.raises(SchemaValidationError):
            validate_passthrough(model, {"limit": 3})

    def test_scalar_coercion_and_mismatch(self):
        model = model_from_json_schema("search", SEARCH_SCHEMA)
        assert validate_passthrough(model, {"query": "x", "limit": "5"})["limit"] == 5
        with pytest.raises(SchemaValidationError):
            validate_passthrough(model, {"query": "x", "limit": "many"})

    def test_enum_values_are_enforced(self):
        model = model_from_json_schema("search", SEARCH_SCHEMA)
        assert validate_passthrough(model, {"query": "x", "order": "asc"})["order"] == "asc"
        with pytest.raises(SchemaValidationError):
            validate_passthrough(model, {"query": "x", "order": "sideways"})

    def test_arrays_and_nested_objects(self):
        model = model_from_json_schema("search", SEARCH_SCHEMA)
        result = validate_passthrough(
            model,
            {"query": "x", "tags": ["a", "b"], "filter": {"owner": "me", "extra": 1}},
        )
        assert result["tags"] == ["a", "b"]
        assert result["filter"] == {"owner": "me", "extra": 1}
        with pytest.raises(SchemaValidationError):
            validate_passthrough(model, {"query": "x", "filter": {}})

    def test_reserved_property_names_keep_their_wire_name(self):
        model = model_from_json_schema("search", SEARCH_SCHEMA)
        result = validate_passthrough(model, {"query": "x", "from": "2024"})
        assert result["from"] == "2024"
        assert "f_from" not in result

    def test_unknown_fields_pass_through(self):
        model = model_from_json_schema("search", SEARCH_SCHEMA)
        result = validate_passthrough(model, {"query": "x", "session": "abc"})
        assert result["session"] == "abc"

    def test_local_refs_are_resolved(self):
        schema = {
            "type": "object",
            "$defs": {"Point": {"type": "object", "properties": {"x": {"type": "number"}}, "required": ["x"]}},
            "properties": {"origin": {"$ref": "#/$defs/Point"}},
            "required": ["origin"],
        }
        model = model_from_json_schema("shape", schema)
        assert validate_passthrough(model, {"origin": {"x": 1}})["origin"] == {"x": 1.0}
        with pytest.raises(SchemaValidationError):
            validate_passthrough(model, {"origin": {"y": 1}})

    def test_recursive_refs_are_accepted(self):
        schema = {
            "type": "object",
            "definitions": {
                "Node": {
                    "type": "object",
                    "properties": {"child": {"$ref": "#/definitions/Node"}},
                }
            },
            "properties": {"root": {"$ref": "#/definitions/Node"}},
        }
        model = model_from_json_schema("tree", schema)
        tree = {"root": {"child": {"child": {}}}}
        assert validate_passthrough(model, tree)["root"]["child"] == {"child": {}}

    def test_unresolvable_ref_raises(self):
        schema = {"type": "object", "properties": {"p": {"$ref": "#/$defs/Missing"}}}
        with pytest.raises(ProtocolError):
            model_from_json_schema("broken", schema)

    def test_missing_schema_accepts_anything(self):
        model = model_from_json_schema("anything", None)
        assert validate_passthrough(model, {"k": "v"}) == {"k": "v"}

    def test_non_object_schema_rejected(self):
        with pytest.raises(ProtocolError):
            model_from_json_schema("scalar", {"type": "string"})
