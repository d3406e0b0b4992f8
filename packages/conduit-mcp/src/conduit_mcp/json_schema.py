"""Translate JSON Schema descriptions into pydantic models.

MCP servers describe tool inputs with JSON Schema.  The bridge turns each
description into a structural validator once, when the tool is
discovered, so every later call goes through the same passthrough
validation as hand-written agents.

Supported: ``type`` (single or list), ``properties``/``required``,
nested objects, ``items``, ``enum``, ``const``, ``anyOf``/``oneOf``,
``default``, ``description`` and local ``$ref`` into ``$defs`` or
``definitions``.  Anything else is accepted as ``Any``.
"""
from __future__ import annotations

import keyword
import re
from typing import Any, Literal, Optional, Union

from conduit_core.errors import ProtocolError
from pydantic import BaseModel, ConfigDict, Field, create_model

_SCALARS: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "null": type(None),
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class _PassthroughModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


def _model_name(hint: str) -> str:
    parts = re.split(r"[^A-Za-z0-9]+", hint)
    name = "".join(p[:1].upper() + p[1:] for p in parts if p)
    return name or "Schema"


def _field_name(prop: str, taken: set[str]) -> str:
    """A safe attribute name for JSON property *prop*."""
    candidate = prop
    if (
        not _IDENTIFIER.match(candidate)
        or keyword.iskeyword(candidate)
        or candidate.startswith(("_", "model_"))
        or hasattr(BaseModel, candidate)
    ):
        candidate = "f_" + re.sub(r"\W", "_", prop).strip("_")
    while candidate in taken:
        candidate += "_"
    taken.add(candidate)
    return candidate


class _Translator:
    def __init__(self, root: dict[str, Any]) -> None:
        self._defs: dict[str, Any] = {
            **(root.get("definitions") or {}),
            **(root.get("$defs") or {}),
        }
        self._resolving: set[str] = set()

    def _resolve_ref(self, ref: str, hint: str) -> Any:
        match = re.match(r"^#/(?:\$defs|definitions)/(.+)$", ref)
        if not match or match.group(1) not in self._defs:
            raise ProtocolError(f"Unresolvable $ref {ref!r} in schema {hint!r}")
        key = match.group(1)
        if key in self._resolving:
            # Recursive schemas are accepted structurally, not type-checked.
            return dict[str, Any]
        self._resolving.add(key)
        try:
            return self.annotation(self._defs[key], key)
        finally:
            self._resolving.discard(key)

    def annotation(self, schema: Any, hint: str) -> Any:
        if not isinstance(schema, dict):
            return Any
        if "$ref" in schema:
            return self._resolve_ref(schema["$ref"], hint)
        if "const" in schema:
            return Literal[schema["const"]]
        if "enum" in schema and schema["enum"]:
            return Literal[tuple(schema["enum"])]
        for combinator in ("anyOf", "oneOf"):
            if combinator in schema:
                options = tuple(
                    self.annotation(option, f"{hint}_{i}")
                    for i, option in enumerate(schema[combinator])
                )
                return Union[options] if options else Any

        kind = schema.get("type")
        if isinstance(kind, list):
            options = tuple(self.annotation({**schema, "type": k}, hint) for k in kind)
            return Union[options] if options else Any
        if kind == "object":
            if schema.get("properties"):
                return self.model(schema, hint)
            return dict[str, Any]
        if kind == "array":
            items = schema.get("items")
            return list[self.annotation(items, f"{hint}_item")] if items else list[Any]
        return _SCALARS.get(kind, Any)

    def model(self, schema: dict[str, Any], hint: str) -> type[BaseModel]:
        properties: dict[str, Any] = schema.get("properties") or {}
        required = set(schema.get("required") or [])
        taken: set[str] = set()
        fields: dict[str, Any] = {}
        for prop, prop_schema in properties.items():
            ann = self.annotation(prop_schema, f"{hint}_{prop}")
            description = prop_schema.get("description") if isinstance(prop_schema, dict) else None
            attr = _field_name(prop, taken)
            alias = prop if attr != prop else None
            if prop in required:
                field = Field(..., alias=alias, description=description)
            else:
                default = prop_schema.get("default") if isinstance(prop_schema, dict) else None
                ann = Optional[ann]
                field = Field(default, alias=alias, description=description)
            fields[attr] = (ann, field)
        return create_model(_model_name(hint), __base__=_PassthroughModel, **fields)


def model_from_json_schema(name: str, schema: dict[str, Any] | None) -> type[BaseModel]:
    """Build a passthrough pydantic model named after *name* from *schema*.

    A missing or property-less schema yields a model accepting any object.
    """
    schema = schema or {}
    if schema.get("type", "object") != "object":
        raise ProtocolError(
            f"Schema for {name!r} must describe an object, got type {schema.get('type')!r}"
        )
    return _Translator(schema).model(schema, name)
