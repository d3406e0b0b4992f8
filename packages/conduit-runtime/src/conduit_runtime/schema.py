"""Passthrough schema validation on top of pydantic models.

Schemas are plain :class:`pydantic.BaseModel` subclasses.  Validation only
type-checks and coerces the fields a schema declares; every other key of
the incoming mapping is carried through untouched.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pydantic
from conduit_core.errors import SchemaValidationError
from pydantic import BaseModel, ConfigDict


class AnyObject(BaseModel):
    """Default schema: accepts any object."""

    model_config = ConfigDict(extra="allow")


def _declared_keys(schema: type[BaseModel]) -> set[str]:
    keys: set[str] = set()
    for name, info in schema.model_fields.items():
        keys.add(name)
        if info.alias:
            keys.add(info.alias)
        if isinstance(info.validation_alias, str):
            keys.add(info.validation_alias)
    return keys


def _emitted_fields(model: BaseModel) -> set[str]:
    """Fields provided by the caller, plus fields with a non-None default."""
    names = set(model.model_fields_set)
    for name, info in type(model).model_fields.items():
        if name in names or info.is_required():
            continue
        if info.get_default(call_default_factory=True) is not None:
            names.add(name)
    return names


def validate_passthrough(
    schema: type[BaseModel],
    data: Any,
    *,
    label: str = "data",
) -> dict[str, Any]:
    """Validate *data* against *schema*, preserving undeclared fields.

    Returns a new dict: the original mapping with declared fields replaced
    by their coerced values.  Raises :class:`SchemaValidationError` when a
    declared field is missing or has the wrong type.
    """
    if not isinstance(data, Mapping):
        raise SchemaValidationError(
            f"{label} for {schema.__name__} must be an object, "
            f"got {type(data).__name__}",
            schema_name=schema.__name__,
        )

    declared = _declared_keys(schema)
    subset = {k: v for k, v in data.items() if k in declared}
    try:
        model = schema.model_validate(subset)
    except pydantic.ValidationError as exc:
        raise SchemaValidationError(
            f"{label} failed {schema.__name__} validation "
            f"({exc.error_count()} error(s)): {exc}",
            schema_name=schema.__name__,
            errors=exc.errors(include_url=False),
        ) from exc

    result = dict(data)
    result.update(
        model.model_dump(by_alias=True, include=_emitted_fields(model))
    )
    return result


def json_schema_for(schema: type[BaseModel]) -> dict[str, Any]:
    """JSON Schema of *schema*, as handed to chat models for tool specs."""
    return schema.model_json_schema()
