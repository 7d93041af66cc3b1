"""
Intermediate value model for the refjson library.

The serializer turns an object graph into a tree of these values, and the
deserializer walks such a tree to rebuild the object graph. The text layer
sits on either side:

- JSONObject: an ordered list of (key, value) pairs, used for records and
  maps. It may carry an object id, written as the reserved "__ID" key.
- JSONArray: an ordered list of values, used for collections and tuples.
  Arrays never carry an id.
- JSONReference: a placeholder for a back-reference to a record or map that
  is already on the serialization path. It renders as the id of its target.

Scalars (None, str, int, float, bool, Enum members) are stored as-is.

Text contract:
    - Object keys are always quoted, escaped strings.
    - "__ID", if present, is the first key of its object.
    - Strings and enum names are quoted; numbers and booleans are bare.
"""

from __future__ import annotations

import enum
import json
from typing import Any

from pydantic import BaseModel, Field

from refjson.errors import JSONMapperError


# =============================================================================
# Constants
# =============================================================================

# Reserved key holding an object's id
ID_KEY = "__ID"

# Generated ids look like "[#0]", "[#1]", ...
ID_PREFIX = "[#"
ID_SUFFIX = "]"

# A None map key is written as this key
NULL_KEY = "null"


# =============================================================================
# Value Nodes
# =============================================================================


class JSONValue(BaseModel):
    """Base class for composite values of the intermediate model."""


class JSONObject(JSONValue):
    """
    An ordered associative JSON object.

    Attributes:
        items: Key/value pairs in document order. Values are scalars or
            other JSONValue nodes.
        object_id: The id of this object if it is the target of a
            back-reference, otherwise None.
    """

    items: list[tuple[str, Any]] = Field(default_factory=list)
    object_id: str | None = None


class JSONArray(JSONValue):
    """An ordered JSON array."""

    items: list[Any] = Field(default_factory=list)


class JSONReference(JSONValue):
    """
    A back-reference to an object already on the serialization path.

    Attributes:
        target: The referenced Python object.
        node: The JSONObject built for the target. The id assigned to the
            reference is also stored on this node.
        resolved_id: The id string, set by the id assignment pass.
    """

    target: Any
    node: JSONObject
    resolved_id: str | None = None


# =============================================================================
# Rendering
# =============================================================================


def _indent(depth: int, indent_width: int, buf: list[str]) -> None:
    if indent_width > 0:
        buf.append(" " * (depth * indent_width))


def _quote(text: str) -> str:
    return json.dumps(text)


def _write_value(
    value: Any,
    include_null_fields: bool,
    depth: int,
    indent_width: int,
    buf: list[str],
) -> None:
    if value is None:
        buf.append("null")
    elif isinstance(value, JSONObject):
        _write_object(value, include_null_fields, depth, indent_width, buf)
    elif isinstance(value, JSONArray):
        _write_array(value, include_null_fields, depth, indent_width, buf)
    elif isinstance(value, JSONReference):
        if value.resolved_id is None:
            raise JSONMapperError(
                f"Reference to {type(value.target).__name__} was never assigned an id"
            )
        buf.append(_quote(value.resolved_id))
    elif isinstance(value, enum.Enum):
        # Checked before int/str so IntEnum and StrEnum members render by name
        buf.append(_quote(value.name))
    elif isinstance(value, str):
        buf.append(_quote(value))
    elif isinstance(value, bool):
        buf.append("true" if value else "false")
    elif isinstance(value, (int, float)):
        buf.append(json.dumps(value))
    else:
        raise JSONMapperError(f"Cannot render value of type {type(value).__name__}")


def _write_object(
    obj: JSONObject,
    include_null_fields: bool,
    depth: int,
    indent_width: int,
    buf: list[str],
) -> None:
    pretty = indent_width > 0
    shown = [
        (key, value)
        for key, value in obj.items
        if value is not None or include_null_fields
    ]
    entries: list[tuple[str, Any]] = []
    if obj.object_id is not None:
        entries.append((ID_KEY, obj.object_id))
    entries.extend(shown)

    if not entries:
        buf.append("{}")
        return

    buf.append("{\n" if pretty else "{")
    for i, (key, value) in enumerate(entries):
        if key is None:
            raise JSONMapperError("Cannot serialize JSON object with null key")
        _indent(depth + 1, indent_width, buf)
        buf.append(_quote(key))
        buf.append(": " if pretty else ":")
        _write_value(value, include_null_fields, depth + 1, indent_width, buf)
        if i < len(entries) - 1:
            buf.append(",")
        if pretty:
            buf.append("\n")
    _indent(depth, indent_width, buf)
    buf.append("}")


def _write_array(
    arr: JSONArray,
    include_null_fields: bool,
    depth: int,
    indent_width: int,
    buf: list[str],
) -> None:
    pretty = indent_width > 0
    if not arr.items:
        buf.append("[]")
        return

    buf.append("[\n" if pretty else "[")
    n = len(arr.items)
    for i, item in enumerate(arr.items):
        _indent(depth + 1, indent_width, buf)
        _write_value(item, include_null_fields, depth + 1, indent_width, buf)
        if i < n - 1:
            buf.append(",")
        if pretty:
            buf.append("\n")
    _indent(depth, indent_width, buf)
    buf.append("]")


def to_json_string(
    value: Any,
    indent_width: int = 0,
    include_null_fields: bool = False,
) -> str:
    """
    Render an intermediate value as JSON text.

    Args:
        value: A scalar, JSONObject, JSONArray or resolved JSONReference.
        indent_width: Spaces per nesting level; 0 renders compactly.
        include_null_fields: Write None-valued object entries as null
            instead of omitting them.

    Returns:
        The JSON text.

    Raises:
        JSONMapperError: If the tree holds an unrenderable value or an
            unresolved reference.
    """
    buf: list[str] = []
    _write_value(value, include_null_fields, 0, indent_width, buf)
    return "".join(buf)


# =============================================================================
# Parsing
# =============================================================================


def _object_from_pairs(pairs: list[tuple[str, Any]]) -> JSONObject:
    obj = JSONObject()
    for i, (key, value) in enumerate(pairs):
        if key == ID_KEY:
            if i != 0:
                raise JSONMapperError(f'"{ID_KEY}" must be the first key of its object')
            if not isinstance(value, str):
                raise JSONMapperError(f'"{ID_KEY}" must have a string value, got {value!r}')
            obj.object_id = value
        else:
            obj.items.append((key, value))
    return obj


def _wrap_arrays(value: Any) -> Any:
    # json.loads has no hook for arrays, so lists are converted afterwards
    if isinstance(value, list):
        return JSONArray(items=[_wrap_arrays(item) for item in value])
    if isinstance(value, JSONObject):
        value.items = [(key, _wrap_arrays(item)) for key, item in value.items]
    return value


def parse_json(text: str) -> Any:
    """
    Parse JSON text into the intermediate value model.

    Objects become JSONObject (with "__ID" lifted into object_id), arrays
    become JSONArray, and scalars are returned as parsed.

    Raises:
        JSONMapperError: If the text is not valid JSON or misuses "__ID".
    """
    try:
        parsed = json.loads(text, object_pairs_hook=_object_from_pairs)
    except json.JSONDecodeError as e:
        raise JSONMapperError(f"Could not parse JSON: {e}") from e
    return _wrap_arrays(parsed)
