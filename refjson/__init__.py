"""
refjson - JSON serialization of object graphs with back-references.

This library converts graphs of ordinary Python objects (dataclasses and
other annotated classes, dicts, lists, sets, tuples, scalars) to JSON text
and back, guided by type annotations:

- Fields are discovered from class annotations, including generic bases
- Map entries and set members are written in a deterministic order
- A record or map that contains a cycle back to itself is written once; the
  inner occurrence becomes a string id pointing to it
- Deserialization rebuilds the same shape, including the cycles

Unlike pickle, the output is plain JSON: the only reserved key is "__ID",
and only objects that are the target of a back-reference carry one.

Basic Usage:
    >>> from dataclasses import dataclass, field
    >>> from refjson import serialize, deserialize
    >>>
    >>> @dataclass
    ... class Node:
    ...     name: str = ""
    ...     parent: "Node | None" = None
    ...     children: list["Node"] = field(default_factory=list)
    >>>
    >>> root = Node("root")
    >>> root.children.append(Node("leaf", parent=root))
    >>> text = serialize(root, indent_width=2)
    >>> copy = deserialize(text, Node)
    >>> copy.children[0].parent is copy
    True

Identity fields:
    >>> from typing import Annotated
    >>> from refjson import Id
    >>>
    >>> @dataclass
    ... class Person:
    ...     name: Annotated[str, Id] = ""
    ...     best_friend: "Person | None" = None
    >>>
    >>> # A back-reference to a Person is written as its name, not "[#0]"

Reusing metadata across calls:
    >>> from refjson import TypeDescriptorCache
    >>> cache = TypeDescriptorCache()
    >>> text = serialize(root, cache=cache)
    >>> copy = deserialize(text, Node, cache=cache)
"""

from typing import Any

from refjson.config import DEFAULT_CONFIG, PRETTY_CONFIG, SerializerConfig
from refjson.descriptors import TypeDescriptor, TypeDescriptorCache
from refjson.deserialize import Deserializer
from refjson.errors import (
    ConstructionError,
    FieldAccessError,
    JSONMapperError,
    TypeMismatchError,
    UnresolvedReferenceError,
    UnsupportedCycleError,
)
from refjson.identity import ReferenceKey
from refjson.markers import Id, Transient
from refjson.resolve import TypeResolutions
from refjson.scalars import Byte, Char, Float32, Int, Long, Short
from refjson.serialize import Serializer
from refjson.values import (
    ID_KEY,
    JSONArray,
    JSONObject,
    JSONReference,
    parse_json,
    to_json_string,
)


def serialize(
    obj,
    indent_width: int = 0,
    include_non_public_fields: bool = True,
    *,
    include_null_fields: bool = False,
    cache: TypeDescriptorCache | None = None,
) -> str:
    """
    Serialize an object graph to JSON text.

    Args:
        obj: The root object. Scalars, records, maps and collections are
            all accepted.
        indent_width: Spaces per nesting level. 0 writes compact JSON.
        include_non_public_fields: Whether to write fields whose names start
            with an underscore.
        include_null_fields: Write None-valued entries as null instead of
            omitting them.
        cache: Optional shared TypeDescriptorCache. Its
            include_non_public_fields must match.

    Returns:
        The JSON text.

    Raises:
        UnsupportedCycleError: If a cycle passes through a collection.
        TypeMismatchError: If a map has a non-scalar key.
        FieldAccessError: If a field cannot be read.

    Example:
        >>> serialize({"b": [1, 2], "a": None}, include_null_fields=True)
        '{"a":null,"b":[1,2]}'
    """
    config = SerializerConfig(
        indent_width=indent_width,
        include_non_public_fields=include_non_public_fields,
        include_null_fields=include_null_fields,
    )
    return Serializer(config, cache).serialize(obj)


def serialize_field(
    obj,
    field_name: str,
    indent_width: int = 0,
    include_non_public_fields: bool = True,
    *,
    cache: TypeDescriptorCache | None = None,
) -> str:
    """
    Serialize the value of one field of an object.

    Raises:
        FieldAccessError: If the object's class has no serializable field
            with that name.
    """
    config = SerializerConfig(
        indent_width=indent_width,
        include_non_public_fields=include_non_public_fields,
    )
    return Serializer(config, cache).serialize_field(obj, field_name)


def to_value(obj, include_non_public_fields: bool = True, *, cache: TypeDescriptorCache | None = None):
    """Convert an object graph to the intermediate JSONObject/JSONArray tree."""
    config = SerializerConfig(include_non_public_fields=include_non_public_fields)
    return Serializer(config, cache).to_value(obj)


def deserialize(text: str, expected_type: Any, *, cache: TypeDescriptorCache | None = None):
    """
    Deserialize JSON text into an instance of expected_type.

    Args:
        text: JSON text, as written by serialize().
        expected_type: The type of the root, e.g. Node, list[Node] or
            dict[str, int]. Use Any to get plain dicts and lists.
        cache: Optional shared TypeDescriptorCache.

    Returns:
        The rebuilt object graph. JSON null gives None.

    Raises:
        JSONMapperError: If the text is not valid JSON or does not fit the
            type. See refjson.errors for the specific subclasses.

    Example:
        >>> deserialize('{"1":"one"}', dict[int, str])
        {1: 'one'}
    """
    return Deserializer(cache).deserialize(text, expected_type)


def deserialize_to_field(obj, field_name: str, text: str, *, cache: TypeDescriptorCache | None = None) -> None:
    """Deserialize JSON text into one field of an existing object, using the field's declared type."""
    Deserializer(cache).deserialize_to_field(obj, field_name, text)


__all__ = [
    # Core API
    "serialize",
    "serialize_field",
    "deserialize",
    "deserialize_to_field",
    "to_value",
    "parse_json",
    "to_json_string",
    # Engine
    "Serializer",
    "Deserializer",
    "SerializerConfig",
    "DEFAULT_CONFIG",
    "PRETTY_CONFIG",
    "TypeDescriptor",
    "TypeDescriptorCache",
    "TypeResolutions",
    "ReferenceKey",
    # Values
    "ID_KEY",
    "JSONObject",
    "JSONArray",
    "JSONReference",
    # Markers and scalar aliases
    "Id",
    "Transient",
    "Byte",
    "Short",
    "Int",
    "Long",
    "Float32",
    "Char",
    # Errors
    "JSONMapperError",
    "ConstructionError",
    "TypeMismatchError",
    "UnresolvedReferenceError",
    "UnsupportedCycleError",
    "FieldAccessError",
]
