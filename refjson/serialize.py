"""
Object graph to JSON conversion for the refjson library.

The Serializer walks an object graph and produces JSON text in three steps:

1. Conversion: the graph is turned into the intermediate value tree
   (JSONObject / JSONArray / scalars). Records and maps become objects,
   collections become arrays.
2. Id assignment: every back-reference found in step 1 gets an id, which is
   also stored on the object it points to.
3. Rendering: the tree is written out as text.

Cycles:
    A record or map that is reached again while it is still being converted
    (i.e. it is its own ancestor) is written as a back-reference: the string
    id of the ancestor, whose JSON object then starts with "__ID". A cycle
    through a collection raises UnsupportedCycleError, since arrays cannot
    carry an id. An object shared by two branches without forming a cycle is
    written out in full in both places.

Ordering:
    Records write their fields in declaration order (ancestors first). Map
    entries are sorted by key, and set members by value; where keys or
    members are not mutually comparable, their string forms are sorted
    instead. The same graph thus always produces the same text.

Example:
    >>> @dataclass
    ... class Node:
    ...     name: str
    ...     parent: Node | None = None
    ...     children: list[Node] = field(default_factory=list)
    >>> root = Node("root")
    >>> root.children.append(Node("leaf", parent=root))
    >>> Serializer().serialize(root)
    '{"__ID":"[#0]","name":"root","children":[{"name":"leaf","parent":"[#0]","children":[]}]}'
"""

from __future__ import annotations

import collections.abc
import enum
import itertools
import logging
import operator
from typing import Any

from refjson.config import DEFAULT_CONFIG, SerializerConfig
from refjson.descriptors import TypeDescriptorCache
from refjson.errors import FieldAccessError, TypeMismatchError, UnsupportedCycleError
from refjson.identity import ReferenceKey
from refjson.scalars import is_scalar_value, type_reference_name
from refjson.values import (
    ID_PREFIX,
    ID_SUFFIX,
    NULL_KEY,
    JSONArray,
    JSONObject,
    JSONReference,
    to_json_string,
)

logger = logging.getLogger(__name__)

# Maps each object on the current path to its JSON object, or to None for
# collections, which cannot be referenced
Path = dict[ReferenceKey, "JSONObject | None"]


# =============================================================================
# Ordering Helpers
# =============================================================================


def _string_form(value: Any) -> str:
    if value is None:
        return NULL_KEY
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, type):
        return type_reference_name(value)
    return str(value)


def _map_key(key: Any) -> str:
    """The JSON key for a map key. Only scalars and classes can be keys."""
    if not (is_scalar_value(key) or isinstance(key, type)):
        raise TypeMismatchError(
            f"Map key of type {type(key).__qualname__} is not a scalar type, "
            "so cannot be used as a JSON object key"
        )
    return _string_form(key)


def _sorted_entries(mapping: collections.abc.Mapping) -> list[tuple[str, Any]]:
    """The (rendered key, value) pairs of a map, ordered by key."""
    entries = [(_map_key(key), key, value) for key, value in mapping.items()]
    try:
        entries.sort(key=operator.itemgetter(1))
    except TypeError:
        entries.sort(key=operator.itemgetter(0))
    return [(rendered, value) for rendered, _, value in entries]


def _sorted_members(members: collections.abc.Set) -> list[Any]:
    """Set members with None first, then in natural or string order."""
    present = [m for m in members if m is not None]
    try:
        present.sort()
    except TypeError:
        present.sort(key=_string_form)
    return [None] * (len(members) - len(present)) + present


# =============================================================================
# Serializer
# =============================================================================


class Serializer:
    """
    Converts object graphs to JSON text.

    A Serializer holds only its configuration and a type descriptor cache,
    so one instance can be reused for any number of calls.

    Attributes:
        config: Output options.
        cache: Type descriptor cache. Created from the config if not given.

    Raises:
        ValueError: If a supplied cache disagrees with the config on
            include_non_public_fields.
    """

    def __init__(
        self,
        config: SerializerConfig | None = None,
        cache: TypeDescriptorCache | None = None,
    ):
        self.config = config or DEFAULT_CONFIG
        if cache is None:
            cache = TypeDescriptorCache(
                include_non_public_fields=self.config.include_non_public_fields
            )
        elif cache.include_non_public_fields != self.config.include_non_public_fields:
            raise ValueError(
                "TypeDescriptorCache.include_non_public_fields does not match "
                "SerializerConfig.include_non_public_fields"
            )
        self.cache = cache

    def serialize(self, obj: Any) -> str:
        """Serialize an object graph to JSON text."""
        return to_json_string(
            self.to_value(obj),
            indent_width=self.config.indent_width,
            include_null_fields=self.config.include_null_fields,
        )

    def serialize_field(self, obj: Any, field_name: str) -> str:
        """
        Serialize the value of one field of an object.

        Raises:
            FieldAccessError: If the object's class has no serializable field
                with that name.
        """
        if obj is None:
            raise ValueError("Cannot serialize a field of None")
        descriptor = self.cache.describe(type(obj))
        slot = descriptor.fields_by_name.get(field_name)
        if slot is None:
            raise FieldAccessError(
                f"Class {type(obj).__qualname__} has no serializable field named {field_name!r}"
            )
        return self.serialize(slot.read(obj))

    def to_value(self, obj: Any) -> Any:
        """
        Convert an object graph to the intermediate value tree, with ids
        assigned to every back-reference target.
        """
        root = self._convert(obj, {})
        count = self._assign_object_ids(root)
        logger.debug(
            "Converted %s with %d back-reference(s)", type(obj).__qualname__, count
        )
        return root

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    def _convert(self, obj: Any, path: Path) -> Any:
        if isinstance(obj, type):
            return type_reference_name(obj)
        if is_scalar_value(obj):
            return obj

        key = ReferenceKey(obj)
        if key in path:
            node = path[key]
            if node is None:
                raise UnsupportedCycleError(
                    "Cycles involving collections cannot be serialized, since "
                    "collections are not assigned object ids. Reached cycle at "
                    f"{type(obj).__qualname__}"
                )
            return JSONReference(target=obj, node=node)

        if isinstance(obj, collections.abc.Mapping):
            node = JSONObject()
            path[key] = node
            entries = _sorted_entries(obj)
            values = self._convert_values([value for _, value in entries], path)
            node.items.extend(zip((name for name, _ in entries), values))
            result = node
        elif isinstance(obj, collections.abc.Collection):
            path[key] = None
            members = _sorted_members(obj) if isinstance(obj, collections.abc.Set) else list(obj)
            result = JSONArray(items=self._convert_values(members, path))
        else:
            descriptor = self.cache.describe(type(obj))
            node = JSONObject()
            path[key] = node
            values = self._convert_values(
                [slot.read(obj) for slot in descriptor.field_order], path
            )
            node.items.extend(zip((slot.name for slot in descriptor.field_order), values))
            result = node

        del path[key]
        return result

    def _convert_values(self, values: list[Any], path: Path) -> list[Any]:
        """
        Convert the children of one node.

        Scalars and class references are converted for all siblings before
        any composite sibling is descended into.
        """
        converted = list(values)
        composite: list[int] = []
        for i, value in enumerate(converted):
            if isinstance(value, type):
                converted[i] = type_reference_name(value)
            elif not is_scalar_value(value):
                composite.append(i)
        for i in composite:
            converted[i] = self._convert(converted[i], path)
        return converted

    # -------------------------------------------------------------------------
    # Id Assignment
    # -------------------------------------------------------------------------

    def _assign_object_ids(self, root: Any) -> int:
        """
        Give every back-reference an id, and store it on the referenced node.

        An object whose class has an Id field with a non-None value uses
        that value; otherwise ids "[#0]", "[#1]", ... are generated in the
        order references are met. Returns the number of references.
        """
        counter = itertools.count()
        references = 0
        stack = [root]
        while stack:
            value = stack.pop()
            if isinstance(value, JSONObject):
                stack.extend(item for _, item in reversed(value.items))
            elif isinstance(value, JSONArray):
                stack.extend(reversed(value.items))
            elif isinstance(value, JSONReference):
                references += 1
                node = value.node
                if node.object_id is None:
                    node.object_id = self._identity_value(value.target)
                if node.object_id is None:
                    node.object_id = f"{ID_PREFIX}{next(counter)}{ID_SUFFIX}"
                value.resolved_id = node.object_id
        return references

    def _identity_value(self, target: Any) -> str | None:
        if isinstance(target, collections.abc.Mapping):
            return None
        id_field = self.cache.describe(type(target)).id_field
        if id_field is None:
            return None
        identity = id_field.read(target)
        if identity is None:
            return None
        return _string_form(identity)
