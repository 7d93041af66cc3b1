"""
JSON to object graph conversion for the refjson library.

The Deserializer rebuilds an object graph from JSON text, guided by the
declared type of the root and the field annotations of each class.

Each JSON object or array is populated in two passes over its items:

1. Nested objects and arrays get an empty instance and, if the JSON object
   has an "__ID", are registered under that id. Then, in document order,
   scalars are converted to the declared type, a string where a record or
   map is expected is looked up among the registered ids, and every item is
   stored in its parent.
2. The nested instances are populated recursively.

Because all ids at one level are registered before any item of that level
is resolved, an item can refer to a sibling on either side of it, and to
any ancestor.

Adding members to a list, set or deque is deferred until the whole document
has been read, since a member's hash may depend on fields that are not yet
populated. Immutable collections (tuples, frozensets) are filled in a list
first and built once the document is complete.

Example:
    >>> text = '{"__ID":"[#0]","name":"root","children":[{"name":"leaf","parent":"[#0]"}]}'
    >>> root = Deserializer().deserialize(text, Node)
    >>> root.children[0].parent is root
    True
"""

from __future__ import annotations

import collections.abc
import functools
import logging
from typing import Any, Callable, NamedTuple, TypeVar, get_args, get_origin

from refjson.descriptors import (
    FieldSlot,
    Shape,
    TypeDescriptorCache,
    finish_array,
    shape_of,
)
from refjson.errors import (
    ConstructionError,
    FieldAccessError,
    TypeMismatchError,
    UnresolvedReferenceError,
)
from refjson.identity import ReferenceKey
from refjson.resolve import (
    NoneType,
    TypeResolutions,
    container_type_arguments,
    is_union,
    raw_type,
    strip_annotated,
)
from refjson.scalars import convert_scalar, is_scalar_type, scalar_accepts
from refjson.values import NULL_KEY, JSONObject, JSONValue, parse_json

logger = logging.getLogger(__name__)

IdMap = dict[str, Any]


class _Instantiation(NamedTuple):
    """An instance created in the first pass, to be populated in the second."""

    instance: Any
    expected_type: Any
    value: JSONValue


# =============================================================================
# Deferred Actions
# =============================================================================


class DeferredActions:
    """
    Work postponed until a whole document has been read.

    Immutable collections are built first, innermost first, and put in place
    of their list shells. Collection additions run after that, so a shell
    queued for addition is replaced by the collection built from it.
    """

    def __init__(self):
        self._additions: list[tuple[Any, Any]] = []
        self._arrays: list[tuple[list, type, Callable[[Any], None] | None]] = []
        self._built: dict[ReferenceKey, Any] = {}

    def add_to_collection(self, collection: Any, item: Any) -> None:
        self._additions.append((collection, item))

    def build_array(self, shell: list, cls: type, setter: Callable[[Any], None] | None) -> None:
        """Queue building cls from shell; setter puts the result in the parent."""
        self._arrays.append((shell, cls, setter))

    def resolve(self, item: Any) -> Any:
        """The built collection for a list shell, or the item itself."""
        if self._built and isinstance(item, list):
            return self._built.get(ReferenceKey(item), item)
        return item

    def run(self) -> None:
        for shell, cls, setter in reversed(self._arrays):
            try:
                built = finish_array(cls, [self.resolve(item) for item in shell])
            except (TypeError, ValueError) as e:
                raise ConstructionError(f"Could not build {cls.__qualname__}: {e}") from e
            self._built[ReferenceKey(shell)] = built
            if setter is not None:
                setter(built)
        for collection, item in self._additions:
            item = self.resolve(item)
            if isinstance(collection, collections.abc.MutableSet):
                collection.add(item)
            else:
                collection.append(item)
        logger.debug(
            "Ran %d deferred addition(s), built %d immutable collection(s)",
            len(self._additions),
            len(self._arrays),
        )


# =============================================================================
# Deserializer
# =============================================================================


class Deserializer:
    """
    Rebuilds object graphs from JSON text.

    Attributes:
        cache: Type descriptor cache. May be shared with a Serializer.
    """

    def __init__(self, cache: TypeDescriptorCache | None = None):
        self.cache = cache if cache is not None else TypeDescriptorCache()

    def deserialize(self, text: str, expected_type: Any) -> Any:
        """
        Deserialize JSON text into an instance of expected_type.

        expected_type may be parameterized, e.g. list[Node] or Box[str].
        A JSON null deserializes to None.

        Raises:
            JSONMapperError: If the text cannot be read into the type.
        """
        return self.deserialize_value(parse_json(text), expected_type)

    def deserialize_value(self, value: Any, expected_type: Any) -> Any:
        """Deserialize an already-parsed intermediate value."""
        if value is None:
            return None
        expected_type = self._narrow(expected_type, value)
        shape = shape_of(expected_type)
        if shape is Shape.SCALAR:
            if isinstance(value, JSONValue):
                raise TypeMismatchError(
                    f"Got JSON object or array when expecting scalar type {expected_type!r}"
                )
            return convert_scalar(value, expected_type, self.cache)
        if not isinstance(value, JSONValue):
            if shape is Shape.ANY:
                return value
            raise TypeMismatchError(
                f"Got scalar value {value!r} when expecting JSON object or array"
            )
        if shape is Shape.ANY:
            expected_type = dict if isinstance(value, JSONObject) else list
            shape = shape_of(expected_type)

        instance = self.cache.instance_factory(expected_type)(len(value.items))
        id_map: IdMap = {}
        if isinstance(value, JSONObject) and value.object_id is not None:
            id_map[value.object_id] = instance
        deferred = DeferredActions()
        if shape is Shape.ARRAY:
            deferred.build_array(instance, raw_type(expected_type), None)

        self.populate(instance, expected_type, value, id_map, deferred)
        deferred.run()
        logger.debug("Deserialized %r with %d object id(s)", expected_type, len(id_map))
        return deferred.resolve(instance)

    def deserialize_to_field(self, obj: Any, field_name: str, text: str) -> None:
        """
        Deserialize JSON text into one field of an existing object.

        The text is read as if it were the field's entry in the object's
        JSON, so the field's declared type is used.
        """
        if obj is None:
            raise ValueError("Cannot deserialize into a field of None")
        wrapper = JSONObject(items=[(field_name, parse_json(text))])
        deferred = DeferredActions()
        self.populate(obj, type(obj), wrapper, {}, deferred)
        deferred.run()

    # -------------------------------------------------------------------------
    # Population
    # -------------------------------------------------------------------------

    def populate(
        self,
        instance: Any,
        expected_type: Any,
        value: JSONValue,
        id_map: IdMap,
        deferred: DeferredActions,
    ) -> None:
        """
        Populate an empty instance from a JSON object or array.

        Args:
            instance: The instance to fill. For immutable collections this
                is a list shell of the right length.
            expected_type: The declared type of the instance.
            value: The JSON object or array to read.
            id_map: Instances registered so far, by object id.
            deferred: Collection additions and immutable builds to run once
                the whole document has been read.
        """
        shape = shape_of(expected_type)
        is_object = isinstance(value, JSONObject)
        if is_object != (shape in (Shape.MAPPING, Shape.RECORD)):
            raise TypeMismatchError(
                f"Wrong JSON type for {expected_type!r}: got JSON "
                f"{'object' if is_object else 'array'}"
            )

        descriptor = None
        resolutions = None
        key_type = item_type = Any
        item_types: tuple | None = None
        if shape is Shape.RECORD:
            descriptor = self.cache.describe(type(instance))
            if get_origin(strip_annotated(expected_type)[0]) is not None:
                resolutions = TypeResolutions.from_parameterized(expected_type)
        elif shape is Shape.MAPPING:
            key_type, item_type = container_type_arguments(
                strip_annotated(expected_type)[0], collections.abc.Mapping, 2
            )
        elif shape is Shape.ARRAY:
            item_type, item_types = self._array_item_types(expected_type, len(value.items))
        else:
            (item_type,) = container_type_arguments(
                strip_annotated(expected_type)[0], collections.abc.Collection, 1
            )

        # Shared by every item, so the constructor is looked up once
        item_factory = None
        if descriptor is None and item_types is None:
            item_type = self._effective(item_type)
            if not is_union(strip_annotated(item_type)[0]) and shape_of(item_type) not in (
                Shape.SCALAR,
                Shape.ANY,
            ):
                item_factory = self.cache.instance_factory(item_type)

        # Pass 1a: create and register every nested object and array, so a
        # back-reference may name a sibling that comes after it
        entries: list[tuple[Any, Any, FieldSlot | None, Any, _Instantiation | None]] = []
        for i, entry in enumerate(value.items):
            key, item_value = entry if is_object else (None, entry)

            slot: FieldSlot | None = None
            if descriptor is not None:
                slot = descriptor.fields_by_name.get(key)
                if slot is None:
                    raise FieldAccessError(
                        f"Field {type(instance).__qualname__}.{key} does not exist or is not serializable"
                    )
                declared = self._effective(slot.fully_resolved_type(resolutions))
            elif item_types is not None:
                declared = self._effective(item_types[i])
            else:
                declared = item_type

            nested = None
            if isinstance(item_value, JSONValue):
                nested = self._create(item_value, declared, item_factory, id_map)
            entries.append((key, item_value, slot, declared, nested))

        # Pass 1b: convert scalars, resolve back-references and attach every
        # item in document order
        pending: list[_Instantiation] = []
        for i, (key, item_value, slot, declared, nested) in enumerate(entries):
            if nested is not None:
                item = nested.instance
            else:
                item = self._convert_item(item_value, declared, id_map)

            setter = None
            if slot is not None:
                # A null leaves the field unset
                if item is not None:
                    slot.write(instance, item)
                setter = functools.partial(slot.write, instance)
            elif shape is Shape.MAPPING:
                map_key = self._convert_key(key, key_type)
                instance[map_key] = item
                setter = functools.partial(instance.__setitem__, map_key)
            elif shape is Shape.ARRAY:
                instance[i] = item
                setter = functools.partial(instance.__setitem__, i)
            else:
                deferred.add_to_collection(instance, item)

            if nested is not None:
                pending.append(nested)
                if shape_of(nested.expected_type) is Shape.ARRAY:
                    deferred.build_array(item, raw_type(nested.expected_type), setter)

        # Pass 2
        for nested in pending:
            self.populate(nested.instance, nested.expected_type, nested.value, id_map, deferred)

    def _create(
        self,
        item_value: JSONValue,
        declared: Any,
        factory: Callable[[int], Any] | None,
        id_map: IdMap,
    ) -> _Instantiation:
        """Build the empty instance for a nested object or array and register its id."""
        narrowed = self._narrow(declared, item_value)
        if narrowed is not declared:
            factory = None
            declared = narrowed
        shape = shape_of(declared)
        if shape is Shape.ANY:
            declared = dict if isinstance(item_value, JSONObject) else list
            factory = None
        elif shape is Shape.SCALAR:
            raise TypeMismatchError(
                f"Got JSON object or array when expecting scalar type {declared!r}"
            )

        if factory is None:
            factory = self.cache.instance_factory(declared)
        item = factory(len(item_value.items))
        if isinstance(item_value, JSONObject) and item_value.object_id is not None:
            id_map[item_value.object_id] = item
        return _Instantiation(item, declared, item_value)

    def _convert_item(self, item_value: Any, declared: Any, id_map: IdMap) -> Any:
        """Convert a JSON scalar, or look up a back-reference by id."""
        if item_value is None:
            return None
        declared = self._narrow(declared, item_value)
        shape = shape_of(declared)
        if shape is Shape.ANY:
            return item_value
        if shape is Shape.SCALAR:
            return convert_scalar(item_value, declared, self.cache)
        if isinstance(item_value, str):
            try:
                return id_map[item_value]
            except KeyError:
                raise UnresolvedReferenceError(f"Object id not found: {item_value!r}") from None
        raise TypeMismatchError(
            f"Got scalar value {item_value!r} when expecting JSON object or array"
        )

    # -------------------------------------------------------------------------
    # Type Helpers
    # -------------------------------------------------------------------------

    def _effective(self, tp: Any) -> Any:
        """Replace an unresolved type variable with its bound, or Any."""
        if isinstance(tp, TypeVar):
            return tp.__bound__ if tp.__bound__ is not None else Any
        return tp

    def _narrow(self, tp: Any, value: Any) -> Any:
        """
        Choose the type to read a JSON value as, when tp is a Union.

        Optional[X] reads as X. For other unions, a scalar value picks the
        first scalar member that accepts it, and an object or array needs
        exactly one non-scalar member. A string with no accepting scalar
        member is taken as a back-reference.
        """
        tp = self._effective(tp)
        base = strip_annotated(tp)[0]
        if not is_union(base):
            return tp
        members = [self._effective(m) for m in get_args(base) if m is not NoneType]
        if len(members) == 1:
            return self._narrow(members[0], value)

        composite = [m for m in members if not is_scalar_type(m)]
        if not isinstance(value, JSONValue):
            for member in members:
                if is_scalar_type(member) and scalar_accepts(member, value):
                    return member
            if not isinstance(value, str):
                composite = []
        if len(composite) == 1:
            return composite[0]
        raise TypeMismatchError(f"Cannot choose a member of {tp!r} for JSON value {value!r}")

    def _array_item_types(self, expected_type: Any, size: int) -> tuple[Any, tuple | None]:
        """
        The item types of an immutable collection: one shared type, or one
        per position for fixed-length tuples like tuple[int, str].
        """
        base = strip_annotated(expected_type)[0]
        cls = raw_type(base)
        if issubclass(cls, bytes):
            return int, None
        if issubclass(cls, tuple) and hasattr(cls, "_fields"):
            hints = getattr(cls, "__annotations__", {})
            per_field = tuple(hints.get(name, Any) for name in cls._fields)
            if len(per_field) != size:
                raise TypeMismatchError(
                    f"{cls.__qualname__} has {len(per_field)} fields, got {size} items"
                )
            return Any, per_field
        args = get_args(base)
        if not args:
            return Any, None
        if issubclass(cls, tuple):
            if len(args) == 2 and args[1] is Ellipsis:
                return args[0], None
            if args == ((),):
                args = ()
            if len(args) != size:
                raise TypeMismatchError(f"Expected {len(args)} items for {expected_type!r}, got {size}")
            return Any, args
        return args[0], None

    def _convert_key(self, key: str, key_type: Any) -> Any:
        """Convert a JSON key. "null" is the None key when the key type is Optional."""
        key_type = self._effective(key_type)
        base = strip_annotated(key_type)[0]
        if key == NULL_KEY and is_union(base) and NoneType in get_args(base):
            return None
        key_type = self._narrow(key_type, key)
        if shape_of(key_type) is Shape.ANY:
            return key
        if not is_scalar_type(key_type):
            raise TypeMismatchError(f"Map key type {key_type!r} is not a scalar type")
        return convert_scalar(key, key_type, self.cache, lax=True)
