"""
Per-class metadata for the refjson library.

A TypeDescriptor lists the serializable fields of a class, and how to read
and write each one. The TypeDescriptorCache builds descriptors on demand and
also memoizes constructors and scalar adapters per type, so repeated
serialization of the same classes does no repeated introspection.

Field discovery
===============

Fields are the annotated attributes of a class and of each of its bases:

    >>> @dataclass
    ... class Animal:
    ...     name: Annotated[str, Id]
    ...     legs: int = 4
    >>> @dataclass
    ... class Dog(Animal):
    ...     owner: Person | None = None
    ...     _scratch: Annotated[dict, Transient] = field(default_factory=dict)

Dog's fields are [name, legs, owner]: ancestors first, each class in
declaration order. An annotation redeclared in a subclass replaces the
ancestor's. ClassVar, Final, InitVar and Transient-marked annotations are
not fields. Names starting with an underscore are non-public and can be
excluded with include_non_public_fields=False.

Concrete types
==============

Abstract collection types are instantiated through a fixed table:

    Mapping, MutableMapping         -> dict
    Sequence, MutableSequence,
    Collection, Iterable            -> list
    Set, AbstractSet, MutableSet    -> set

Classes not in the table are instantiated as themselves.
"""

from __future__ import annotations

import collections
import collections.abc
import dataclasses
import enum
import functools
import inspect
import logging
import types
import typing
from typing import Any, Callable, ClassVar, Final, Generic, TypeVar

from pydantic import TypeAdapter

from refjson.errors import ConstructionError, FieldAccessError, JSONMapperError
from refjson.markers import Id, Transient, has_marker
from refjson.resolve import (
    TypeResolutions,
    ancestor_resolutions,
    has_type_variables,
    is_any,
    raw_type,
    strip_annotated,
)
from refjson.scalars import build_adapter, is_scalar_type

logger = logging.getLogger(__name__)


# =============================================================================
# Concrete Types
# =============================================================================

_CONCRETE_TYPES: dict[Any, type] = {
    collections.abc.Mapping: dict,
    collections.abc.MutableMapping: dict,
    typing.Mapping: dict,
    typing.MutableMapping: dict,
    dict: dict,
    collections.OrderedDict: collections.OrderedDict,
    collections.defaultdict: collections.defaultdict,
    collections.Counter: collections.Counter,
    collections.abc.Sequence: list,
    collections.abc.MutableSequence: list,
    collections.abc.Collection: list,
    collections.abc.Iterable: list,
    typing.Sequence: list,
    typing.MutableSequence: list,
    typing.Collection: list,
    typing.Iterable: list,
    list: list,
    collections.deque: collections.deque,
    collections.abc.Set: set,
    collections.abc.MutableSet: set,
    typing.AbstractSet: set,
    typing.MutableSet: set,
    set: set,
    frozenset: frozenset,
    tuple: tuple,
}


def concrete_type(cls: Any) -> Any:
    """The class to instantiate for a declared class."""
    try:
        return _CONCRETE_TYPES.get(cls, cls)
    except TypeError:
        # Unhashable type expressions have no entry
        return cls


class Shape(enum.Enum):
    """How values of a type are laid out in JSON and built on the way back."""

    SCALAR = "scalar"
    ANY = "any"
    MAPPING = "mapping"
    SEQUENCE = "sequence"
    SET = "set"
    ARRAY = "array"
    RECORD = "record"


def shape_of(tp: Any) -> Shape:
    """
    Classify a declared type.

    ARRAY covers the immutable collections (tuple, frozenset, bytes, named
    tuples): they are filled through a list shell and built once complete.
    """
    if is_any(tp) or isinstance(strip_annotated(tp)[0], TypeVar):
        return Shape.ANY
    if is_scalar_type(tp):
        return Shape.SCALAR
    cls = concrete_type(raw_type(tp))
    if not isinstance(cls, type):
        raise JSONMapperError(f"Unsupported type {tp!r}")
    if issubclass(cls, collections.abc.Mapping):
        return Shape.MAPPING
    if issubclass(cls, (tuple, frozenset, bytes)):
        return Shape.ARRAY
    if issubclass(cls, collections.abc.MutableSet):
        return Shape.SET
    if issubclass(cls, collections.abc.MutableSequence):
        return Shape.SEQUENCE
    return Shape.RECORD


def finish_array(cls: type, shell: list) -> Any:
    """Build an immutable collection from its completed list shell."""
    if issubclass(cls, tuple) and hasattr(cls, "_make"):
        return cls._make(shell)
    return cls(shell)


# =============================================================================
# Fields
# =============================================================================

# Marks an attribute that was never assigned
_UNSET = object()


class FieldSlot:
    """
    One serializable field of a class.

    Attributes:
        name: The attribute name, also used as the JSON key.
        declared_type: The field's type with the type variables of the
            declaring class's ancestors already substituted. Variables of
            the class being described remain, and are resolved per use with
            fully_resolved_type().
        is_identity: Whether this is the class's Id field.
        is_scalar: Whether the field is written inline as a scalar.
    """

    __slots__ = ("name", "declared_type", "is_identity", "is_scalar", "_frozen", "_generic")

    def __init__(self, name: str, declared_type: Any, is_identity: bool = False, frozen: bool = False):
        self.name = name
        self.declared_type = declared_type
        self.is_identity = is_identity
        self.is_scalar = is_scalar_type(declared_type)
        self._frozen = frozen
        self._generic = has_type_variables(declared_type)

    def fully_resolved_type(self, resolutions: TypeResolutions | None) -> Any:
        if not self._generic or resolutions is None:
            return self.declared_type
        return resolutions.resolve(self.declared_type)

    def read(self, obj: Any) -> Any:
        """
        Read the field. An attribute that was never set reads as None; any
        other failure, including one raised by a property, is a
        FieldAccessError.
        """
        try:
            attr = inspect.getattr_static(obj, self.name, _UNSET)
            if attr is _UNSET:
                return None
            if isinstance(attr, types.MemberDescriptorType):
                # An empty slot raises AttributeError
                try:
                    return attr.__get__(obj, type(obj))
                except AttributeError:
                    return None
            return getattr(obj, self.name)
        except Exception as e:
            raise FieldAccessError(
                f"Could not read field {type(obj).__qualname__}.{self.name}: {e}"
            ) from e

    def write(self, obj: Any, value: Any) -> None:
        try:
            if self._frozen:
                object.__setattr__(obj, self.name, value)
            else:
                setattr(obj, self.name, value)
        except (AttributeError, TypeError) as e:
            raise FieldAccessError(
                f"Could not set field {type(obj).__qualname__}.{self.name}: {e}"
            ) from e

    def __repr__(self) -> str:
        return f"FieldSlot({self.name}: {self.declared_type!r})"


def _is_field(name: str, tp: Any, include_non_public_fields: bool) -> bool:
    base, metadata = strip_annotated(tp)
    if base is ClassVar or typing.get_origin(base) is ClassVar:
        return False
    if base is Final or typing.get_origin(base) is Final:
        return False
    if isinstance(base, dataclasses.InitVar) or base is dataclasses.InitVar:
        return False
    if has_marker(metadata, Transient):
        return False
    return include_non_public_fields or not name.startswith("_")


class TypeDescriptor:
    """
    The serializable fields of one class.

    Attributes:
        cls: The described class.
        field_order: Fields in serialization order.
        fields_by_name: The same fields keyed by name.
        id_field: The Id-marked field, or None. It is kept even if excluded
            from field_order by the visibility setting.
    """

    def __init__(self, cls: type, include_non_public_fields: bool = True):
        self.cls = cls
        self.field_order: list[FieldSlot] = []
        self.fields_by_name: dict[str, FieldSlot] = {}
        self.id_field: FieldSlot | None = None

        if not isinstance(cls, type):
            raise JSONMapperError(f"Cannot describe non-class {cls!r}")

        params = getattr(cls, "__dataclass_params__", None)
        frozen = bool(params is not None and params.frozen)
        resolutions = ancestor_resolutions(cls)

        seen: set[str] = set()
        groups: list[list[FieldSlot]] = []
        for klass in cls.__mro__:
            if klass is object or klass is Generic or klass is typing.Protocol:
                continue
            own = inspect.get_annotations(klass)
            if not own:
                continue
            try:
                hints = typing.get_type_hints(klass, include_extras=True)
            except Exception as e:
                raise JSONMapperError(
                    f"Could not evaluate annotations of {klass.__qualname__}: {e}"
                ) from e

            group: list[FieldSlot] = []
            context = resolutions.get(klass)
            for name in own:
                # The subclass's annotation masks the ancestor's
                if name in seen:
                    continue
                seen.add(name)
                tp = hints.get(name, own[name])
                is_identity = has_marker(strip_annotated(tp)[1], Id)
                if is_identity and self.id_field is not None:
                    raise JSONMapperError(
                        f"More than one Id field in {cls.__qualname__}: "
                        f"{self.id_field.name}, {name}"
                    )
                if not _is_field(name, tp, True):
                    if is_identity:
                        raise JSONMapperError(
                            f"Id field {cls.__qualname__}.{name} is not serializable"
                        )
                    continue
                if context is not None:
                    tp = context.resolve(tp)
                slot = FieldSlot(name, tp, is_identity, frozen)
                if is_identity:
                    self.id_field = slot
                if _is_field(name, tp, include_non_public_fields):
                    group.append(slot)
            groups.append(group)

        for group in reversed(groups):
            self.field_order.extend(group)
        self.fields_by_name = {slot.name: slot for slot in self.field_order}

    def __repr__(self) -> str:
        names = ", ".join(slot.name for slot in self.field_order)
        return f"TypeDescriptor({self.cls.__qualname__}: [{names}])"


# =============================================================================
# Constructors
# =============================================================================

# Stored in place of a constructor that a class does not have
_NO_CONSTRUCTOR = object()


def _accepts_no_arguments(func: Callable, bound: bool = True) -> bool:
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return False
    if not bound:
        params = params[1:]
    return all(
        p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD) or p.default is not p.empty
        for p in params
    )


def _allocate(cls: type, init: Callable | None) -> Any:
    instance = cls.__new__(cls)
    if init is not None:
        init(instance)
    return instance


class TypeDescriptorCache:
    """
    Memoizes type descriptors, constructors and scalar adapters.

    A cache may be shared between any number of Serializer and Deserializer
    instances, provided they agree on include_non_public_fields. It is not
    safe for concurrent use from several threads.
    """

    def __init__(self, include_non_public_fields: bool = True):
        self.include_non_public_fields = include_non_public_fields
        self._descriptors: dict[type, TypeDescriptor] = {}
        self._default_constructors: dict[type, Callable[[], Any]] = {}
        self._size_hint_constructors: dict[type, Any] = {}
        self._factories: dict[Any, Callable[[int], Any]] = {}
        self._adapters: dict[Any, TypeAdapter] = {}

    def describe(self, cls: type) -> TypeDescriptor:
        descriptor = self._descriptors.get(cls)
        if descriptor is None:
            descriptor = TypeDescriptor(cls, self.include_non_public_fields)
            self._descriptors[cls] = descriptor
            logger.debug("Described %s: %s", cls.__qualname__, descriptor)
        return descriptor

    def default_constructor(self, cls: Any) -> Callable[[], Any]:
        """
        Find a way to build an empty instance of cls.

        Classes callable without arguments are simply called. Otherwise the
        instance is allocated with __new__ and initialized by the nearest
        ancestor __init__ that takes no arguments, if any.

        Raises:
            ConstructionError: For abstract classes, protocols, scalar types
                and non-classes.
        """
        if cls is None:
            raise ValueError("Class cannot be None")
        constructor = self._default_constructors.get(cls)
        if constructor is not None:
            return constructor

        concrete = concrete_type(cls)
        if not isinstance(concrete, type):
            raise ConstructionError(f"Cannot instantiate non-class {cls!r}")
        if inspect.isabstract(concrete) or getattr(concrete, "_is_protocol", False):
            raise ConstructionError(f"Cannot instantiate abstract class {concrete.__qualname__}")
        if is_scalar_type(concrete):
            raise ConstructionError(f"Cannot instantiate scalar type {concrete.__qualname__}")

        # Standard containers all construct empty, but some have no signature
        if concrete.__module__ in ("builtins", "collections") or _accepts_no_arguments(concrete):
            constructor = concrete
        else:
            init = None
            for klass in concrete.__mro__[1:]:
                if klass is object:
                    break
                candidate = klass.__dict__.get("__init__")
                if candidate is not None and _accepts_no_arguments(candidate, bound=False):
                    init = candidate
                    break
            constructor = functools.partial(_allocate, concrete, init)

        self._default_constructors[cls] = constructor
        return constructor

    def size_hint_constructor(self, cls: Any) -> Callable[[int], Any] | None:
        """
        Find a with_capacity(n) classmethod on the concrete type, or None.

        Containers and records are both looked up, so a record class can
        also take the number of JSON entries it will receive.

        Absence is cached as well.
        """
        constructor = self._size_hint_constructors.get(cls)
        if constructor is None:
            concrete = concrete_type(cls)
            factory = getattr(concrete, "with_capacity", None) if isinstance(concrete, type) else None
            constructor = factory if callable(factory) else _NO_CONSTRUCTOR
            self._size_hint_constructors[cls] = constructor
        return None if constructor is _NO_CONSTRUCTOR else constructor

    def instance_factory(self, tp: Any) -> Callable[[int], Any]:
        """
        Return a callable building an empty instance for a declared type,
        given the number of JSON items that will be added to it.

        Immutable collections get a list shell of that length. Other classes
        use a size-hint constructor if they have one.
        """
        cls = raw_type(tp)
        factory = self._factories.get(cls)
        if factory is not None:
            return factory

        if shape_of(cls) is Shape.ARRAY:
            factory = _list_shell
        else:
            hinted = self.size_hint_constructor(cls)
            constructor = None if hinted is not None else self.default_constructor(cls)
            factory = functools.partial(_construct, cls, constructor, hinted)
        self._factories[cls] = factory
        return factory

    def scalar_adapter(self, tp: Any) -> TypeAdapter:
        try:
            adapter = self._adapters.get(tp)
        except TypeError:
            # Unhashable metadata inside Annotated
            return build_adapter(tp)
        if adapter is None:
            adapter = build_adapter(tp)
            self._adapters[tp] = adapter
        return adapter


def _list_shell(size: int) -> list:
    return [None] * size


def _construct(cls: Any, constructor: Callable[[], Any] | None, hinted: Callable[[int], Any] | None, size: int) -> Any:
    try:
        if hinted is not None:
            return hinted(size)
        return constructor()
    except Exception as e:
        raise ConstructionError(f"Could not instantiate {cls!r}: {e}") from e
