"""
Scalar types and conversions.

Scalars are leaf values: they are written inline and never carry an object
id. The scalar types are None, str, int, float, bool, Enum subclasses,
Literal types and class references (type / type[X]).

Python has a single int and float type, so the narrower integer and float
widths are expressed as annotated aliases:

    >>> class Packet:
    ...     flags: Byte
    ...     port: Short
    ...     ratio: Float32
    ...     grade: Char

Values are range-checked against these bounds when deserialized.

Conversion into a declared type goes through pydantic TypeAdapters in strict
mode, so a JSON string is never coerced into an int field. Map keys, which
are always strings in JSON, are converted in lax mode instead.
"""

from __future__ import annotations

import enum
import importlib
from typing import Annotated, Any, Literal, get_args, get_origin

from annotated_types import Interval, Len
from pydantic import TypeAdapter, ValidationError

from refjson.errors import TypeMismatchError
from refjson.markers import Marker
from refjson.resolve import NoneType, is_any, raw_type, strip_annotated, unwrap_optional

# =============================================================================
# Narrow Scalar Aliases
# =============================================================================

FLOAT32_MAX = 3.4028234663852886e38

Byte = Annotated[int, Interval(ge=-(2**7), le=2**7 - 1)]
Short = Annotated[int, Interval(ge=-(2**15), le=2**15 - 1)]
Int = Annotated[int, Interval(ge=-(2**31), le=2**31 - 1)]
Long = Annotated[int, Interval(ge=-(2**63), le=2**63 - 1)]
Float32 = Annotated[float, Interval(ge=-FLOAT32_MAX, le=FLOAT32_MAX)]
Char = Annotated[str, Len(1, 1)]

_BASIC_TYPES = (str, int, float, bool, NoneType)


# =============================================================================
# Classification
# =============================================================================


def is_scalar_type(tp: Any) -> bool:
    """Check whether a declared type is written inline as a JSON scalar."""
    tp, _ = strip_annotated(unwrap_optional(strip_annotated(tp)[0]))
    if get_origin(tp) is Literal:
        return True
    raw = raw_type(tp)
    if raw in _BASIC_TYPES or raw is type:
        return True
    return isinstance(raw, type) and issubclass(raw, enum.Enum)


def is_scalar_value(value: Any) -> bool:
    """Check whether a runtime value is a scalar. Class references are handled separately."""
    return value is None or isinstance(value, (str, int, float, bool, enum.Enum))


def scalar_accepts(tp: Any, value: Any) -> bool:
    """
    Check whether a parsed JSON scalar could belong to a scalar type.

    Used to choose a member of a Union. This is a shape check only; range
    and format are checked by the conversion itself.
    """
    tp, _ = strip_annotated(tp)
    if get_origin(tp) is Literal:
        return value in get_args(tp)
    raw = raw_type(tp)
    if raw is bool:
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if raw is int:
        return isinstance(value, int)
    if raw is float:
        return isinstance(value, (int, float))
    if raw is str or raw is type:
        return isinstance(value, str)
    if isinstance(raw, type) and issubclass(raw, enum.Enum):
        return isinstance(value, str) and value in raw.__members__
    return False


# =============================================================================
# Class References
# =============================================================================


def type_reference_name(cls: type) -> str:
    """The name a class is written as: its module path and qualified name."""
    return f"{cls.__module__}.{cls.__qualname__}"


def load_type_reference(name: str) -> type:
    """
    Load a class from the name written by type_reference_name().

    The longest importable module prefix is imported, and the rest of the
    name is looked up as attributes, so nested classes load too.

    Raises:
        TypeMismatchError: If the name does not lead to a class.
    """
    parts = name.split(".")
    for split in range(len(parts) - 1, 0, -1):
        try:
            obj = importlib.import_module(".".join(parts[:split]))
        except ImportError:
            continue
        for attr in parts[split:]:
            obj = getattr(obj, attr, None)
            if obj is None:
                break
        if isinstance(obj, type):
            return obj
    raise TypeMismatchError(f"Could not load class reference {name!r}")


# =============================================================================
# Conversion
# =============================================================================


def adapter_type(tp: Any) -> Any:
    """The type to build a TypeAdapter for: Optional removed, refjson markers dropped."""
    base, metadata = strip_annotated(unwrap_optional(tp))
    base = unwrap_optional(base)
    kept = tuple(m for m in metadata if not isinstance(m, Marker) and not (isinstance(m, type) and issubclass(m, Marker)))
    if not kept:
        return base
    return Annotated[(base, *kept)]


def build_adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(adapter_type(tp))


def convert_scalar(value: Any, tp: Any, adapters: Any, lax: bool = False) -> Any:
    """
    Convert a parsed JSON scalar to a scalar type.

    Args:
        value: The parsed scalar (str, int, float, bool or None).
        tp: The declared type.
        adapters: Object providing scalar_adapter(tp), normally a
            TypeDescriptorCache.
        lax: Allow coercion from strings. Used for map keys.

    Returns:
        The converted value. None converts to None for any type.

    Raises:
        TypeMismatchError: If the value has the wrong type, is out of range,
            or names no enum member or class.
    """
    if value is None:
        return None
    if not is_scalar_value(value) or isinstance(value, enum.Enum):
        raise TypeMismatchError(
            f"Got {type(value).__name__} when expecting scalar type {tp!r}"
        )
    if is_any(tp):
        return value

    raw = raw_type(tp)
    if raw is type:
        if not isinstance(value, str):
            raise TypeMismatchError(f"Expected class name string, got {value!r}")
        cls = load_type_reference(value)
        bound = get_args(unwrap_optional(strip_annotated(tp)[0]))
        if bound and isinstance(bound[0], type) and not issubclass(cls, bound[0]):
            raise TypeMismatchError(f"Class {value!r} is not a subclass of {bound[0].__name__}")
        return cls

    if isinstance(raw, type) and issubclass(raw, enum.Enum):
        if not isinstance(value, str):
            raise TypeMismatchError(f"Expected {raw.__name__} member name, got {value!r}")
        try:
            return raw[value]
        except KeyError:
            raise TypeMismatchError(f"{value!r} is not a member of {raw.__name__}") from None

    try:
        return adapters.scalar_adapter(tp).validate_python(value, strict=not lax)
    except ValidationError as e:
        raise TypeMismatchError(f"Could not convert {value!r} to {tp!r}: {e}") from e
