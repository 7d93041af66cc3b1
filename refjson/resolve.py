"""
Generic type resolution for the refjson library.

Fields declared in a generic base class carry type variables:

    >>> T = TypeVar("T")
    >>> class Box(Generic[T]):
    ...     value: T
    >>> class StrBox(Box[str]):
    ...     pass

When walking a StrBox, the field "value" must be read as str. TypeResolutions
holds the substitution {T: str} built from one parameterized type (here
Box[str]) and applies it to any type expression. ancestor_resolutions() walks
a class's generic bases and produces one such substitution per ancestor.
"""

from __future__ import annotations

import types
import typing
from typing import (
    Annotated,
    Any,
    ForwardRef,
    Generic,
    Literal,
    ParamSpec,
    TypeVar,
    TypeVarTuple,
    Union,
    Unpack,
    get_args,
    get_origin,
)

from refjson.errors import JSONMapperError

NoneType = type(None)


# =============================================================================
# Type Shape Helpers
# =============================================================================


def strip_annotated(tp: Any) -> tuple[Any, tuple]:
    """Split Annotated[X, m1, m2] into (X, (m1, m2)); other types get ()."""
    if get_origin(tp) is Annotated:
        args = get_args(tp)
        return args[0], tuple(args[1:])
    return tp, ()


def is_union(tp: Any) -> bool:
    origin = get_origin(tp)
    return origin is Union or origin is types.UnionType


def unwrap_optional(tp: Any) -> Any:
    """Turn Optional[X] (and X | None) into X. Other types are returned as-is."""
    if is_union(tp):
        members = [m for m in get_args(tp) if m is not NoneType]
        if len(members) == 1:
            return members[0]
    return tp


def raw_type(tp: Any) -> Any:
    """The class behind a type expression: list[int] -> list, Box[str] -> Box."""
    tp, _ = strip_annotated(tp)
    tp = unwrap_optional(tp)
    tp, _ = strip_annotated(tp)
    origin = get_origin(tp)
    return origin if origin is not None else tp


def is_any(tp: Any) -> bool:
    tp, _ = strip_annotated(tp)
    return tp is Any or tp is object


def has_type_variables(tp: Any) -> bool:
    """Check whether a type expression still mentions a TypeVar."""
    if isinstance(tp, TypeVar):
        return True
    return any(has_type_variables(arg) for arg in get_args(tp) if arg is not Ellipsis)


def _check_supported(tp: Any) -> None:
    # These play the role of wildcard types: nothing concrete can be built for them
    if isinstance(tp, (ParamSpec, TypeVarTuple)):
        raise JSONMapperError(f"Type {tp!r} is not supported")
    if isinstance(tp, (str, ForwardRef)):
        raise JSONMapperError(f"Unresolved forward reference {tp!r}")
    if get_origin(tp) is Unpack:
        raise JSONMapperError(f"Variadic type {tp!r} is not supported")


# =============================================================================
# Type Resolution Context
# =============================================================================


class TypeResolutions:
    """
    An immutable mapping from type variable names to concrete types.

    Built by pairing the declared type parameters of a generic class with the
    actual type arguments of one parameterization of it. Builtin containers
    (dict, list, ...) have no named parameters; for them only the positional
    arguments are kept, which is all the deserializer needs for key, value and
    element types.

    Attributes:
        type_variables: The declared parameters, e.g. (T,) for Box.
        resolved_type_arguments: The actual arguments, e.g. (str,) for Box[str].
    """

    __slots__ = ("type_variables", "resolved_type_arguments", "_by_name")

    def __init__(self, type_variables: tuple, resolved_type_arguments: tuple):
        if type_variables and len(type_variables) != len(resolved_type_arguments):
            raise JSONMapperError(
                f"Type parameter count mismatch: {len(type_variables)} parameters, "
                f"{len(resolved_type_arguments)} arguments"
            )
        for tv in type_variables:
            _check_supported(tv)
        self.type_variables = type_variables
        self.resolved_type_arguments = resolved_type_arguments
        self._by_name = {
            tv.__name__: arg for tv, arg in zip(type_variables, resolved_type_arguments)
        }

    @classmethod
    def from_parameterized(cls, tp: Any) -> TypeResolutions:
        """
        Build the context for a parameterized type such as Box[str] or dict[str, int].

        Raises:
            JSONMapperError: If tp is not parameterized, or the argument count
                does not match the declared parameters.
        """
        tp, _ = strip_annotated(tp)
        origin = get_origin(tp)
        if origin is None:
            raise JSONMapperError(f"{tp!r} is not a parameterized type")
        params = tuple(getattr(origin, "__parameters__", None) or ())
        return cls(params, get_args(tp))

    def resolve(self, tp: Any) -> Any:
        """
        Substitute this context's type variables into a type expression.

        Type variables not bound here are left in place, since they may be
        resolved by a context at another level.
        """
        if isinstance(tp, TypeVar):
            return self._by_name.get(tp.__name__, tp)
        _check_supported(tp)

        origin = get_origin(tp)
        if origin is None or origin is Literal:
            return tp

        args = get_args(tp)
        if origin is Annotated:
            inner = self.resolve(args[0])
            if inner is args[0]:
                return tp
            return Annotated[(inner, *args[1:])]

        resolved = tuple(arg if arg is Ellipsis else self.resolve(arg) for arg in args)
        if all(new is old for new, old in zip(resolved, args)):
            return tp
        if is_union(tp):
            return Union[resolved]
        try:
            return origin[resolved]
        except TypeError as e:
            raise JSONMapperError(f"Could not rebuild {tp!r} with {resolved!r}") from e

    def __repr__(self) -> str:
        if self._by_name:
            pairs = ", ".join(f"{name} => {arg!r}" for name, arg in self._by_name.items())
        else:
            pairs = ", ".join(repr(arg) for arg in self.resolved_type_arguments)
        return f"TypeResolutions({{{pairs}}})"


# =============================================================================
# Generic Ancestry
# =============================================================================

_SKIPPED_BASES = (object, Generic, typing.Protocol)


def ancestor_resolutions(tp: Any) -> dict[type, TypeResolutions | None]:
    """
    Map each generic ancestor of a class to the substitution for its parameters.

    tp may be a class or a parameterized class. Each ancestor's parameterized
    base (as written in the class statement) is first resolved with the
    context of its subclass, so that chains like

        class C(B[T], Generic[T]): ...    # seen as C[int]
        class B(Generic[V]): ...

    yield {C: {T => int}, B: {V => int}}. Classes reached without type
    arguments map to None. The first path reaching a class wins.
    """
    found: dict[type, TypeResolutions | None] = {}

    def visit(current: Any, context: TypeResolutions | None) -> None:
        origin = get_origin(current)
        cls = origin if origin is not None else current
        if not isinstance(cls, type) or cls in _SKIPPED_BASES or cls in found:
            return
        if origin is not None:
            resolved = context.resolve(current) if context is not None else current
            own = TypeResolutions.from_parameterized(resolved)
        else:
            own = None
        found[cls] = own
        # __orig_bases__ must come from the class itself, not be inherited
        for base in cls.__dict__.get("__orig_bases__", cls.__bases__):
            visit(base, own)

    visit(tp, None)
    return found


def container_type_arguments(tp: Any, container: type, count: int) -> tuple:
    """
    Find the type arguments a class (or parameterized class) passes to a
    standard container base, e.g. (str, int) for a subclass of dict[str, int].

    Missing arguments are returned as Any.
    """
    for cls, resolutions in ancestor_resolutions(tp).items():
        if resolutions is None or not issubclass(cls, container):
            continue
        if cls.__module__ not in ("builtins", "collections", "collections.abc", "typing"):
            continue
        args = tuple(resolutions.resolved_type_arguments)
        if len(args) > count:
            raise JSONMapperError(
                f"Wrong number of type arguments for {cls.__name__}: got {len(args)}; expected {count}"
            )
        return args + (Any,) * (count - len(args))
    return (Any,) * count
