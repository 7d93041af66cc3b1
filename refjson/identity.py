"""
Identity-based map keys.

A ReferenceKey compares and hashes by object identity, so objects can be used
as dict keys or set members without calling their own __eq__/__hash__. This
matters when equality is expensive, and during deserialization, where an
object's fields may not all be set yet.
"""

from __future__ import annotations

from typing import Any


class ReferenceKey:
    """
    Wraps an object so that it is keyed by identity rather than by value.

    The key holds a strong reference to the wrapped object. Python can reuse
    the id() of a garbage-collected object, so keeping the object alive for
    as long as the key exists keeps the identity unambiguous.

    Example:
        >>> a, b = [1], [1]
        >>> ReferenceKey(a) == ReferenceKey(b)
        False
        >>> ReferenceKey(a) == ReferenceKey(a)
        True
    """

    __slots__ = ("wrapped",)

    def __init__(self, wrapped: Any):
        self.wrapped = wrapped

    def __hash__(self) -> int:
        return id(self.wrapped)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReferenceKey):
            return NotImplemented
        return self.wrapped is other.wrapped

    def __repr__(self) -> str:
        return f"ReferenceKey({type(self.wrapped).__name__} at {id(self.wrapped):#x})"
