"""
Error taxonomy for the refjson library.

Every error raised by the engine derives from JSONMapperError, which is a
ValueError so that callers treating bad input generically keep working.
Errors are raised where they are detected and unwind the whole call; the
engine never returns partial output.
"""

from __future__ import annotations


class JSONMapperError(ValueError):
    """Base class for all serialization and deserialization failures."""


class ConstructionError(JSONMapperError):
    """Raised when no usable constructor exists for a type being deserialized."""


class TypeMismatchError(JSONMapperError):
    """
    Raised when the JSON shape disagrees with the expected type.

    This covers an object where an array is expected (and vice versa), a
    scalar where a composite is expected, and scalars outside the range or
    format of their target type.
    """


class UnresolvedReferenceError(JSONMapperError):
    """Raised when a back-reference id has no object registered for it."""


class UnsupportedCycleError(JSONMapperError):
    """Raised when a cycle passes through a collection, which cannot carry an id."""


class FieldAccessError(JSONMapperError):
    """Raised when a field cannot be read from or written to an object."""
