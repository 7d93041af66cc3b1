"""
Field markers used inside typing.Annotated.

    >>> from typing import Annotated
    >>> from refjson.markers import Id, Transient
    >>>
    >>> class Node:
    ...     name: Annotated[str, Id]
    ...     cache: Annotated[dict, Transient]

Id designates the identity field of a class: when an instance of the class is
the target of a back-reference, the field's value is used as the reference id
instead of a generated one. Transient fields are never serialized.
"""

from __future__ import annotations


class Marker:
    """Base class for refjson's Annotated metadata."""

    def __repr__(self) -> str:
        return type(self).__name__


class _Id(Marker):
    pass


class _Transient(Marker):
    pass


Id = _Id()
Transient = _Transient()


def has_marker(metadata: tuple, marker: Marker) -> bool:
    """Check Annotated metadata for a marker, accepting the marker class too."""
    return any(m is marker or m is type(marker) for m in metadata)
