"""
Serializer configuration.

    >>> from refjson.serialize import Serializer
    >>> from refjson.config import SerializerConfig
    >>>
    >>> config = SerializerConfig(indent_width=4, include_null_fields=True)
    >>> text = Serializer(config).serialize(obj)
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SerializerConfig:
    """
    Configuration for JSON output.

    Attributes:
        indent_width: Spaces per nesting level. 0 disables pretty printing.
        include_non_public_fields: If False, fields whose names start with
            an underscore are not serialized.
        include_null_fields: If True, None-valued entries of JSON objects
            are written as null instead of being omitted.
    """

    indent_width: int = 0
    include_non_public_fields: bool = True
    include_null_fields: bool = False

    def __post_init__(self):
        if self.indent_width < 0:
            raise ValueError(f"indent_width must be >= 0, got {self.indent_width}")


DEFAULT_CONFIG = SerializerConfig()

PRETTY_CONFIG = SerializerConfig(indent_width=2)
