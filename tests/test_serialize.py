"""
Tests for serialization output.

Tests cover:
1. Records, maps, collections and scalars
2. Deterministic ordering of map entries and set members
3. Back-references for cycles and identity fields
4. Cycle errors through collections
5. Configuration options
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Annotated, Any, Optional

import pytest

from refjson import (
    Id,
    JSONObject,
    Serializer,
    SerializerConfig,
    Transient,
    TypeDescriptorCache,
    TypeMismatchError,
    FieldAccessError,
    UnsupportedCycleError,
    serialize,
    serialize_field,
    to_value,
)


# =============================================================================
# Module-Level Test Classes
# =============================================================================


@dataclass
class Point:
    x: int = 0
    y: int = 0


@dataclass
class Node:
    name: str = ""
    parent: Optional["Node"] = None
    children: list["Node"] = field(default_factory=list)


@dataclass
class Person:
    name: Annotated[Optional[str], Id] = None
    friend: Optional["Person"] = None


@dataclass
class Pair:
    left: Any = None
    right: Any = None


@dataclass
class Account:
    owner: str = ""
    _balance: int = 0
    session: Annotated[Any, Transient] = None


class Faulty:
    x: int
    y: int

    def __init__(self):
        self.x = 1

    @property
    def y(self):
        raise AttributeError("not available")


class Suit(enum.Enum):
    HEARTS = 1
    SPADES = 2


@dataclass
class Card:
    suit: Suit = Suit.HEARTS
    rank: int = 1


# =============================================================================
# Basic Output
# =============================================================================


class TestBasicOutput:
    """Tests for the JSON written for plain values."""

    def test_root_scalars(self):
        assert serialize(5) == "5"
        assert serialize("a") == '"a"'
        assert serialize(None) == "null"
        assert serialize(True) == "true"

    def test_record(self):
        assert serialize(Point(1, 2)) == '{"x":1,"y":2}'

    def test_null_fields_omitted(self):
        assert serialize(Node("a")) == '{"name":"a","children":[]}'

    def test_null_fields_included(self):
        text = serialize(Node("a"), include_null_fields=True)
        assert text == '{"name":"a","parent":null,"children":[]}'

    def test_enum_fields_by_name(self):
        assert serialize(Card(Suit.SPADES, 12)) == '{"suit":"SPADES","rank":12}'

    def test_class_reference(self):
        assert serialize(Pair(left=int)) == '{"left":"builtins.int"}'

    def test_tuple_as_array(self):
        assert serialize((1, "a", None)) == '[1,"a",null]'

    def test_transient_field_skipped(self):
        assert serialize(Account("ann", 5, session=object())) == '{"owner":"ann","_balance":5}'

    def test_non_public_fields_excluded(self):
        text = serialize(Account("ann", 5), include_non_public_fields=False)
        assert text == '{"owner":"ann"}'

    def test_indented(self):
        assert serialize(Point(1, 2), indent_width=2) == '{\n  "x": 1,\n  "y": 2\n}'

    def test_failing_property_raises(self):
        with pytest.raises(FieldAccessError):
            serialize(Faulty())

    def test_none_map_key(self):
        assert serialize({None: 1, 2: 3}) == '{"2":3,"null":1}'

    def test_non_scalar_map_key(self):
        with pytest.raises(TypeMismatchError):
            serialize({(1, 2): "x"})


# =============================================================================
# Ordering
# =============================================================================


class TestOrdering:
    """Tests for deterministic ordering."""

    def test_map_keys_sorted(self):
        assert serialize({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_map_keys_sorted_naturally(self):
        """Numeric keys sort by value, not by their string form."""
        assert serialize({10: "a", 2: "b"}) == '{"2":"b","10":"a"}'

    def test_mixed_map_keys_sorted_by_string(self):
        assert serialize({"a": "y", 1: "x"}) == '{"1":"x","a":"y"}'

    def test_insertion_order_does_not_matter(self):
        first = {"z": Point(), "a": Point(1, 1)}
        second = {"a": Point(1, 1), "z": Point()}
        assert serialize(first) == serialize(second)

    def test_set_members_sorted(self):
        assert serialize({3, 1, 2}) == "[1,2,3]"
        assert serialize(frozenset({"b", "a"})) == '["a","b"]'

    def test_set_none_first(self):
        assert serialize({"b", None, "a"}) == '[null,"a","b"]'

    def test_mixed_set_sorted_by_string(self):
        assert serialize({"a", 1}) == '[1,"a"]'

    def test_enum_keys_by_name(self):
        assert serialize({Suit.SPADES: 1, Suit.HEARTS: 2}) == '{"HEARTS":2,"SPADES":1}'


# =============================================================================
# References
# =============================================================================


class TestReferences:
    """Tests for back-references and ids."""

    def test_parent_cycle(self):
        root = Node("root")
        root.children.append(Node("leaf", parent=root))
        assert serialize(root) == (
            '{"__ID":"[#0]","name":"root","children":[{"name":"leaf","parent":"[#0]","children":[]}]}'
        )

    def test_self_reference(self):
        n = Node("n")
        n.parent = n
        assert serialize(n) == '{"__ID":"[#0]","name":"n","parent":"[#0]","children":[]}'

    def test_record_cycle_through_list(self):
        """A cycle is fine as long as it returns to a record."""
        r = Node("r")
        r.children.append(r)
        assert serialize(r) == '{"__ID":"[#0]","name":"r","children":["[#0]"]}'

    def test_map_cycle(self):
        d = {}
        d["self"] = d
        assert serialize(d) == '{"__ID":"[#0]","self":"[#0]"}'

    def test_ids_generated_in_order(self):
        a, b = Node("a"), Node("b")
        a.parent = a
        b.parent = b
        text = serialize(Pair(a, b))
        assert text.index('"__ID":"[#0]","name":"a"') < text.index('"__ID":"[#1]","name":"b"')

    def test_identity_field_used_as_id(self):
        alice = Person("alice")
        bob = Person("bob", friend=alice)
        alice.friend = bob
        assert serialize(alice) == (
            '{"__ID":"alice","name":"alice","friend":{"name":"bob","friend":"alice"}}'
        )

    def test_unset_identity_falls_back_to_generated(self):
        anon = Person()
        anon.friend = anon
        assert serialize(anon) == '{"__ID":"[#0]","friend":"[#0]"}'

    def test_shared_object_written_twice(self):
        """Shared objects that do not form a cycle are written in full each time."""
        shared = Point(3, 4)
        assert serialize(Pair(shared, shared)) == '{"left":{"x":3,"y":4},"right":{"x":3,"y":4}}'

    def test_collection_cycle_rejected(self):
        lst = []
        lst.append(lst)
        with pytest.raises(UnsupportedCycleError):
            serialize(lst)

    def test_collection_cycle_through_record_field(self):
        lst = []
        lst.append(Pair(left=lst))
        with pytest.raises(UnsupportedCycleError):
            serialize(lst)

    def test_to_value(self):
        n = Node("n")
        n.parent = n
        value = to_value(n)
        assert isinstance(value, JSONObject)
        assert value.object_id == "[#0]"


# =============================================================================
# Configuration and Entry Points
# =============================================================================


class TestSerializer:
    """Tests for the Serializer class and field serialization."""

    def test_reusable(self):
        serializer = Serializer()
        n = Node("n")
        n.parent = n
        assert serializer.serialize(n) == serializer.serialize(n)

    def test_cache_mismatch(self):
        with pytest.raises(ValueError):
            Serializer(SerializerConfig(include_non_public_fields=False), TypeDescriptorCache())

    def test_shared_cache(self):
        cache = TypeDescriptorCache()
        assert serialize(Point(1, 2), cache=cache) == serialize(Point(1, 2), cache=cache)
        assert Point in cache._descriptors

    def test_negative_indent(self):
        with pytest.raises(ValueError):
            SerializerConfig(indent_width=-1)

    def test_serialize_field(self):
        node = Node("n", children=[Node("c")])
        assert serialize_field(node, "children") == '[{"name":"c","children":[]}]'
        assert serialize_field(node, "parent") == "null"

    def test_serialize_unknown_field(self):
        with pytest.raises(FieldAccessError):
            serialize_field(Node("n"), "missing")

    def test_debug_logging(self, caplog):
        n = Node("n")
        n.parent = n
        with caplog.at_level(logging.DEBUG, logger="refjson"):
            serialize(n)
        assert any("back-reference" in record.getMessage() for record in caplog.records)
