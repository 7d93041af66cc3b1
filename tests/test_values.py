"""
Tests for the intermediate value model, JSON rendering and JSON parsing.

Tests cover:
1. ReferenceKey identity semantics
2. Compact and indented rendering
3. Null handling and escaping
4. Parsing into JSONObject / JSONArray, including "__ID" placement
"""

import enum

import pytest

from refjson import (
    ID_KEY,
    JSONArray,
    JSONMapperError,
    JSONObject,
    JSONReference,
    ReferenceKey,
    parse_json,
    to_json_string,
)


class Color(enum.Enum):
    RED = 1
    GREEN = 2


class Level(enum.IntEnum):
    LOW = 1
    HIGH = 2


class Holder:
    """Plain object used as a reference target."""


# =============================================================================
# Reference Keys
# =============================================================================


class TestReferenceKey:
    """Tests for identity-based keys."""

    def test_equal_values_are_distinct_keys(self):
        """Two equal but distinct lists should give different keys."""
        a, b = [1], [1]
        assert ReferenceKey(a) != ReferenceKey(b)
        assert len({ReferenceKey(a), ReferenceKey(b)}) == 2

    def test_same_object_is_same_key(self):
        a = {"x": 1}
        assert ReferenceKey(a) == ReferenceKey(a)
        assert hash(ReferenceKey(a)) == hash(ReferenceKey(a))

    def test_unhashable_objects_can_be_keys(self):
        """Keys never call the wrapped object's __hash__."""
        table = {ReferenceKey([1, 2]): "list", ReferenceKey({}): "dict"}
        assert sorted(table.values()) == ["dict", "list"]

    def test_not_equal_to_other_types(self):
        a = object()
        assert ReferenceKey(a) != a


# =============================================================================
# Rendering
# =============================================================================


class TestRendering:
    """Tests for to_json_string."""

    def test_scalars(self):
        assert to_json_string(None) == "null"
        assert to_json_string(True) == "true"
        assert to_json_string(False) == "false"
        assert to_json_string(42) == "42"
        assert to_json_string(1.5) == "1.5"
        assert to_json_string("hi") == '"hi"'

    def test_enum_renders_by_name(self):
        """Enum members, including IntEnum, should be written as their names."""
        assert to_json_string(Color.RED) == '"RED"'
        assert to_json_string(Level.HIGH) == '"HIGH"'

    def test_string_escaping(self):
        assert to_json_string('a"b\\c\n') == '"a\\"b\\\\c\\n"'

    def test_compact_object(self):
        obj = JSONObject(items=[("a", 1), ("b", JSONArray(items=[True, "x"]))])
        assert to_json_string(obj) == '{"a":1,"b":[true,"x"]}'

    def test_empty_containers(self):
        assert to_json_string(JSONObject()) == "{}"
        assert to_json_string(JSONArray()) == "[]"
        assert to_json_string(JSONObject(), indent_width=2) == "{}"

    def test_null_entries_omitted_by_default(self):
        obj = JSONObject(items=[("a", None), ("b", 2)])
        assert to_json_string(obj) == '{"b":2}'

    def test_null_entries_included_when_requested(self):
        obj = JSONObject(items=[("a", None), ("b", 2)])
        assert to_json_string(obj, include_null_fields=True) == '{"a":null,"b":2}'

    def test_nulls_in_arrays_always_written(self):
        assert to_json_string(JSONArray(items=[None, 1])) == "[null,1]"

    def test_object_id_written_first(self):
        obj = JSONObject(items=[("name", "x")], object_id="[#0]")
        assert to_json_string(obj) == '{"__ID":"[#0]","name":"x"}'

    def test_indented(self):
        obj = JSONObject(items=[("a", 1), ("b", JSONArray(items=[1, 2]))])
        expected = '{\n  "a": 1,\n  "b": [\n    1,\n    2\n  ]\n}'
        assert to_json_string(obj, indent_width=2) == expected

    def test_reference_renders_as_id(self):
        node = JSONObject(object_id="[#3]")
        ref = JSONReference(target=Holder(), node=node, resolved_id="[#3]")
        assert to_json_string(JSONArray(items=[ref])) == '["[#3]"]'

    def test_unresolved_reference_raises(self):
        ref = JSONReference(target=Holder(), node=JSONObject())
        with pytest.raises(JSONMapperError):
            to_json_string(ref)

    def test_unrenderable_value_raises(self):
        with pytest.raises(JSONMapperError):
            to_json_string(JSONArray(items=[object()]))


# =============================================================================
# Parsing
# =============================================================================


class TestParsing:
    """Tests for parse_json."""

    def test_scalars(self):
        assert parse_json("null") is None
        assert parse_json("true") is True
        assert parse_json("12") == 12
        assert parse_json('"s"') == "s"

    def test_object_and_array(self):
        value = parse_json('{"a": [1, {"b": null}]}')
        assert isinstance(value, JSONObject)
        key, arr = value.items[0]
        assert key == "a"
        assert isinstance(arr, JSONArray)
        assert arr.items[0] == 1
        assert isinstance(arr.items[1], JSONObject)
        assert arr.items[1].items == [("b", None)]

    def test_keeps_key_order(self):
        value = parse_json('{"z": 1, "a": 2, "m": 3}')
        assert [k for k, _ in value.items] == ["z", "a", "m"]

    def test_id_is_lifted(self):
        value = parse_json('{"__ID": "[#0]", "x": 1}')
        assert value.object_id == "[#0]"
        assert value.items == [("x", 1)]

    def test_id_must_be_first(self):
        with pytest.raises(JSONMapperError):
            parse_json('{"x": 1, "__ID": "[#0]"}')

    def test_id_must_be_string(self):
        with pytest.raises(JSONMapperError):
            parse_json('{"__ID": 5}')

    def test_invalid_json(self):
        with pytest.raises(JSONMapperError):
            parse_json("{not json")

    def test_render_then_parse_keeps_id(self):
        obj = JSONObject(items=[("k", "v")], object_id="alice")
        parsed = parse_json(to_json_string(obj, indent_width=4))
        assert parsed.object_id == "alice"
        assert parsed.items == [("k", "v")]
        assert ID_KEY == "__ID"
