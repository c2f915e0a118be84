"""Unit tests for the tagged JSON value tree."""

from __future__ import annotations

import pytest

from pwaforge.core.json_tree import (
    JsonArray,
    JsonBool,
    JsonNull,
    JsonNumber,
    JsonObject,
    JsonString,
    as_object,
    as_string,
    as_text,
    from_python,
    parse_json,
)


class TestParse:
    def test_object(self):
        tree = parse_json('{"a": [1, true, null, "s"]}')
        assert isinstance(tree, JsonObject)
        items = tree.get("a").items
        assert items == (JsonNumber(1), JsonBool(True), JsonNull(), JsonString("s"))

    def test_invalid_returns_none(self):
        assert parse_json("{nope}") is None

    def test_round_trip_to_python(self):
        data = {"a": {"b": [1, 2.5]}, "c": False}
        assert parse_json('{"a": {"b": [1, 2.5]}, "c": false}').to_python() == data

    def test_bool_is_not_number(self):
        assert from_python(True) == JsonBool(True)

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            from_python(object())


class TestProjections:
    def test_as_object_mismatch(self):
        assert as_object(JsonString("x")) is None
        assert as_object(None) is None

    def test_as_string(self):
        assert as_string(JsonString("x")) == "x"
        assert as_string(JsonNumber(1)) is None

    @pytest.mark.parametrize(
        ("value", "text"),
        [
            (JsonString("abc"), "abc"),
            (JsonNull(), ""),
            (JsonNumber(2), "2"),
            (JsonBool(False), "false"),
            (JsonArray((JsonNumber(1),)), "[\n  1\n]"),
        ],
    )
    def test_as_text(self, value, text):
        assert as_text(value) == text
