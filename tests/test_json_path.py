import pytest

from xrestsync.common.json_path import (
    get_keys, get_object_at_key, get_string_at_key, render_value, stringify_scalar
)
from xrestsync.errors import KeyPathError, KeyPathTypeError


data = {
    "id": 1234,
    "attrs": {"name": "potato", "enabled": True, "ratio": 1.5, "nothing": None},
    "items": [{"name": "first"}, {"name": "second"}],
}


def test_get_object_at_key():
    assert get_object_at_key(data, "attrs") is data["attrs"]
    assert get_object_at_key(data, "attrs/name") == "potato"
    assert get_object_at_key(data, "items/1/name") == "second"

    # Empty segments are ignored.
    assert get_object_at_key(data, "/attrs//name/") == "potato"


def test_get_object_at_key_missing():
    with pytest.raises(KeyPathError) as info:
        get_object_at_key(data, "attrs/config/foo")

    e = info.value
    assert e.path == "attrs/config/foo"
    assert e.seen == "/attrs"
    assert e.missing == "config"
    assert set(e.available) == {"name", "enabled", "ratio", "nothing"}
    assert "Failed to find 'config'" in str(e)

    # `KeyPathError` is also a `LookupError`.
    with pytest.raises(LookupError):
        get_object_at_key(data, "nope")


def test_get_object_at_key_bad_descend():
    with pytest.raises(KeyPathError) as info:
        get_object_at_key(data, "attrs/name/deeper")
    assert info.value.seen == "/attrs/name"

    with pytest.raises(KeyPathError):
        get_object_at_key(data, "items/5/name")

    with pytest.raises(KeyPathError):
        get_object_at_key(data, "items/first")

    # Unicode digits are not array indexes.
    for index in ("²", "١"):
        with pytest.raises(KeyPathError) as info:
            get_object_at_key(data, f"items/{index}")
        assert info.value.missing == index

    with pytest.raises(KeyPathError):
        get_object_at_key(data, "")


def test_get_string_at_key():
    assert get_string_at_key(data, "id") == "1234"
    assert get_string_at_key(data, "attrs/name") == "potato"
    assert get_string_at_key(data, "attrs/enabled") == "true"
    assert get_string_at_key(data, "attrs/ratio") == "1.5"

    for path in ("attrs", "items", "attrs/nothing"):
        with pytest.raises(KeyPathTypeError):
            get_string_at_key(data, path)


def test_stringify_scalar():
    assert stringify_scalar("abc") == "abc"
    assert stringify_scalar(False) == "false"
    assert stringify_scalar(3.0) == "3"
    assert stringify_scalar(1e21) == "1000000000000000000000"
    assert stringify_scalar(0.000001) == "0.000001"
    assert stringify_scalar(-7) == "-7"

    with pytest.raises(TypeError):
        stringify_scalar(None)


def test_render_value():
    assert render_value(None) == "null"
    assert render_value({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert render_value(True) == "true"
    assert render_value(12) == "12"


def test_get_keys():
    assert get_keys({"a": 1, "b": 2}) == ["a", "b"]
    assert get_keys(["x", "y"]) == ["0", "1"]
    assert get_keys("scalar") == []
