"""
Tiny accessor for the `/`-delimited key paths used throughout `xrestsync`
(`id_attribute`, `results_key`, `search_key`).

Given:

>>> data = {
...     "attrs": {"id": 1234},
...     "config": {"foo": "abc", "bar": "xyz"},
...     "items": [{"name": "first"}, {"name": "second"}]
... }

Then:

>>> get_object_at_key(data, "attrs/id")
1234
>>> get_string_at_key(data, "attrs/id")
'1234'
>>> get_string_at_key(data, "items/1/name")
'second'

Empty segments are skipped, so `attrs//id` and `/attrs/id` are the same as `attrs/id`.
Neither function modifies the document passed in.
"""
import json
from decimal import Decimal
from logging import getLogger
from typing import Any, List

from xrestsync.common.types import JsonValue
from xrestsync.errors import KeyPathError, KeyPathTypeError

log = getLogger(__name__)


def get_keys(node: Any) -> List[str]:
    """ Returns the keys available in `node`; array indexes are returned as strings. """
    if isinstance(node, dict):
        return [str(k) for k in node.keys()]
    if isinstance(node, list):
        return [str(i) for i in range(len(node))]
    return []


def _split_path(path: str) -> List[str]:
    # Protect against double slashes (and leading/trailing slashes) by mistake.
    return [part for part in (path or "").split("/") if part]


def get_object_at_key(root: JsonValue, path: str) -> Any:
    """
    Dig through `root` and return whatever is at `path`. The returned value is not type checked.

    Args:
        root: Decoded JSON document (normally a `dict`).
        path: `/`-delimited path. When the current node is a list, the segment must be the
            numeric index of the element (ie: `results/0/id`).

    Raises:
        xrestsync.errors.KeyPathError: If a segment is missing, or if we need to descend into
            something that is not an object/array. The error has the part of the path that was
            found (`seen`) and the keys that were available at that point (`available`).
    """
    parts = _split_path(path)
    if not parts:
        raise KeyPathError(f"Key path '{path}' is empty.", path=path)

    node = root
    seen = ""
    for part in parts:
        if isinstance(node, dict):
            if part not in node:
                available = get_keys(node)
                log.debug("Key path (%s) is missing (%s) after (%s).", path, part, seen)
                raise KeyPathError(
                    f"Failed to find '{part}' in data structure after finding '{seen}'. "
                    f"Available: {','.join(available)}",
                    path=path, seen=seen, missing=part, available=available
                )
            node = node[part]
        elif isinstance(node, list):
            # `isdigit` alone is also true for things like `²`, which `int` won't take.
            if not (part.isascii() and part.isdigit()) or int(part) >= len(node):
                available = get_keys(node)
                raise KeyPathError(
                    f"Failed to find index '{part}' in array at '{seen}'. "
                    f"Available: {','.join(available)}",
                    path=path, seen=seen, missing=part, available=available
                )
            node = node[int(part)]
        else:
            raise KeyPathError(
                f"Object at '{seen}' is not a map or array (it's a '{type(node).__name__}'). "
                f"Is this the right path?",
                path=path, seen=seen, missing=part
            )
        seen += "/" + part

    return node


def stringify_scalar(value: Any) -> str:
    """
    Renders a JSON string/number/boolean the way an id is compared and put into paths.

    - Strings are returned as-is.
    - Booleans become `true` / `false`.
    - Numbers never have an exponent or trailing zeros (`3.0` -> `3`, `1.50` -> `1.5`).

    Raises:
        TypeError: For anything else (dict, list, None).
    """
    if isinstance(value, str):
        return value
    # bool first, it's a subclass of int.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return format(Decimal(repr(value)), "f")
    raise TypeError(f"Value ({value!r}) is not a JSON string, number or boolean.")


def render_value(value: Any) -> str:
    """
    Like `stringify_scalar`, but never fails: `None` renders as `null` and objects/arrays are
    rendered as compact JSON with sorted keys.
    """
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return stringify_scalar(value)


def get_string_at_key(root: JsonValue, path: str) -> str:
    """
    Uses `get_object_at_key` and then verifies the resulting object is a JSON string, number
    or boolean; returns it rendered as a `str` (see `stringify_scalar`).

    Raises:
        xrestsync.errors.KeyPathError: See `get_object_at_key`.
        xrestsync.errors.KeyPathTypeError: Value is an object, array or null.
    """
    value = get_object_at_key(root, path)
    try:
        return stringify_scalar(value)
    except TypeError:
        type_name = "null" if value is None else type(value).__name__
        raise KeyPathTypeError(
            f"Object at path '{path}' is not a JSON string, number or boolean; "
            f"it is a '{type_name}'.",
            path=path, seen=path
        ) from None
