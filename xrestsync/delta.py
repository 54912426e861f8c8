"""
Drift detection between what the user declared (and we recorded) and what the API says the
object currently looks like.

The main entry point is `get_delta`:

>>> recorded = {"foo": "bar", "baz": "old"}
>>> actual = {"foo": "bar", "baz": "new", "added": "x"}
>>> get_delta(recorded, actual, ignore_list=["baz"])
({'foo': 'bar', 'baz': 'old', 'added': 'x'}, True)

Ignore paths are dotted (`outer.inner`). Each time we descend into a nested object the first
segment is stripped from the paths that start with that object's key; the rest are dropped
for that branch.

There are also a few helpers a reconciler needs when it plans a change
(`normalize_null_fields`, `fields_requiring_replace` and the dotted
`get_nested_value` / `set_nested_value`).
"""
from logging import getLogger
from typing import Any, Iterable, List, Mapping, Tuple

from xrestsync.common.json_path import render_value
from xrestsync.common.types import JsonDict, KeyPaths
from xrestsync.util import str_list

log = getLogger(__name__)


def json_equal(a: Any, b: Any) -> bool:
    """
    Deep structural equality for decoded JSON.

    Unlike plain `==`, JSON booleans are never equal to numbers (`True != 1`), at any depth.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b

    if isinstance(a, dict) or isinstance(b, dict):
        if not (isinstance(a, dict) and isinstance(b, dict)) or a.keys() != b.keys():
            return False
        return all(json_equal(v, b[k]) for k, v in a.items())

    if isinstance(a, list) or isinstance(b, list):
        if not (isinstance(a, list) and isinstance(b, list)) or len(a) != len(b):
            return False
        return all(json_equal(x, y) for x, y in zip(a, b))

    return a == b


def descend_ignore_list(key: str, ignore_list: Iterable[str]) -> List[str]:
    """
    Makes `ignore_list` relative to a descended key.

    Given key `bar` and the ignore list `["foo", "bar.alpha", "bar.bravo"]`, this returns
    `["alpha", "bravo"]`.
    """
    descended = []
    for ignore_path in ignore_list:
        first, _, rest = ignore_path.partition(".")
        if first == key and rest:
            descended.append(rest)
    return descended


def get_delta(
        recorded: Mapping[str, Any],
        actual: Mapping[str, Any],
        ignore_list: KeyPaths = None,
        ignore_server_additions: bool = False
) -> Tuple[JsonDict, bool]:
    """
    Deep comparison of two JSON objects, `recorded` (what we declared / have in state) and
    `actual` (what the API returned).

    Args:
        recorded: The declared document.
        actual: The document as returned from the API.
        ignore_list: Dotted paths that are never compared. Ignored keys keep their recorded
            value, and ignored keys that only exist in `actual` are left out entirely.
        ignore_server_additions: If `True`, keys that only exist in `actual` are not copied
            into the result and do not count as a change.

    Returns:
        A tuple of the recorded document overlaid with every non-ignored value that is
        different in `actual`, and a `bool` that is `True` if anything was different.
        Neither input is modified.
    """
    ignore_list = str_list(ignore_list)
    modified = {}
    has_changes = False

    for key, val_recorded in recorded.items():
        if key in ignore_list:
            modified[key] = val_recorded
            continue

        actual_has_key = key in actual
        val_actual = actual.get(key)

        if val_recorded is None:
            # APIs commonly leave out null fields, so absent is the same as null here.
            modified[key] = val_actual
            if actual_has_key and val_actual is not None:
                has_changes = True
        elif isinstance(val_recorded, dict):
            if not isinstance(val_actual, dict):
                modified[key] = val_actual
                has_changes = True
                continue

            sub_modified, sub_changes = get_delta(
                val_recorded,
                val_actual,
                descend_ignore_list(key, ignore_list),
                ignore_server_additions
            )
            if sub_changes:
                modified[key] = sub_modified
                has_changes = True
            else:
                modified[key] = val_recorded
        elif isinstance(val_recorded, list):
            # Lists can only be ignored as a whole, never element-wise.
            if json_equal(val_recorded, val_actual):
                modified[key] = val_recorded
            else:
                modified[key] = val_actual
                has_changes = True
        elif json_equal(val_recorded, val_actual):
            modified[key] = val_recorded
        else:
            modified[key] = val_actual
            has_changes = True

    for key, val_actual in actual.items():
        if key in recorded or key in ignore_list:
            continue

        if ignore_server_additions:
            continue

        modified[key] = val_actual
        has_changes = True

    if has_changes:
        log.debug("Found drift between recorded and actual documents, ignoring (%s).", ignore_list)

    return modified, has_changes


def normalize_null_fields(planned: JsonDict, state: Mapping[str, Any]) -> bool:
    """
    Removes null-valued keys from `planned` (in place) when they are absent from `state`.
    Nested objects present on both sides are normalized recursively.

    Servers routinely omit null/empty fields from responses instead of returning them as null,
    so without this a declared `null` would look like drift forever.

    Returns:
        `True` if `planned` was modified.
    """
    modified = False

    for key in list(planned.keys()):
        planned_value = planned[key]
        if planned_value is None and key not in state:
            del planned[key]
            modified = True
            continue

        state_value = state.get(key)
        if isinstance(planned_value, dict) and isinstance(state_value, dict):
            if normalize_null_fields(planned_value, state_value):
                modified = True

    return modified


def get_nested_value(data: Mapping[str, Any], path: str) -> Any:
    """
    Retrieve a value using dot notation, `metadata.timestamp` is
    `data["metadata"]["timestamp"]`.

    Raises:
        KeyError: If the path does not exist, or goes through something that is not a dict.
    """
    if not path:
        raise KeyError("empty path")

    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        current = current.get(part) if isinstance(current, Mapping) else None
        if not isinstance(current, Mapping):
            raise KeyError(f"path {path} not found")

    last = parts[-1]
    if last not in current:
        raise KeyError(f"field {last} not found")
    return current[last]


def set_nested_value(data: JsonDict, path: str, value: Any):
    """
    Set a value using dot notation, creating intermediate dicts as needed (anything that is
    in the way and is not a dict is replaced).
    """
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        next_value = current.get(part)
        if not isinstance(next_value, dict):
            next_value = {}
            current[part] = next_value
        current = next_value
    current[parts[-1]] = value


def fields_requiring_replace(
        planned: Mapping[str, Any],
        state: Mapping[str, Any],
        force_new: KeyPaths
) -> List[str]:
    """
    Returns the dotted paths from `force_new` whose value changed between `state` and
    `planned`. A change to any of these can't be done with an update; the object has to be
    destroyed and created again.

    Paths that don't exist in `state` are never reported. A path that is missing from
    `planned` compares as `null`.
    """
    changed = []
    for path in str_list(force_new):
        try:
            state_value = get_nested_value(state, path)
        except KeyError:
            continue

        try:
            planned_value = get_nested_value(planned, path)
        except KeyError:
            planned_value = None

        if render_value(planned_value) != render_value(state_value):
            changed.append(path)

    return changed
