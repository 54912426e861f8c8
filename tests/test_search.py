import json

import pytest

from xrestsync.errors import (
    ConfigInvalidError, DecodeError, IdentityMissingError, SearchNoMatchError, SearchShapeError
)
from xrestsync.remote.search import apply_search_patch, compile_search_patch, find_record


body = json.dumps({
    "data": [
        {"id": "obj-2", "name": "target-object", "attrs": {"size": 2}},
        {"id": "obj-1", "name": "other", "attrs": {"size": 1}},
        {"id": "obj-3", "name": "target-object", "attrs": {"size": 2}},
    ]
})


def test_find_record():
    record, object_id = find_record(
        body, search_key="name", search_value="target-object", results_key="data"
    )
    # First match wins.
    assert object_id == "obj-2"
    assert record["id"] == "obj-2"

    # Values are compared as strings, keys can be nested.
    _, object_id = find_record(body, search_key="attrs/size", search_value="1", results_key="data")
    assert object_id == "obj-1"


def test_find_record_in_root_array():
    records = json.dumps([{"uuid": 5, "name": "a"}])
    record, object_id = find_record(
        records, search_key="name", search_value="a", id_attribute="uuid"
    )
    assert record == {"uuid": 5, "name": "a"}
    assert object_id == "5"


def test_find_record_no_match():
    with pytest.raises(SearchNoMatchError) as info:
        find_record(
            body, search_key="name", search_value="nope", results_key="data", search_path="/x"
        )
    assert str(info.value) == "Failed to find an object with the 'name' key = 'nope' at /x."


def test_find_record_bad_shapes():
    with pytest.raises(DecodeError):
        find_record("not json", search_key="name", search_value="a")

    # Needs a results_key.
    with pytest.raises(SearchShapeError) as info:
        find_record(body, search_key="name", search_value="a")
    assert "Perhaps you meant to add a results_key?" in str(info.value)

    with pytest.raises(SearchShapeError):
        find_record(body, search_key="name", search_value="a", results_key="missing")

    with pytest.raises(SearchShapeError):
        find_record('{"data": {"a": 1}}', search_key="name", search_value="a", results_key="data")

    with pytest.raises(SearchShapeError):
        find_record('[1, 2]', search_key="name", search_value="a")

    with pytest.raises(SearchShapeError):
        find_record('[{"id": 1}]', search_key="name", search_value="a")

    with pytest.raises(SearchShapeError):
        find_record('[1]', search_key="name", search_value="a", results_key="data")


def test_find_record_without_id():
    with pytest.raises(IdentityMissingError):
        find_record('[{"name": "a"}]', search_key="name", search_value="a")

    with pytest.raises(IdentityMissingError):
        find_record('[{"name": "a", "id": ""}]', search_key="name", search_value="a")


def test_search_patch():
    assert compile_search_patch(None) is None
    assert compile_search_patch("") is None
    assert compile_search_patch([]) is None

    patch = compile_search_patch('[{"op": "move", "from": "/attrs/size", "path": "/size"}]')
    record = {"id": "1", "attrs": {"size": 2}}
    assert apply_search_patch(record, patch) == {"id": "1", "attrs": {}, "size": 2}
    assert record == {"id": "1", "attrs": {"size": 2}}

    patch = compile_search_patch([{"op": "remove", "path": "/missing"}])
    with pytest.raises(SearchShapeError):
        apply_search_patch(record, patch)

    patch = compile_search_patch([{"op": "replace", "path": "", "value": [1]}])
    with pytest.raises(SearchShapeError):
        apply_search_patch(record, patch)

    for bad in ("not json", '{"op": "remove"}', [{"op": "explode", "path": "/a"}]):
        with pytest.raises(ConfigInvalidError):
            compile_search_patch(bad)
