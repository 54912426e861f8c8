"""
Collection search: find a record in a list of records returned by the API, by comparing the
value at a key path to a searched for value.

>>> body = '{"data": [{"id": "obj-2", "name": "target"}, {"id": "obj-1", "name": "other"}]}'
>>> find_record(body, search_key="name", search_value="target", results_key="data")
({'id': 'obj-2', 'name': 'target'}, 'obj-2')
"""
import json
from logging import getLogger
from typing import List, Optional, Tuple, Union

import jsonpatch
import jsonpointer

from xrestsync.common.json_path import get_object_at_key, get_string_at_key
from xrestsync.common.types import JsonDict
from xrestsync.errors import (
    ConfigInvalidError, DecodeError, IdentityMissingError, KeyPathError, SearchNoMatchError,
    SearchShapeError
)

log = getLogger(__name__)


def compile_search_patch(patch: Union[str, List[JsonDict], None]) -> Optional[jsonpatch.JsonPatch]:
    """
    Compiles a JSON Patch document (a list of operations, or the same as a JSON `str`).

    Raises:
        xrestsync.errors.ConfigInvalidError: If the patch is not a valid JSON Patch.
    """
    if patch is None or patch == "" or patch == []:
        return None

    try:
        if isinstance(patch, str):
            patch = json.loads(patch)
        if not isinstance(patch, list):
            raise ValueError(
                f"a JSON Patch must be an array of operations, not a '{type(patch).__name__}'"
            )
        return jsonpatch.JsonPatch(patch)
    except (jsonpatch.JsonPatchException, ValueError, TypeError, KeyError) as e:
        raise ConfigInvalidError(
            diagnostics=[f"search_patch is not a valid JSON Patch: {e}"]
        ) from e


def apply_search_patch(record: JsonDict, patch: jsonpatch.JsonPatch) -> JsonDict:
    """ Returns a patched copy of `record`; `record` is not modified. """
    try:
        patched = patch.apply(record)
    except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException) as e:
        raise SearchShapeError(f"failed to apply search_patch: {e}") from e

    if not isinstance(patched, dict):
        raise SearchShapeError("search_patch did not result in a JSON object.")
    return patched


def _results_array(result, results_key: Optional[str], search_path: str) -> list:
    if results_key:
        if not isinstance(result, dict):
            raise SearchShapeError(
                f"The results of a request to '{search_path}' did not return a map. "
                f"Cannot search within for results_key '{results_key}'."
            )
        try:
            records = get_object_at_key(result, results_key)
        except KeyPathError as e:
            raise SearchShapeError(f"error finding results_key: {e}") from e
        if not isinstance(records, list):
            raise SearchShapeError(
                f"The data at results_key location '{results_key}' is not an array. "
                f"It is a '{type(records).__name__}'."
            )
        return records

    if not isinstance(result, list):
        raise SearchShapeError(
            f"The results of a request to '{search_path}' did not return an array. It is a "
            f"'{type(result).__name__}'. Perhaps you meant to add a results_key?"
        )
    return result


def find_record(
        body: str,
        *,
        search_key: str,
        search_value: str,
        results_key: str = None,
        id_attribute: str = "id",
        search_path: str = ""
) -> Tuple[JsonDict, str]:
    """
    Scans the records in the search response `body` for the first one where the value at
    `search_key` (as a string) is `search_value`. First match wins.

    Args:
        body: Raw body of the search response.
        search_key: `/`-delimited path inside each record.
        search_value: Value to look for.
        results_key: `/`-delimited path to the records array, if it's not the root of the body.
        id_attribute: `/`-delimited path to the id inside the matched record.
        search_path: Only used for error messages.

    Returns:
        Tuple of the matched record and its id.

    Raises:
        xrestsync.errors.DecodeError: Body is not JSON.
        xrestsync.errors.SearchShapeError: Results are not an array of objects, or a record does
            not have the search key.
        xrestsync.errors.IdentityMissingError: Matched record does not have an id.
        xrestsync.errors.SearchNoMatchError: Nothing matched.
    """
    try:
        result = json.loads(body)
    except ValueError as e:
        raise DecodeError(f"Search response from '{search_path}' is not valid JSON: {e}") from e

    for record in _results_array(result, results_key, search_path):
        if not isinstance(record, dict):
            raise SearchShapeError(
                "The elements being searched for data are not a map of key value pairs."
            )

        try:
            value = get_string_at_key(record, search_key)
        except KeyPathError as e:
            raise SearchShapeError(
                f"Failed to get the value of '{search_key}' in the results array at "
                f"'{results_key or ''}': {e}"
            ) from e

        if value != search_value:
            continue

        try:
            object_id = get_string_at_key(record, id_attribute)
        except KeyPathError as e:
            raise IdentityMissingError(
                f"Failed to find id_attribute '{id_attribute}' in the record: {e}"
            ) from e

        if not object_id:
            raise IdentityMissingError(
                f"The object for '{search_key}'='{search_value}' did not have the id attribute "
                f"'{id_attribute}', or the value was empty."
            )

        log.debug("Search found id (%s) for (%s)=(%s).", object_id, search_key, search_value)
        return record, object_id

    raise SearchNoMatchError(
        f"Failed to find an object with the '{search_key}' key = '{search_value}' "
        f"at {search_path}."
    )
