import dataclasses
import json
import threading
from copy import deepcopy
from logging import getLogger
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from xsentinels.default import Default

from xrestsync.common.json_path import get_string_at_key, render_value
from xrestsync.common.types import JsonDict
from xrestsync.delta import fields_requiring_replace, get_delta
from xrestsync.errors import (
    ConfigInvalidError, DecodeError, IdentityMissingError, InternalInvariantError, KeyPathError,
    SearchNoMatchError, XRestSyncError
)
from xrestsync._private.object.state import PrivateObjectState
from xrestsync.remote.client import APIClient
from xrestsync.remote.errors import HttpStatusError, NotFoundError
from xrestsync.remote.options import ObjectOptions, ReadSearch
from xrestsync.remote.response_state import ResponseState
from xrestsync.remote.search import apply_search_patch, compile_search_patch, find_record
from xrestsync.util import str_list

log = getLogger(__name__)


def append_id_to_path(path: str) -> str:
    """
    Appends `/{id}` to `path`, before the query string if there is one.
    A path that already has an `{id}` is returned unchanged.

    >>> append_id_to_path("/api/objects?x=1")
    '/api/objects/{id}?x=1'
    """
    if "{id}" in path:
        return path
    if "?" in path:
        base, query = path.split("?", 1)
        return f"{base}/{{id}}?{query}"
    return f"{path}/{{id}}"


def add_query_string(path: str, query_string: Optional[str]) -> str:
    """ Appends `query_string` with a `?`, or with a `&` if `path` already has a query string. """
    if not query_string:
        return path
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{query_string}"


def join_query_strings(*query_strings: Optional[str]) -> str:
    """ Joins the non-empty query strings with `&`, in the order given. """
    return "&".join(q for q in query_strings if q)


def _is_set(value: Any) -> bool:
    return value is not Default and value is not None and value != ""


def _parse_object(value: Union[str, Mapping, None], name: str) -> Optional[JsonDict]:
    """ Decodes an optional JSON object option (`str` or `dict`); `None` when not set. """
    if not _is_set(value):
        return None

    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise ConfigInvalidError(diagnostics=[f"error parsing {name} provided: {e}"]) from e

    if not isinstance(value, Mapping):
        raise ConfigInvalidError(
            diagnostics=[f"{name} must be a JSON object, not a '{type(value).__name__}'."]
        )
    return deepcopy(dict(value))


class APIObject:
    """
    Keeps one remote object in sync with its declared JSON document.

    Basic example:

    >>> client = APIClient(uri="https://api.example.com")
    >>> obj = APIObject(client, path="/api/objects", data={"id": "1234", "name": "potato"})
    >>> obj.read()
    >>> if not obj.id:
    ...     obj.create()
    ... else:
    ...     modified, has_changes = obj.compute_delta()
    ...     if has_changes:
    ...         obj.update()

    ## Paths

    All paths are relative to `xrestsync.remote.client.APIClient.uri`, and can have an `{id}`
    placeholder that is replaced with the current id each time a request is sent:

    - `create_path` defaults to `path`.
    - `read_path`, `update_path` and `destroy_path` default to `path` + `/{id}` (inserted before
      any query string).

    The object's `query_string` is appended to every request path.

    ## Identity

    The id is either given explicitly (`object_id`), found in the declared data (at the
    `id_attribute` path), or learned later: from the CREATE response when the client has
    `write_returns_object` / `create_returns_object`, or by searching a collection when there
    is a `read_search`. If none of these are possible the object can't be managed and
    constructing it fails with `xrestsync.errors.IdentityMissingError`.

    ## Thread safety

    The id and documents are guarded by a readers/writer lock, so `APIObject.snapshot`,
    `APIObject.compute_delta` and friends can be called while another thread is running a
    lifecycle operation. Don't run two lifecycle operations (create/read/update/delete) on the
    same object at the same time.
    """

    client: APIClient
    """ Client used to send every request. """

    response_state: ResponseState
    """ Outcome of the last request sent for this object. """

    path: str
    create_path: str
    read_path: str
    update_path: str
    destroy_path: str

    search_path: str
    """
    Explicit `search_path`; otherwise an explicit `read_path` without a trailing `/{id}`;
    otherwise `path`.
    """

    create_method: str
    read_method: str
    update_method: str
    destroy_method: str
    id_attribute: str
    copy_keys: List[str]
    query_string: Optional[str]

    read_data: Optional[JsonDict]
    update_data: Optional[JsonDict]
    destroy_data: Optional[JsonDict]

    read_search: Optional[ReadSearch]
    """ Resolved search options (`search_data` decoded), `None` when not searching. """

    ignore_changes_to: List[str]
    ignore_all_server_changes: bool
    ignore_server_additions: bool
    force_new: List[str]
    debug: bool

    def __init__(
            self,
            client: APIClient,
            options: ObjectOptions = None,
            *,
            require_identity: bool = True,
            **kwargs
    ):
        """
        Args:
            client: Client to send requests through.
            options: Object options, when not provided the keyword arguments are used to
                build a `xrestsync.remote.options.ObjectOptions`. When both are provided the
                keyword arguments override what's in `options`.
            require_identity: If `False`, `data` is optional and it's fine to not know the id
                (yet); used when the object is going to be found with `APIObject.find`.
            **kwargs: See `xrestsync.remote.options.ObjectOptions`.

        Raises:
            xrestsync.errors.ConfigInvalidError: Invalid options (ie: `data` is not a JSON object
                or `search_patch` is not a valid JSON Patch).
            xrestsync.errors.IdentityMissingError: No id, and no way to learn it later.
        """
        if options is None:
            options = ObjectOptions(**kwargs)
        elif kwargs:
            options = dataclasses.replace(options, **kwargs)

        problems = options.validate(require_data=require_identity)
        if problems:
            raise ConfigInvalidError(diagnostics=problems)

        self.client = client
        self.response_state = ResponseState()
        client_opts = client.options

        def pick(value, fallback):
            return fallback if value in (Default, None) else value

        self.path = options.path
        self.create_path = pick(options.create_path, options.path)
        self.read_path = pick(options.read_path, append_id_to_path(options.path))
        self.update_path = pick(options.update_path, append_id_to_path(options.path))
        self.destroy_path = pick(options.destroy_path, append_id_to_path(options.path))

        if _is_set(options.search_path):
            self.search_path = options.search_path
        elif _is_set(options.read_path):
            read_path = options.read_path
            if read_path.endswith("/{id}"):
                read_path = read_path[:-len("/{id}")]
            self.search_path = read_path
        else:
            self.search_path = options.path

        self.create_method = pick(options.create_method, client_opts.create_method)
        self.read_method = pick(options.read_method, client_opts.read_method)
        self.update_method = pick(options.update_method, client_opts.update_method)
        self.destroy_method = pick(options.destroy_method, client_opts.destroy_method)
        self.id_attribute = pick(options.id_attribute, client_opts.id_attribute)
        self.copy_keys = str_list(pick(options.copy_keys, client_opts.copy_keys))
        self.query_string = options.query_string if _is_set(options.query_string) else None
        self.debug = bool(pick(options.debug, client_opts.debug))

        self.ignore_changes_to = str_list(pick(options.ignore_changes_to, []))
        self.ignore_all_server_changes = bool(pick(options.ignore_all_server_changes, False))
        self.ignore_server_additions = bool(pick(options.ignore_server_additions, False))
        self.force_new = str_list(pick(options.force_new, []))

        if _is_set(options.data):
            data = _parse_object(options.data, "data")
        else:
            data = {}

        self.read_data = _parse_object(pick(options.read_data, client_opts.read_data), "read_data")
        self.update_data = _parse_object(
            pick(options.update_data, client_opts.update_data), "update_data"
        )
        self.destroy_data = _parse_object(
            pick(options.destroy_data, client_opts.destroy_data), "destroy_data"
        )

        self.read_search = None
        self._search_patch = None
        search = options.read_search
        if search not in (Default, None):
            self.read_search = ReadSearch(
                search_key=search.search_key,
                search_value=search.search_value,
                results_key=search.results_key if _is_set(search.results_key) else None,
                query_string=search.query_string if _is_set(search.query_string) else None,
                search_data=_parse_object(search.search_data, "read_search.search_data"),
                search_patch=search.search_patch if _is_set(search.search_patch) else None
            )
            self._search_patch = compile_search_patch(self.read_search.search_patch)

        object_id = str(options.object_id) if _is_set(options.object_id) else ""
        if not object_id and _is_set(options.data):
            try:
                object_id = get_string_at_key(data, self.id_attribute)
                log.debug("Opportunistically set id (%s) from data provided.", object_id)
            except KeyPathError:
                can_learn_id = (
                    client_opts.write_returns_object or
                    client_opts.create_returns_object or
                    self.read_search is not None
                )
                if require_identity and not can_learn_id:
                    raise IdentityMissingError(
                        f"provided data does not have {self.id_attribute} attribute for the "
                        f"object's id and the client is not configured to read the object from "
                        f"a POST response; without an id, the object cannot be managed"
                    ) from None

        self._state = PrivateObjectState(data, object_id)
        log.debug("Constructed object %r", self)

    # ---------------------------------------
    # --------- State Accessors -------------

    @property
    def id(self) -> str:
        """ The object's id; empty string if it's not known (or the object is gone). """
        with self._state.lock.read():
            return self._state.object_id

    @id.setter
    def id(self, value: Optional[str]):
        with self._state.lock.write():
            self._state.object_id = value or ""

    @property
    def data(self) -> JsonDict:
        """
        Copy of the declared document (copy keys are written into it on each read).
        Changing the returned dict does not change the object.
        """
        with self._state.lock.read():
            return deepcopy(self._state.data)

    @property
    def api_data(self) -> JsonDict:
        """ Copy of the decoded `APIObject.api_response`. """
        with self._state.lock.read():
            return deepcopy(self._state.api_data)

    @property
    def api_response(self) -> Optional[str]:
        """ Raw body of the last response adopted (read, or write when it's authoritative). """
        with self._state.lock.read():
            return self._state.api_response

    @property
    def create_response(self) -> Optional[str]:
        """ Raw body of the CREATE response, only recorded once. """
        with self._state.lock.read():
            return self._state.create_response

    def snapshot(self) -> Dict[str, Any]:
        """
        Consistent copy of the id and documents, with keys `id`, `data`, `api_data`,
        `api_response` and `create_response`.
        """
        return self._state.snapshot()

    def api_data_strings(self) -> Dict[str, str]:
        """
        `APIObject.api_data` with every value rendered as a `str`. Scalars are rendered the way
        ids are (`true`, `1.5`...), `null` as `null` and objects/arrays as compact JSON.
        """
        with self._state.lock.read():
            return {k: render_value(v) for k, v in self._state.api_data.items()}

    def __repr__(self):
        return (
            f"APIObject(id={self._state.object_id!r}, "
            f"create={self.create_method} {self.create_path!r}, "
            f"read={self.read_method} {self.read_path!r}, "
            f"update={self.update_method} {self.update_path!r}, "
            f"destroy={self.destroy_method} {self.destroy_path!r}, "
            f"search_path={self.search_path!r}, query_string={self.query_string!r}, "
            f"id_attribute={self.id_attribute!r}, read_search={self.read_search is not None})"
        )

    # --------------------------------------------
    # --------- Internal Helpers -----------------

    def _send(
            self,
            method: str,
            path: str,
            data: Union[str, JsonDict, None],
            *,
            query_string: Optional[str] = Default,
            cancel: threading.Event = None
    ) -> str:
        if query_string is Default:
            query_string = self.query_string

        path = add_query_string(path, query_string).replace("{id}", self.id)

        body, _ = self.client.send(
            method,
            path,
            data,
            force_debug=self.debug,
            cancel=cancel,
            response_state=self.response_state
        )
        return body

    def _data_json(self) -> str:
        with self._state.lock.read():
            return json.dumps(self._state.data)

    def _adopt(self, body: str, *, object_id: str = None, is_create: bool = False):
        """
        Takes `body` as the authoritative view of the object: decodes it into `api_data`,
        extracts the id if we don't know it and copies the copy keys into `data`.
        """
        try:
            api_data = json.loads(body)
        except ValueError as e:
            raise DecodeError(f"Response is not valid JSON: {e}") from e

        if not isinstance(api_data, dict):
            raise DecodeError(f"Response is a '{type(api_data).__name__}', not a JSON object.")

        state = self._state
        with state.lock.write():
            # Nothing is assigned until we know the id, so a failure leaves the state as it was.
            new_id = object_id or state.object_id
            if not new_id:
                try:
                    new_id = get_string_at_key(api_data, self.id_attribute)
                except KeyPathError as e:
                    raise IdentityMissingError(f"error extracting ID from data element: {e}") from e
                if not new_id:
                    raise IdentityMissingError(
                        f"The id at '{self.id_attribute}' in the response is empty."
                    )

            log.debug("Updating object state to (%s).", body)
            state.object_id = new_id
            state.api_data = api_data
            state.api_response = body
            if is_create and state.create_response is None:
                state.create_response = body

            for key in self.copy_keys:
                log.debug(
                    "Copying key (%s) from api_data to data, new (%s) old (%s).",
                    key, api_data.get(key), state.data.get(key)
                )
                state.data[key] = api_data.get(key)

    def _search(
            self,
            *,
            search_key: str,
            search_value: str,
            results_key: Optional[str],
            query_string: Optional[str],
            search_data: Optional[JsonDict],
            cancel: threading.Event = None
    ) -> Tuple[JsonDict, str]:
        log.debug(
            "Searching (%s) for (%s)=(%s), results_key (%s).",
            self.search_path, search_key, search_value, results_key
        )
        body = self._send(
            self.read_method,
            self.search_path,
            search_data,
            query_string=query_string,
            cancel=cancel
        )
        return find_record(
            body,
            search_key=search_key,
            search_value=search_value,
            results_key=results_key,
            id_attribute=self.id_attribute,
            search_path=self.search_path
        )

    # ------------------------------------------------
    # --------- Lifecycle Operations -----------------

    def create(self, *, cancel: threading.Event = None):
        """
        Sends the declared data with the CREATE method to `create_path`.

        When the client treats CREATE responses as authoritative (`write_returns_object` or
        `create_returns_object`), the response is adopted and recorded as
        `APIObject.create_response`. Otherwise the object is read back with `APIObject.read`.

        Raises:
            xrestsync.errors.IdentityMissingError: No id and the response won't tell us the id.
            xrestsync.errors.InternalInvariantError: Object *may* have been created, but we did
                not learn its id.
        """
        client_opts = self.client.options
        writes_return_object = (
            client_opts.write_returns_object or client_opts.create_returns_object
        )
        if not self.id and not writes_return_object:
            raise IdentityMissingError(
                "provided object does not have an id set and the client is not configured to "
                "read the object from a POST or PUT response; please set write_returns_object "
                "to true, or include an id in the object's data"
            )

        body = self._send(self.create_method, self.create_path, self._data_json(), cancel=cancel)

        if not writes_return_object:
            log.debug("Requesting created object from API.")
            self.read(cancel=cancel)
            return

        log.debug("Parsing response from create to update internal structures.")
        try:
            self._adopt(body, is_create=True)
        except XRestSyncError as e:
            if not self.id:
                raise InternalInvariantError(
                    "internal validation failed; object ID is not set, but *may* have been "
                    f"created; this should never happen ({e})"
                ) from e
            raise

        if not self.id:
            raise InternalInvariantError(
                "internal validation failed; object ID is not set, but *may* have been created; "
                "this should never happen"
            )

    def read(self, *, cancel: threading.Event = None):
        """
        Refreshes `api_data` from the API.

        With a `read_search` the collection at `search_path` is searched (see
        `APIObject.find`), otherwise `read_path` is requested.

        If the object is gone (a `404`, or nothing matched the search) the id is cleared and
        this returns normally; check `APIObject.id` afterwards.

        Raises:
            xrestsync.errors.IdentityMissingError: The id is not known.
        """
        object_id = self.id
        if not object_id:
            raise IdentityMissingError("cannot read an object unless the ID has been set")

        search = self.read_search
        if search is not None:
            search_value = search.search_value.replace("{id}", object_id)
            try:
                record, found_id = self._search(
                    search_key=search.search_key,
                    search_value=search_value,
                    results_key=search.results_key,
                    query_string=join_query_strings(search.query_string, self.query_string),
                    search_data=search.search_data,
                    cancel=cancel
                )
            except SearchNoMatchError:
                log.info(
                    "Search did not find object (%s)=(%s), clearing id.",
                    search.search_key, search_value
                )
                self.id = ""
                return

            if self._search_patch is not None:
                log.debug("Applying search_patch to the matched record.")
                record = apply_search_patch(record, self._search_patch)

            self._adopt(json.dumps(record), object_id=found_id)
            return

        try:
            body = self._send(self.read_method, self.read_path, self.read_data, cancel=cancel)
        except NotFoundError:
            log.warning(
                "404 error while refreshing object (%s) at (%s), it's gone; clearing id.",
                object_id, self.read_path
            )
            self.id = ""
            return

        self._adopt(body)

    def update(self, *, cancel: threading.Event = None):
        """
        Sends `update_data` (or the declared data when there is none) with the UPDATE method
        to `update_path`. The response is adopted when the client has `write_returns_object`,
        otherwise the object is read back.
        """
        if not self.id:
            raise IdentityMissingError("cannot update an object unless the ID has been set")

        if self.update_data is not None:
            payload = json.dumps(self.update_data)
        else:
            payload = self._data_json()

        body = self._send(self.update_method, self.update_path, payload, cancel=cancel)

        if self.client.options.write_returns_object:
            log.debug("Parsing response from update to update internal structures.")
            self._adopt(body)
        else:
            log.debug("Requesting updated object from API.")
            self.read(cancel=cancel)

    def delete(self, *, cancel: threading.Event = None):
        """
        Sends the DELETE method (with `destroy_data` as the body, if any) to `destroy_path`.
        An object without an id, or one the API says is already gone (`404` / `410`), is
        considered deleted.
        """
        object_id = self.id
        if not object_id:
            log.warning("Attempting to delete an object that has no id set, assuming this is OK.")
            return

        payload = json.dumps(self.destroy_data) if self.destroy_data is not None else None
        try:
            self._send(self.destroy_method, self.destroy_path, payload, cancel=cancel)
        except HttpStatusError as e:
            if e.status_code not in (404, 410):
                raise
            log.warning(
                "(%s) error while deleting object (%s) at (%s), assuming already deleted.",
                e.status_code, object_id, self.destroy_path
            )

    # ------------------------------------------------
    # --------- Lookup / Import ----------------------

    def find(
            self,
            search_key: str,
            search_value: str,
            results_key: str = None,
            query_string: str = None,
            search_data: Union[str, JsonDict, None] = None,
            *,
            cancel: threading.Event = None
    ) -> JsonDict:
        """
        Searches the collection at `APIObject.search_path` for the first record where the
        value at `search_key` is `search_value`, and sets `APIObject.id` to that record's id.

        Unlike a `read` with a `read_search`, no id is needed beforehand and nothing is
        adopted; call `APIObject.read` afterwards to do that.

        Returns:
            The matched record.

        Raises:
            xrestsync.errors.SearchNoMatchError: Nothing matched.
            xrestsync.errors.SearchShapeError: Results were not an array of objects.
        """
        record, found_id = self._search(
            search_key=search_key,
            search_value=search_value,
            results_key=results_key or None,
            query_string=join_query_strings(query_string, self.query_string),
            search_data=_parse_object(search_data, "search_data"),
            cancel=cancel
        )
        self.id = found_id
        return record

    @classmethod
    def lookup(
            cls,
            client: APIClient,
            *,
            search_key: str,
            search_value: str,
            results_key: str = None,
            query_string: str = None,
            search_data: Union[str, JsonDict, None] = None,
            cancel: threading.Event = None,
            **options
    ) -> "APIObject":
        """
        Finds an existing object by attribute and reads it; for looking up objects that are
        not managed (nothing declared). See `APIObject.find`.

        >>> obj = APIObject.lookup(client, path="/api/objects", search_key="name",
        ...                        search_value="potato")
        >>> obj.id, obj.api_data
        """
        obj = cls(client, require_identity=False, **options)
        obj.find(
            search_key,
            search_value,
            results_key=results_key,
            query_string=query_string,
            search_data=search_data,
            cancel=cancel
        )
        obj.read(cancel=cancel)
        return obj

    @classmethod
    def from_import_id(
            cls,
            client: APIClient,
            import_id: str,
            *,
            read: bool = True,
            cancel: threading.Event = None,
            **options
    ) -> "APIObject":
        """
        Builds an object from an import id formatted as `/<full path from server root>/<id>`,
        ie: `/api/objects/1234` has path `/api/objects` and id `1234`.

        Debug is enabled unless `debug` is passed in. When `read` is `True` (default) the
        object is read and its declared data becomes what was observed from the API.

        Raises:
            xrestsync.errors.ConfigInvalidError: Import id does not have a path and an id.
        """
        trimmed = import_id
        if trimmed.startswith("/"):
            trimmed = trimmed[1:]
        if trimmed.endswith("/"):
            trimmed = trimmed[:-1]

        n = trimmed.rfind("/")
        if n == -1:
            raise ConfigInvalidError(diagnostics=[
                f"Invalid path to import api_object '{import_id}' - must be "
                f"/<full path from server root>/<object id>"
            ])

        options.setdefault("debug", True)
        obj = cls(
            client,
            path=f"/{trimmed[:n]}",
            object_id=trimmed[n + 1:],
            require_identity=False,
            **options
        )
        log.debug("Import routine called for %r", obj)

        if read:
            obj.read(cancel=cancel)
            with obj._state.lock.write():
                obj._state.data = deepcopy(obj._state.api_data)
        return obj

    def set_data_from_map(self, data: Mapping[str, Any]):
        """ Adopts `data` as if the API had responded with it. """
        try:
            body = json.dumps(dict(data))
        except (TypeError, ValueError) as e:
            raise DecodeError(f"failed to encode data: {e}") from e
        self._adopt(body)

    # ------------------------------------------------
    # --------- Drift --------------------------------

    def compute_delta(
            self,
            ignore_paths: List[str] = Default,
            ignore_server_additions: bool = Default
    ) -> Tuple[JsonDict, bool]:
        """
        Compares the declared data with `api_data`, see `xrestsync.delta.get_delta`.

        Args:
            ignore_paths: Dotted paths to ignore; defaults to `ignore_changes_to`.
            ignore_server_additions: Defaults to the object's `ignore_server_additions`.

        Returns:
            Tuple of the declared data overlaid with what changed on the server, and `True`
            if anything did. Always `(copy of data, False)` with `ignore_all_server_changes`.
        """
        if ignore_paths is Default:
            ignore_paths = self.ignore_changes_to
        if ignore_server_additions is Default:
            ignore_server_additions = self.ignore_server_additions

        with self._state.lock.read():
            if self.ignore_all_server_changes:
                return deepcopy(self._state.data), False

            modified, has_changes = get_delta(
                self._state.data,
                self._state.api_data,
                ignore_paths,
                ignore_server_additions
            )
            return deepcopy(modified), has_changes

    def fields_requiring_replace(self, planned_data: Union[str, JsonDict]) -> List[str]:
        """
        Returns the `force_new` paths that are different between `planned_data` and the
        declared data; if any are, the object must be destroyed and created again instead of
        updated.
        """
        planned = _parse_object(planned_data, "planned data") or {}
        with self._state.lock.read():
            return fields_requiring_replace(planned, self._state.data, self.force_new)
