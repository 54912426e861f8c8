"""
Configuration for `xrestsync.remote.client.APIClient` and `xrestsync.remote.api_object.APIObject`.

Every option starts out as `xsentinels.default.Default`, which means "not set by the user".
Unset values are resolved through three tiers:

1. What was explicitly set (for an object: on the `ObjectOptions`).
2. For objects: whatever the `APIClient` was configured with.
   For clients: a `REST_API_*` environment variable (see `EnvironSettings`).
3. A hard-coded default (`POST` / `GET` / `PUT` / `DELETE`, id attribute `id`,
   unbounded rate limit, no timeout...).

Validation happens when resolving; every problem found is collected and raised together
as a single `xrestsync.errors.ConfigInvalidError`:

>>> ClientOptions(uri="https://api.example.com", username="me", bearer_token="abc").resolve()
Traceback (most recent call last):
...
xrestsync.errors.ConfigInvalidError: basic auth (username/password) and bearer_token are both ...
"""
import dataclasses
import os
import re
from copy import copy
from logging import getLogger
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urlsplit

from xinject import Dependency
from xsentinels.default import Default

from xrestsync.common.types import JsonDict
from xrestsync.errors import ConfigInvalidError
from xrestsync.util import str_list

log = getLogger(__name__)

DEFAULT_CREATE_METHOD = "POST"
DEFAULT_READ_METHOD = "GET"
DEFAULT_UPDATE_METHOD = "PUT"
DEFAULT_DESTROY_METHOD = "DELETE"
DEFAULT_ID_ATTRIBUTE = "id"

_http_token_re = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class EnvironSettings(Dependency):
    """
    Where `ClientOptions` looks for its `REST_API_*` environment variable fallbacks.

    By default this reads `os.environ`. Activate your own to control this, ie:

    >>> with EnvironSettings(environ={"REST_API_URI": "http://localhost:8080"}):
    ...     options = ClientOptions().resolve()

    or disable the fallback completely with `EnvironSettings(enabled=False)`.
    """

    enabled: bool = True
    """ If `False`, environment variables are never consulted. """

    def __init__(self, environ: Mapping[str, str] = Default, enabled: bool = True):
        self._environ = environ
        self.enabled = enabled

    @property
    def environ(self) -> Mapping[str, str]:
        if self._environ is Default:
            return os.environ
        return self._environ

    def get(self, name: str) -> Optional[str]:
        if not self.enabled:
            return None
        return self.environ.get(name)


def parse_bool(value: str) -> bool:
    """ Accepts the usual spellings: `1/0`, `t/f`, `true/false` (any case). """
    normalized = value.strip().lower()
    if normalized in ("1", "t", "true"):
        return True
    if normalized in ("0", "f", "false"):
        return False
    raise ValueError(f"invalid boolean ({value})")


def _is_set(value: Any) -> bool:
    return value is not Default and value is not None and value != ""


@dataclasses.dataclass(eq=False)
class RetryOptions:
    """
    Automatic retry of failed requests. Requests are retried on connection/TLS/timeout errors,
    and on any `5xx` response except `501`. Nothing else (ie: a `404`) is ever retried.

    The wait before retry attempt `n` (starting at zero) is `min(max_wait, min_wait * 2**n)`.
    """

    max_retries: int = Default
    """ Defaults to `0`; Maximum number of retries, env: `REST_API_RETRY_MAX`. """

    min_wait: float = Default
    """ Defaults to `1`; Minimum seconds to wait between retries, env: `REST_API_RETRY_WAIT_MIN`.
    """

    max_wait: float = Default
    """ Defaults to `30`; Maximum seconds to wait between retries, env: `REST_API_RETRY_WAIT_MAX`.
    """

    def backoff(self, attempt: int) -> float:
        """ Seconds to wait before retry number `attempt` (zero based). """
        return min(self.max_wait, self.min_wait * (2 ** attempt))


@dataclasses.dataclass(eq=False)
class OAuthClientCredentials:
    """ OAuth2 client-credentials grant configuration. """

    client_id: str = Default
    """ env: `REST_API_OAUTH_CLIENT_ID` """

    client_secret: str = Default
    """ env: `REST_API_OAUTH_CLIENT_SECRET` """

    token_endpoint: str = Default
    """ env: `REST_API_OAUTH_TOKEN_URL` """

    scopes: List[str] = Default
    """ Optional scopes requested, sent space separated. """

    endpoint_params: Dict[str, List[str]] = Default
    """
    Extra form values sent to the token endpoint. A plain `str` value is the same as a
    one element list.
    """

    def __repr__(self):
        return (
            f"OAuthClientCredentials(client_id={self.client_id!r}, client_secret='****', "
            f"token_endpoint={self.token_endpoint!r}, scopes={self.scopes!r})"
        )


@dataclasses.dataclass(eq=False)
class ReadSearch:
    """
    Locate the object by scanning a collection instead of reading it by id.

    When an `xrestsync.remote.api_object.APIObject` has one of these, a READ requests the search
    path and looks for the first record where `search_key` has `search_value`.
    """

    search_key: str = Default
    """ `/`-delimited path (inside each record) of the value to compare, ie: `attrs/name`. """

    search_value: str = Default
    """ Value searched for, compared as strings. Any `{id}` is replaced with the current id. """

    results_key: Optional[str] = Default
    """
    `/`-delimited path of the array with the records in the response. When not set the
    response itself must be the array.
    """

    query_string: Optional[str] = Default
    """ Query string for the search request; it goes before the object's own query string. """

    search_data: Union[str, JsonDict, None] = Default
    """ Optional JSON object sent as the body of the search request. """

    search_patch: Union[str, List[JsonDict], None] = Default
    """ Optional JSON Patch (RFC 6902) applied to the matched record before it's adopted. """


@dataclasses.dataclass(eq=False)
class ClientOptions:
    """
    Everything an `xrestsync.remote.client.APIClient` can be configured with.

    The first line of each doc-comment is the value used when an option is left as `Default`
    and there is no environment variable for it.

    Use `ClientOptions.resolve` to get a copy with all `Default` values resolved and validated.
    """

    uri: str = Default
    """ Required; base URI of the API (trailing `/` is removed), env: `REST_API_URI`. """

    insecure: bool = Default
    """ Defaults to `False`; don't verify TLS certificates, env: `REST_API_INSECURE`. """

    username: Optional[str] = Default
    """ Defaults to `None`; basic auth, env: `REST_API_USERNAME`. """

    password: Optional[str] = Default
    """ Defaults to `None`; basic auth, env: `REST_API_PASSWORD`. """

    bearer_token: Optional[str] = Default
    """
    Defaults to `None`; env: `REST_API_BEARER`. When set this becomes the
    `Authorization: Bearer <token>` header.
    """

    headers: Dict[str, str] = Default
    """ Defaults to `{}`; headers sent with every request. """

    use_cookies: bool = Default
    """ Defaults to `False`; keep cookies between requests, env: `REST_API_USE_COOKIES`. """

    timeout: Optional[float] = Default
    """ Defaults to `None` (no timeout); seconds, `0` means no timeout, env: `REST_API_TIMEOUT`.
    """

    id_attribute: str = Default
    """ Defaults to `id`; `/`-delimited path to an object's id, env: `REST_API_ID_ATTRIBUTE`. """

    create_method: str = Default
    """ Defaults to `POST`; env: `REST_API_CREATE_METHOD`. """

    read_method: str = Default
    """ Defaults to `GET`; env: `REST_API_READ_METHOD`. """

    update_method: str = Default
    """ Defaults to `PUT`; env: `REST_API_UPDATE_METHOD`. """

    destroy_method: str = Default
    """ Defaults to `DELETE`; env: `REST_API_DESTROY_METHOD`. """

    read_data: Union[str, JsonDict, None] = Default
    """ Defaults to `None`; body sent on READ by objects that don't have their own. """

    update_data: Union[str, JsonDict, None] = Default
    """ Defaults to `None`; body sent on UPDATE by objects that don't have their own. """

    destroy_data: Union[str, JsonDict, None] = Default
    """ Defaults to `None`; body sent on DELETE by objects that don't have their own. """

    copy_keys: List[str] = Default
    """
    Defaults to `[]`; keys copied from the API's view of an object into its declared data
    each time the object is read (ie: a revision token that must go with each update).
    """

    write_returns_object: bool = Default
    """
    Defaults to `False`; the CREATE and UPDATE responses are the full object, so no READ is
    needed after them, env: `REST_API_WRO`.
    """

    create_returns_object: bool = Default
    """ Defaults to `False`; like `write_returns_object`, but only for CREATE, env: `REST_API_CRO`.
    """

    xssi_prefix: str = Default
    """ Defaults to `""`; stripped from the start of responses, env: `REST_API_XSSI_PREFIX`. """

    rate_limit: Optional[float] = Default
    """ Defaults to `None` (unbounded); requests per second, env: `REST_API_RATE_LIMIT`. """

    debug: bool = Default
    """ Defaults to `False`; log a dump of every request/response, env: `REST_API_DEBUG`. """

    cert_file: Optional[str] = Default
    """ Defaults to `None`; client certificate file, env: `REST_API_CERT_FILE`. """

    key_file: Optional[str] = Default
    """ Defaults to `None`; client certificate key file, env: `REST_API_KEY_FILE`. """

    cert_string: Optional[str] = Default
    """ Defaults to `None`; client certificate PEM, env: `REST_API_CERT_STRING`. """

    key_string: Optional[str] = Default
    """ Defaults to `None`; client certificate key PEM, env: `REST_API_KEY_STRING`. """

    root_ca_file: Optional[str] = Default
    """ Defaults to `None`; extra trusted CA bundle, env: `REST_API_ROOT_CA_FILE`. """

    root_ca_string: Optional[str] = Default
    """ Defaults to `None`; extra trusted CA bundle PEM, env: `REST_API_ROOT_CA_STRING`. """

    test_path: Optional[str] = Default
    """
    Defaults to `None`; when set, the client sends a READ to this path when it's created and
    fails if it does not get a `2xx` back, env: `REST_API_TEST_PATH`.
    """

    retries: RetryOptions = Default
    """ Defaults to `RetryOptions()` (no retries). """

    oauth_client_credentials: Optional[OAuthClientCredentials] = Default
    """ Defaults to `None`; use the OAuth2 client-credentials grant for auth. """

    def resolve(self) -> "ClientOptions":
        """
        Returns a copy of self with every `Default` resolved (environment first, then the
        hard-coded default), validated.

        Raises:
            xrestsync.errors.ConfigInvalidError: With every problem that was found.
        """
        diagnostics = []
        env = EnvironSettings.grab()
        resolved = copy(self)

        def from_env(name: str, env_key: str, default: Any, parser: Callable = str) -> Any:
            value = getattr(self, name)
            if value is not Default:
                return value
            raw = env.get(env_key)
            if raw is None:
                return default
            try:
                return parser(raw)
            except ValueError:
                diagnostics.append(
                    f"The {name} configuration value from the {env_key} environment variable "
                    f"is not valid ({raw})."
                )
                return default

        def timeout_parser(raw):
            return float(int(raw))

        r = resolved
        r.uri = from_env("uri", "REST_API_URI", None)
        r.insecure = from_env("insecure", "REST_API_INSECURE", False, parse_bool)
        r.username = from_env("username", "REST_API_USERNAME", None)
        r.password = from_env("password", "REST_API_PASSWORD", None)
        r.bearer_token = from_env("bearer_token", "REST_API_BEARER", None)
        r.use_cookies = from_env("use_cookies", "REST_API_USE_COOKIES", False, parse_bool)
        r.timeout = from_env("timeout", "REST_API_TIMEOUT", None, timeout_parser)
        r.id_attribute = from_env("id_attribute", "REST_API_ID_ATTRIBUTE", DEFAULT_ID_ATTRIBUTE)
        r.write_returns_object = from_env("write_returns_object", "REST_API_WRO", False, parse_bool)
        r.create_returns_object = from_env(
            "create_returns_object", "REST_API_CRO", False, parse_bool
        )
        r.xssi_prefix = from_env("xssi_prefix", "REST_API_XSSI_PREFIX", "")
        r.rate_limit = from_env("rate_limit", "REST_API_RATE_LIMIT", None, float)
        r.debug = from_env("debug", "REST_API_DEBUG", False, parse_bool)
        r.create_method = from_env("create_method", "REST_API_CREATE_METHOD", DEFAULT_CREATE_METHOD)
        r.read_method = from_env("read_method", "REST_API_READ_METHOD", DEFAULT_READ_METHOD)
        r.update_method = from_env("update_method", "REST_API_UPDATE_METHOD", DEFAULT_UPDATE_METHOD)
        r.destroy_method = from_env(
            "destroy_method", "REST_API_DESTROY_METHOD", DEFAULT_DESTROY_METHOD
        )
        r.cert_file = from_env("cert_file", "REST_API_CERT_FILE", None)
        r.key_file = from_env("key_file", "REST_API_KEY_FILE", None)
        r.cert_string = from_env("cert_string", "REST_API_CERT_STRING", None)
        r.key_string = from_env("key_string", "REST_API_KEY_STRING", None)
        r.root_ca_file = from_env("root_ca_file", "REST_API_ROOT_CA_FILE", None)
        r.root_ca_string = from_env("root_ca_string", "REST_API_ROOT_CA_STRING", None)
        r.test_path = from_env("test_path", "REST_API_TEST_PATH", None)

        r.headers = dict(self.headers) if self.headers not in (Default, None) else {}
        r.copy_keys = str_list(self.copy_keys) if self.copy_keys is not Default else []
        for name in ("read_data", "update_data", "destroy_data"):
            if getattr(self, name) is Default:
                setattr(r, name, None)

        r.retries = self._resolve_retries(env, diagnostics)
        r.oauth_client_credentials = self._resolve_oauth(env, diagnostics)

        if r.uri:
            r.uri = r.uri.rstrip("/")

        if r.bearer_token:
            r.headers["Authorization"] = f"Bearer {r.bearer_token}"

        diagnostics.extend(r._validate())
        if diagnostics:
            raise ConfigInvalidError(diagnostics=diagnostics)

        return r

    def _resolve_retries(self, env: EnvironSettings, diagnostics: List[str]) -> RetryOptions:
        retries = copy(self.retries) if self.retries not in (Default, None) else RetryOptions()
        for name, env_key, default in (
            ("max_retries", "REST_API_RETRY_MAX", 0),
            ("min_wait", "REST_API_RETRY_WAIT_MIN", 1),
            ("max_wait", "REST_API_RETRY_WAIT_MAX", 30),
        ):
            if getattr(retries, name) is not Default:
                continue
            raw = env.get(env_key)
            value = default
            if raw is not None:
                try:
                    value = int(raw)
                except ValueError:
                    diagnostics.append(
                        f"The retries.{name} configuration value from the {env_key} "
                        f"environment variable must be a valid integer ({raw})."
                    )
            setattr(retries, name, value)
        return retries

    def _resolve_oauth(
            self, env: EnvironSettings, diagnostics: List[str]
    ) -> Optional[OAuthClientCredentials]:
        if self.oauth_client_credentials in (Default, None):
            return None

        oauth = copy(self.oauth_client_credentials)
        for name, env_key in (
            ("client_id", "REST_API_OAUTH_CLIENT_ID"),
            ("client_secret", "REST_API_OAUTH_CLIENT_SECRET"),
            ("token_endpoint", "REST_API_OAUTH_TOKEN_URL"),
        ):
            if getattr(oauth, name) is Default:
                setattr(oauth, name, env.get(env_key))
            if not getattr(oauth, name):
                diagnostics.append(
                    f"The oauth_client_credentials.{name} configuration value is required. "
                    f"You can set it in the client options or in the {env_key} environment "
                    f"variable."
                )

        oauth.scopes = str_list(oauth.scopes) if oauth.scopes is not Default else []
        params = {}
        if oauth.endpoint_params not in (Default, None):
            for key, values in oauth.endpoint_params.items():
                params[key] = str_list(values)
        oauth.endpoint_params = params
        return oauth

    def _validate(self) -> List[str]:
        """ Validates an already resolved set of options, returns a list of problems found. """
        problems = []

        if not self.uri:
            problems.append(
                "The uri configuration value is required. You can set it in the client options "
                "or in the REST_API_URI environment variable."
            )
        else:
            try:
                parts = urlsplit(self.uri)
                if not parts.scheme or not parts.netloc:
                    raise ValueError("a scheme and host are required")
            except ValueError as e:
                problems.append(f"The uri configuration value ({self.uri}) is not valid: {e}.")

        has_basic = bool(self.username or self.password)
        has_oauth = self.oauth_client_credentials is not None
        authorization = next(
            (v for k, v in self.headers.items() if k.lower() == "authorization"), ""
        )
        has_bearer = bool(self.bearer_token) or authorization.lower().startswith("bearer ")

        if has_basic and has_bearer:
            problems.append(
                "basic auth (username/password) and bearer_token are both configured, "
                "please set only one authentication method."
            )
        if has_basic and has_oauth:
            problems.append(
                "basic auth (username/password) and OAuth client credentials are both "
                "configured, please set only one authentication method."
            )
        if has_oauth and has_bearer:
            problems.append(
                "OAuth client credentials and bearer_token are both configured, "
                "please set only one authentication method."
            )

        for file_name, string_name in (
            ("cert_file", "cert_string"),
            ("key_file", "key_string"),
            ("root_ca_file", "root_ca_string"),
        ):
            if getattr(self, file_name) and getattr(self, string_name):
                problems.append(
                    f"Both {file_name} and {string_name} are set, please use only one of them."
                )

        has_cert = bool(self.cert_file or self.cert_string)
        has_key = bool(self.key_file or self.key_string)
        if has_cert and not has_key:
            problems.append(
                "A certificate is configured but no key is. Both cert and key must be "
                "provided for mTLS."
            )
        if has_key and not has_cert:
            problems.append(
                "A key is configured but no certificate is. Both cert and key must be "
                "provided for mTLS."
            )

        if self.timeout is not None and self.timeout < 0:
            problems.append(f"The timeout ({self.timeout}) must not be negative.")

        if self.rate_limit is not None and self.rate_limit <= 0:
            problems.append(f"The rate_limit ({self.rate_limit}) must be a positive number.")

        retries = self.retries
        for name in ("max_retries", "min_wait", "max_wait"):
            value = getattr(retries, name)
            if value < 0:
                problems.append(f"The retries.{name} ({value}) must not be negative.")
        if retries.min_wait > retries.max_wait >= 0:
            problems.append(
                f"The retries.min_wait ({retries.min_wait}) must be less than or equal to "
                f"retries.max_wait ({retries.max_wait})."
            )

        problems.extend(validate_methods(self))
        return problems

    def __repr__(self):
        headers = {
            k: ("****" if k.lower() == "authorization" else v)
            for k, v in (self.headers if isinstance(self.headers, dict) else {}).items()
        }
        password = "****" if _is_set(self.password) else self.password
        bearer = "****" if _is_set(self.bearer_token) else self.bearer_token
        return (
            f"ClientOptions(uri={self.uri!r}, insecure={self.insecure!r}, "
            f"username={self.username!r}, password={password!r}, bearer_token={bearer!r}, "
            f"headers={headers!r}, id_attribute={self.id_attribute!r}, "
            f"write_returns_object={self.write_returns_object!r}, "
            f"create_returns_object={self.create_returns_object!r}, "
            f"copy_keys={self.copy_keys!r}, oauth={self.oauth_client_credentials!r})"
        )


def validate_methods(options: Union[ClientOptions, "ObjectOptions"]) -> List[str]:
    """ Every `*_method` that is set must be a valid HTTP method token (RFC 9110). """
    problems = []
    for name in ("create_method", "read_method", "update_method", "destroy_method"):
        value = getattr(options, name)
        if value in (Default, None):
            continue
        if not isinstance(value, str) or not _http_token_re.match(value):
            problems.append(f"The {name} ({value!r}) is not a valid HTTP method.")
    return problems


@dataclasses.dataclass(eq=False)
class ObjectOptions:
    """
    Configuration of one `xrestsync.remote.api_object.APIObject`.

    Anything left as `Default` uses what the object's `xrestsync.remote.client.APIClient`
    was configured with (for the methods, `id_attribute`, `copy_keys` and the auxiliary
    payloads). Paths are resolved as described on each one.
    """

    path: str = Default
    """ Required; base path of the object, ie: `/api/objects`. """

    create_path: str = Default
    """ Defaults to `path`. """

    read_path: str = Default
    """ Defaults to `path` + `/{id}` (before any `?`). """

    update_path: str = Default
    """ Defaults to `path` + `/{id}` (before any `?`). """

    destroy_path: str = Default
    """ Defaults to `path` + `/{id}` (before any `?`). """

    search_path: Optional[str] = Default
    """
    Defaults to the read path without a trailing `/{id}` (or `path` when there is no
    explicit read path). Only used with `read_search` (and `APIObject.find`).
    """

    create_method: str = Default
    read_method: str = Default
    update_method: str = Default
    destroy_method: str = Default

    id_attribute: str = Default
    """ `/`-delimited path of the object's id inside its JSON. """

    copy_keys: List[str] = Default

    query_string: Optional[str] = Default
    """ Appended to every request path (with `?`, or `&` if the path already has one). """

    data: Union[str, JsonDict] = Default
    """ Required; the declared JSON object (`str` or already decoded `dict`). """

    read_data: Union[str, JsonDict, None] = Default
    update_data: Union[str, JsonDict, None] = Default
    destroy_data: Union[str, JsonDict, None] = Default

    object_id: Optional[str] = Default
    """ Explicit id; when not set the id is looked for in `data`. """

    read_search: Optional[ReadSearch] = Default

    ignore_changes_to: List[str] = Default
    """ Dotted paths (ie: `metadata.revision`) never reported as drift. """

    ignore_all_server_changes: bool = Default
    """ Defaults to `False`; if `True` no drift is ever reported. """

    ignore_server_additions: bool = Default
    """ Defaults to `False`; if `True` keys that only the server has are not drift. """

    force_new: List[str] = Default
    """ Dotted paths that can't be updated in place; changing them means destroy + create. """

    debug: bool = Default
    """ Defaults to the client's `debug`. """

    def validate(self, *, require_data: bool = True) -> List[str]:
        """ Returns a list of the problems found (empty when valid). """
        problems = []
        if self.path in (Default, None):
            problems.append("The path configuration value is required.")
        if require_data and not _is_set(self.data):
            problems.append("The data configuration value is required.")
        problems.extend(validate_methods(self))

        search = self.read_search
        if search not in (Default, None):
            if not _is_set(search.search_key) or not _is_set(search.search_value):
                problems.append("read_search requires both search_key and search_value.")
        return problems
