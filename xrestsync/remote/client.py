import dataclasses
import json
import threading
import time
from http.cookiejar import CookieJar, DefaultCookiePolicy
from logging import getLogger
from typing import Any, Optional, Tuple, Union

import httpx

from xrestsync.common.types import JsonDict
from xrestsync.errors import ConfigInvalidError, XRestSyncError
from xrestsync.remote.auth import OAuthTokenSource
from xrestsync.remote.errors import (
    BuildError, HttpServerError, HttpStatusError, RequestCancelledError, TransportError
)
from xrestsync.remote.options import ClientOptions
from xrestsync.remote.rate_limit import TokenBucket
from xrestsync.remote.response_state import ResponseState
from xrestsync.remote.tls import build_ssl_context

log = getLogger(__name__)


def _dump_request(request: httpx.Request) -> str:
    lines = [f"{request.method} {request.url} HTTP/1.1"]
    lines.extend(f"{k}: {v}" for k, v in request.headers.items())
    lines.append("")
    lines.append(request.content.decode("utf-8", errors="replace"))
    return "\n".join(lines)


def _dump_response(response: httpx.Response) -> str:
    lines = [f"{response.http_version} {response.status_code} {response.reason_phrase}"]
    lines.extend(f"{k}: {v}" for k, v in response.headers.items())
    lines.append("")
    lines.append(response.content.decode("utf-8", errors="replace"))
    return "\n".join(lines)


def should_retry(error: Exception) -> bool:
    """ Connection/TLS/timeout errors and `5xx` (except `501`) are retried, nothing else is. """
    if isinstance(error, RequestCancelledError):
        return False
    if isinstance(error, TransportError):
        return True
    if isinstance(error, HttpServerError):
        return error.status_code != 501
    return False


class APIClient:
    """
    HTTP client for one RESTful API, shared by any number of
    `xrestsync.remote.api_object.APIObject`'s.

    Basic example:

    >>> client = APIClient(uri="https://api.example.com", write_returns_object=True)
    >>> body, status = client.send("GET", "/api/objects/1234")

    Each call to `APIClient.send`:

    1. Encodes the body (a `str` is sent as-is, a `dict` is encoded as JSON) with a default
       `Content-Type: application/json`.
    2. Applies the configured headers and authorization (OAuth2 bearer token, or basic auth).
    3. Waits for the rate limiter.
    4. Sends it, strips the xssi prefix from the response and raises an
       `xrestsync.remote.errors.HttpStatusError` for anything outside the `200` range.

    It's safe to share an instance between threads. Use it as a context manager (or call
    `APIClient.close`) to release the connection pool.
    """

    options: ClientOptions
    """ Resolved (all `Default` values replaced) and validated options. """

    def __init__(
            self,
            options: ClientOptions = None,
            *,
            transport: httpx.BaseTransport = None,
            **kwargs
    ):
        """
        Args:
            options: Client options; when not provided the keyword arguments are used to
                build a `xrestsync.remote.options.ClientOptions`. When both are provided the
                keyword arguments override what's in `options`.
            transport: Optional `httpx` transport to send requests through, mostly useful for
                tests (ie: `httpx.MockTransport`). When provided the TLS and proxy options
                don't apply, since the transport is what would normally use them.
            **kwargs: See `xrestsync.remote.options.ClientOptions`.

        Raises:
            xrestsync.errors.ConfigInvalidError: Invalid options, TLS material that can't be
                loaded, or a `test_path` request that failed.
        """
        if options is None:
            options = ClientOptions(**kwargs)
        elif kwargs:
            options = dataclasses.replace(options, **kwargs)

        self.options = options.resolve()
        opts = self.options

        if opts.use_cookies:
            cookies = CookieJar()
        else:
            cookies = CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))

        http_kwargs = dict(
            cookies=cookies,
            timeout=opts.timeout or None,
            follow_redirects=True,
            trust_env=True
        )
        if transport is not None:
            http_kwargs["transport"] = transport
        else:
            http_kwargs["verify"] = build_ssl_context(
                insecure=opts.insecure,
                cert_file=opts.cert_file,
                key_file=opts.key_file,
                cert_string=opts.cert_string,
                key_string=opts.key_string,
                root_ca_file=opts.root_ca_file,
                root_ca_string=opts.root_ca_string
            )

        self._http = httpx.Client(**http_kwargs)
        self._bucket = TokenBucket(opts.rate_limit)
        if opts.rate_limit:
            log.info(
                "Rate limit configured (%s) per second, bucket size (%s).",
                opts.rate_limit, self._bucket.capacity
            )

        self._token_source: Optional[OAuthTokenSource] = None
        oauth = opts.oauth_client_credentials
        if oauth is not None:
            self._token_source = OAuthTokenSource(
                self._http,
                client_id=oauth.client_id,
                client_secret=oauth.client_secret,
                token_endpoint=oauth.token_endpoint,
                scopes=oauth.scopes,
                endpoint_params=oauth.endpoint_params
            )

        log.debug("Constructed client %r", self)

        if opts.test_path:
            self._probe(opts.test_path)

    def _probe(self, test_path: str):
        try:
            self.send(self.options.read_method, test_path)
        except XRestSyncError as e:
            self.close()
            message = (
                f"A test request to {test_path} after setting up the client did not return an "
                f"OK response - is your configuration correct? {e}"
            )
            raise ConfigInvalidError(message, diagnostics=[message]) from e

    @property
    def uri(self) -> str:
        return self.options.uri

    @property
    def write_returns_object(self) -> bool:
        return self.options.write_returns_object

    @property
    def create_returns_object(self) -> bool:
        return self.options.create_returns_object

    @property
    def debug(self) -> bool:
        return self.options.debug

    @property
    def rate_limiter(self) -> TokenBucket:
        return self._bucket

    def close(self):
        self._http.close()

    def __enter__(self) -> "APIClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        opts = self.options
        headers = {
            k: ("****" if k.lower() == "authorization" else v) for k, v in opts.headers.items()
        }
        return (
            f"APIClient(uri={opts.uri!r}, insecure={opts.insecure!r}, "
            f"username={opts.username!r}, password={'****' if opts.password else None!r}, "
            f"id_attribute={opts.id_attribute!r}, "
            f"write_returns_object={opts.write_returns_object!r}, "
            f"create_returns_object={opts.create_returns_object!r}, "
            f"headers={headers!r}, copy_keys={opts.copy_keys!r}, "
            f"oauth={'yes' if self._token_source else 'no'})"
        )

    # ------------------------------------------------
    # --------- Send Requests to API Methods ---------

    @staticmethod
    def _encode(data: Union[str, JsonDict, None]) -> Optional[bytes]:
        if data is None or data == "":
            return None
        if isinstance(data, bytes):
            return data
        if isinstance(data, str):
            return data.encode("utf-8")
        try:
            return json.dumps(data).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise BuildError(f"Request body can't be encoded as JSON: {e}") from e

    def send(
            self,
            method: str,
            path: str,
            data: Union[str, JsonDict, None] = None,
            *,
            force_debug: bool = False,
            cancel: threading.Event = None,
            response_state: ResponseState = None
    ) -> Tuple[str, int]:
        """
        Sends a request to `APIClient.uri` + `path`, retrying according to
        `xrestsync.remote.options.ClientOptions.retries`.

        Args:
            method: HTTP method.
            path: Path (with any query string) appended to the base uri.
            data: Request body; `None`/empty sends no body, a `str` is sent as-is and anything
                else is encoded as JSON.
            force_debug: Log a dump of the request/response even if the client is not in
                debug mode.
            cancel: If this event gets set while we wait for the rate limiter (or between
                retries) a `xrestsync.remote.errors.RequestCancelledError` is raised.
            response_state: If provided, the outcome of the request is recorded on it.

        Returns:
            A tuple of the response body (never empty, an empty body is returned as `{}`) and
            the HTTP status code.

        Raises:
            xrestsync.remote.errors.HttpStatusError: Response status was not `2xx`.
            xrestsync.remote.errors.TransportError: Network, TLS or timeout problem.
            xrestsync.remote.errors.AuthError: Could not get an OAuth2 token.
            xrestsync.remote.errors.BuildError: Request could not be constructed.
        """
        content = self._encode(data)
        retries = self.options.retries
        debug = self.options.debug or force_debug

        if response_state is not None:
            response_state.reset(method=method, path=path)

        log.debug("Sending request (%s %s), body: (%s).", method, path, content)

        attempt = 0
        while True:
            if response_state is not None:
                response_state.try_count += 1

            try:
                body, status = self._send_once(method, path, content, debug=debug, cancel=cancel)
            except XRestSyncError as e:
                if response_state is not None:
                    response_state.add_error(e, getattr(e, "status_code", None))

                if not should_retry(e) or attempt >= retries.max_retries:
                    raise

                delay = retries.backoff(attempt)
                log.warning(
                    "Request (%s %s) failed, retry (%s) of (%s) in (%.3f) seconds: %s",
                    method, path, attempt + 1, retries.max_retries, delay, e
                )
                self._wait(delay, cancel, e)
                attempt += 1
                if response_state is not None:
                    response_state.reset(for_retry=True)
                continue

            if response_state is not None:
                response_state.response_code = status
                response_state.mark_for_no_errors()
            return body, status

    @staticmethod
    def _wait(delay: float, cancel: Optional[threading.Event], error: Exception):
        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise RequestCancelledError("Request cancelled while waiting to retry.") from error

    def _send_once(
            self,
            method: str,
            path: str,
            content: Optional[bytes],
            *,
            debug: bool,
            cancel: Optional[threading.Event]
    ) -> Tuple[str, int]:
        opts = self.options
        url = opts.uri + path

        headers = httpx.Headers()
        if content is not None:
            headers["Content-Type"] = "application/json"
        for name, value in opts.headers.items():
            headers[name] = value

        auth: Any = None
        if self._token_source is not None:
            headers["Authorization"] = f"Bearer {self._token_source.token()}"
        elif opts.username and opts.password:
            auth = httpx.BasicAuth(opts.username, opts.password)

        try:
            request = self._http.build_request(method, url, content=content, headers=headers)
        except (httpx.InvalidURL, ValueError) as e:
            raise BuildError(f"Failed to create HTTP request ({method} {url}): {e}") from e

        if debug:
            log.info("Request dump:\n%s", _dump_request(request))

        self._bucket.wait(cancel)

        try:
            response = self._http.send(request, auth=auth)
        except httpx.UnsupportedProtocol as e:
            raise BuildError(f"Failed to send HTTP request ({method} {url}): {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP request ({method} {url}) failed: {e}") from e

        if debug:
            log.info("Response dump:\n%s", _dump_response(response))

        body = response.content.decode("utf-8", errors="replace")
        prefix = opts.xssi_prefix
        if prefix and body.startswith(prefix):
            body = body[len(prefix):]

        status = response.status_code
        if status < 200 or status >= 300:
            raise HttpStatusError.for_status(status, body, method=method, path=path)

        if body == "":
            body = "{}"

        return body, status
