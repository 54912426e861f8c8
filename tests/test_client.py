import json
import logging
import threading
from urllib.parse import parse_qs

import httpx
import pytest

from xrestsync import APIClient
from xrestsync.errors import ConfigInvalidError
from xrestsync.remote import (
    AuthError, BuildError, HttpClientError, HttpServerError, HttpStatusError, NotFoundError,
    RequestCancelledError, ResponseState, TransportError
)
from xrestsync.remote.client import should_retry
from xrestsync.remote.options import OAuthClientCredentials, RetryOptions
from xrestsync.remote.rate_limit import TokenBucket, bucket_capacity


no_wait_retries = RetryOptions(max_retries=2, min_wait=0, max_wait=0)


def test_send_basics(server, make_client):
    client = make_client(uri="http://fake.test/", headers={"X-Custom": "abc"})
    assert client.uri == "http://fake.test"

    body, status = client.send("GET", "/api/objects/1")
    assert status == 200
    assert json.loads(body) == {"id": 1, "first": "Foo", "last": "Bar"}

    request = server.last_request
    assert str(request.url) == "http://fake.test/api/objects/1"
    assert request.headers["X-Custom"] == "abc"
    # No body, no content type.
    assert "Content-Type" not in request.headers
    assert "Authorization" not in request.headers


def test_send_body(server, make_client):
    client = make_client()
    client.send("POST", "/api/objects", {"id": "9", "first": "New"})
    request = server.last_request
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {"id": "9", "first": "New"}
    assert server.objects["9"] == {"id": "9", "first": "New"}

    # A `str` is sent as-is.
    client.send("PUT", "/api/objects/9", '{"id": "9", "first":  "Raw"}')
    assert server.last_request.content == b'{"id": "9", "first":  "Raw"}'

    # Configured headers win over the default content type.
    client = make_client(headers={"Content-Type": "application/vnd.api+json"})
    client.send("POST", "/api/objects", {"id": "10"})
    assert server.last_request.headers["Content-Type"] == "application/vnd.api+json"


def test_unencodable_body(client):
    with pytest.raises(BuildError):
        client.send("POST", "/api/objects", {"bad": object()})


def test_basic_auth(server, make_client):
    client = make_client(username="me", password="pw")
    client.send("GET", "/api/objects")
    assert server.last_request.headers["Authorization"] == "Basic bWU6cHc="


def test_bearer_token(server, make_client):
    client = make_client(bearer_token="abc123")
    client.send("GET", "/api/objects")
    assert server.last_request.headers["Authorization"] == "Bearer abc123"


def test_oauth_client_credentials(server, make_client):
    token_requests = []

    def token_endpoint(request: httpx.Request):
        if request.url.path != "/oauth/token":
            return None
        token_requests.append(request)
        return httpx.Response(200, json={
            "access_token": f"tok-{len(token_requests)}",
            "token_type": "bearer",
            "expires_in": 3600,
        })

    server.hook = token_endpoint
    client = make_client(
        oauth_client_credentials=OAuthClientCredentials(
            client_id="my-id",
            client_secret="my-secret",
            token_endpoint="http://fake.test/oauth/token",
            scopes=["read", "write"],
            endpoint_params={"audience": "objects"}
        )
    )

    client.send("GET", "/api/objects/1")
    client.send("GET", "/api/objects/2")

    # Token is cached between requests.
    assert len(token_requests) == 1
    assert server.last_request.headers["Authorization"] == "Bearer tok-1"

    form = parse_qs(token_requests[0].content.decode())
    assert form == {
        "grant_type": ["client_credentials"],
        "scope": ["read write"],
        "audience": ["objects"],
    }
    assert token_requests[0].headers["Authorization"].startswith("Basic ")


def test_oauth_failure(server, make_client):
    def token_endpoint(request: httpx.Request):
        if request.url.path == "/oauth/token":
            return httpx.Response(401, json={"error": "invalid_client"})
        return None

    server.hook = token_endpoint
    client = make_client(
        oauth_client_credentials=OAuthClientCredentials(
            client_id="my-id", client_secret="wrong", token_endpoint="http://fake.test/oauth/token"
        )
    )

    with pytest.raises(AuthError) as info:
        client.send("GET", "/api/objects/1")
    assert "'401'" in str(info.value)

    # Auth problems are not retried, and the API was never called.
    assert server.paths() == ["POST /oauth/token"]


def test_xssi_prefix_and_empty_body(server, make_client):
    def hook(request: httpx.Request):
        if request.url.path == "/prefixed":
            return httpx.Response(200, text=')]}\'\n{"id": "1"}')
        if request.url.path == "/empty":
            return httpx.Response(204)
        return None

    server.hook = hook
    client = make_client(xssi_prefix=")]}'\n")

    body, _ = client.send("GET", "/prefixed")
    assert body == '{"id": "1"}'

    body, status = client.send("GET", "/empty")
    assert status == 204
    assert body == "{}"


def test_status_errors(server, client):
    with pytest.raises(NotFoundError) as info:
        client.send("GET", "/api/objects/missing")
    e = info.value
    assert str(e) == "unexpected response code '404': Not Found"
    assert e.status_code == 404
    assert e.body == "Not Found"
    assert e.method == "GET"
    assert e.path == "/api/objects/missing"

    with pytest.raises(HttpClientError):
        client.send("GET", "/not/a/route/at/all")

    server.status_overrides = [500]
    with pytest.raises(HttpServerError) as info:
        client.send("GET", "/api/objects/1")
    assert isinstance(info.value, HttpStatusError)
    assert str(info.value) == "unexpected response code '500': forced 500"


def test_retry_on_server_error(server, make_client):
    client = make_client(retries=no_wait_retries)
    state = ResponseState()

    server.status_overrides = [503, 502]
    body, status = client.send("GET", "/api/objects/1", response_state=state)

    assert status == 200
    assert json.loads(body)["id"] == 1
    assert len(server.requests) == 3
    assert state.try_count == 3
    assert state.had_error is False
    assert state.errors is None
    assert state.response_code == 200
    assert state.method == "GET"
    assert state.path == "/api/objects/1"


def test_retries_exhausted(server, make_client):
    client = make_client(retries=no_wait_retries)
    state = ResponseState()

    server.status_overrides = [503, 503, 503, 503]
    with pytest.raises(HttpServerError):
        client.send("GET", "/api/objects/1", response_state=state)

    assert len(server.requests) == 3
    assert state.had_error is True
    assert state.response_code == 503
    assert state.try_count == 3


def test_no_retry_on_client_errors_or_501(server, make_client):
    client = make_client(retries=no_wait_retries)

    with pytest.raises(NotFoundError):
        client.send("GET", "/api/objects/missing")
    assert len(server.requests) == 1

    server.status_overrides = [501]
    with pytest.raises(HttpServerError):
        client.send("GET", "/api/objects/1")
    assert len(server.requests) == 2


def test_retry_on_transport_error(server, make_client):
    failures = []

    def hook(request: httpx.Request):
        if not failures:
            failures.append(request)
            raise httpx.ConnectError("connection refused", request=request)
        return None

    server.hook = hook
    client = make_client(retries=no_wait_retries)
    _, status = client.send("GET", "/api/objects/1")
    assert status == 200
    assert len(failures) == 1

    # Without retries the transport error is raised.
    failures.clear()
    client = make_client()
    with pytest.raises(TransportError):
        client.send("GET", "/api/objects/1")


def test_should_retry():
    assert should_retry(TransportError("boom"))
    assert should_retry(HttpStatusError.for_status(503, ""))
    assert not should_retry(HttpStatusError.for_status(501, ""))
    assert not should_retry(HttpStatusError.for_status(404, ""))
    assert not should_retry(HttpStatusError.for_status(409, ""))
    assert not should_retry(RequestCancelledError("cancelled"))
    assert not should_retry(AuthError("no token"))


def test_bucket_capacity():
    assert bucket_capacity(0.2) == 1
    assert bucket_capacity(1) == 1
    assert bucket_capacity(2.4) == 2
    assert bucket_capacity(2.5) == 3
    assert bucket_capacity(10) == 10


def test_token_bucket():
    bucket = TokenBucket(2)
    assert bucket.capacity == 2

    # Starts full, so a burst of `capacity` does not wait.
    assert bucket.reserve() == 0
    assert bucket.reserve() == 0
    assert bucket.reserve() > 0

    bucket = TokenBucket(None)
    assert bucket.capacity == 0
    bucket.wait()


def test_rate_limit_cancel(server, make_client):
    client = make_client(rate_limit=0.5)
    assert client.rate_limiter.capacity == 1

    client.send("GET", "/api/objects/1")

    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        with pytest.raises(RequestCancelledError):
            client.send("GET", "/api/objects/2", cancel=cancel)
    finally:
        timer.cancel()

    # Already cancelled, fails right away.
    with pytest.raises(RequestCancelledError):
        client.send("GET", "/api/objects/2", cancel=cancel)

    assert len(server.requests) == 1


def test_test_path_probe(server, make_client):
    make_client(test_path="/api/objects")
    assert server.paths() == ["GET /api/objects"]

    with pytest.raises(ConfigInvalidError) as info:
        make_client(test_path="/api/objects/nope")
    assert "A test request to /api/objects/nope" in str(info.value)
    assert "'404'" in str(info.value)


def test_debug_dump(server, make_client, caplog):
    client = make_client(debug=True)
    with caplog.at_level(logging.INFO, logger="xrestsync.remote.client"):
        client.send("POST", "/api/objects", {"id": "55"})

    assert "Request dump:\nPOST http://fake.test/api/objects" in caplog.text
    assert "Response dump:" in caplog.text


def test_cookies_ignored_by_default(server, make_client):
    def hook(request: httpx.Request):
        if request.url.path == "/login":
            return httpx.Response(200, headers={"Set-Cookie": "session=abc; Path=/"}, json={})
        return None

    server.hook = hook
    client = make_client()
    client.send("GET", "/login")
    client.send("GET", "/api/objects")
    assert "Cookie" not in server.last_request.headers


def test_cookies_kept_when_enabled(server, make_client):
    def hook(request: httpx.Request):
        if request.url.path == "/login":
            return httpx.Response(200, headers={"Set-Cookie": "session=abc; Path=/"}, json={})
        return None

    server.hook = hook
    client = make_client(use_cookies=True)
    client.send("GET", "/login")
    client.send("GET", "/api/objects")
    client.send("GET", "/api/objects/1")
    assert server.requests[1].headers["Cookie"] == "session=abc"
    assert server.last_request.headers["Cookie"] == "session=abc"


def test_client_repr_masks_secrets(make_client):
    client = make_client(username="me", password="hunter2", headers={"authorization": "x"})
    # Basic auth and a non-bearer authorization header can go together.
    text = repr(client)
    assert "hunter2" not in text
    assert "'x'" not in text
    assert "'me'" in text


def test_client_context_manager(server):
    with APIClient(uri="http://fake.test", transport=server.transport()) as client:
        client.send("GET", "/api/objects")
    assert client._http.is_closed
