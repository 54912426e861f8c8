from xrestsync.errors import XRestSyncError


class XRemoteError(XRestSyncError):
    """ Base class for errors that happen while talking to the remote API. """
    pass


class BuildError(XRemoteError):
    """ The request could not be constructed (bad url, unsupported scheme, unencodable body). """


class TransportError(XRemoteError):
    """ Network, TLS or timeout problem; no HTTP response was received. """


class RequestCancelledError(TransportError):
    """
    The caller's cancel event was set while we were waiting (for a rate-limit permit or
    between retries).
    """


class AuthError(XRemoteError):
    """ Could not obtain an OAuth2 access token. """


class HttpStatusError(XRemoteError):
    """
    The API responded with a status code outside of the `200` range.

    The message is always `unexpected response code '<code>': <body>`.
    """

    status_code: int
    """ HTTP status code the API responded with. """

    body: str
    """ Response body, after the xssi prefix was stripped. """

    method: str = None
    path: str = None

    def __init__(self, status_code: int, body: str, *, method: str = None, path: str = None):
        super().__init__(f"unexpected response code '{status_code}': {body}")
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path

    @classmethod
    def for_status(
            cls, status_code: int, body: str, *, method: str = None, path: str = None
    ) -> "HttpStatusError":
        """ Allocates the most specific `HttpStatusError` subclass for `status_code`. """
        if status_code == 404:
            error_type = NotFoundError
        elif 400 <= status_code < 500:
            error_type = HttpClientError
        elif status_code >= 500:
            error_type = HttpServerError
        else:
            error_type = HttpStatusError
        return error_type(status_code, body, method=method, path=path)


class HttpClientError(HttpStatusError):
    """ 4xx response. """


class NotFoundError(HttpClientError):
    """ 404 response. """


class HttpServerError(HttpStatusError):
    """ 5xx response. """
