from .client import APIClient
from .api_object import APIObject, append_id_to_path
from .options import (
    ClientOptions, ObjectOptions, ReadSearch, RetryOptions, OAuthClientCredentials,
    EnvironSettings
)
from .response_state import ResponseState
from .errors import (
    XRemoteError, BuildError, TransportError, RequestCancelledError, AuthError, HttpStatusError,
    HttpClientError, NotFoundError, HttpServerError
)
