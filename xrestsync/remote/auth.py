import threading
import time
from logging import getLogger
from typing import Dict, List, Optional, Sequence

import httpx

from xrestsync.remote.errors import AuthError

log = getLogger(__name__)

EXPIRY_DELTA = 10
""" Tokens are refreshed this many seconds before they expire. """


class OAuthTokenSource:
    """
    OAuth2 client-credentials grant (RFC 6749 section 4.4).

    The token is requested through the same `httpx.Client` the `xrestsync.remote.client.APIClient`
    uses for everything else, so TLS/proxy settings apply to the token endpoint too.

    The token is cached and only requested again when it's within `EXPIRY_DELTA` seconds of
    expiring. Safe to use from multiple threads; at most one refresh happens at a time.
    """

    def __init__(
            self,
            http: httpx.Client,
            *,
            client_id: str,
            client_secret: str,
            token_endpoint: str,
            scopes: Sequence[str] = None,
            endpoint_params: Dict[str, List[str]] = None
    ):
        self._http = http
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_endpoint = token_endpoint
        self.scopes = list(scopes or [])
        self.endpoint_params = dict(endpoint_params or {})
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None

    def _valid(self) -> bool:
        if not self._token:
            return False
        if self._expires_at is None:
            return True
        return time.monotonic() < self._expires_at - EXPIRY_DELTA

    def token(self) -> str:
        """
        Returns a valid access token, requesting a new one if needed.

        Raises:
            xrestsync.remote.errors.AuthError: If the token endpoint could not be reached, did
                not respond with a `2xx` or the response had no `access_token`.
        """
        with self._lock:
            if not self._valid():
                self._fetch()
            return self._token

    def invalidate(self):
        with self._lock:
            self._token = None
            self._expires_at = None

    def _fetch(self):
        form = {"grant_type": ["client_credentials"]}
        if self.scopes:
            form["scope"] = [" ".join(self.scopes)]
        for name, values in self.endpoint_params.items():
            form[name] = list(values)

        log.debug("Requesting OAuth2 token from (%s).", self.token_endpoint)
        try:
            response = self._http.post(
                self.token_endpoint,
                data=form,
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as e:
            raise AuthError(f"oauth2 token request to ({self.token_endpoint}) failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise AuthError(
                f"oauth2 token request to ({self.token_endpoint}) returned "
                f"'{response.status_code}': {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthError(f"oauth2 token response is not JSON: {response.text}") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthError("oauth2 token response has no 'access_token'.")

        self._token = token
        expires_in = payload.get("expires_in")
        try:
            self._expires_at = time.monotonic() + float(expires_in) if expires_in else None
        except (TypeError, ValueError):
            self._expires_at = None
