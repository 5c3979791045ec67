"""
Spotify Client Credentials Authentication
Handles token requests and reuse for app-level (no user) API calls
"""

import base64
import logging
import threading
import time
from typing import Optional

import requests

logger = logging.getLogger(__name__)

SPOTIFY_TOKEN_URL = 'https://accounts.spotify.com/api/token'

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 30


class SpotifyError(Exception):
    """Base error for Spotify failures."""
    pass


class SpotifyNotFoundError(SpotifyError):
    """Raised when Spotify has no artist for the requested id."""
    pass


class SpotifyUpstreamError(SpotifyError):
    """Raised when Spotify is unreachable or answers with an error."""
    pass


class SpotifyAuth:
    """Fetches and caches a client credentials access token."""

    def __init__(self, client_id: str, client_secret: str, session: Optional[requests.Session] = None,
                 timeout: float = 8.0):
        self.client_id = (client_id or '').strip()
        self.client_secret = (client_secret or '').strip()
        self.session = session or requests.Session()
        self.timeout = timeout

        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _basic_auth_header(self) -> str:
        return base64.b64encode(
            f"{self.client_id}:{self.client_secret}".encode()
        ).decode()

    def get_valid_token(self, timeout: Optional[float] = None) -> str:
        """Return a cached token, requesting a new one when near expiry."""
        with self._lock:
            if not self.configured:
                raise SpotifyError('Spotify credentials are missing')

            if self._access_token and time.monotonic() < self._expires_at - TOKEN_EXPIRY_MARGIN:
                return self._access_token

            token_data = self._request_token(timeout or self.timeout)
            expires_in = token_data.get('expires_in', 0)
            self._access_token = token_data['access_token']
            self._expires_at = time.monotonic() + expires_in
            logger.debug(f"Obtained Spotify token valid for {expires_in}s")
            return self._access_token

    def _request_token(self, timeout: float) -> dict:
        headers = {
            'Authorization': f'Basic {self._basic_auth_header()}',
            'Content-Type': 'application/x-www-form-urlencoded'
        }
        data = {'grant_type': 'client_credentials'}

        try:
            response = self.session.post(SPOTIFY_TOKEN_URL, headers=headers, data=data, timeout=timeout)
        except requests.RequestException as e:
            raise SpotifyUpstreamError(f"Token request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise SpotifyUpstreamError(f"Token request failed: {response.status_code}")

        try:
            token_data = response.json()
        except ValueError as e:
            raise SpotifyUpstreamError(f"Token response is not JSON: {e}") from e

        if not isinstance(token_data, dict):
            raise SpotifyUpstreamError('Token response is not a JSON object')
        if not token_data.get('access_token') or not isinstance(token_data['access_token'], str):
            raise SpotifyUpstreamError('Spotify returned an empty access token')

        expires_in = token_data.get('expires_in', 0)
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            raise SpotifyUpstreamError(f"Token response has a malformed expires_in: {expires_in!r}")
        return token_data

    def invalidate(self) -> None:
        """Forget the cached token so the next call requests a new one."""
        with self._lock:
            self._access_token = None
            self._expires_at = 0.0
