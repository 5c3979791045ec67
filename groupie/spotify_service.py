"""
Spotify API Service
Artist search and artist lookup by id
"""

import logging
from typing import List, Optional
from urllib.parse import quote

import requests

from groupie.models import SpotifyArtist, SpotifyImage
from groupie.spotify_auth import (
    SpotifyAuth,
    SpotifyError,
    SpotifyNotFoundError,
    SpotifyUpstreamError
)

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE = 'https://api.spotify.com/v1'

DEFAULT_SEARCH_LIMIT = 8
MAX_SEARCH_LIMIT = 20
MIN_POPULARITY = 5


def _as_text(value) -> str:
    return value if isinstance(value, str) else ''


def _as_size(value) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def parse_spotify_artist(data: dict) -> SpotifyArtist:
    """
    Build a SpotifyArtist from an API artist object.

    Raises:
        SpotifyUpstreamError: If the object does not have the expected shape
    """
    if not isinstance(data, dict):
        raise SpotifyUpstreamError(f"Expected artist object, got {type(data).__name__}")

    raw_images = data.get('images') or []
    followers = data.get('followers') or {}
    genres = data.get('genres') or []
    popularity = data.get('popularity') or 0
    if not isinstance(raw_images, list) or not isinstance(followers, dict) or not isinstance(genres, list):
        raise SpotifyUpstreamError('Malformed artist object')
    if isinstance(popularity, bool) or not isinstance(popularity, int):
        raise SpotifyUpstreamError(f"Malformed popularity: {popularity!r}")

    total = followers.get('total') or 0
    if isinstance(total, bool) or not isinstance(total, int):
        raise SpotifyUpstreamError(f"Malformed follower count: {total!r}")

    images = [
        SpotifyImage(
            url=_as_text(image.get('url')),
            height=_as_size(image.get('height')),
            width=_as_size(image.get('width'))
        )
        for image in raw_images
        if isinstance(image, dict)
    ]
    return SpotifyArtist(
        id=_as_text(data.get('id')),
        name=_as_text(data.get('name')),
        genres=[g for g in genres if isinstance(g, str)],
        popularity=popularity,
        images=images,
        followers=total
    )


class SpotifyClient:
    """Artist search and lookup with client credentials."""

    def __init__(self, auth: SpotifyAuth, session: Optional[requests.Session] = None, timeout: float = 8.0):
        self.auth = auth
        self.session = session or auth.session
        self.timeout = timeout

    def _send(self, url: str, params: Optional[dict], timeout: Optional[float]):
        token = self.auth.get_valid_token(timeout)
        headers = {'Authorization': f'Bearer {token}'}
        try:
            return self.session.get(url, headers=headers, params=params, timeout=timeout or self.timeout)
        except requests.RequestException as e:
            raise SpotifyUpstreamError(str(e)) from e

    def _get(self, url: str, params: Optional[dict] = None, timeout: Optional[float] = None):
        response = self._send(url, params, timeout)
        if response.status_code == 401:
            # Token was revoked or expired early; retry once with a new one
            logger.info("Spotify rejected the access token, requesting a new one")
            self.auth.invalidate()
            response = self._send(url, params, timeout)
        return response

    @staticmethod
    def _json(response) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise SpotifyUpstreamError(f"Invalid JSON from Spotify: {e}") from e

    def search_artists(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT,
                       timeout: Optional[float] = None) -> List[SpotifyArtist]:
        """
        Search Spotify for artists matching a name.

        Results with no name or image, or with a very low (but non-zero)
        popularity, are filtered out.
        """
        q = (query or '').strip()
        if not q:
            return []
        if limit <= 0 or limit > MAX_SEARCH_LIMIT:
            limit = DEFAULT_SEARCH_LIMIT

        params = {'q': q, 'type': 'artist', 'limit': limit}
        response = self._get(f"{SPOTIFY_API_BASE}/search", params=params, timeout=timeout)

        if not 200 <= response.status_code < 300:
            raise SpotifyUpstreamError(f"Search failed: {response.status_code}")

        body = self._json(response)
        artists = body.get('artists') if isinstance(body, dict) else None
        items = artists.get('items') if isinstance(artists, dict) else None
        if not isinstance(items, list):
            raise SpotifyUpstreamError('Malformed search response')

        results = []
        for item in items:
            artist = parse_spotify_artist(item)
            if not artist.name.strip() or not artist.images:
                continue
            if 0 < artist.popularity < MIN_POPULARITY:
                continue
            results.append(artist)
        return results

    def get_artist(self, artist_id: str, timeout: Optional[float] = None) -> SpotifyArtist:
        """Fetch full details for a single Spotify artist."""
        trimmed = (artist_id or '').strip()
        if not trimmed:
            raise SpotifyError('Spotify artist id is required')

        response = self._get(f"{SPOTIFY_API_BASE}/artists/{quote(trimmed, safe='')}", timeout=timeout)

        if response.status_code == 404:
            raise SpotifyNotFoundError(f"Spotify artist not found: {trimmed}")
        if not 200 <= response.status_code < 300:
            raise SpotifyUpstreamError(f"Artist fetch failed: {response.status_code}")

        artist = parse_spotify_artist(self._json(response))
        if not artist.name.strip() or not artist.images:
            raise SpotifyUpstreamError('Incomplete artist data')
        return artist
