"""
Tracker service
Owns the data cache, the upstream client and the optional Spotify client
"""

import logging
import threading
from typing import List, Optional

from groupie.api_client import APIClient, UpstreamError
from groupie.cache import DataCache
from groupie.config import Settings
from groupie.models import ArtistWithMeta, DataBundle, SpotifyArtist, UnifiedArtist
from groupie.spotify_auth import SpotifyAuth, SpotifyError
from groupie.spotify_service import DEFAULT_SEARCH_LIMIT, SpotifyClient
from groupie.unified import merge_unified_artists, to_unified_groupie, to_unified_spotify

logger = logging.getLogger(__name__)


class TrackerService:
    """
    Refresh policy: the cache is filled on first use and then served as-is
    until an explicit refresh() or a restart. A failed refresh leaves the
    previous bundle in place.
    """

    def __init__(self, cache: DataCache, api: Optional[APIClient] = None,
                 spotify: Optional[SpotifyClient] = None, fetch_timeout: float = 15.0,
                 spotify_timeout: float = 8.0):
        self.cache = cache
        self.api = api
        self.spotify = spotify
        self.fetch_timeout = fetch_timeout
        self.spotify_timeout = spotify_timeout
        self._refresh_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> 'TrackerService':
        api = APIClient(settings.api_base, timeout=settings.upstream_timeout)
        spotify = None
        if settings.spotify_enabled:
            auth = SpotifyAuth(settings.spotify_client_id, settings.spotify_client_secret,
                               timeout=settings.spotify_timeout)
            spotify = SpotifyClient(auth, timeout=settings.spotify_timeout)
            logger.info("Spotify client enabled")
        return cls(
            DataCache(),
            api=api,
            spotify=spotify,
            fetch_timeout=settings.fetch_timeout,
            spotify_timeout=settings.spotify_timeout
        )

    def refresh(self) -> DataBundle:
        """
        Fetch a fresh bundle and store it.

        Raises:
            UpstreamError: If the fetch fails; the cache is left untouched
        """
        if self.api is None:
            raise UpstreamError('No upstream API configured')

        with self._refresh_lock:
            return self._refresh_locked()

    def _refresh_locked(self) -> DataBundle:
        bundle = self.api.fetch_all(timeout=self.fetch_timeout)
        self.cache.set(bundle)
        logger.info(
            f"Cache refreshed: {len(bundle.artists)} artists, {len(bundle.relations)} relations"
        )
        return bundle

    def ensure_cache(self) -> None:
        """
        Populate the cache if it has never been filled.

        Raises:
            UpstreamError: If the cache is empty and the fetch fails
        """
        if self.api is None or not self.cache.is_empty():
            return

        with self._refresh_lock:
            # Another request may have filled it while we waited
            if self.cache.is_empty():
                self._refresh_locked()

    def prefetch(self) -> bool:
        """Warm the cache at startup; failures are only logged."""
        try:
            self.refresh()
        except UpstreamError as e:
            logger.warning(f"Failed to prefetch data: {e}")
            return False
        return True

    def search_spotify(self, name: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[UnifiedArtist]:
        """Search Spotify; any failure degrades to an empty list."""
        if self.spotify is None or not name.strip():
            return []

        try:
            results = self.spotify.search_artists(name, limit=limit, timeout=self.spotify_timeout)
        except SpotifyError as e:
            logger.warning(f"Spotify search failed: {e}")
            return []

        unified = []
        for artist in results:
            candidate = to_unified_spotify(artist)
            if not candidate.image_url.strip() or not candidate.name.strip():
                continue
            unified.append(candidate)
        return unified

    def unified_artists(self, groupie: List[ArtistWithMeta], name_filter: str, include_groupie: bool,
                        include_spotify: bool, spotify_limit: int = DEFAULT_SEARCH_LIMIT) -> List[UnifiedArtist]:
        groupie_unified = [to_unified_groupie(a) for a in groupie] if include_groupie else []

        spotify_unified = []
        if include_spotify and name_filter:
            spotify_unified = self.search_spotify(name_filter, spotify_limit)

        return merge_unified_artists(groupie_unified, spotify_unified)

    def spotify_artist(self, artist_id: str) -> SpotifyArtist:
        """
        Raises:
            SpotifyError: If Spotify is not configured or the lookup fails
        """
        if self.spotify is None:
            raise SpotifyError('Spotify integration is not configured')
        return self.spotify.get_artist(artist_id, timeout=self.spotify_timeout)
