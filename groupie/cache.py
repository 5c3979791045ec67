import copy
import threading
from datetime import datetime, timezone
from typing import List, Optional

from groupie.models import ArtistWithMeta, DataBundle, Event
from groupie.normalize import build_events, merge_artists


class DataCache:
    """
    Holds the latest bundle fetched from the upstream API.

    The stored bundle is never mutated in place: set() swaps in a private
    copy and readers copy whatever reference they grabbed, so a reader
    always sees one complete bundle.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._bundle = DataBundle()
        self._fetched_at: Optional[datetime] = None

    def set(self, bundle: DataBundle) -> None:
        """Replace the cached data and stamp the fetch time."""
        private = copy.deepcopy(bundle)
        with self._lock:
            self._bundle = private
            self._fetched_at = datetime.now(timezone.utc)

    def snapshot(self) -> DataBundle:
        """Return a deep copy that callers may freely mutate."""
        with self._lock:
            current = self._bundle
        return copy.deepcopy(current)

    @property
    def fetched_at(self) -> Optional[datetime]:
        with self._lock:
            return self._fetched_at

    def is_empty(self) -> bool:
        """True until the first successful set()."""
        return self.fetched_at is None

    def stats(self) -> dict:
        with self._lock:
            bundle = self._bundle
            fetched_at = self._fetched_at
        return {
            'artists': len(bundle.artists),
            'locations': len(bundle.locations),
            'dates': len(bundle.dates),
            'relations': len(bundle.relations),
            'fetched_at': fetched_at.isoformat() if fetched_at else None
        }

    def artists_with_meta(self) -> List[ArtistWithMeta]:
        return merge_artists(self.snapshot())

    def events(self) -> List[Event]:
        snap = self.snapshot()
        return build_events(snap.artists, snap.relations)
