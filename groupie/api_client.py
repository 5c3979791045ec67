"""
Groupie Tracker API Client
Fetches artists, locations, dates and relations from the upstream API
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Tuple

import requests

from groupie.models import Artist, DataBundle, DatesIndex, LocationIndex, Relation
from groupie.parser import (
    ParseError,
    load_json,
    parse_artists,
    parse_dates,
    parse_locations,
    parse_relations
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = 'https://groupietrackers.herokuapp.com/api'
DEFAULT_REQUEST_TIMEOUT = 10.0


class UpstreamError(Exception):
    """Raised when the upstream API cannot be reached or returns bad data."""

    def __init__(self, message: str, path: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class APIClient:
    """Thin client over the four read-only upstream endpoints."""

    def __init__(self, base_url: str = DEFAULT_API_BASE, timeout: float = DEFAULT_REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        base = (base_url or '').strip().rstrip('/')
        self.base_url = base or DEFAULT_API_BASE
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_timeout(self, path: str, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise UpstreamError(f"upstream {path} deadline exceeded", path=path)
        return min(self.timeout, remaining)

    def fetch(self, path: str, deadline: Optional[float] = None):
        """
        GET one endpoint and decode its JSON body.

        Raises:
            UpstreamError: On transport errors, non-2xx status or bad JSON
        """
        timeout = self._request_timeout(path, deadline)
        try:
            response = self.session.get(self.build_url(path), timeout=timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"upstream {path} request failed: {e}", path=path) from e

        if not 200 <= response.status_code < 300:
            raise UpstreamError(
                f"upstream {path} returned {response.status_code}",
                path=path,
                status_code=response.status_code
            )

        try:
            return load_json(response.content)
        except ParseError as e:
            raise UpstreamError(f"upstream {path} sent invalid JSON: {e}", path=path) from e

    def _fetch_decoded(self, path: str, decoder: Callable, deadline: Optional[float]):
        payload = self.fetch(path, deadline)
        try:
            return decoder(payload)
        except ParseError as e:
            raise UpstreamError(f"upstream {path} sent unexpected data: {e}", path=path) from e

    def fetch_artists(self, deadline: Optional[float] = None) -> List[Artist]:
        return self._fetch_decoded('/artists', parse_artists, deadline)

    def fetch_locations(self, deadline: Optional[float] = None) -> List[LocationIndex]:
        return self._fetch_decoded('/locations', parse_locations, deadline)

    def fetch_dates(self, deadline: Optional[float] = None) -> List[DatesIndex]:
        return self._fetch_decoded('/dates', parse_dates, deadline)

    def fetch_relations(self, deadline: Optional[float] = None) -> List[Relation]:
        return self._fetch_decoded('/relation', parse_relations, deadline)

    def fetch_all(self, timeout: Optional[float] = None) -> DataBundle:
        """
        Fetch all four collections concurrently.

        All four must succeed. When several fail, the error reported is the
        first one in the order artists, locations, dates, relations.

        Args:
            timeout: Overall deadline in seconds for the whole fan-out

        Returns:
            DataBundle built from a single fetch cycle

        Raises:
            UpstreamError: If any fetch fails or the deadline passes
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        fetchers: List[Tuple[str, str, Callable]] = [
            ('artists', '/artists', self.fetch_artists),
            ('locations', '/locations', self.fetch_locations),
            ('dates', '/dates', self.fetch_dates),
            ('relations', '/relation', self.fetch_relations)
        ]

        executor = ThreadPoolExecutor(max_workers=len(fetchers), thread_name_prefix='upstream')
        try:
            futures = [(name, path, executor.submit(fn, deadline)) for name, path, fn in fetchers]
            _, pending = wait([future for _, _, future in futures], timeout=timeout)
            for future in pending:
                future.cancel()
        finally:
            # Stragglers are abandoned, their results are never read
            executor.shutdown(wait=False)

        results = {}
        for name, path, future in futures:
            if future in pending:
                # Timed out before any earlier fetch reported an error
                logger.warning(f"Fetching {name} timed out after {timeout}s")
                raise UpstreamError(f"upstream {path} timed out after {timeout}s", path=path)
            error = future.exception()
            if error is not None:
                logger.warning(f"Fetching {name} failed: {error}")
                if isinstance(error, UpstreamError):
                    raise error
                raise UpstreamError(f"upstream {name} fetch failed: {error}") from error
            results[name] = future.result()

        bundle = DataBundle(**results)
        logger.debug(
            f"Fetched {len(bundle.artists)} artists, {len(bundle.locations)} locations, "
            f"{len(bundle.dates)} dates, {len(bundle.relations)} relations"
        )
        return bundle
