"""
Unit Tests for the upstream API client and the Spotify client
"""

import threading

import orjson
import pytest
import requests
from unittest.mock import Mock

from groupie.api_client import DEFAULT_API_BASE, APIClient, UpstreamError
from groupie.spotify_auth import SpotifyAuth, SpotifyError, SpotifyNotFoundError, SpotifyUpstreamError
from groupie.spotify_service import SpotifyClient


ARTISTS = [{'id': 1, 'name': 'Queen', 'image': 'q.jpg', 'members': ['Freddie'], 'creationDate': 1970,
            'firstAlbum': '14-12-1973', 'locations': 'l', 'concertDates': 'd', 'relations': 'r'}]
LOCATIONS = {'index': [{'id': 1, 'locations': ['paris-france'], 'dates': 'd'}]}
DATES = {'index': [{'id': 1, 'dates': ['*01-01-2020']}]}
RELATIONS = {'index': [{'id': 1, 'datesLocations': {'paris-france': ['01-01-2020']}}]}


def make_response(status_code=200, payload=None, content=None):
    response = Mock()
    response.status_code = status_code
    response.content = content if content is not None else orjson.dumps(payload)
    response.json.return_value = payload
    return response


def make_session(overrides=None):
    """Session whose get() answers by endpoint; overrides map endpoint -> response."""
    routes = {
        '/artists': make_response(payload=ARTISTS),
        '/locations': make_response(payload=LOCATIONS),
        '/dates': make_response(payload=DATES),
        '/relation': make_response(payload=RELATIONS)
    }
    routes.update(overrides or {})

    def get(url, timeout=None, **kwargs):
        for path, response in routes.items():
            if url.endswith(path):
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected url {url}")

    session = Mock()
    session.get.side_effect = get
    return session


class TestAPIClient:
    """Test upstream fetching and fan-out aggregation"""

    def test_base_url_normalization(self):
        assert APIClient('https://example.com/api/', session=Mock()).build_url('/artists') == \
            'https://example.com/api/artists'
        assert APIClient('', session=Mock()).base_url == DEFAULT_API_BASE

    def test_fetch_all_success(self):
        client = APIClient('https://example.com/api', session=make_session())

        bundle = client.fetch_all(timeout=5)

        assert [a.name for a in bundle.artists] == ['Queen']
        assert bundle.locations[0].locations == ['paris-france']
        assert bundle.dates[0].dates == ['*01-01-2020']
        assert bundle.relations[0].dates_locations == {'paris-france': ['01-01-2020']}

    def test_any_failure_fails_whole_fetch(self):
        session = make_session({'/relation': make_response(status_code=500, content=b'oops')})
        client = APIClient('https://example.com/api', session=session)

        with pytest.raises(UpstreamError) as exc_info:
            client.fetch_all(timeout=5)

        assert exc_info.value.path == '/relation'
        assert exc_info.value.status_code == 500

    def test_first_error_in_priority_order(self):
        session = make_session({
            '/relation': make_response(status_code=503, content=b''),
            '/locations': requests.ConnectionError('refused'),
            '/dates': make_response(content=b'{not json')
        })
        client = APIClient('https://example.com/api', session=session)

        with pytest.raises(UpstreamError) as exc_info:
            client.fetch_all(timeout=5)

        assert exc_info.value.path == '/locations'

    def test_decode_failure_is_upstream_error(self):
        session = make_session({'/dates': make_response(payload={'unexpected': True})})
        client = APIClient('https://example.com/api', session=session)

        with pytest.raises(UpstreamError) as exc_info:
            client.fetch_dates()

        assert exc_info.value.path == '/dates'

    def test_request_uses_client_timeout(self):
        client = APIClient('https://example.com/api', timeout=10, session=make_session())
        client.fetch_artists(deadline=None)
        _, kwargs = client.session.get.call_args
        assert kwargs['timeout'] == 10

    def test_expired_deadline_skips_request(self):
        session = make_session()
        client = APIClient('https://example.com/api', session=session)

        with pytest.raises(UpstreamError):
            client.fetch_artists(deadline=0.0)

        session.get.assert_not_called()

    def test_fetch_all_deadline(self):
        release = threading.Event()
        slow = make_session()
        fast_get = slow.get.side_effect

        def get(url, timeout=None, **kwargs):
            if url.endswith('/dates'):
                release.wait(5)
            return fast_get(url, timeout=timeout, **kwargs)

        slow.get.side_effect = get
        client = APIClient('https://example.com/api', session=slow)

        try:
            with pytest.raises(UpstreamError, match='timed out') as exc_info:
                client.fetch_all(timeout=0.2)
        finally:
            release.set()

        assert exc_info.value.path == '/dates'

    def test_earlier_failure_wins_over_later_timeout(self):
        release = threading.Event()
        session = make_session({'/artists': make_response(status_code=500, content=b'oops')})
        routed_get = session.get.side_effect

        def get(url, timeout=None, **kwargs):
            if url.endswith('/relation'):
                release.wait(5)
            return routed_get(url, timeout=timeout, **kwargs)

        session.get.side_effect = get
        client = APIClient('https://example.com/api', session=session)

        try:
            with pytest.raises(UpstreamError) as exc_info:
                client.fetch_all(timeout=0.3)
        finally:
            release.set()

        assert exc_info.value.path == '/artists'
        assert exc_info.value.status_code == 500


class TestSpotifyAuth:
    """Test client credentials token handling"""

    def make_auth(self, expires_in=3600):
        session = Mock()
        session.post.return_value = make_response(payload={
            'access_token': 'token-1',
            'token_type': 'Bearer',
            'expires_in': expires_in
        })
        return SpotifyAuth('client', 'secret', session=session), session

    def test_token_is_reused(self):
        auth, session = self.make_auth()

        assert auth.get_valid_token() == 'token-1'
        assert auth.get_valid_token() == 'token-1'

        session.post.assert_called_once()
        _, kwargs = session.post.call_args
        assert kwargs['data'] == {'grant_type': 'client_credentials'}
        assert kwargs['headers']['Authorization'].startswith('Basic ')

    def test_token_near_expiry_is_refreshed(self):
        auth, session = self.make_auth(expires_in=10)

        auth.get_valid_token()
        auth.get_valid_token()

        assert session.post.call_count == 2

    def test_missing_credentials(self):
        auth = SpotifyAuth('', 'secret', session=Mock())
        assert not auth.configured
        with pytest.raises(SpotifyError):
            auth.get_valid_token()

    def test_token_request_failure(self):
        session = Mock()
        session.post.return_value = make_response(status_code=400, payload={'error': 'invalid_client'})
        auth = SpotifyAuth('client', 'secret', session=session)

        with pytest.raises(SpotifyUpstreamError, match='Token request failed'):
            auth.get_valid_token()

    @pytest.mark.parametrize('token_payload', [
        {'access_token': 'token-1', 'expires_in': 'soon'},
        {'access_token': 'token-1', 'expires_in': None},
        ['token-1']
    ])
    def test_malformed_token_response(self, token_payload):
        session = Mock()
        session.post.return_value = make_response(payload=token_payload)
        auth = SpotifyAuth('client', 'secret', session=session)

        with pytest.raises(SpotifyUpstreamError):
            auth.get_valid_token()

    def test_invalidate_forces_new_token(self):
        auth, session = self.make_auth()

        auth.get_valid_token()
        auth.invalidate()
        auth.get_valid_token()

        assert session.post.call_count == 2


class TestSpotifyService:
    """Test artist search and lookup"""

    def make_client(self, response):
        session = Mock()
        session.post.return_value = make_response(payload={'access_token': 't', 'expires_in': 3600})
        session.get.return_value = response
        auth = SpotifyAuth('client', 'secret', session=session)
        return SpotifyClient(auth), session

    def test_search_filters_low_signal_results(self):
        items = [
            {'id': '1', 'name': 'Queen', 'popularity': 80, 'genres': ['rock'],
             'images': [{'url': 'q.jpg', 'height': 640, 'width': 640}], 'followers': {'total': 10}},
            {'id': '2', 'name': 'No Image', 'popularity': 50, 'images': []},
            {'id': '3', 'name': '  ', 'popularity': 50, 'images': [{'url': 'x.jpg'}]},
            {'id': '4', 'name': 'Obscure', 'popularity': 3, 'images': [{'url': 'o.jpg'}]},
            {'id': '5', 'name': 'Brand New', 'popularity': 0, 'images': [{'url': 'n.jpg'}]}
        ]
        client, session = self.make_client(make_response(payload={'artists': {'items': items}}))

        results = client.search_artists('queen', limit=50)

        assert [a.id for a in results] == ['1', '5']
        assert results[0].followers == 10
        _, kwargs = session.get.call_args
        assert kwargs['params'] == {'q': 'queen', 'type': 'artist', 'limit': 8}
        assert kwargs['headers'] == {'Authorization': 'Bearer t'}

    def test_search_blank_query_makes_no_call(self):
        client, session = self.make_client(make_response(payload={}))
        assert client.search_artists('   ') == []
        session.get.assert_not_called()

    def test_search_upstream_error(self):
        client, _ = self.make_client(make_response(status_code=502, payload=None))
        with pytest.raises(SpotifyUpstreamError):
            client.search_artists('queen')

    @pytest.mark.parametrize('payload', [
        [],
        {'artists': []},
        {'artists': {'items': {'id': '1'}}},
        {'artists': {'items': ['Queen']}},
        {'artists': {'items': [{'id': '1', 'name': 'Queen', 'images': [{'url': 'q.jpg'}], 'followers': 12}]}},
        {'artists': {'items': [{'id': '1', 'name': 'Queen', 'images': [{'url': 'q.jpg'}], 'popularity': 'high'}]}}
    ])
    def test_search_malformed_body(self, payload):
        client, _ = self.make_client(make_response(payload=payload))
        with pytest.raises(SpotifyUpstreamError):
            client.search_artists('queen')

    def test_rejected_token_is_renewed_once(self):
        ok = make_response(payload={'artists': {'items': [
            {'id': '1', 'name': 'Queen', 'popularity': 80, 'images': [{'url': 'q.jpg'}]}
        ]}})
        client, session = self.make_client(None)
        session.get.side_effect = [make_response(status_code=401, payload={'error': 'expired'}), ok]

        results = client.search_artists('queen')

        assert [a.id for a in results] == ['1']
        assert session.post.call_count == 2
        assert session.get.call_count == 2

    def test_get_artist_not_found(self):
        client, _ = self.make_client(make_response(status_code=404, payload={'error': 'missing'}))
        with pytest.raises(SpotifyNotFoundError):
            client.get_artist('abc')

    def test_get_artist_incomplete(self):
        client, _ = self.make_client(make_response(payload={'id': 'abc', 'name': 'Queen', 'images': []}))
        with pytest.raises(SpotifyUpstreamError, match='Incomplete'):
            client.get_artist('abc')

    def test_get_artist_success(self):
        client, session = self.make_client(make_response(payload={
            'id': 'abc', 'name': 'Queen', 'genres': ['rock'], 'popularity': 90,
            'images': [{'url': 'q.jpg'}], 'followers': {'total': 42}
        }))

        artist = client.get_artist(' abc ')

        assert artist.name == 'Queen'
        assert artist.followers == 42
        url = session.get.call_args[0][0]
        assert url.endswith('/artists/abc')

    def test_get_artist_requires_id(self):
        client, _ = self.make_client(make_response(payload={}))
        with pytest.raises(SpotifyError):
            client.get_artist('')
