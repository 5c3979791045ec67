import os
import logging
import sys
import time
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv
from flask import Flask, g, jsonify, render_template, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

from groupie.api_client import UpstreamError
from groupie.config import Settings, load_settings
from groupie.models import ArtistWithMeta, DataBundle, DatesIndex, Event, Relation, UnifiedArtist
from groupie.normalize import build_events, merge_artists
from groupie.parser import ParseError, parse_api_date, split_location_slug
from groupie.service import TrackerService
from groupie.spotify_auth import SpotifyError
from groupie.spotify_service import DEFAULT_SEARCH_LIMIT
from groupie.unified import SOURCE_SPOTIFY, pick_best_image

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO if os.getenv('FLASK_ENV') == 'production' else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('groupie.log') if os.getenv('FLASK_ENV') == 'production' else logging.NullHandler()
    ]
)
logger = logging.getLogger(__name__)

VERSION = '1.0.0'


# ===========================================================================
# SERIALIZATION
# ===========================================================================

def serialize_artist(artist: ArtistWithMeta) -> dict:
    """Serialize an artist with its resolved locations, dates and relations."""
    base = artist.artist
    data = {
        "id": base.id,
        "image": base.image,
        "name": base.name,
        "members": list(base.members),
        "creationDate": base.creation_date,
        "firstAlbum": base.first_album,
        "locationsURL": base.locations_url,
        "datesURL": base.dates_url,
        "relationsURL": base.relations_url
    }
    if artist.location_list:
        data["locations"] = list(artist.location_list)
    if artist.date_list:
        data["dates"] = list(artist.date_list)
    if artist.dates_locations:
        data["datesLocations"] = {slug: list(dates) for slug, dates in artist.dates_locations.items()}
    return data


def serialize_event(event: Event) -> dict:
    return {
        "artistId": event.artist_id,
        "artistName": event.artist_name,
        "city": event.city,
        "country": event.country,
        "date": event.date_iso
    }


def serialize_unified(artist: UnifiedArtist) -> dict:
    """Serialize a unified artist; optional fields are omitted when empty."""
    data = {
        "id": artist.id,
        "name": artist.name,
        "image_url": artist.image_url,
        "source": artist.source
    }
    if artist.creation_date:
        data["creationDate"] = artist.creation_date
    if artist.first_album:
        data["firstAlbum"] = artist.first_album
    if artist.members:
        data["members"] = list(artist.members)
    if artist.genres:
        data["genres"] = list(artist.genres)
    if artist.popularity:
        data["popularity"] = artist.popularity
    return data


def serialize_dates(entry: DatesIndex) -> dict:
    return {"id": entry.id, "dates": list(entry.dates)}


def serialize_relation(relation: Relation) -> dict:
    return {
        "id": relation.id,
        "datesLocations": {slug: list(dates) for slug, dates in relation.dates_locations.items()}
    }


# ===========================================================================
# FILTERS
# ===========================================================================

def arg_text(name: str) -> str:
    return request.args.get(name, '').strip().lower()


def arg_int(name: str) -> int:
    """Integer query parameter; missing or malformed values count as 0."""
    return request.args.get(name, default=0, type=int)


def contains_member(members: List[str], needle: str) -> bool:
    needle = needle.lower()
    return any(needle in member.lower() for member in members)


def filter_artists(artists: List[ArtistWithMeta], name: str, year: int, member: str) -> List[ArtistWithMeta]:
    filtered = []
    for artist in artists:
        base = artist.artist
        if name and name not in base.name.lower():
            continue
        if year > 0 and base.creation_date != year:
            continue
        if member and not contains_member(base.members, member):
            continue
        filtered.append(artist)
    return filtered


def filter_events(events: List[Event], country: str, city: str, artist: str, year: int) -> List[Event]:
    filtered = []
    for event in events:
        if country and country not in event.country.lower():
            continue
        if city and city not in event.city.lower():
            continue
        if artist and artist not in event.artist_name.lower():
            continue
        if year > 0 and event.date.year != year:
            continue
        filtered.append(event)
    return filtered


def build_location_views(snapshot: DataBundle) -> List[dict]:
    """One row per (artist, location slug) with the number of dates played there."""
    names = {artist.id: artist.name for artist in snapshot.artists}
    counts = {
        rel.id: {slug: len(dates) for slug, dates in rel.dates_locations.items()}
        for rel in snapshot.relations
    }

    views = []
    for entry in snapshot.locations:
        for slug in entry.locations:
            location = split_location_slug(slug)
            views.append({
                "artistId": entry.id,
                "artistName": names.get(entry.id, ''),
                "city": location.city,
                "country": location.country,
                "raw": location.raw,
                "eventCount": counts.get(entry.id, {}).get(slug, 0)
            })
    return views


def filter_dates_by_year(entries: List[DatesIndex], year: int) -> List[DatesIndex]:
    if year <= 0:
        return entries

    filtered = []
    for entry in entries:
        matching = []
        for raw_date in entry.dates:
            try:
                if parse_api_date(raw_date).year == year:
                    matching.append(raw_date)
            except ParseError:
                continue
        if matching:
            filtered.append(DatesIndex(id=entry.id, dates=matching))
    return filtered


def is_api_request() -> bool:
    return request.path.startswith('/api/')


# ===========================================================================
# APPLICATION FACTORY
# ===========================================================================

def create_app(settings: Optional[Settings] = None, service: Optional[TrackerService] = None,
               config: Optional[dict] = None) -> Flask:
    """
    Build the Flask app around one TrackerService.

    Args:
        settings: Runtime settings; read from the environment when omitted
        service: Pre-built service (tests inject one with a stub cache/client)
        config: Extra Flask config applied before extensions are initialized
    """
    settings = settings or load_settings()
    service = service or TrackerService.from_settings(settings)

    app = Flask(__name__)
    app.json.sort_keys = False
    app.config.update(
        SECRET_KEY=settings.secret_key or os.urandom(24),
        SESSION_COOKIE_SECURE=settings.is_production,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE='Lax'
    )
    if config:
        app.config.update(config)

    app.extensions['tracker_service'] = service

    logger.info(f"Starting Groupie Tracker in {'PRODUCTION' if settings.is_production else 'DEVELOPMENT'} mode")

    CORS(app, origins=settings.allowed_origins, supports_credentials=True)
    logger.info(f"CORS enabled for origins: {settings.allowed_origins}")

    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=["100 per minute"] if settings.is_production else ["200 per minute"],
        storage_uri="memory://"
    )

    @app.before_request
    def start_timer():
        g.request_started = time.monotonic()

    # Security headers middleware
    @app.after_request
    def set_security_headers(response):
        """Add security headers to all responses"""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        response.headers['Content-Security-Policy'] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data: https:; "
            "connect-src 'self'; "
            "font-src 'self' data:; "
            "frame-ancestors 'none';"
        )
        return response

    @app.after_request
    def log_request(response):
        started = g.get('request_started')
        elapsed_ms = (time.monotonic() - started) * 1000 if started is not None else 0.0
        logger.info(f"{request.method} {request.path} {response.status_code} ({elapsed_ms:.0f}ms)")
        return response

    # Error handling
    def render_error(status: int, message: str):
        if is_api_request():
            return jsonify({'error': message}), status
        template = '404.html' if status == 404 else '500.html'
        return render_template(template, message=message), status

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 errors"""
        logger.warning(f"404 error: {request.url}")
        return render_error(404, 'Resource not found')

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 errors"""
        logger.error(f"500 error: {str(error)}", exc_info=True)
        return render_error(500, 'Internal server error')

    @app.errorhandler(UpstreamError)
    def upstream_error(error):
        """No cached data and the upstream API could not be reached"""
        logger.error(f"Upstream error: {error}")
        if is_api_request():
            return jsonify({'error': 'Upstream API unavailable'}), 502
        return render_template('500.html', message='Concert data is currently unavailable'), 502

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle all other exceptions"""
        if isinstance(error, HTTPException):
            if is_api_request():
                return jsonify({'error': error.description}), error.code
            return error
        logger.error(f"Unhandled exception: {str(error)}", exc_info=True)
        return render_error(500, 'An unexpected error occurred')

    # ===========================================================================
    # HEALTH & MONITORING ENDPOINTS
    # ===========================================================================

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint for load balancers and monitoring"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': VERSION
        }), 200

    @app.route('/healthz', methods=['GET'])
    def healthz():
        return jsonify({'status': 'ok'})

    @app.route('/ready', methods=['GET'])
    def readiness_check():
        """Readiness check - the cache holds a bundle"""
        stats = service.cache.stats()
        checks = {
            'cache_populated': not service.cache.is_empty(),
            'spotify_configured': service.spotify is not None
        }
        status_code = 200 if checks['cache_populated'] else 503
        return jsonify({
            'status': 'ready' if status_code == 200 else 'not_ready',
            'checks': checks,
            'cache': stats,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }), status_code

    # ===========================================================================
    # DATA API ENDPOINTS
    # ===========================================================================

    @app.route('/api/artists', methods=['GET'])
    @app.route('/api/artists/', methods=['GET'])
    def api_artists():
        """Artists with metadata, optionally merged with Spotify search results"""
        service.ensure_cache()

        name_filter = arg_text('name')
        source = arg_text('source')
        external = arg_text('external')

        include_spotify = source in ('spotify', 'all') or external == 'spotify'
        include_groupie = source in ('', 'groupie', 'all')
        if external == 'spotify' and source == '':
            include_groupie = True
        unified_response = include_spotify or source == 'groupie'

        spotify_limit = arg_int('limit')
        if spotify_limit <= 0:
            spotify_limit = DEFAULT_SEARCH_LIMIT

        filtered = filter_artists(
            service.cache.artists_with_meta(),
            name=name_filter,
            year=arg_int('year'),
            member=arg_text('member')
        )

        # Plain artist payloads unless a unified response was asked for
        if not unified_response:
            return jsonify([serialize_artist(a) for a in filtered])

        if service.spotify is None and not include_groupie:
            return jsonify({'error': 'Spotify integration is not configured'}), 503

        merged = service.unified_artists(
            filtered,
            name_filter=name_filter,
            include_groupie=include_groupie,
            include_spotify=include_spotify,
            spotify_limit=spotify_limit
        )
        return jsonify([serialize_unified(a) for a in merged])

    @app.route('/api/artists/<artist_id>', methods=['GET'])
    def api_artist_detail(artist_id):
        try:
            artist_id = int(artist_id)
        except ValueError:
            return jsonify({'error': 'Invalid artist id'}), 400

        service.ensure_cache()
        artist = next((a for a in service.cache.artists_with_meta() if a.id == artist_id), None)
        if artist is None:
            return jsonify({'error': 'Artist not found'}), 404
        return jsonify(serialize_artist(artist))

    @app.route('/api/locations', methods=['GET'])
    def api_locations():
        service.ensure_cache()
        country = arg_text('country')
        city = arg_text('city')
        artist = arg_text('artist')

        views = [
            view for view in build_location_views(service.cache.snapshot())
            if (not country or country in view['country'].lower())
            and (not city or city in view['city'].lower())
            and (not artist or artist in view['artistName'].lower())
        ]
        return jsonify(views)

    @app.route('/api/dates', methods=['GET'])
    def api_dates():
        service.ensure_cache()
        entries = filter_dates_by_year(service.cache.snapshot().dates, arg_int('year'))
        return jsonify([serialize_dates(entry) for entry in entries])

    @app.route('/api/relation', methods=['GET'])
    def api_relation():
        service.ensure_cache()
        relations = service.cache.snapshot().relations
        artist_id = arg_int('id')
        if artist_id > 0:
            relations = [rel for rel in relations if rel.id == artist_id][:1]
        return jsonify([serialize_relation(rel) for rel in relations])

    @app.route('/api/events', methods=['GET'])
    def api_events():
        """Chronological concert events across all artists"""
        service.ensure_cache()
        events = filter_events(
            service.cache.events(),
            country=arg_text('country'),
            city=arg_text('city'),
            artist=arg_text('artist'),
            year=arg_int('year')
        )
        return jsonify([serialize_event(e) for e in events])

    @app.route('/api/spotify/artist', methods=['GET'])
    def api_spotify_artist():
        if service.spotify is None:
            return jsonify({'error': 'Spotify integration is not configured'}), 503

        artist_id = request.args.get('id', '').strip()
        if not artist_id:
            return jsonify({'error': 'Artist id is required'}), 400

        try:
            artist = service.spotify_artist(artist_id)
        except SpotifyError as e:
            logger.warning(f"Spotify artist lookup failed: {e}")
            return jsonify({'error': 'Artist not found'}), 404

        return jsonify({
            'id': artist.id,
            'name': artist.name,
            'image_url': pick_best_image(artist.images),
            'genres': list(artist.genres),
            'popularity': artist.popularity,
            'followers': artist.followers,
            'source': SOURCE_SPOTIFY
        })

    @app.route('/api/refresh', methods=['POST'])
    @limiter.limit("5 per minute")
    def api_refresh():
        """Re-fetch the upstream data; the previous bundle stays on failure"""
        try:
            service.refresh()
        except UpstreamError as e:
            logger.error(f"Refresh failed: {e}")
            return jsonify({'error': 'Refresh failed', 'cache': service.cache.stats()}), 502
        return jsonify({'status': 'ok', 'cache': service.cache.stats()})

    # ===========================================================================
    # PAGES
    # ===========================================================================

    @app.route('/', methods=['GET'])
    @app.route('/index.html', methods=['GET'])
    def index_page():
        service.ensure_cache()
        artists = service.cache.artists_with_meta()
        return render_template(
            'index.html',
            artists=artists,
            artist_count=len(artists),
            last_updated=service.cache.fetched_at
        )

    @app.route('/artist', methods=['GET'])
    @app.route('/artist.html', methods=['GET'])
    def artist_page():
        artist_id = arg_int('id')
        if artist_id <= 0:
            return render_error(404, 'Artist not found')

        service.ensure_cache()
        snap = service.cache.snapshot()
        artist = next((a for a in merge_artists(snap) if a.id == artist_id), None)
        if artist is None:
            return render_error(404, 'Artist not found')

        relations = [rel for rel in snap.relations if rel.id == artist_id]
        events = build_events(snap.artists, relations)
        return render_template('artist.html', artist=artist, events=events)

    @app.route('/artist-spotify', methods=['GET'])
    @app.route('/artist-spotify.html', methods=['GET'])
    def spotify_artist_page():
        artist_id = request.args.get('id', '').strip()
        if service.spotify is None or not artist_id:
            return render_error(404, 'Artist not found')

        try:
            artist = service.spotify_artist(artist_id)
        except SpotifyError as e:
            logger.warning(f"Spotify artist lookup failed: {e}")
            return render_error(404, 'Artist not found')

        return render_template('artist_spotify.html', artist=artist, image_url=pick_best_image(artist.images))

    @app.route('/dates', methods=['GET'])
    @app.route('/dates.html', methods=['GET'])
    def dates_page():
        service.ensure_cache()
        events = filter_events(
            service.cache.events(),
            country=arg_text('country'),
            city=arg_text('city'),
            artist=arg_text('artist'),
            year=arg_int('year')
        )
        return render_template('dates.html', events=events)

    @app.route('/locations', methods=['GET'])
    @app.route('/locations.html', methods=['GET'])
    def locations_page():
        service.ensure_cache()
        return render_template('locations.html', locations=build_location_views(service.cache.snapshot()))

    @app.route('/relations', methods=['GET'])
    @app.route('/relations.html', methods=['GET'])
    def relations_page():
        service.ensure_cache()
        artists = [a for a in service.cache.artists_with_meta() if a.dates_locations]
        return render_template('relations.html', artists=artists)

    @app.route('/404', methods=['GET'])
    @app.route('/404.html', methods=['GET'])
    def not_found_page():
        return render_template('404.html', message='Page not found'), 404

    @app.route('/500', methods=['GET'])
    @app.route('/500.html', methods=['GET'])
    def server_error_page():
        return render_template('500.html', message='Internal server error'), 500

    return app


def main():
    settings = load_settings()
    app = create_app(settings)
    service = app.extensions['tracker_service']
    if settings.prefetch:
        service.prefetch()

    logger.info(f"Groupie Tracker running at http://{settings.host}:{settings.port}")
    app.run(host=settings.host, port=settings.port, debug=not settings.is_production, threaded=True,
            use_reloader=False)


if __name__ == '__main__':
    main()
