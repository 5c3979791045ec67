from datetime import datetime
from typing import Any, Dict, List

import orjson

from groupie.models import Artist, DatesIndex, LocationIndex, LocationName, Relation


UNCONFIRMED_MARKER = '*'
ISO_DATE_FORMAT = '%Y-%m-%d'
API_DATE_FORMAT = '%d-%m-%Y'


class ParseError(Exception):
    """Raised when parsing fails."""
    pass


def parse_api_date(value: str) -> datetime:
    """
    Parse a date string as returned by the upstream API.

    Dates may carry a leading '*' (unconfirmed) and are usually DD-MM-YYYY,
    although some entries use YYYY-MM-DD.

    Raises:
        ParseError: If the string is empty or matches neither format
    """
    if not isinstance(value, str):
        raise ParseError(f"Expected date string, got {type(value).__name__}")

    cleaned = value.strip()
    if cleaned.startswith(UNCONFIRMED_MARKER):
        cleaned = cleaned[1:].strip()
    if not cleaned:
        raise ParseError("Empty date")

    # A 4 digit year up front means YYYY-MM-DD
    if len(cleaned) >= 10 and cleaned[4] == '-':
        try:
            return datetime.strptime(cleaned, ISO_DATE_FORMAT)
        except ValueError:
            pass

    try:
        return datetime.strptime(cleaned, API_DATE_FORMAT)
    except ValueError:
        raise ParseError(f"Unrecognized date: {value!r}")


def title_case(text: str) -> str:
    """Capitalize each whitespace separated word (no locale handling)."""
    return ' '.join(word[:1].upper() + word[1:].lower() for word in text.split())


def split_location_slug(slug: str) -> LocationName:
    """Convert a slug like 'los_angeles-usa' into readable city/country names."""
    parts = slug.split('-')
    if len(parts) == 1:
        return LocationName(
            city=title_case(slug.replace('_', ' ')),
            country='',
            raw=slug
        )

    city = '-'.join(parts[:-1])
    country = parts[-1]
    return LocationName(
        city=title_case(city.replace('_', ' ')),
        country=title_case(country.replace('_', ' ')),
        raw=slug
    )


def load_json(content: bytes) -> Any:
    try:
        return orjson.loads(content)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}")


def decode_index(payload: Any) -> List[dict]:
    """
    Accept either a bare JSON array or an {"index": [...]} envelope.

    Raises:
        ParseError: If the payload has neither shape
    """
    if isinstance(payload, dict):
        payload = payload.get('index')
    if not isinstance(payload, list):
        raise ParseError("Expected JSON array or object with an 'index' array")

    for entry in payload:
        if not isinstance(entry, dict):
            raise ParseError("Expected JSON objects inside index")
    return payload


def normalize_dates_locations(raw: Any) -> Dict[str, List[str]]:
    """
    Normalize the relations field to a slug -> dates mapping.

    The upstream field is usually an object of string lists, but it has
    also been seen as a plain string (no relations) or as an object with
    mixed values.
    """
    if raw is None or isinstance(raw, str):
        return {}

    if not isinstance(raw, dict):
        raise ParseError(f"Unsupported relations format: {type(raw).__name__}")

    normalized = {}
    for slug, dates in raw.items():
        if isinstance(dates, list):
            normalized[slug] = [_stringify(d) for d in dates]
        else:
            normalized[slug] = [_stringify(dates)]
    return normalized


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return ''
    return str(value)


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ''


def _as_int(value: Any, field_name: str) -> int:
    """Missing or null integers decode to 0; fractions and non-numbers fail."""
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParseError(f"Field '{field_name}' must be an integer, got {value!r}")
    return value


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [_stringify(v) for v in value]


def parse_artists(payload: Any) -> List[Artist]:
    """
    Decode the /artists payload.

    Raises:
        ParseError: If the payload or an entry's id is malformed
    """
    artists = []
    for entry in decode_index(payload):
        artists.append(Artist(
            id=_as_int(entry.get('id'), 'id'),
            name=_as_str(entry.get('name')),
            image=_as_str(entry.get('image')),
            members=_as_str_list(entry.get('members')),
            creation_date=_as_int(entry.get('creationDate'), 'creationDate'),
            first_album=_as_str(entry.get('firstAlbum')),
            locations_url=_as_str(entry.get('locations')),
            dates_url=_as_str(entry.get('concertDates')),
            relations_url=_as_str(entry.get('relations'))
        ))
    return artists


def parse_locations(payload: Any) -> List[LocationIndex]:
    return [
        LocationIndex(
            id=_as_int(entry.get('id'), 'id'),
            locations=_as_str_list(entry.get('locations')),
            dates_url=_as_str(entry.get('dates'))
        )
        for entry in decode_index(payload)
    ]


def parse_dates(payload: Any) -> List[DatesIndex]:
    return [
        DatesIndex(
            id=_as_int(entry.get('id'), 'id'),
            dates=_as_str_list(entry.get('dates'))
        )
        for entry in decode_index(payload)
    ]


def parse_relations(payload: Any) -> List[Relation]:
    return [
        Relation(
            id=_as_int(entry.get('id'), 'id'),
            dates_locations=normalize_dates_locations(entry.get('datesLocations'))
        )
        for entry in decode_index(payload)
    ]
