from typing import Dict, List

from groupie.models import Artist, ArtistWithMeta, DataBundle, Event, Relation
from groupie.parser import ISO_DATE_FORMAT, ParseError, parse_api_date, split_location_slug


def merge_artists(bundle: DataBundle) -> List[ArtistWithMeta]:
    """
    Combine base artist data with its locations, dates and relations.

    Every artist yields exactly one record; missing lookups leave the
    corresponding fields empty.

    Args:
        bundle: DataBundle from a single fetch cycle

    Returns:
        List of ArtistWithMeta in the same order as bundle.artists
    """
    locations_by_id = {loc.id: list(loc.locations) for loc in bundle.locations}
    dates_by_id = {entry.id: list(entry.dates) for entry in bundle.dates}
    relations_by_id = {
        rel.id: {slug: list(dates) for slug, dates in rel.dates_locations.items()}
        for rel in bundle.relations
    }

    return [
        ArtistWithMeta(
            artist=artist,
            location_list=locations_by_id.get(artist.id, []),
            date_list=dates_by_id.get(artist.id, []),
            dates_locations=relations_by_id.get(artist.id, {})
        )
        for artist in bundle.artists
    ]


def build_events(artists: List[Artist], relations: List[Relation]) -> List[Event]:
    """
    Flatten relations into a chronological list of events.

    Dates that fail to parse are skipped. Events with equal dates keep the
    order in which they were encountered.

    Args:
        artists: Artists used to resolve names by id
        relations: Relations to flatten

    Returns:
        List of Event objects sorted by date ascending
    """
    name_by_id: Dict[int, str] = {artist.id: artist.name for artist in artists}

    collected = []
    for relation in relations:
        for slug, dates in relation.dates_locations.items():
            location = split_location_slug(slug)
            for raw_date in dates:
                try:
                    timestamp = parse_api_date(raw_date)
                except ParseError:
                    continue
                collected.append((relation.id, location, timestamp))

    # list.sort is stable
    collected.sort(key=lambda item: item[2])

    return [
        Event(
            artist_id=artist_id,
            artist_name=name_by_id.get(artist_id, ''),
            city=location.city,
            country=location.country,
            date=timestamp,
            date_iso=timestamp.strftime(ISO_DATE_FORMAT)
        )
        for artist_id, location, timestamp in collected
    ]
