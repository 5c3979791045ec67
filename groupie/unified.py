from typing import List

from groupie.models import ArtistWithMeta, SpotifyArtist, SpotifyImage, UnifiedArtist


SOURCE_GROUPIE = 'groupie'
SOURCE_SPOTIFY = 'spotify'


def to_unified_groupie(artist: ArtistWithMeta) -> UnifiedArtist:
    base = artist.artist
    return UnifiedArtist(
        id=str(base.id),
        name=base.name,
        image_url=base.image,
        source=SOURCE_GROUPIE,
        creation_date=base.creation_date,
        first_album=base.first_album,
        members=list(base.members)
    )


def to_unified_spotify(artist: SpotifyArtist) -> UnifiedArtist:
    return UnifiedArtist(
        id=artist.id,
        name=artist.name,
        image_url=pick_best_image(artist.images),
        source=SOURCE_SPOTIFY,
        genres=list(artist.genres),
        popularity=artist.popularity
    )


def pick_best_image(images: List[SpotifyImage]) -> str:
    """Return the first usable image URL (Spotify lists the largest first)."""
    for image in images:
        if image.url:
            return image.url
    return ''


def name_key(name: str) -> str:
    return name.strip().lower()


def merge_unified_artists(groupie: List[UnifiedArtist], spotify: List[UnifiedArtist]) -> List[UnifiedArtist]:
    """
    Merge both providers into one list, de-duplicated by lower-cased name.

    Groupie entries come first and win on collision; the colliding Spotify
    entry is dropped as a whole. Entries with an empty name are dropped.

    Args:
        groupie: Artists from the concert API, in display order
        spotify: Artists from Spotify search, in relevance order

    Returns:
        Groupie entries followed by the non-colliding Spotify entries
    """
    merged = []
    seen = set()

    for artist in groupie:
        key = name_key(artist.name)
        if not key:
            continue
        seen.add(key)
        merged.append(artist)

    for artist in spotify:
        key = name_key(artist.name)
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(artist)

    return merged
