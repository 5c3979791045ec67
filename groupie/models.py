from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Artist:
    id: int
    name: str = ""
    image: str = ""
    members: List[str] = field(default_factory=list)
    creation_date: int = 0
    first_album: str = ""
    locations_url: str = ""
    dates_url: str = ""
    relations_url: str = ""


@dataclass(frozen=True)
class LocationIndex:
    id: int
    locations: List[str] = field(default_factory=list)
    dates_url: str = ""


@dataclass(frozen=True)
class DatesIndex:
    id: int
    dates: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Relation:
    id: int
    dates_locations: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class DataBundle:
    """The four upstream collections from one fetch cycle."""
    artists: List[Artist] = field(default_factory=list)
    locations: List[LocationIndex] = field(default_factory=list)
    dates: List[DatesIndex] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)


@dataclass(frozen=True)
class ArtistWithMeta:
    artist: Artist
    location_list: List[str] = field(default_factory=list)
    date_list: List[str] = field(default_factory=list)
    dates_locations: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def id(self) -> int:
        return self.artist.id

    @property
    def name(self) -> str:
        return self.artist.name


@dataclass(frozen=True)
class LocationName:
    city: str
    country: str
    raw: str


@dataclass(frozen=True)
class Event:
    artist_id: int
    artist_name: str
    city: str
    country: str
    date: datetime
    date_iso: str = ""


@dataclass(frozen=True)
class SpotifyImage:
    url: str
    height: int = 0
    width: int = 0


@dataclass(frozen=True)
class SpotifyArtist:
    id: str
    name: str
    genres: List[str] = field(default_factory=list)
    popularity: int = 0
    images: List[SpotifyImage] = field(default_factory=list)
    followers: int = 0


@dataclass(frozen=True)
class UnifiedArtist:
    id: str
    name: str
    image_url: str
    source: str  # "groupie" or "spotify"
    creation_date: Optional[int] = None
    first_album: Optional[str] = None
    members: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    popularity: Optional[int] = None
