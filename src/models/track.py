"""
Track data model
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, List


@dataclass(frozen=True)
class ArtistRef:
    """Reference to an artist as reported by the catalog"""
    id: str
    name: str = ""


@dataclass(frozen=True)
class Track:
    """
    Track data model

    Immutable reference data owned by the catalog. The queue and the
    recommendation pipeline only ever read these fields.
    """

    id: str
    name: str = ""
    duration_ms: int = 0

    # Association information
    artists: Tuple[ArtistRef, ...] = ()
    album_id: Optional[str] = None
    album_name: str = ""

    # Track information
    genres: Tuple[str, ...] = ()
    year: Optional[int] = None

    # Custom grouping labels (e.g. "mood:calm", "decade:80s")
    groupings: Tuple[str, ...] = ()

    # ISO timestamp of when the catalog first saw the track
    date_created: str = ""

    @property
    def artist_ids(self) -> List[str]:
        return [a.id for a in self.artists if a.id]

    @property
    def artist_name(self) -> str:
        """Comma separated artist names"""
        return ", ".join(a.name for a in self.artists if a.name)

    @property
    def genre_keys(self) -> frozenset:
        """Lower-cased genre names, used for case-insensitive matching"""
        return frozenset(g.strip().lower() for g in self.genres if g and g.strip())

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000.0

    @property
    def duration_str(self) -> str:
        """Formatted duration string (mm:ss)"""
        total_seconds = self.duration_ms // 1000
        minutes = total_seconds // 60
        seconds = total_seconds % 60
        return f"{minutes}:{seconds:02d}"

    @property
    def display_name(self) -> str:
        """Display name"""
        if self.artist_name:
            return f"{self.artist_name} - {self.name}"
        return self.name

    def shares_genre_with(self, other: "Track") -> bool:
        """Whether the two tracks have at least one genre label in common"""
        return bool(self.genre_keys & other.genre_keys)

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'id': self.id,
            'name': self.name,
            'duration_ms': self.duration_ms,
            'artists': [{'id': a.id, 'name': a.name} for a in self.artists],
            'album_id': self.album_id,
            'album_name': self.album_name,
            'genres': list(self.genres),
            'year': self.year,
            'groupings': list(self.groupings),
            'date_created': self.date_created,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Track':
        """Create Track object from dictionary"""
        artists = []
        for item in data.get('artists') or []:
            if isinstance(item, dict) and item.get('id'):
                artists.append(ArtistRef(id=str(item['id']), name=item.get('name', '') or ''))

        year = data.get('year')
        try:
            year = int(year) if year is not None else None
        except (ValueError, TypeError):
            year = None

        return cls(
            id=str(data['id']),
            name=data.get('name', '') or '',
            duration_ms=int(data.get('duration_ms') or 0),
            artists=tuple(artists),
            album_id=data.get('album_id'),
            album_name=data.get('album_name', '') or '',
            genres=tuple(g for g in (data.get('genres') or []) if isinstance(g, str)),
            year=year,
            groupings=tuple(g for g in (data.get('groupings') or []) if isinstance(g, str)),
            date_created=data.get('date_created', '') or '',
        )
