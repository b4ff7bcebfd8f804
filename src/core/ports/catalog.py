# -*- coding: utf-8 -*-
"""
Catalog Port Interface

Defines the interface to the media catalog (the remote library server or a
local database). The recommendation pipeline and the playback controller only
talk to the catalog through this protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from models.track import Track


class CatalogError(Exception):
    """A catalog request failed"""


class CatalogResyncError(CatalogError):
    """The catalog is rebuilding its index; the request is worth retrying later"""


class SortOrder(Enum):
    """Result ordering for track searches"""
    RANDOM = "random"
    DATE_CREATED_DESC = "date_created_desc"
    NAME = "name"


@dataclass(frozen=True)
class Genre:
    """Genre as registered in the catalog"""
    id: str
    name: str


@dataclass(frozen=True)
class TrackQuery:
    """
    Track search request

    Every populated field narrows the result set; an empty query returns the
    whole catalog in the requested order.
    """
    genre_ids: Tuple[str, ...] = ()
    genre_names: Tuple[str, ...] = ()
    artist_id: Optional[str] = None
    album_id: Optional[str] = None
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    sort: SortOrder = SortOrder.RANDOM
    limit: int = 100

    def describe(self) -> str:
        parts = []
        if self.genre_ids:
            parts.append(f"genre_ids={list(self.genre_ids)}")
        if self.genre_names:
            parts.append(f"genres={list(self.genre_names)}")
        if self.artist_id:
            parts.append(f"artist={self.artist_id}")
        if self.album_id:
            parts.append(f"album={self.album_id}")
        if self.min_year is not None or self.max_year is not None:
            parts.append(f"years={self.min_year}..{self.max_year}")
        parts.append(f"sort={self.sort.value}")
        parts.append(f"limit={self.limit}")
        return " ".join(parts)


@runtime_checkable
class ICatalog(Protocol):
    """Media Catalog Interface

    Current implementations: LibraryCatalog (SQLite). A networked client
    implements the same methods against the server API.
    """

    def get_genres(self) -> List[Genre]:
        """List every genre registered in the catalog

        Raises:
            CatalogError: The request failed
        """
        ...

    def search_tracks(self, query: TrackQuery) -> List[Track]:
        """Search tracks

        Raises:
            CatalogResyncError: The catalog is mid-resync
            CatalogError: Any other failure
        """
        ...

    def get_track(self, track_id: str) -> Optional[Track]:
        """Fetch fresh metadata for one track"""
        ...

    def get_stream_url(self, track_id: str) -> str:
        """Resolve the URL (or path) the audio resource should load"""
        ...

    def mark_played(self, track_id: str) -> None:
        """Report a completed play"""
        ...
