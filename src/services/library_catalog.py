"""
Library Catalog Module

SQLite-backed implementation of the catalog port. Serves offline playback and
tests; a networked client implements the same ICatalog methods.
"""

from typing import Dict, Iterable, List, Optional
import json
import logging
import sqlite3
import threading

from core.database import DatabaseManager
from core.event_bus import EventBus, EventType
from core.ports.catalog import (
    CatalogError,
    CatalogResyncError,
    Genre,
    SortOrder,
    TrackQuery,
)
from models.track import ArtistRef, Track

logger = logging.getLogger(__name__)

_ORDER_BY = {
    SortOrder.RANDOM: "RANDOM()",
    SortOrder.DATE_CREATED_DESC: "t.date_created DESC, t.rowid DESC",
    SortOrder.NAME: "t.name COLLATE NOCASE, t.id",
}


class LibraryCatalog:
    """
    Library Catalog

    Example:
        catalog = LibraryCatalog(db, event_bus)
        catalog.register_genre("g-rock", "Rock")
        catalog.add_track(track, stream_url="/music/song.flac")

        rock = catalog.search_tracks(TrackQuery(genre_ids=("g-rock",), limit=20))
    """

    def __init__(self, db: DatabaseManager, event_bus: Optional[EventBus] = None):
        self._db = db
        self._event_bus = event_bus
        self._resync_lock = threading.Lock()
        self._resyncing = False

    # ===== Catalog port =====

    def get_genres(self) -> List[Genre]:
        rows = self._fetch_all("SELECT id, name FROM genres ORDER BY name")
        return [Genre(id=row["id"], name=row["name"]) for row in rows]

    def search_tracks(self, query: TrackQuery) -> List[Track]:
        """
        Search tracks

        Raises:
            CatalogResyncError: A resync is in progress
            CatalogError: The database query failed
        """
        if self.is_resyncing:
            raise CatalogResyncError("Library resync in progress")

        where_parts: List[str] = []
        params: List[object] = []

        if query.genre_ids:
            placeholders = ", ".join("?" for _ in query.genre_ids)
            where_parts.append(
                f"""t.id IN (SELECT tg.track_id FROM track_genres tg
                             JOIN genres g ON g.name = tg.genre_name
                             WHERE g.id IN ({placeholders}))"""
            )
            params.extend(query.genre_ids)

        if query.genre_names:
            placeholders = ", ".join("?" for _ in query.genre_names)
            where_parts.append(
                f"t.id IN (SELECT track_id FROM track_genres WHERE genre_name IN ({placeholders}))"
            )
            params.extend(query.genre_names)

        if query.artist_id:
            where_parts.append("t.id IN (SELECT track_id FROM track_artists WHERE artist_id = ?)")
            params.append(query.artist_id)

        if query.album_id:
            where_parts.append("t.album_id = ?")
            params.append(query.album_id)

        if query.min_year is not None:
            where_parts.append("t.year >= ?")
            params.append(query.min_year)

        if query.max_year is not None:
            where_parts.append("t.year <= ?")
            params.append(query.max_year)

        where_sql = f"WHERE {' AND '.join(where_parts)}" if where_parts else ""
        sql = f"SELECT t.* FROM tracks t {where_sql} ORDER BY {_ORDER_BY[query.sort]} LIMIT ?"
        params.append(max(0, query.limit))

        rows = self._fetch_all(sql, tuple(params))
        return self._hydrate(rows)

    def get_track(self, track_id: str) -> Optional[Track]:
        rows = self._fetch_all("SELECT * FROM tracks WHERE id = ?", (track_id,))
        tracks = self._hydrate(rows)
        return tracks[0] if tracks else None

    def get_stream_url(self, track_id: str) -> str:
        rows = self._fetch_all("SELECT stream_url FROM tracks WHERE id = ?", (track_id,))
        if not rows:
            raise CatalogError(f"Unknown track: {track_id}")
        return rows[0]["stream_url"] or track_id

    def mark_played(self, track_id: str) -> None:
        try:
            self._db.execute(
                """UPDATE tracks SET play_count = play_count + 1,
                                     last_played = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                (track_id,),
            )
        except sqlite3.Error as e:
            raise CatalogError(f"Failed to record play of {track_id}: {e}") from e

    # ===== Library maintenance =====

    def register_genre(self, genre_id: str, name: str) -> None:
        """Register a catalog-backed genre (an unregistered name stays a plain tag)"""
        self._db.insert("genres", {"id": genre_id, "name": name}, replace=True)

    def add_track(self, track: Track, stream_url: str = "") -> None:
        """Insert or replace a track together with its artists and genre labels"""
        data = {
            "id": track.id,
            "name": track.name,
            "duration_ms": track.duration_ms,
            "album_id": track.album_id,
            "album_name": track.album_name,
            "year": track.year,
            "groupings_json": json.dumps(list(track.groupings), ensure_ascii=False),
            "stream_url": stream_url,
        }
        if track.date_created:
            data["date_created"] = track.date_created

        with self._db.transaction():
            self._db.delete("track_artists", "track_id = ?", (track.id,))
            self._db.delete("track_genres", "track_id = ?", (track.id,))
            self._db.insert("tracks", data, replace=True)
            for position, artist in enumerate(track.artists):
                self._db.insert("track_artists", {
                    "track_id": track.id,
                    "artist_id": artist.id,
                    "artist_name": artist.name,
                    "position": position,
                }, replace=True)
            for position, genre in enumerate(track.genres):
                self._db.insert("track_genres", {
                    "track_id": track.id,
                    "genre_name": genre,
                    "position": position,
                }, replace=True)

    def import_tracks(self, items: Iterable[dict]) -> int:
        """
        Bulk import from dictionaries in Track.to_dict() form

        An optional "stream_url" key is stored alongside each track.

        Returns:
            int: Number of tracks imported
        """
        count = 0
        for item in items:
            try:
                track = Track.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping invalid track entry: %s", e)
                continue
            self.add_track(track, stream_url=item.get("stream_url", "") or "")
            count += 1
        logger.info("Imported %d tracks into the library", count)
        return count

    def remove_track(self, track_id: str) -> bool:
        return self._db.delete("tracks", "id = ?", (track_id,)) > 0

    def track_count(self) -> int:
        rows = self._fetch_all("SELECT COUNT(*) AS c FROM tracks")
        return int(rows[0]["c"]) if rows else 0

    def duration_for_url(self, url: str) -> float:
        """Duration in seconds of the track streamed from ``url`` (0 if unknown)"""
        rows = self._fetch_all(
            "SELECT duration_ms FROM tracks WHERE stream_url = ? OR id = ? LIMIT 1", (url, url)
        )
        return (rows[0]["duration_ms"] or 0) / 1000.0 if rows else 0.0

    def play_count(self, track_id: str) -> int:
        rows = self._fetch_all("SELECT play_count FROM tracks WHERE id = ?", (track_id,))
        return int(rows[0]["play_count"]) if rows else 0

    # ===== Resync =====

    @property
    def is_resyncing(self) -> bool:
        with self._resync_lock:
            return self._resyncing

    def begin_resync(self) -> None:
        """Mark the library as rebuilding; searches fail with CatalogResyncError"""
        with self._resync_lock:
            self._resyncing = True
        logger.info("Library resync started")
        if self._event_bus:
            self._event_bus.publish_sync(EventType.LIBRARY_CHANGED)

    def finish_resync(self) -> None:
        with self._resync_lock:
            self._resyncing = False
        logger.info("Library resync finished")
        if self._event_bus:
            self._event_bus.publish_sync(EventType.LIBRARY_SYNC_COMPLETED)

    # ===== Internals =====

    def _fetch_all(self, sql: str, params: tuple = ()) -> List[Dict]:
        try:
            return self._db.fetch_all(sql, params)
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog query failed: {e}") from e

    def _hydrate(self, rows: List[Dict]) -> List[Track]:
        """Attach artists and genres to track rows, preserving row order"""
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        placeholders = ", ".join("?" for _ in ids)

        artists: Dict[str, List[ArtistRef]] = {}
        for row in self._fetch_all(
            f"""SELECT track_id, artist_id, artist_name FROM track_artists
                WHERE track_id IN ({placeholders}) ORDER BY track_id, position""",
            tuple(ids),
        ):
            artists.setdefault(row["track_id"], []).append(
                ArtistRef(id=row["artist_id"], name=row["artist_name"] or "")
            )

        genres: Dict[str, List[str]] = {}
        for row in self._fetch_all(
            f"""SELECT track_id, genre_name FROM track_genres
                WHERE track_id IN ({placeholders}) ORDER BY track_id, position""",
            tuple(ids),
        ):
            genres.setdefault(row["track_id"], []).append(row["genre_name"])

        tracks = []
        for row in rows:
            try:
                groupings = json.loads(row.get("groupings_json") or "[]")
            except ValueError:
                groupings = []
            tracks.append(Track(
                id=row["id"],
                name=row.get("name") or "",
                duration_ms=int(row.get("duration_ms") or 0),
                artists=tuple(artists.get(row["id"], [])),
                album_id=row.get("album_id"),
                album_name=row.get("album_name") or "",
                genres=tuple(genres.get(row["id"], [])),
                year=row.get("year"),
                groupings=tuple(g for g in groupings if isinstance(g, str)),
                date_created=str(row.get("date_created") or ""),
            ))
        return tracks
