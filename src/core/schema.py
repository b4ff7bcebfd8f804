"""
Database Schema Definitions

Contains all table structure and index definitions.
"""

from __future__ import annotations

# Table structure SQL statements
TABLE_STATEMENTS = [
    # Tracks table (local catalog)
    """
    CREATE TABLE IF NOT EXISTS tracks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        duration_ms INTEGER DEFAULT 0,
        album_id TEXT,
        album_name TEXT DEFAULT '',
        year INTEGER,
        groupings_json TEXT DEFAULT '[]',
        stream_url TEXT DEFAULT '',
        play_count INTEGER DEFAULT 0,
        last_played TIMESTAMP,
        date_created TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,

    # Track-artist relation table (ordered)
    """
    CREATE TABLE IF NOT EXISTS track_artists (
        track_id TEXT NOT NULL,
        artist_id TEXT NOT NULL,
        artist_name TEXT DEFAULT '',
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (track_id, artist_id),
        FOREIGN KEY (track_id) REFERENCES tracks(id) ON DELETE CASCADE
    )
    """,

    # Registered genres
    """
    CREATE TABLE IF NOT EXISTS genres (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE COLLATE NOCASE
    )
    """,

    # Track-genre labels; a label without a genres row is a name-only tag
    """
    CREATE TABLE IF NOT EXISTS track_genres (
        track_id TEXT NOT NULL,
        genre_name TEXT NOT NULL COLLATE NOCASE,
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (track_id, genre_name),
        FOREIGN KEY (track_id) REFERENCES tracks(id) ON DELETE CASCADE
    )
    """,

    # App state (key-value storage)
    """
    CREATE TABLE IF NOT EXISTS app_state (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

# Index SQL statements
INDEX_STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_tracks_album ON tracks(album_id)",
    "CREATE INDEX IF NOT EXISTS idx_tracks_year ON tracks(year)",
    "CREATE INDEX IF NOT EXISTS idx_tracks_date_created ON tracks(date_created)",
    "CREATE INDEX IF NOT EXISTS idx_track_artists_artist ON track_artists(artist_id)",
    "CREATE INDEX IF NOT EXISTS idx_track_genres_name ON track_genres(genre_name)",
]


def get_all_schema_statements() -> list:
    """Get all schema statements (tables + indexes)"""
    return TABLE_STATEMENTS + INDEX_STATEMENTS
