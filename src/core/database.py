"""
Database Management Module

Provides SQLite operation encapsulation for the local catalog and the
persisted player state.
"""

import os
import sqlite3
import re
import sys
import time
from typing import Optional, List, Dict, Any
from pathlib import Path
import threading
from contextlib import contextmanager
import logging

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Database Manager

    Provides thread-safe SQLite operation encapsulation. One instance per
    application container.

    Example:
        db = DatabaseManager("player.db")

        # Execute query
        rows = db.fetch_all("SELECT * FROM tracks WHERE album_id = ?", (album_id,))

        # Use transaction
        with db.transaction():
            db.execute("INSERT INTO tracks ...")
    """

    @staticmethod
    def _get_default_db_path() -> str:
        """Get the default database path in the user data directory"""
        if sys.platform == "win32":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        elif sys.platform == "darwin":
            base = Path.home() / "Library" / "Application Support"
        else:
            base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

        db_dir = base / "encore-player"
        db_dir.mkdir(parents=True, exist_ok=True)
        return str(db_dir / "player.db")

    def __init__(self, db_path: Optional[str] = None):
        self._db_path = db_path or self._get_default_db_path()
        self._local = threading.local()
        self._write_lock = threading.RLock()
        # ":memory:" databases are per-connection, so share one connection across threads
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._init_schema()

    @property
    def path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path, timeout=30.0, check_same_thread=self._db_path != ":memory:"
        )
        conn.row_factory = sqlite3.Row
        if self._db_path != ":memory:":
            # Enable WAL mode for better concurrency
            with self._write_lock:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @property
    def _conn(self) -> sqlite3.Connection:
        """Get thread-local connection"""
        if self._db_path == ":memory:":
            if self._shared_conn is None:
                self._shared_conn = self._connect()
            return self._shared_conn
        if getattr(self._local, 'connection', None) is None:
            self._local.connection = self._connect()
            self._local.in_transaction = False
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Transaction context manager

        Write operations within this context are not automatically committed,
        but are committed or rolled back collectively when the context ends.
        """
        with self._write_lock:
            conn = self._conn
            self._local.in_transaction = True
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                self._local.in_transaction = False

    @staticmethod
    def _strip_leading_sql_comments(sql: str) -> str:
        s = sql.lstrip()
        while True:
            if s.startswith("--"):
                newline_index = s.find("\n")
                if newline_index == -1:
                    return ""
                s = s[newline_index + 1 :].lstrip()
                continue
            if s.startswith("/*"):
                end_index = s.find("*/")
                if end_index == -1:
                    return ""
                s = s[end_index + 2 :].lstrip()
                continue
            return s

    @classmethod
    def _is_write_sql(cls, sql: str) -> bool:
        write_keywords = ("INSERT", "UPDATE", "DELETE", "REPLACE", "CREATE", "DROP", "ALTER")

        stripped = cls._strip_leading_sql_comments(sql)
        sql_upper = stripped.upper()
        if not sql_upper:
            return False

        match = re.match(r"[A-Z]+", sql_upper)
        first_keyword = match.group(0) if match else ""
        return first_keyword in write_keywords

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute SQL statement

        Write operations are committed immediately unless they run inside a
        transaction() context. "database is locked" errors are retried with a
        short linear backoff.
        """
        max_retries = 5
        retry_delay = 0.1

        is_write = self._is_write_sql(sql)
        in_transaction = getattr(self._local, 'in_transaction', False)

        for i in range(max_retries):
            try:
                if is_write:
                    with self._write_lock:
                        cursor = self._conn.execute(sql, params)
                        if not in_transaction:
                            self._conn.commit()
                else:
                    cursor = self._conn.execute(sql, params)
                return cursor
            except sqlite3.OperationalError as e:
                if "locked" in str(e).lower() and i < max_retries - 1:
                    time.sleep(retry_delay * (i + 1))
                    continue
                raise

    def execute_many(self, sql: str, params_list: List[tuple]) -> None:
        """Bulk execute SQL statements"""
        in_transaction = getattr(self._local, "in_transaction", False)
        with self._write_lock:
            self._conn.executemany(sql, params_list)
            if not in_transaction:
                self._conn.commit()

    def commit(self) -> None:
        """Commit current thread's transaction"""
        self._conn.commit()

    def fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        """Fetch single record"""
        cursor = self.execute(sql, params)
        row = cursor.fetchone()
        return dict(row) if row else None

    def fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Fetch all records"""
        cursor = self.execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def insert(self, table: str, data: Dict[str, Any], replace: bool = False) -> int:
        """
        Insert record

        Args:
            table: Table name
            data: Dictionary of column names and values
            replace: Use INSERT OR REPLACE

        Returns:
            int: rowid of the inserted record
        """
        columns = ', '.join(data.keys())
        placeholders = ', '.join(['?' for _ in data])
        verb = "INSERT OR REPLACE" if replace else "INSERT"
        sql = f"{verb} INTO {table} ({columns}) VALUES ({placeholders})"

        cursor = self.execute(sql, tuple(data.values()))
        return cursor.lastrowid

    def delete(self, table: str, where: str, where_params: tuple) -> int:
        """
        Delete record

        Returns:
            int: Number of affected rows
        """
        sql = f"DELETE FROM {table} WHERE {where}"
        cursor = self.execute(sql, where_params)
        return cursor.rowcount

    def _init_schema(self) -> None:
        """Initialize database Schema"""
        from core.schema import get_all_schema_statements

        for statement in get_all_schema_statements():
            self.execute(statement.strip())
        self._conn.commit()

    def close(self) -> None:
        """Close current thread's connection"""
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None
        if getattr(self._local, 'connection', None) is not None:
            self._local.connection.close()
            self._local.connection = None
