"""
Notes Database

SQLite structured store for guilds, channels, logs and file records.
Only the queries used by the storage and archival core live here.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional
import logging

from .models import Channel, FileRecord, Guild, LogEntry, db_timestamp


DEFAULT_GUILDS = (
    ("Work", ("Coding", "Ideas", "Meetings")),
    ("Personal", ("Thoughts", "Ideas", "Journal")),
)


class NotesDatabase:
    """
    SQLite-backed structured store.

    One connection is shared by all request threads; every statement runs
    under a re-entrant lock. Writes commit immediately unless they run inside
    ``transaction()``.
    """

    def __init__(self, db_path: str = "data/notes.db"):
        """
        Initialize notes database.

        Args:
            db_path: Path to SQLite database (":memory:" for a private in-memory db)
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._tx_depth = 0

        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

        self.logger.info(f"Database initialized at {self.db_path}")

    def _create_tables(self):
        """Create database tables."""
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS guilds (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS channels (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (guild_id) REFERENCES guilds (id) ON DELETE CASCADE,
                UNIQUE(guild_id, name)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                channel_id INTEGER NOT NULL,
                content TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (channel_id) REFERENCES channels (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS files (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                log_id INTEGER NOT NULL,
                filename TEXT NOT NULL,
                original_name TEXT NOT NULL,
                mime_type TEXT NOT NULL,
                size INTEGER NOT NULL,
                path TEXT NOT NULL,
                hash TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (log_id) REFERENCES logs (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_channels_guild_id ON channels(guild_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_logs_channel_id ON logs(channel_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_logs_created_at ON logs(created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_files_log_id ON files(log_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_files_hash ON files(hash)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_files_path ON files(path)")

        self.conn.commit()

    def close(self):
        """Close the connection."""
        with self._lock:
            self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Group writes into one transaction.

        Commits when the block exits normally, rolls back on exception.
        Nested blocks join the outer transaction.
        """
        with self._lock:
            self._tx_depth += 1
            try:
                yield
            except BaseException:
                self._tx_depth -= 1
                if not self._tx_depth:
                    self.conn.rollback()
                raise
            else:
                self._tx_depth -= 1
                if not self._tx_depth:
                    self.conn.commit()

    def _write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            cursor = self.conn.execute(sql, params)
            if not self._tx_depth:
                self.conn.commit()
            return cursor

    def _fetch_one(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetch_all(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # Guilds

    def create_guild(self, name: str, created_at: Optional[datetime] = None,
                     updated_at: Optional[datetime] = None) -> Guild:
        cursor = self._write(
            """
            INSERT INTO guilds (name, created_at, updated_at)
            VALUES (?, COALESCE(?, CURRENT_TIMESTAMP), COALESCE(?, CURRENT_TIMESTAMP))
            """,
            (name, db_timestamp(created_at), db_timestamp(updated_at or created_at))
        )
        return self.get_guild(cursor.lastrowid)

    def get_guild(self, guild_id: int) -> Optional[Guild]:
        row = self._fetch_one("SELECT * FROM guilds WHERE id = ?", (guild_id,))
        return Guild.from_row(row) if row else None

    def find_guild_by_name(self, name: str) -> Optional[Guild]:
        row = self._fetch_one("SELECT * FROM guilds WHERE name = ?", (name,))
        return Guild.from_row(row) if row else None

    def list_guilds(self) -> List[Guild]:
        return [Guild.from_row(row) for row in self._fetch_all("SELECT * FROM guilds ORDER BY id")]

    # Channels

    def create_channel(self, guild_id: int, name: str, created_at: Optional[datetime] = None,
                       updated_at: Optional[datetime] = None) -> Channel:
        cursor = self._write(
            """
            INSERT INTO channels (guild_id, name, created_at, updated_at)
            VALUES (?, ?, COALESCE(?, CURRENT_TIMESTAMP), COALESCE(?, CURRENT_TIMESTAMP))
            """,
            (guild_id, name, db_timestamp(created_at), db_timestamp(updated_at or created_at))
        )
        return self.get_channel(cursor.lastrowid)

    def get_channel(self, channel_id: int) -> Optional[Channel]:
        row = self._fetch_one("SELECT * FROM channels WHERE id = ?", (channel_id,))
        return Channel.from_row(row) if row else None

    def find_channel(self, guild_id: int, name: str) -> Optional[Channel]:
        row = self._fetch_one(
            "SELECT * FROM channels WHERE name = ? AND guild_id = ?", (name, guild_id)
        )
        return Channel.from_row(row) if row else None

    def list_channels(self) -> List[Channel]:
        return [Channel.from_row(row) for row in self._fetch_all("SELECT * FROM channels ORDER BY id")]

    # Logs

    def create_log(self, channel_id: int, content: str, created_at: Optional[datetime] = None,
                   updated_at: Optional[datetime] = None) -> LogEntry:
        cursor = self._write(
            """
            INSERT INTO logs (channel_id, content, created_at, updated_at)
            VALUES (?, ?, COALESCE(?, CURRENT_TIMESTAMP), COALESCE(?, CURRENT_TIMESTAMP))
            """,
            (channel_id, content, db_timestamp(created_at), db_timestamp(updated_at or created_at))
        )
        return self.get_log(cursor.lastrowid)

    def get_log(self, log_id: int) -> Optional[LogEntry]:
        row = self._fetch_one("SELECT * FROM logs WHERE id = ?", (log_id,))
        return LogEntry.from_row(row) if row else None

    def log_exists(self, log_id: int) -> bool:
        return self._fetch_one("SELECT 1 FROM logs WHERE id = ?", (log_id,)) is not None

    def find_log(self, channel_id: int, content: str) -> Optional[LogEntry]:
        row = self._fetch_one(
            "SELECT * FROM logs WHERE content = ? AND channel_id = ? ORDER BY id LIMIT 1",
            (content, channel_id)
        )
        return LogEntry.from_row(row) if row else None

    def latest_log_in_channel(self, channel_id: int) -> Optional[LogEntry]:
        """Most recently created log of a channel (ties broken by id)."""
        row = self._fetch_one(
            "SELECT * FROM logs WHERE channel_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (channel_id,)
        )
        return LogEntry.from_row(row) if row else None

    def list_logs(self) -> List[LogEntry]:
        return [LogEntry.from_row(row) for row in self._fetch_all("SELECT * FROM logs ORDER BY id")]

    # Files

    def insert_file(self, record: FileRecord) -> FileRecord:
        """Insert a file record and return it with its id and timestamp."""
        cursor = self._write(
            """
            INSERT INTO files (log_id, filename, original_name, mime_type, size, path, hash, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
            """,
            (
                record.log_id, record.filename, record.original_name, record.mime_type,
                record.size, record.storage_key, record.hash, db_timestamp(record.created_at)
            )
        )
        return self.get_file(cursor.lastrowid)

    def get_file(self, file_id: int) -> Optional[FileRecord]:
        row = self._fetch_one("SELECT * FROM files WHERE id = ?", (file_id,))
        return FileRecord.from_row(row) if row else None

    def delete_file(self, file_id: int) -> bool:
        cursor = self._write("DELETE FROM files WHERE id = ?", (file_id,))
        return cursor.rowcount > 0

    def count_storage_references(self, storage_key: str) -> int:
        """Number of file records pointing at a storage key."""
        row = self._fetch_one("SELECT COUNT(*) FROM files WHERE path = ?", (storage_key,))
        return row[0]

    def file_hash_exists(self, digest: str) -> bool:
        return self._fetch_one("SELECT 1 FROM files WHERE hash = ? LIMIT 1", (digest,)) is not None

    def list_files(self, log_id: Optional[int] = None) -> List[FileRecord]:
        if log_id is None:
            rows = self._fetch_all("SELECT * FROM files ORDER BY id")
        else:
            rows = self._fetch_all("SELECT * FROM files WHERE log_id = ? ORDER BY id", (log_id,))
        return [FileRecord.from_row(row) for row in rows]

    def seed_defaults(self) -> bool:
        """
        Insert the default guilds and channels into an empty database.

        Returns:
            True if data was inserted, False if guilds already existed
        """
        with self.transaction():
            if self._fetch_one("SELECT 1 FROM guilds LIMIT 1") is not None:
                return False
            for guild_name, channel_names in DEFAULT_GUILDS:
                guild = self.create_guild(guild_name)
                for channel_name in channel_names:
                    self.create_channel(guild.id, channel_name)
        return True
