"""
Merge Importer

Replays an export archive into a live dataset without creating duplicates.

Natural keys used to detect existing rows:
    guilds   : name
    channels : (name, guild)
    logs     : (content, channel)
    files    : content hash (across all logs)

IDs in an archive are not stable across databases, so every imported or
matched row records archive id -> live id and child rows resolve their
parent through that mapping. Each table is imported in its own transaction;
the archive as a whole is not atomic, and re-running an import is safe.
"""

import io
import os
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging

from ..database import NotesDatabase
from ..errors import ArchiveFormatError, StorageError
from ..models import Channel, FileRecord, Guild, LogEntry, RecordError
from ..storage.ingest import content_hash, storage_key_for
from ..storage.storage_interface import ContentStore
from .codec import TABLES, ArchiveReader, UploadEntry


@dataclass
class TableResult:
    """Outcome of importing one table."""
    inserted: int = 0
    skipped: int = 0
    invalid: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"inserted": self.inserted, "skipped": self.skipped, "invalid": self.invalid}


@dataclass
class ImportReport:
    """Outcome of an archive import."""
    tables: Dict[str, TableResult] = field(default_factory=dict)
    failed_tables: Dict[str, str] = field(default_factory=dict)
    files_stored: int = 0
    files_existing: int = 0
    files_failed: Dict[str, str] = field(default_factory=dict)

    @property
    def inserted(self) -> int:
        return sum(result.inserted for result in self.tables.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": {name: result.to_dict() for name, result in self.tables.items()},
            "failed_tables": dict(self.failed_tables),
            "files_stored": self.files_stored,
            "files_existing": self.files_existing,
            "files_failed": dict(self.files_failed),
        }


class MergeImporter:
    """
    Merges archive rows and files into the database and a local content store.

    Features:
    - Skip-if-exists policy per table
    - Parent id remapping across databases
    - Per-table transactions, per-row skip-and-continue
    - File bytes materialized under their content-addressed key
    """

    def __init__(self, db: NotesDatabase, store: ContentStore):
        """
        Initialize merge importer.

        Args:
            db: Structured store to merge into
            store: Content store that receives imported file bytes
        """
        self.db = db
        self.store = store
        self.logger = logging.getLogger(__name__)

        self._id_maps: Dict[str, Optional[Dict[int, int]]] = {}

    def run(self, reader: ArchiveReader) -> ImportReport:
        """
        Import everything in an archive.

        Args:
            reader: Open archive

        Returns:
            ImportReport
        """
        report = ImportReport()
        self._id_maps = {table: None for table in TABLES}

        importers: Dict[str, Callable[[List[Dict[str, Any]], TableResult], None]] = {
            "guilds": self._import_guilds,
            "channels": self._import_channels,
            "logs": self._import_logs,
            "files": self._import_files,
        }

        for table in TABLES:
            if not reader.has_table(table):
                continue
            try:
                rows = reader.load_table(table)
            except ArchiveFormatError as e:
                self.logger.error(f"Skipping table {table}: {e}")
                report.failed_tables[table] = str(e)
                continue

            result = TableResult()
            self._id_maps[table] = {}
            with self.db.transaction():
                importers[table](rows, result)
            report.tables[table] = result
            self.logger.info(
                f"Imported {table}: {result.inserted} inserted, "
                f"{result.skipped} skipped, {result.invalid} invalid"
            )

        for name in reader.table_names():
            if name not in TABLES:
                self.logger.debug(f"Ignoring unknown table entry: {name}")

        self._import_uploads(reader, report)
        return report

    def _resolve(self, table: str, archive_id: Optional[int], exists: Callable[[int], Any]) -> Optional[int]:
        """
        Map a parent id from the archive to a live id.

        When the parent table was not part of the archive the id is used as
        is, provided such a row exists.
        """
        if archive_id is None:
            return None
        mapping = self._id_maps.get(table)
        if mapping is not None:
            return mapping.get(archive_id)
        return archive_id if exists(archive_id) else None

    def _remember(self, table: str, archive_id: Optional[int], live_id: int):
        if archive_id is not None:
            self._id_maps[table][archive_id] = live_id

    def _decode(self, factory: Callable[[Mapping[str, Any]], Any], row: Mapping[str, Any],
                table: str, result: TableResult):
        try:
            return factory(row)
        except RecordError as e:
            self.logger.warning(f"Skipping invalid {table} row: {e}")
            result.invalid += 1
            return None

    def _import_guilds(self, rows: List[Dict[str, Any]], result: TableResult):
        for row in rows:
            guild = self._decode(Guild.from_archive, row, "guilds", result)
            if guild is None:
                continue

            existing = self.db.find_guild_by_name(guild.name)
            if existing:
                self._remember("guilds", guild.id, existing.id)
                result.skipped += 1
                continue

            try:
                created = self.db.create_guild(guild.name, guild.created_at, guild.updated_at)
            except sqlite3.Error as e:
                self.logger.warning(f"Failed to insert guild {guild.name!r}: {e}")
                result.invalid += 1
                continue
            self._remember("guilds", guild.id, created.id)
            result.inserted += 1

    def _import_channels(self, rows: List[Dict[str, Any]], result: TableResult):
        for row in rows:
            channel = self._decode(Channel.from_archive, row, "channels", result)
            if channel is None:
                continue

            guild_id = self._resolve("guilds", channel.guild_id, self.db.get_guild)
            if guild_id is None:
                self.logger.warning(f"Skipping channel {channel.name!r}: unknown guild {channel.guild_id}")
                result.invalid += 1
                continue

            existing = self.db.find_channel(guild_id, channel.name)
            if existing:
                self._remember("channels", channel.id, existing.id)
                result.skipped += 1
                continue

            try:
                created = self.db.create_channel(guild_id, channel.name, channel.created_at, channel.updated_at)
            except sqlite3.Error as e:
                self.logger.warning(f"Failed to insert channel {channel.name!r}: {e}")
                result.invalid += 1
                continue
            self._remember("channels", channel.id, created.id)
            result.inserted += 1

    def _import_logs(self, rows: List[Dict[str, Any]], result: TableResult):
        for row in rows:
            log = self._decode(LogEntry.from_archive, row, "logs", result)
            if log is None:
                continue

            channel_id = self._resolve("channels", log.channel_id, self.db.get_channel)
            if channel_id is None:
                self.logger.warning(f"Skipping log {log.id}: unknown channel {log.channel_id}")
                result.invalid += 1
                continue

            existing = self.db.find_log(channel_id, log.content)
            if existing:
                self._remember("logs", log.id, existing.id)
                result.skipped += 1
                continue

            try:
                created = self.db.create_log(channel_id, log.content, log.created_at, log.updated_at)
            except sqlite3.Error as e:
                self.logger.warning(f"Failed to insert log {log.id}: {e}")
                result.invalid += 1
                continue
            self._remember("logs", log.id, created.id)
            result.inserted += 1

    def _import_files(self, rows: List[Dict[str, Any]], result: TableResult):
        for row in rows:
            record = self._decode(FileRecord.from_archive, row, "files", result)
            if record is None:
                continue

            if self.db.file_hash_exists(record.hash):
                result.skipped += 1
                continue

            if record.log_id is not None:
                log_id = self._resolve("logs", record.log_id, self.db.get_log)
            else:
                log_id = self._fallback_log(record.channel_id)

            if log_id is None:
                self.logger.warning(f"Skipping file {record.original_name!r}: no log to attach to")
                result.invalid += 1
                continue

            record.id = None
            record.log_id = log_id
            try:
                self.db.insert_file(record)
            except sqlite3.Error as e:
                self.logger.warning(f"Failed to insert file {record.original_name!r}: {e}")
                result.invalid += 1
                continue
            result.inserted += 1

    def _fallback_log(self, archive_channel_id: Optional[int]) -> Optional[int]:
        """Latest log of the referenced channel, for file rows without a log id."""
        channel_id = self._resolve("channels", archive_channel_id, self.db.get_channel)
        if channel_id is None:
            return None
        latest = self.db.latest_log_in_channel(channel_id)
        return latest.id if latest else None

    def _import_uploads(self, reader: ArchiveReader, report: ImportReport):
        try:
            manifest = reader.manifest
        except ArchiveFormatError as e:
            self.logger.warning(f"Ignoring manifest, deriving keys from content: {e}")
            manifest = {}

        for entry in reader.iter_uploads(manifest):
            try:
                stored = self._import_upload(reader, entry)
            except (ArchiveFormatError, StorageError, ValueError) as e:
                self.logger.warning(f"Skipping archived file {entry.name}: {e}")
                report.files_failed[entry.name] = str(e)
                continue

            if stored:
                report.files_stored += 1
            else:
                report.files_existing += 1

    def _import_upload(self, reader: ArchiveReader, entry: UploadEntry) -> bool:
        """
        Write one archived file into the content store.

        Returns:
            True if written, False if the key was already present
        """
        data = reader.read(entry)
        digest = content_hash(data)

        if entry.storage_key:
            if entry.hash and entry.hash != digest:
                raise ArchiveFormatError("content does not match manifest hash")
            key = entry.storage_key
            if key != digest + os.path.splitext(key)[1]:
                raise ArchiveFormatError(f"storage key {key} does not match content")
        else:
            key = storage_key_for(digest, entry.name)

        if self.store.exists(key):
            return False
        self.store.put(key, io.BytesIO(data))
        return True
