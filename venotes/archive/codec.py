"""
Archive Codec

Serializes the whole dataset into a ZIP archive and reads it back.

Layout:
    guilds.json, channels.json, logs.json, files.json
        JSON arrays with every column of each row
    uploads/{original name}
        one entry per file record; " (n)" is added before the extension
        when two records share an original name
    manifest.json
        maps each uploads/ entry to its storage key, hash and file id
"""

import json
import os
import shutil
import zipfile
import zlib
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Set
import logging

from ..database import NotesDatabase
from ..errors import ArchiveFormatError, NotFound
from ..storage.storage_interface import ContentStore


TABLES = ("guilds", "channels", "logs", "files")
UPLOADS_PREFIX = "uploads/"
MANIFEST_NAME = "manifest.json"
MANIFEST_VERSION = 1
CHUNK_SIZE = 1 << 20

# Raised by zipfile while inflating a damaged entry
ENTRY_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)

logger = logging.getLogger(__name__)


@dataclass
class ArchiveStats:
    """Summary of a written archive."""
    tables: Dict[str, int] = field(default_factory=dict)
    files_written: int = 0
    files_missing: List[str] = field(default_factory=list)


@dataclass
class UploadEntry:
    """
    A file entry of an archive.

    Attributes:
        member: Full entry name inside the ZIP
        name: Entry name without the uploads/ prefix
        storage_key: Key from the manifest, if listed
        hash: Content hash from the manifest, if listed
    """
    member: str
    name: str
    storage_key: Optional[str] = None
    hash: Optional[str] = None


def unique_entry_name(original_name: str, used: Set[str]) -> str:
    """Archive name for an upload, suffixed when the name is already taken."""
    name = os.path.basename(original_name.replace("\\", "/")) or "file"
    if name not in used:
        return name

    stem, ext = os.path.splitext(name)
    counter = 1
    while True:
        candidate = f"{stem} ({counter}){ext}"
        if candidate not in used:
            return candidate
        counter += 1


def write_archive(db: NotesDatabase, store: ContentStore, target: BinaryIO) -> ArchiveStats:
    """
    Write the full dataset to a ZIP archive.

    Files whose bytes are missing from the content store are left out.

    Args:
        db: Structured store to export
        store: Content store holding file bytes
        target: Writable binary file object

    Returns:
        ArchiveStats
    """
    stats = ArchiveStats()
    records = {
        "guilds": db.list_guilds(),
        "channels": db.list_channels(),
        "logs": db.list_logs(),
        "files": db.list_files(),
    }

    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for table in TABLES:
            rows = [record.to_archive() for record in records[table]]
            archive.writestr(f"{table}.json", json.dumps(rows, indent=2))
            stats.tables[table] = len(rows)

        used: Set[str] = set()
        manifest: Dict[str, Dict[str, Any]] = {}
        for record in records["files"]:
            try:
                source = store.get(record.storage_key)
            except NotFound:
                logger.warning(
                    f"Skipping {record.original_name}: {record.storage_key} missing from storage"
                )
                stats.files_missing.append(record.storage_key)
                continue

            entry_name = unique_entry_name(record.original_name, used)
            used.add(entry_name)
            with closing(source), archive.open(UPLOADS_PREFIX + entry_name, "w") as dest:
                shutil.copyfileobj(source, dest, CHUNK_SIZE)

            manifest[entry_name] = {
                "storage_key": record.storage_key,
                "hash": record.hash,
                "file_id": record.id,
            }
            stats.files_written += 1

        archive.writestr(
            MANIFEST_NAME,
            json.dumps({"version": MANIFEST_VERSION, "uploads": manifest}, indent=2)
        )

    return stats


def _validate_member_name(member_name: str) -> PurePosixPath:
    """Reject entry names that could escape the extraction target."""
    relative = PurePosixPath(member_name.replace("\\", "/"))
    if relative.is_absolute():
        raise ArchiveFormatError(f"Unsafe absolute path in archive: {member_name}")
    if not relative.parts or any(part in ("", ".", "..") for part in relative.parts):
        raise ArchiveFormatError(f"Unsafe path in archive: {member_name}")
    return relative


class ArchiveReader:
    """
    Read access to an export archive.

    Usage:
        with ArchiveReader(path) as reader:
            guilds = reader.load_table("guilds")
            for entry in reader.iter_uploads():
                with reader.open(entry) as stream:
                    ...
    """

    def __init__(self, path: Path):
        """
        Open an archive.

        Args:
            path: Path to the ZIP file

        Raises:
            ArchiveFormatError: File is not a ZIP archive
        """
        self.path = Path(path)
        try:
            self._zip = zipfile.ZipFile(self.path)
        except zipfile.BadZipFile as e:
            raise ArchiveFormatError(f"Not a valid archive: {e}") from None

        self._tables: Dict[str, zipfile.ZipInfo] = {}
        self._uploads: List[zipfile.ZipInfo] = []
        for info in self._zip.infolist():
            if info.is_dir():
                continue
            if info.filename.startswith(UPLOADS_PREFIX):
                self._uploads.append(info)
            elif info.filename == MANIFEST_NAME:
                continue
            elif "/" not in info.filename and info.filename.endswith(".json"):
                self._tables[info.filename[:-len(".json")]] = info

        self._manifest: Optional[Dict[str, Dict[str, Any]]] = None

    def close(self):
        self._zip.close()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def table_names(self) -> List[str]:
        """Names of the table entries present in the archive."""
        return list(self._tables)

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def load_table(self, name: str) -> List[Dict[str, Any]]:
        """
        Decode a table entry.

        Returns:
            Row maps (empty when the table was exported as null)

        Raises:
            KeyError: Table not in archive
            ArchiveFormatError: Entry is not a JSON array of objects
        """
        info = self._tables[name]
        try:
            raw = self._zip.read(info)
        except ENTRY_ERRORS as e:
            raise ArchiveFormatError(f"{info.filename}: {e}") from None
        try:
            rows = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise ArchiveFormatError(f"{info.filename}: {e}") from None

        if rows is None:
            return []
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise ArchiveFormatError(f"{info.filename}: expected a JSON array of objects")
        return rows

    @property
    def manifest(self) -> Dict[str, Dict[str, Any]]:
        """
        Upload manifest (empty for archives without one).

        Raises:
            ArchiveFormatError: Manifest present but malformed
        """
        if self._manifest is None:
            self._manifest = self._load_manifest()
        return self._manifest

    def _load_manifest(self) -> Dict[str, Dict[str, Any]]:
        try:
            raw = self._zip.read(MANIFEST_NAME)
        except KeyError:
            return {}
        except ENTRY_ERRORS as e:
            raise ArchiveFormatError(f"{MANIFEST_NAME}: {e}") from None
        try:
            document = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise ArchiveFormatError(f"{MANIFEST_NAME}: {e}") from None

        uploads = document.get("uploads") if isinstance(document, dict) else None
        if not isinstance(uploads, dict):
            raise ArchiveFormatError(f"{MANIFEST_NAME}: missing uploads mapping")
        return {name: meta for name, meta in uploads.items() if isinstance(meta, dict)}

    def iter_uploads(self, manifest: Optional[Dict[str, Dict[str, Any]]] = None) -> Iterator[UploadEntry]:
        """
        Iterate over file entries.

        Args:
            manifest: Manifest to annotate entries with (default: the archive's own)
        """
        if manifest is None:
            manifest = self.manifest
        for info in self._uploads:
            name = info.filename[len(UPLOADS_PREFIX):]
            meta = manifest.get(name, {})
            yield UploadEntry(
                member=info.filename,
                name=name,
                storage_key=meta.get("storage_key"),
                hash=meta.get("hash"),
            )

    def open(self, entry: UploadEntry) -> BinaryIO:
        """
        Open a file entry for reading.

        Raises:
            ArchiveFormatError: Unsafe entry name
        """
        _validate_member_name(entry.member)
        return self._zip.open(entry.member)

    def read(self, entry: UploadEntry) -> bytes:
        """
        Read a whole file entry.

        Raises:
            ArchiveFormatError: Unsafe entry name, or damaged entry data
        """
        try:
            with self.open(entry) as stream:
                return stream.read()
        except ENTRY_ERRORS as e:
            raise ArchiveFormatError(f"{entry.member}: {e}") from None
