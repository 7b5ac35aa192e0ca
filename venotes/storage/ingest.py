"""
File Ingest

Content-addressed upload path with deduplication, plus serving and
deletion of attachments.
"""

import hashlib
import io
import mimetypes
import os
import time
import uuid
from contextlib import closing
from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Tuple
import logging

from ..database import NotesDatabase
from ..errors import BackendError, NotFound, NotTextFileError
from ..models import FileRecord
from .storage_interface import ContentStore


TEXT_MIME_PREFIXES = (
    "text/",
    "application/json",
    "application/javascript",
    "application/xml",
)

TEXT_EXTENSIONS = frozenset({
    ".txt", ".md", ".json", ".js", ".css", ".html", ".xml", ".yaml", ".yml",
    ".py", ".go", ".java", ".cpp", ".c", ".h", ".php", ".rb", ".rs",
})


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest used for deduplication."""
    return hashlib.sha256(data).hexdigest()


def storage_key_for(digest: str, original_name: str) -> str:
    """Storage key for content: hex digest plus the original extension."""
    ext = os.path.splitext(os.path.basename(original_name))[1]
    if "\\" in ext or "\x00" in ext:
        ext = ""
    return digest + ext


def is_text_file(mime_type: str, filename: str) -> bool:
    """Whether an attachment can be returned as text."""
    if mime_type and mime_type.startswith(TEXT_MIME_PREFIXES):
        return True
    return os.path.splitext(filename)[1].lower() in TEXT_EXTENSIONS


@dataclass
class ServedFile:
    """Open attachment ready to be streamed to a client."""
    stream: BinaryIO
    mime_type: str
    size: int
    original_name: str

    def close(self):
        self.stream.close()

    def __enter__(self) -> "ServedFile":
        return self

    def __exit__(self, *exc_info):
        self.close()


class FileIngestor:
    """
    Stores uploads by content hash and keeps one file record per upload.

    N uploads with identical bytes produce one stored object and N records.
    The exists/put pair is not atomic; concurrent identical uploads may both
    write, which is harmless because the bytes are the same.
    """

    def __init__(self, db: NotesDatabase, store: ContentStore):
        """
        Initialize file ingestor.

        Args:
            db: Structured store
            store: Content store for file bytes
        """
        self.db = db
        self.store = store
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _record_filename(digest: str, ext: str) -> str:
        return f"{digest[:16]}_{time.time_ns()}_{uuid.uuid4().hex[:8]}{ext}"

    def ingest(
        self,
        log_id: int,
        original_name: str,
        mime_type: str,
        stream: BinaryIO
    ) -> FileRecord:
        """
        Store one uploaded file.

        Args:
            log_id: Log entry the file is attached to
            original_name: Filename as uploaded
            mime_type: Declared MIME type (guessed from the name when empty)
            stream: File content

        Returns:
            The new FileRecord

        Raises:
            NotFound: Log entry does not exist
            BackendError: Content store failure
        """
        if not self.db.log_exists(log_id):
            raise NotFound(f"Log not found: {log_id}")

        data = stream.read()
        digest = content_hash(data)
        key = storage_key_for(digest, original_name)

        if self.store.exists(key):
            self.logger.debug(f"Content already stored, reusing {key}")
        else:
            self.store.put(key, io.BytesIO(data))
            self.logger.info(f"Stored new object {key} ({len(data)} bytes)")

        if not mime_type:
            mime_type = mimetypes.guess_type(original_name)[0] or "application/octet-stream"

        ext = os.path.splitext(key)[1]
        return self.db.insert_file(FileRecord(
            log_id=log_id,
            filename=self._record_filename(digest, ext),
            original_name=original_name,
            mime_type=mime_type,
            size=len(data),
            storage_key=key,
            hash=digest
        ))

    def ingest_many(
        self,
        log_id: int,
        uploads: Iterable[Tuple[str, str, BinaryIO]]
    ) -> List[FileRecord]:
        """
        Store several uploads for one log entry.

        The first failure aborts the whole batch; records created before the
        failure are kept and nothing reports them individually.

        Args:
            log_id: Log entry the files are attached to
            uploads: (original_name, mime_type, stream) tuples

        Returns:
            FileRecords in upload order
        """
        records = []
        for original_name, mime_type, stream in uploads:
            records.append(self.ingest(log_id, original_name, mime_type, stream))
        return records

    def _get_record(self, file_id: int) -> FileRecord:
        record = self.db.get_file(file_id)
        if record is None:
            raise NotFound(f"File not found: {file_id}")
        return record

    def open_file(self, file_id: int) -> ServedFile:
        """
        Open an attachment for serving.

        Raises:
            NotFound: Record or stored bytes missing
        """
        record = self._get_record(file_id)
        stream = self.store.get(record.storage_key)
        return ServedFile(
            stream=stream,
            mime_type=record.mime_type,
            size=record.size,
            original_name=record.original_name
        )

    def read_text(self, file_id: int) -> str:
        """
        Return the content of a text attachment.

        Raises:
            NotFound: Record or stored bytes missing
            NotTextFileError: Attachment is not a text file
        """
        record = self._get_record(file_id)
        if not is_text_file(record.mime_type, record.original_name):
            raise NotTextFileError(f"File is not a text file: {record.original_name}")

        with closing(self.store.get(record.storage_key)) as stream:
            data = stream.read()
        return data.decode("utf-8", errors="replace")

    def delete(self, file_id: int) -> FileRecord:
        """
        Delete an attachment.

        The record is removed first and is authoritative. Stored bytes are
        removed only when no other record references the same storage key;
        a storage failure is logged and does not restore the record.

        Returns:
            The deleted FileRecord

        Raises:
            NotFound: Record does not exist
        """
        record = self._get_record(file_id)
        if not self.db.delete_file(file_id):
            raise NotFound(f"File not found: {file_id}")

        remaining = self.db.count_storage_references(record.storage_key)
        if remaining:
            self.logger.debug(
                f"Keeping {record.storage_key}: still referenced by {remaining} record(s)"
            )
            return record

        try:
            self.store.delete(record.storage_key)
        except BackendError as e:
            self.logger.warning(f"Failed to delete file from storage: {e}")

        return record
