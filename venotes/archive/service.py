"""
Archive Service

Export and import of the whole dataset, with optional passphrase
encryption. Owns the temporary files both directions need and removes them
on every exit path.
"""

import os
import shutil
import tempfile
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import BinaryIO, Iterator, Optional
import logging

from ..database import NotesDatabase
from ..storage.storage_interface import ContentStore
from .codec import ArchiveReader, write_archive
from .encryption import ArchiveCipher
from .importer import ImportReport, MergeImporter


ZIP_CONTENT_TYPE = "application/zip"
ENCRYPTED_CONTENT_TYPE = "application/octet-stream"


def export_filename(encrypted: bool, day: Optional[date] = None) -> str:
    """Suggested download name for an export."""
    day = day or date.today()
    return f"venotes-export-{day.isoformat()}{'.enc' if encrypted else '.zip'}"


@dataclass
class ExportResult:
    """An export ready to be delivered."""
    stream: BinaryIO
    filename: str
    content_type: str
    encrypted: bool
    size: int


class ArchiveService:
    """
    Export/import entry point used by the HTTP layer and the CLI.

    Features:
    - ZIP export of all tables and referenced files
    - AES-256-GCM encryption when a passphrase is given
    - Idempotent merge import into local storage
    - Scoped cleanup of temporary artifacts
    """

    def __init__(
        self,
        db: NotesDatabase,
        store: ContentStore,
        import_store: Optional[ContentStore] = None,
        work_dir: Optional[Path] = None
    ):
        """
        Initialize archive service.

        Args:
            db: Structured store
            store: Configured content store (export source)
            import_store: Store that imports write into (default: store)
            work_dir: Directory for temporary artifacts (default: system temp dir)
        """
        self.db = db
        self.store = store
        self.import_store = import_store or store
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.gettempdir())
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger(__name__)

    def _temp_path(self, stack: ExitStack, prefix: str, suffix: str = "") -> Path:
        """Create a temporary file that is removed when the stack closes."""
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=str(self.work_dir))
        os.close(fd)
        path = Path(name)
        stack.callback(self._remove, path)
        return path

    def _remove(self, path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to remove temporary file {path}: {e}")

    @contextmanager
    def export(self, passphrase: str = "") -> Iterator[ExportResult]:
        """
        Build an export archive.

        Usage:
            with service.export("secret") as result:
                send(result.stream, result.filename, result.content_type)

        The archive exists only inside the block.

        Args:
            passphrase: Encrypts the archive when non-empty

        Yields:
            ExportResult with an open stream positioned at the start
        """
        encrypted = bool(passphrase)

        with ExitStack() as stack:
            zip_path = self._temp_path(stack, "export_", ".zip")
            with open(zip_path, "wb") as target:
                stats = write_archive(self.db, self.store, target)

            output_path = zip_path
            if encrypted:
                output_path = self._temp_path(stack, "export_", ".zip.enc")
                ArchiveCipher(passphrase).encrypt_file(zip_path, output_path)
                self._remove(zip_path)

            stream = stack.enter_context(open(output_path, "rb"))
            size = output_path.stat().st_size

            self.logger.info(
                f"Export built: {stats.tables}, {stats.files_written} files, "
                f"{len(stats.files_missing)} missing, encrypted={encrypted}"
            )

            yield ExportResult(
                stream=stream,
                filename=export_filename(encrypted),
                content_type=ENCRYPTED_CONTENT_TYPE if encrypted else ZIP_CONTENT_TYPE,
                encrypted=encrypted,
                size=size
            )

    def export_to(self, destination: Path, passphrase: str = "") -> Path:
        """
        Export into a file.

        Args:
            destination: Output file, or a directory to receive the suggested filename
            passphrase: Encrypts the archive when non-empty

        Returns:
            Path written
        """
        destination = Path(destination)
        with self.export(passphrase) as result:
            if destination.is_dir():
                destination = destination / result.filename
            with open(destination, "wb") as out:
                shutil.copyfileobj(result.stream, out)
        return destination

    def import_archive(self, stream: BinaryIO, passphrase: str = "") -> ImportReport:
        """
        Import an archive.

        Args:
            stream: Archive bytes (encrypted when a passphrase is given)
            passphrase: Decrypts the upload when non-empty

        Returns:
            ImportReport

        Raises:
            AuthenticationError: Wrong passphrase or corrupted encrypted data
            ArchiveFormatError: Payload is not an archive
        """
        with ExitStack() as stack:
            upload_path = self._temp_path(stack, "import_")
            with open(upload_path, "wb") as staged:
                shutil.copyfileobj(stream, staged)

            archive_path = upload_path
            if passphrase:
                archive_path = self._temp_path(stack, "import_", "_decrypted")
                ArchiveCipher(passphrase).decrypt_file(upload_path, archive_path)

            with ArchiveReader(archive_path) as reader:
                report = MergeImporter(self.db, self.import_store).run(reader)

        self.logger.info(f"Import finished: {report.to_dict()}")
        return report

    def import_file(self, path: Path, passphrase: str = "") -> ImportReport:
        """Import an archive from a file on disk."""
        with open(path, "rb") as stream:
            return self.import_archive(stream, passphrase)
