"""
Archive Layer

Whole-dataset export and import:
- ZIP archive codec (tables as JSON, files under uploads/)
- AES-256-GCM passphrase encryption
- Idempotent merge import
"""

from .codec import ArchiveReader, ArchiveStats, UploadEntry, write_archive
from .encryption import ArchiveCipher, derive_key, NONCE_SIZE
from .importer import ImportReport, MergeImporter, TableResult
from .service import ArchiveService, ExportResult, export_filename

__all__ = [
    'ArchiveReader',
    'ArchiveStats',
    'UploadEntry',
    'write_archive',
    'ArchiveCipher',
    'derive_key',
    'NONCE_SIZE',
    'ImportReport',
    'MergeImporter',
    'TableResult',
    'ArchiveService',
    'ExportResult',
    'export_filename',
]
