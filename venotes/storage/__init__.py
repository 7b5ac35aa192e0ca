"""
Storage Layer

Content-addressed file storage with local and S3-compatible backends and a
deduplicating ingest path.
"""

from .storage_interface import ContentStore, StorageBackend
from .local_storage import LocalStorageManager
from .s3_storage import S3StorageManager
from .factory import create_storage, create_import_store
from .ingest import FileIngestor, ServedFile, content_hash, storage_key_for, is_text_file

__all__ = [
    'ContentStore',
    'StorageBackend',
    'LocalStorageManager',
    'S3StorageManager',
    'create_storage',
    'create_import_store',
    'FileIngestor',
    'ServedFile',
    'content_hash',
    'storage_key_for',
    'is_text_file',
]
