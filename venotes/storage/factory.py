"""
Storage Factory

Builds the content store selected by configuration. Called once at startup;
the returned handle is passed to every component that needs storage.
"""

import logging

from ..errors import ConfigError
from .local_storage import LocalStorageManager
from .s3_storage import S3StorageManager
from .storage_interface import ContentStore, StorageBackend


logger = logging.getLogger(__name__)


def create_storage(settings) -> ContentStore:
    """
    Create the configured content store.

    Args:
        settings: venotes.config.Settings

    Returns:
        LocalStorageManager or S3StorageManager

    Raises:
        ConfigError: S3 selected without S3 settings
    """
    if settings.storage_type is StorageBackend.LOCAL:
        return LocalStorageManager(base_path=str(settings.local_path))

    if settings.storage_type is StorageBackend.S3:
        if settings.s3 is None:
            raise ConfigError("S3 storage selected but S3 settings are missing")
        s3 = settings.s3
        return S3StorageManager(
            bucket_name=s3.bucket,
            region=s3.region,
            endpoint_url=s3.endpoint,
            aws_access_key_id=s3.access_key,
            aws_secret_access_key=s3.secret_key,
            base_path=s3.base_path
        )

    raise ConfigError(f"unsupported storage type: {settings.storage_type}")


def create_import_store(settings, store: ContentStore) -> LocalStorageManager:
    """
    Content store that archive imports materialize files into.

    Imports always land in local storage, whatever backend produced the
    export. When the configured backend is already local it is reused.
    """
    if isinstance(store, LocalStorageManager):
        return store
    logger.info(f"Archive imports will be written to local storage at {settings.local_path}")
    return LocalStorageManager(base_path=str(settings.local_path))
