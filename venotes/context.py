"""
Application Context

Everything built once at startup and handed to the HTTP layer and CLI.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from .archive.service import ArchiveService
from .config import Settings
from .database import NotesDatabase
from .storage.factory import create_import_store, create_storage
from .storage.ingest import FileIngestor
from .storage.storage_interface import ContentStore


logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Process-lifetime handles."""
    settings: Settings
    db: NotesDatabase
    store: ContentStore
    files: FileIngestor
    archives: ArchiveService

    def close(self):
        self.db.close()


def build_context(
    settings: Optional[Settings] = None,
    db: Optional[NotesDatabase] = None,
    store: Optional[ContentStore] = None,
    import_store: Optional[ContentStore] = None
) -> AppContext:
    """
    Build the application context.

    Args:
        settings: Settings (default: read from the environment)
        db: Database (default: opened at settings.database_path)
        store: Content store (default: created from settings)
        import_store: Store imports write into (default: local store)

    Returns:
        AppContext
    """
    settings = settings or Settings.from_env()
    db = db or NotesDatabase(str(settings.database_path))
    store = store or create_storage(settings)
    import_store = import_store or create_import_store(settings, store)

    logger.info(f"Storage backend: {store.get_storage_info()['backend']}")

    return AppContext(
        settings=settings,
        db=db,
        store=store,
        files=FileIngestor(db, store),
        archives=ArchiveService(db, store, import_store=import_store, work_dir=settings.data_dir)
    )
