import io
from pathlib import Path

import pytest

from venotes.config import Settings
from venotes.context import build_context
from venotes.database import NotesDatabase
from venotes.archive.service import ArchiveService
from venotes.storage.ingest import FileIngestor
from venotes.storage.local_storage import LocalStorageManager


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        local_path=tmp_path / "uploads",
        database_path=tmp_path / "notes.db",
        data_dir=tmp_path / "work",
    )


@pytest.fixture
def db(settings):
    database = NotesDatabase(str(settings.database_path))
    yield database
    database.close()


@pytest.fixture
def store(settings) -> LocalStorageManager:
    return LocalStorageManager(str(settings.local_path))


@pytest.fixture
def ingestor(db, store) -> FileIngestor:
    return FileIngestor(db, store)


@pytest.fixture
def service(db, store, settings) -> ArchiveService:
    return ArchiveService(db, store, work_dir=settings.data_dir)


@pytest.fixture
def context(settings, db, store):
    ctx = build_context(settings, db=db, store=store)
    yield ctx


@pytest.fixture
def log(db):
    """One guild/channel/log to attach files to."""
    guild = db.create_guild("Work")
    channel = db.create_channel(guild.id, "Coding")
    return db.create_log(channel.id, "first note")


@pytest.fixture
def attach(ingestor):
    """Upload bytes through the ingestor."""
    def _attach(log_id, name, data, mime_type="text/plain"):
        return ingestor.ingest(log_id, name, mime_type, io.BytesIO(data))
    return _attach


@pytest.fixture
def make_target(tmp_path: Path):
    """Factory for a fresh database/store/service set in its own directory."""
    opened = []

    def _make(name: str):
        root = tmp_path / name
        database = NotesDatabase(str(root / "notes.db"))
        local = LocalStorageManager(str(root / "uploads"))
        opened.append(database)
        return database, local, ArchiveService(database, local, work_dir=root / "work")

    yield _make
    for database in opened:
        database.close()
