from pathlib import Path

import pytest

from venotes.config import Settings
from venotes.context import build_context
from venotes.errors import ConfigError
from venotes.storage.factory import create_import_store, create_storage
from venotes.storage.local_storage import LocalStorageManager
from venotes.storage.s3_storage import S3StorageManager
from venotes.storage.storage_interface import StorageBackend


S3_ENV = {
    "STORAGE_TYPE": "s3",
    "S3_ACCESS_KEY": "key",
    "S3_SECRET_KEY": "secret",
    "S3_BUCKET": "notes",
}


def test_defaults():
    settings = Settings.from_env({})
    assert settings.storage_type is StorageBackend.LOCAL
    assert settings.local_path == Path("data/uploads")
    assert settings.database_path == Path("data/notes.db")
    assert settings.port == 8087
    assert settings.s3 is None


def test_reads_os_environ(monkeypatch):
    monkeypatch.setenv("STORAGE_LOCAL_PATH", "/srv/uploads")
    monkeypatch.setenv("PORT", "9000")
    settings = Settings.from_env()
    assert settings.local_path == Path("/srv/uploads")
    assert settings.port == 9000


def test_s3_settings():
    settings = Settings.from_env(dict(S3_ENV, S3_BASE_PATH="/prod/", S3_ENDPOINT="http://minio:9000"))
    assert settings.storage_type is StorageBackend.S3
    assert settings.s3.bucket == "notes"
    assert settings.s3.region == "us-east-1"
    assert settings.s3.base_path == "prod"
    assert settings.s3.endpoint == "http://minio:9000"


@pytest.mark.parametrize("missing", ["S3_ACCESS_KEY", "S3_SECRET_KEY", "S3_BUCKET"])
def test_s3_requires_credentials(missing):
    env = dict(S3_ENV)
    del env[missing]
    with pytest.raises(ConfigError, match=missing):
        Settings.from_env(env)


def test_unknown_storage_type():
    with pytest.raises(ConfigError):
        Settings.from_env({"STORAGE_TYPE": "ftp"})


def test_storage_type_is_case_insensitive():
    assert Settings.from_env({"STORAGE_TYPE": "LOCAL"}).storage_type is StorageBackend.LOCAL


def test_bad_port():
    with pytest.raises(ConfigError):
        Settings.from_env({"PORT": "http"})


def test_factory_builds_local_store(settings):
    store = create_storage(settings)
    assert isinstance(store, LocalStorageManager)
    assert create_import_store(settings, store) is store


def test_factory_builds_s3_store(tmp_path):
    env = dict(S3_ENV, STORAGE_LOCAL_PATH=str(tmp_path / "uploads"))
    settings = Settings.from_env(env)
    store = create_storage(settings)
    assert isinstance(store, S3StorageManager)
    assert store.bucket_name == "notes"

    import_store = create_import_store(settings, store)
    assert isinstance(import_store, LocalStorageManager)
    assert import_store.base_path == tmp_path / "uploads"


def test_s3_selected_without_settings(settings):
    settings.storage_type = StorageBackend.S3
    with pytest.raises(ConfigError):
        create_storage(settings)


def test_build_context(settings):
    context = build_context(settings)
    try:
        assert context.files.store is context.store
        assert context.archives.import_store is context.store
        assert settings.database_path.exists()
    finally:
        context.close()
