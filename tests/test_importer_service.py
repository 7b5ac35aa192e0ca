import io
import json
import zipfile
from datetime import date

import pytest

from venotes.archive.service import export_filename
from venotes.errors import ArchiveFormatError, AuthenticationError, NotFound
from venotes.storage.ingest import FileIngestor, content_hash


def _export_bytes(service, passphrase=""):
    with service.export(passphrase) as result:
        return result.stream.read(), result


def _zip_bytes(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data if isinstance(data, (bytes, str)) else json.dumps(data))
    buffer.seek(0)
    return buffer


def test_export_filename():
    assert export_filename(False, date(2024, 3, 9)) == "venotes-export-2024-03-09.zip"
    assert export_filename(True, date(2024, 3, 9)) == "venotes-export-2024-03-09.enc"


def test_export_result_metadata(service, log, attach):
    attach(log.id, "a.txt", b"hello")

    data, result = _export_bytes(service)
    assert result.content_type == "application/zip"
    assert result.filename.endswith(".zip")
    assert result.size == len(data)
    assert data[:2] == b"PK"

    data, result = _export_bytes(service, "pw")
    assert result.content_type == "application/octet-stream"
    assert result.filename.endswith(".enc")
    assert result.encrypted
    assert result.size == len(data)


def test_encrypted_roundtrip(service, log, attach, make_target):
    attach(log.id, "a.txt", b"hello")
    attach(log.id, "photo.png", b"\x89PNG data", mime_type="image/png")
    data, _ = _export_bytes(service, "pw")

    target_db, target_store, target_service = make_target("target")
    report = target_service.import_archive(io.BytesIO(data), "pw")

    assert report.tables["guilds"].inserted == 1
    assert report.tables["channels"].inserted == 1
    assert report.tables["logs"].inserted == 1
    assert report.tables["files"].inserted == 2
    assert report.files_stored == 2
    assert report.failed_tables == {}

    files = target_db.list_files()
    assert sorted(f.original_name for f in files) == ["a.txt", "photo.png"]
    ingestor = FileIngestor(target_db, target_store)
    by_name = {f.original_name: f for f in files}
    with ingestor.open_file(by_name["a.txt"].id) as served:
        assert served.stream.read() == b"hello"
    with ingestor.open_file(by_name["photo.png"].id) as served:
        assert served.stream.read() == b"\x89PNG data"
        assert served.mime_type == "image/png"


def test_import_is_idempotent(service, log, attach, make_target):
    attach(log.id, "a.txt", b"hello")
    data, _ = _export_bytes(service)

    target_db, target_store, target_service = make_target("target")
    target_service.import_archive(io.BytesIO(data))
    second = target_service.import_archive(io.BytesIO(data))

    assert second.inserted == 0
    assert second.tables["guilds"].skipped == 1
    assert second.tables["files"].skipped == 1
    assert second.files_existing == 1
    assert len(target_db.list_guilds()) == 1
    assert len(target_db.list_logs()) == 1
    assert len(target_db.list_files()) == 1


def test_import_into_source_changes_nothing(service, db, log, attach):
    attach(log.id, "a.txt", b"hello")
    data, _ = _export_bytes(service)

    report = service.import_archive(io.BytesIO(data))

    assert report.inserted == 0
    assert len(db.list_files()) == 1


def test_wrong_password_leaves_target_untouched(service, log, attach, make_target, tmp_path):
    attach(log.id, "a.txt", b"hello")
    data, _ = _export_bytes(service, "pw")

    target_db, target_store, target_service = make_target("target")
    with pytest.raises(AuthenticationError):
        target_service.import_archive(io.BytesIO(data), "wrong")

    assert target_db.list_guilds() == []
    assert target_store.get_storage_info()["object_count"] == 0
    assert list((tmp_path / "target" / "work").iterdir()) == []


def test_encrypted_archive_without_password_is_format_error(service, log, make_target):
    data, _ = _export_bytes(service, "pw")
    _, _, target_service = make_target("target")
    with pytest.raises(ArchiveFormatError):
        target_service.import_archive(io.BytesIO(data))


def test_ids_are_remapped(service, db, make_target):
    work = db.create_guild("Work")
    db.create_channel(work.id, "Coding")
    side = db.create_guild("Side")
    misc = db.create_channel(side.id, "Misc")
    db.create_log(misc.id, "side note")
    data, _ = _export_bytes(service)

    target_db, _, target_service = make_target("target")
    target_db.seed_defaults()
    target_service.import_archive(io.BytesIO(data))

    live_side = target_db.find_guild_by_name("Side")
    personal = target_db.find_guild_by_name("Personal")
    assert live_side.id != side.id
    assert target_db.find_channel(live_side.id, "Misc") is not None
    assert target_db.find_channel(personal.id, "Misc") is None

    live_misc = target_db.find_channel(live_side.id, "Misc")
    assert target_db.find_log(live_misc.id, "side note") is not None
    assert len(target_db.list_guilds()) == 3


def test_malformed_table_does_not_block_others(make_target):
    archive = _zip_bytes({
        "guilds.json": [{"id": 1, "name": "Imported"}],
        "channels.json": "{broken",
    })
    target_db, _, target_service = make_target("target")
    report = target_service.import_archive(archive)

    assert "channels" in report.failed_tables
    assert report.tables["guilds"].inserted == 1
    assert target_db.find_guild_by_name("Imported") is not None


def test_invalid_rows_are_skipped(make_target):
    archive = _zip_bytes({
        "guilds.json": [{"id": 1, "name": "Good"}, {"id": 2}, {"id": 3, "name": 5}],
        "channels.json": [{"id": 1, "guild_id": 99, "name": "Orphan"}],
    })
    target_db, _, target_service = make_target("target")
    report = target_service.import_archive(archive)

    assert report.tables["guilds"].inserted == 1
    assert report.tables["guilds"].invalid == 2
    assert report.tables["channels"].invalid == 1
    assert target_db.list_channels() == []


def test_file_without_log_attaches_to_latest_log(make_target):
    digest = content_hash(b"hello")
    archive = _zip_bytes({
        "guilds.json": [{"id": 7, "name": "G"}],
        "channels.json": [{"id": 9, "guild_id": 7, "name": "C"}],
        "logs.json": [
            {"id": 3, "channel_id": 9, "content": "old", "created_at": "2024-01-01T00:00:00Z"},
            {"id": 4, "channel_id": 9, "content": "new", "created_at": "2024-02-01T00:00:00Z"},
        ],
        "files.json": [{
            "original_name": "x.txt", "mime_type": "text/plain", "size": 5,
            "path": digest + ".txt", "hash": digest, "channel_id": 9,
        }],
        "uploads/x.txt": b"hello",
    })
    target_db, target_store, target_service = make_target("target")
    report = target_service.import_archive(archive)

    assert report.tables["files"].inserted == 1
    record = target_db.list_files()[0]
    assert target_db.get_log(record.log_id).content == "new"
    assert target_store.exists(digest + ".txt")


def test_null_tables_import_as_empty(make_target):
    archive = _zip_bytes({
        "guilds.json": "null",
        "channels.json": "null",
        "logs.json": "null",
        "files.json": "null",
    })
    _, _, target_service = make_target("target")
    report = target_service.import_archive(archive)
    assert report.inserted == 0
    assert report.failed_tables == {}


def test_missing_bytes_import_as_unservable_record(service, log, attach, store, make_target):
    record = attach(log.id, "lost.txt", b"lost")
    store.delete(record.storage_key)
    data, _ = _export_bytes(service)

    target_db, target_store, target_service = make_target("target")
    target_service.import_archive(io.BytesIO(data))

    imported = target_db.list_files()
    assert len(imported) == 1
    with pytest.raises(NotFound):
        FileIngestor(target_db, target_store).open_file(imported[0].id)


def test_manifest_hash_mismatch_is_reported(make_target):
    digest = content_hash(b"hello")
    archive = _zip_bytes({
        "manifest.json": {"version": 1, "uploads": {
            "x.txt": {"storage_key": digest + ".txt", "hash": digest, "file_id": 1},
        }},
        "uploads/x.txt": b"tampered",
    })
    _, target_store, target_service = make_target("target")
    report = target_service.import_archive(archive)

    assert "x.txt" in report.files_failed
    assert not target_store.exists(digest + ".txt")


def test_temp_files_removed(service, log, attach, settings):
    attach(log.id, "a.txt", b"hello")

    with service.export("pw") as result:
        result.stream.read()
    assert list(settings.data_dir.iterdir()) == []

    data, _ = _export_bytes(service, "pw")
    service.import_archive(io.BytesIO(data), "pw")
    assert list(settings.data_dir.iterdir()) == []

    with pytest.raises(ArchiveFormatError):
        service.import_archive(io.BytesIO(b"not a zip"))
    assert list(settings.data_dir.iterdir()) == []


def test_export_to_directory(service, log, attach, tmp_path):
    attach(log.id, "a.txt", b"hello")
    out_dir = tmp_path / "out"
    out_dir.mkdir()

    written = service.export_to(out_dir)
    assert written.parent == out_dir
    assert written.name == export_filename(False)

    report = service.import_file(written)
    assert report.inserted == 0


def _flip_entry_byte(raw, member, position=None):
    """Corrupt one byte of an entry's stored data inside a ZIP image."""
    with zipfile.ZipFile(io.BytesIO(raw)) as archive:
        info = archive.getinfo(member)
    offset = info.header_offset
    name_length = int.from_bytes(raw[offset + 26:offset + 28], "little")
    extra_length = int.from_bytes(raw[offset + 28:offset + 30], "little")
    data_start = offset + 30 + name_length + extra_length
    index = data_start + (info.compress_size // 2 if position is None else position)

    damaged = bytearray(raw)
    damaged[index] ^= 0xFF
    return bytes(damaged)


def _stored_zip(entries, compression=zipfile.ZIP_STORED):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
        for name, data in entries.items():
            archive.writestr(name, data if isinstance(data, (bytes, str)) else json.dumps(data))
    return buffer.getvalue()


def test_damaged_upload_does_not_stop_siblings(make_target):
    raw = _stored_zip({
        "guilds.json": [{"id": 1, "name": "G"}],
        "uploads/a.txt": b"first attachment payload",
        "uploads/b.txt": b"second attachment payload",
    })
    damaged = _flip_entry_byte(raw, "uploads/a.txt")

    target_db, target_store, target_service = make_target("target")
    report = target_service.import_archive(io.BytesIO(damaged))

    assert "a.txt" in report.files_failed
    assert report.files_stored == 1
    assert target_store.exists(content_hash(b"second attachment payload") + ".txt")
    assert target_db.find_guild_by_name("G") is not None


def test_damaged_table_is_reported(make_target):
    guilds = [{"id": index, "name": f"guild number {index} of the archive"} for index in range(1, 40)]
    raw = _stored_zip(
        {
            "guilds.json": guilds,
            "uploads/ok.txt": b"fine",
        },
        compression=zipfile.ZIP_DEFLATED,
    )
    damaged = _flip_entry_byte(raw, "guilds.json")

    target_db, target_store, target_service = make_target("target")
    report = target_service.import_archive(io.BytesIO(damaged))

    assert "guilds" in report.failed_tables
    assert target_db.list_guilds() == []
    assert report.files_stored == 1


def test_out_of_range_row_is_skipped(make_target):
    ok_digest = content_hash(b"ok")
    big_digest = content_hash(b"big")
    archive = _zip_bytes({
        "guilds.json": [{"id": 1, "name": "G"}, {"id": 2 ** 64, "name": "Huge"}],
        "channels.json": [{"id": 1, "guild_id": 1, "name": "C"}],
        "logs.json": [{"id": 1, "channel_id": 1, "content": "note"}],
        "files.json": [
            {"log_id": 1, "original_name": "ok.txt", "size": 2,
             "path": ok_digest + ".txt", "hash": ok_digest},
            {"log_id": 1, "original_name": "a.txt", "size": 1e20,
             "path": big_digest + ".txt", "hash": big_digest},
        ],
        "uploads/ok.txt": b"ok",
    })
    target_db, _, target_service = make_target("target")
    report = target_service.import_archive(archive)

    assert report.tables["guilds"].inserted == 1
    assert report.tables["guilds"].invalid == 1
    assert report.tables["files"].inserted == 1
    assert report.tables["files"].invalid == 1
    assert [f.original_name for f in target_db.list_files()] == ["ok.txt"]
    assert report.files_stored == 1


@pytest.mark.parametrize("path", ["../x", "a/b", "..", "a\\b"])
def test_file_row_with_unsafe_path_is_invalid(make_target, path):
    digest = content_hash(b"x")
    archive = _zip_bytes({
        "guilds.json": [{"id": 1, "name": "G"}],
        "channels.json": [{"id": 1, "guild_id": 1, "name": "C"}],
        "logs.json": [{"id": 1, "channel_id": 1, "content": "note"}],
        "files.json": [{"log_id": 1, "original_name": "x.txt", "path": path, "hash": digest}],
    })
    target_db, _, target_service = make_target("target")
    report = target_service.import_archive(archive)

    assert report.tables["files"].invalid == 1
    assert target_db.list_files() == []
