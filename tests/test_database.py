from datetime import datetime

import pytest

from venotes.models import FileRecord


def test_seed_defaults_once(db):
    assert db.seed_defaults() is True
    assert db.seed_defaults() is False

    guilds = {g.name: g for g in db.list_guilds()}
    assert set(guilds) == {"Work", "Personal"}
    work_channels = {c.name for c in db.list_channels() if c.guild_id == guilds["Work"].id}
    assert work_channels == {"Coding", "Ideas", "Meetings"}


def test_explicit_timestamps_are_kept(db):
    created = datetime(2023, 5, 1, 12, 30, 0)
    guild = db.create_guild("Archive", created_at=created)
    assert guild.created_at == created
    assert guild.updated_at == created


def test_latest_log_in_channel(db, log):
    newer = db.create_log(log.channel_id, "second", created_at=datetime(2100, 1, 1))
    db.create_log(log.channel_id, "older", created_at=datetime(2000, 1, 1))
    assert db.latest_log_in_channel(log.channel_id).id == newer.id
    assert db.latest_log_in_channel(999) is None


def test_transaction_rolls_back(db):
    with pytest.raises(RuntimeError):
        with db.transaction():
            db.create_guild("Temporary")
            raise RuntimeError("abort")
    assert db.find_guild_by_name("Temporary") is None


def test_file_queries(db, log):
    record = db.insert_file(FileRecord(
        log_id=log.id, filename="f", original_name="a.txt", mime_type="text/plain",
        size=1, storage_key="abc.txt", hash="abc",
    ))
    assert record.id is not None
    assert record.created_at is not None
    assert db.file_hash_exists("abc")
    assert db.count_storage_references("abc.txt") == 1
    assert [f.id for f in db.list_files(log.id)] == [record.id]
    assert db.delete_file(record.id) is True
    assert db.delete_file(record.id) is False
    assert db.count_storage_references("abc.txt") == 0
