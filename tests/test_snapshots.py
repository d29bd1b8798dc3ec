from datetime import datetime, timedelta, timezone

from api.app import storage_store
from api.app.schemas import SnapshotOut, StorageConfigIn, StorageType
from api.app.snapshots import SnapshotMetadataStore


def snapshot(name="docs-1.snapshot", created=datetime(2026, 3, 1, 10, 0)):
    return SnapshotOut(name=name, creation_time=created, size=64)


def test_record_uses_default_path_without_storage_config(session_factory):
    store = SnapshotMetadataStore(session_factory, "/var/snapshots/")

    record = store.create("docs", snapshot())

    assert record.storage_path == "/var/snapshots/docs/docs-1.snapshot"
    assert record.storage_config_id is None


def test_record_uses_default_storage_config(session_factory, db):
    default = storage_store.create_storage_config(
        db, StorageConfigIn(name="nas", type=StorageType.LOCAL, path="/mnt/nas", is_default=True)
    )
    store = SnapshotMetadataStore(session_factory, "/var/snapshots")

    record = store.create("docs", snapshot("docs-2.snapshot"), shard_id=3)

    assert record.storage_path == "/mnt/nas/docs/shards/3/docs-2.snapshot"
    assert record.storage_config_id == default.id


def test_record_uses_requested_s3_config(session_factory, db):
    storage_store.create_storage_config(
        db, StorageConfigIn(name="nas", type=StorageType.LOCAL, path="/mnt/nas", is_default=True)
    )
    bucket = storage_store.create_storage_config(db, StorageConfigIn(name="s3", type=StorageType.S3, s3_bucket="backups"))
    store = SnapshotMetadataStore(session_factory, "/var/snapshots")

    record = store.create("docs", snapshot(), storage_config_id=bucket.id)

    assert record.storage_path == "s3://backups/docs/docs-1.snapshot"
    assert record.storage_config_id == bucket.id


def test_aware_creation_time_is_stored_as_utc(session_factory):
    store = SnapshotMetadataStore(session_factory, "/var/snapshots")
    created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    record = store.create("docs", snapshot(created=created))

    assert record.created_at == datetime(2026, 3, 1, 10, 0)
    assert store.find_by_collection("docs")[0].created_at == datetime(2026, 3, 1, 10, 0)
