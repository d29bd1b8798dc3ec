import pytest

from api.app import storage_store
from api.app.exceptions import StorageConfigError
from api.app.schemas import StorageConfigIn, StorageConfigUpdate, StorageType
from api.app.security import MASK, decrypt_value


def local(name, is_default=False):
    return StorageConfigIn(name=name, type=StorageType.LOCAL, path=f"/backups/{name}", is_default=is_default)


def defaults(db):
    return [c.name for c in storage_store.list_storage_configs(db) if c.is_default]


def test_new_default_replaces_previous_default(db):
    storage_store.create_storage_config(db, local("first", is_default=True))
    storage_store.create_storage_config(db, local("second", is_default=True))

    assert defaults(db) == ["second"]
    assert storage_store.get_default_storage_config(db).name == "second"


def test_update_can_move_default(db):
    first = storage_store.create_storage_config(db, local("first", is_default=True))
    second = storage_store.create_storage_config(db, local("second"))

    storage_store.update_storage_config(db, second.id, StorageConfigUpdate(is_default=True))

    assert defaults(db) == ["second"]
    db.refresh(first)
    assert first.is_default is False


def test_default_cannot_be_unset_directly(db):
    config = storage_store.create_storage_config(db, local("only", is_default=True))

    with pytest.raises(StorageConfigError, match="Cannot unset default"):
        storage_store.update_storage_config(db, config.id, StorageConfigUpdate(is_default=False))


def test_update_missing_config_returns_none(db):
    assert storage_store.update_storage_config(db, "missing", StorageConfigUpdate(name="x")) is None


def test_delete_rules(db):
    default = storage_store.create_storage_config(db, local("default", is_default=True))
    other = storage_store.create_storage_config(db, local("other"))

    with pytest.raises(StorageConfigError, match="Cannot delete default"):
        storage_store.delete_storage_config(db, default.id)
    with pytest.raises(StorageConfigError, match="not found"):
        storage_store.delete_storage_config(db, "missing")

    assert storage_store.delete_storage_config(db, other.id) is True
    assert storage_store.get_storage_config(db, other.id) is None


def test_s3_secret_is_encrypted_and_masked(db):
    config = storage_store.create_storage_config(
        db,
        StorageConfigIn(
            name="s3",
            type=StorageType.S3,
            s3_bucket="backups",
            s3_region="eu-west-1",
            s3_access_key="AKIA123",
            s3_secret_key="very-secret",
        ),
    )

    assert config.s3_secret_key != "very-secret"
    assert decrypt_value(config.s3_secret_key) == "very-secret"

    out = storage_store.to_out(config)
    assert out.s3_access_key == MASK
    assert out.s3_secret_key is None
    assert out.s3_bucket == "backups"


def test_secret_rotation_on_update(db):
    config = storage_store.create_storage_config(
        db, StorageConfigIn(name="s3", type=StorageType.S3, s3_bucket="b", s3_secret_key="old")
    )

    updated = storage_store.update_storage_config(db, config.id, StorageConfigUpdate(s3_secret_key="new", name="renamed"))

    assert updated.name == "renamed"
    assert decrypt_value(updated.s3_secret_key) == "new"


def test_type_specific_fields_are_required():
    with pytest.raises(ValueError, match="path is required"):
        StorageConfigIn(name="x", type=StorageType.LOCAL)
    with pytest.raises(ValueError, match="s3_bucket is required"):
        StorageConfigIn(name="x", type=StorageType.S3)
