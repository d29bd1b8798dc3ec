import uuid
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from .exceptions import StorageConfigError
from .logging_setup import get_logger
from .models import StorageConfig
from .schemas import StorageConfigIn, StorageConfigOut, StorageConfigUpdate, StorageType
from .security import encrypt_value, mask_value

logger = get_logger("storage")

UPDATABLE_FIELDS = ("name", "path", "s3_endpoint", "s3_bucket", "s3_region", "s3_access_key")


def to_out(config: StorageConfig) -> StorageConfigOut:
    return StorageConfigOut(
        id=config.id,
        name=config.name,
        type=StorageType(config.type),
        path=config.path,
        s3_endpoint=config.s3_endpoint,
        s3_bucket=config.s3_bucket,
        s3_region=config.s3_region,
        s3_access_key=mask_value(config.s3_access_key),
        s3_secret_key=None,
        is_default=config.is_default,
        created_at=config.created_at,
        updated_at=config.updated_at,
    )


def _clear_default(db: Session) -> None:
    db.execute(
        update(StorageConfig)
        .where(StorageConfig.is_default.is_(True))
        .values(is_default=False, updated_at=datetime.utcnow())
    )


def list_storage_configs(db: Session) -> list[StorageConfig]:
    return db.query(StorageConfig).order_by(StorageConfig.created_at.asc()).all()


def get_storage_config(db: Session, config_id: str) -> StorageConfig | None:
    return db.query(StorageConfig).filter(StorageConfig.id == config_id).first()


def get_default_storage_config(db: Session) -> StorageConfig | None:
    return db.query(StorageConfig).filter(StorageConfig.is_default.is_(True)).first()


def create_storage_config(db: Session, payload: StorageConfigIn) -> StorageConfig:
    logger.info("Creating storage config %s (type=%s)", payload.name, payload.type.value)
    now = datetime.utcnow()
    if payload.is_default:
        _clear_default(db)
    config = StorageConfig(
        id=str(uuid.uuid4()),
        name=payload.name,
        type=payload.type.value,
        path=payload.path,
        s3_endpoint=payload.s3_endpoint,
        s3_bucket=payload.s3_bucket,
        s3_region=payload.s3_region,
        s3_access_key=payload.s3_access_key,
        s3_secret_key=encrypt_value(payload.s3_secret_key) if payload.s3_secret_key else None,
        is_default=payload.is_default,
        created_at=now,
        updated_at=now,
    )
    db.add(config)
    db.commit()
    db.refresh(config)
    return config


def update_storage_config(db: Session, config_id: str, payload: StorageConfigUpdate) -> StorageConfig | None:
    config = get_storage_config(db, config_id)
    if not config:
        return None
    if config.is_default and payload.is_default is False:
        raise StorageConfigError("Cannot unset default storage without setting another as default")
    if payload.is_default and not config.is_default:
        _clear_default(db)
        config.is_default = True
    for field in UPDATABLE_FIELDS:
        value = getattr(payload, field)
        if value is not None:
            setattr(config, field, value)
    if payload.s3_secret_key is not None:
        config.s3_secret_key = encrypt_value(payload.s3_secret_key)
    config.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(config)
    return config


def delete_storage_config(db: Session, config_id: str) -> bool:
    config = get_storage_config(db, config_id)
    if not config:
        raise StorageConfigError("Storage config not found")
    if config.is_default:
        raise StorageConfigError("Cannot delete default storage config")
    db.delete(config)
    db.commit()
    logger.info("Deleted storage config %s", config_id)
    return True
