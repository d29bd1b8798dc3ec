import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .logging_setup import get_logger
from .models import SnapshotRecord, StorageConfig
from .qdrant_client import QdrantClient, SnapshotDownload
from .schemas import RecoverSnapshotRequest, SnapshotOut, StorageType

logger = get_logger("snapshots")


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SnapshotMetadataStore:
    def __init__(self, session_factory: sessionmaker, default_storage_path: Optional[str] = None):
        self._session_factory = session_factory
        self.default_storage_path = default_storage_path or settings.storage_default_path

    def _storage_config(self, session: Session, storage_config_id: Optional[str]) -> Optional[StorageConfig]:
        if storage_config_id:
            config = session.get(StorageConfig, storage_config_id)
            if config is not None:
                return config
        return session.scalars(select(StorageConfig).where(StorageConfig.is_default.is_(True))).first()

    def _storage_path(
        self, config: Optional[StorageConfig], collection_name: str, snapshot_name: str, shard_id: Optional[int]
    ) -> str:
        base = self.default_storage_path
        if config is not None:
            if config.type == StorageType.S3.value and config.s3_bucket:
                base = f"s3://{config.s3_bucket}"
            elif config.path:
                base = config.path
        parts = [base.rstrip("/"), collection_name]
        if shard_id is not None:
            parts += ["shards", str(shard_id)]
        parts.append(snapshot_name)
        return "/".join(parts)

    def create(
        self,
        collection_name: str,
        snapshot: SnapshotOut,
        shard_id: Optional[int] = None,
        storage_config_id: Optional[str] = None,
    ) -> SnapshotRecord:
        with self._session_factory() as session:
            config = self._storage_config(session, storage_config_id)
            record = SnapshotRecord(
                id=str(uuid.uuid4()),
                collection_name=collection_name,
                snapshot_name=snapshot.name,
                shard_id=shard_id,
                size=snapshot.size,
                checksum=snapshot.checksum,
                storage_config_id=config.id if config is not None else storage_config_id,
                storage_path=self._storage_path(config, collection_name, snapshot.name, shard_id),
                created_at=_naive_utc(snapshot.creation_time),
            )
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def find_by_collection(self, collection_name: str, shard_id: Optional[int] = None) -> list[SnapshotRecord]:
        query = select(SnapshotRecord).where(SnapshotRecord.collection_name == collection_name)
        if shard_id is not None:
            query = query.where(SnapshotRecord.shard_id == shard_id)
        with self._session_factory() as session:
            return list(session.scalars(query.order_by(SnapshotRecord.created_at.desc())).all())

    def delete(self, collection_name: str, snapshot_name: str) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                delete(SnapshotRecord).where(
                    SnapshotRecord.collection_name == collection_name,
                    SnapshotRecord.snapshot_name == snapshot_name,
                )
            )
            session.commit()
            return result.rowcount > 0


class SnapshotService:
    def __init__(self, client: QdrantClient, metadata: SnapshotMetadataStore):
        self.client = client
        self.metadata = metadata

    def list_snapshots(self, collection_name: str) -> list[SnapshotOut]:
        return self.client.list_snapshots(collection_name)

    def create_snapshot(self, collection_name: str, wait: bool = True, storage_config_id: Optional[str] = None) -> SnapshotOut:
        logger.info("Creating snapshot for collection %s (wait=%s)", collection_name, wait)
        snapshot = self.client.create_snapshot(collection_name, wait)
        self.metadata.create(collection_name, snapshot, storage_config_id=storage_config_id)
        logger.info("Snapshot created: %s (%s bytes)", snapshot.name, snapshot.size)
        return snapshot

    def download_snapshot(self, collection_name: str, snapshot_name: str) -> Optional[SnapshotDownload]:
        return self.client.download_snapshot(collection_name, snapshot_name)

    def delete_snapshot(self, collection_name: str, snapshot_name: str, wait: bool = True) -> bool:
        logger.info("Deleting snapshot %s/%s", collection_name, snapshot_name)
        deleted = self.client.delete_snapshot(collection_name, snapshot_name, wait)
        if deleted:
            self.metadata.delete(collection_name, snapshot_name)
        return deleted

    def recover_snapshot(self, collection_name: str, request: RecoverSnapshotRequest) -> bool:
        logger.info("Recovering collection %s from %s", collection_name, request.location)
        return self.client.recover_snapshot(collection_name, request.location, request.priority, request.api_key)

    def list_shard_snapshots(self, collection_name: str, shard_id: int) -> list[SnapshotOut]:
        return self.client.list_shard_snapshots(collection_name, shard_id)

    def create_shard_snapshot(
        self, collection_name: str, shard_id: int, wait: bool = True, storage_config_id: Optional[str] = None
    ) -> SnapshotOut:
        logger.info("Creating shard snapshot for collection %s shard %s", collection_name, shard_id)
        snapshot = self.client.create_shard_snapshot(collection_name, shard_id, wait)
        self.metadata.create(collection_name, snapshot, shard_id=shard_id, storage_config_id=storage_config_id)
        return snapshot

    def recover_shard_snapshot(self, collection_name: str, shard_id: int, request: RecoverSnapshotRequest) -> bool:
        logger.info("Recovering shard %s of %s from %s", shard_id, collection_name, request.location)
        return self.client.recover_shard_snapshot(
            collection_name, shard_id, request.location, request.priority, request.api_key
        )
