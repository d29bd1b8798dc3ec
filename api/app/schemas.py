import time
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class JobType(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"
    SHARD_BACKUP = "shard_backup"
    SHARD_RESTORE = "shard_restore"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)
CANCELLABLE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)
RETRYABLE_STATUSES = (JobStatus.FAILED, JobStatus.CANCELLED)


class StorageType(str, Enum):
    LOCAL = "local"
    S3 = "s3"


class JobCreate(BaseModel):
    type: JobType
    collection_name: str = Field(min_length=1)
    shard_id: Optional[int] = Field(default=None, ge=0)
    snapshot_name: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def check_sources(self):
        if self.type in (JobType.SHARD_BACKUP, JobType.SHARD_RESTORE) and self.shard_id is None:
            raise ValueError(f"shard_id is required for {self.type.value} jobs")
        if self.type in (JobType.RESTORE, JobType.SHARD_RESTORE):
            url = (self.metadata or {}).get("url")
            if not self.snapshot_name and not url:
                raise ValueError("snapshot_name or metadata.url is required for restore jobs")
        return self


class JobOut(BaseModel):
    id: str
    type: JobType
    status: JobStatus
    collection_name: str
    shard_id: Optional[int] = None
    snapshot_name: Optional[str] = None
    progress: int = 0
    error: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobsPage(BaseModel):
    items: list[JobOut]
    total: int
    page: int
    limit: int


class StorageConfigIn(BaseModel):
    name: str = Field(min_length=1)
    type: StorageType
    path: Optional[str] = None
    s3_endpoint: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    is_default: bool = False

    @model_validator(mode="after")
    def check_type_fields(self):
        if self.type == StorageType.LOCAL and not self.path:
            raise ValueError("path is required for local storage")
        if self.type == StorageType.S3 and not self.s3_bucket:
            raise ValueError("s3_bucket is required for s3 storage")
        return self


class StorageConfigUpdate(BaseModel):
    name: Optional[str] = None
    path: Optional[str] = None
    s3_endpoint: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    is_default: Optional[bool] = None


class StorageConfigOut(BaseModel):
    id: str
    name: str
    type: StorageType
    path: Optional[str] = None
    s3_endpoint: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    is_default: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SnapshotOut(BaseModel):
    name: str
    creation_time: datetime
    size: int
    checksum: Optional[str] = None


class RecoverSnapshotRequest(BaseModel):
    location: str
    priority: str = "snapshot"
    api_key: Optional[str] = None


class PeerInfo(BaseModel):
    uri: str


class RaftInfo(BaseModel):
    term: int
    commit: int
    pending_operations: int
    leader: int
    role: str
    is_voter: bool


class ClusterStatus(BaseModel):
    status: str
    peer_id: int
    peers: dict[int, PeerInfo]
    raft_info: RaftInfo


class ClusterNode(BaseModel):
    peer_id: int
    uri: str
    is_leader: bool
    shards_count: int


class CollectionInfo(BaseModel):
    name: str


class CollectionsList(BaseModel):
    collections: list[CollectionInfo]


class CollectionParams(BaseModel):
    shard_number: int = 1
    replication_factor: int = 1


class CollectionConfig(BaseModel):
    params: CollectionParams
    hnsw_config: dict[str, Any] = Field(default_factory=dict)
    optimizer_config: dict[str, Any] = Field(default_factory=dict)
    wal_config: dict[str, Any] = Field(default_factory=dict)


class CollectionDetail(BaseModel):
    name: str
    status: str
    vectors_count: int
    points_count: int
    segments_count: int
    config: CollectionConfig


class LocalShard(BaseModel):
    shard_id: int
    points_count: int
    state: str


class RemoteShard(BaseModel):
    shard_id: int
    peer_id: int
    state: str


class CollectionClusterInfo(BaseModel):
    peer_id: int
    shard_count: int
    local_shards: list[LocalShard]
    remote_shards: list[RemoteShard]


class Capabilities(BaseModel):
    isCloud: bool


class SnapshotRecordOut(BaseModel):
    id: str
    collection_name: str
    snapshot_name: str
    shard_id: Optional[int] = None
    size: int
    checksum: Optional[str] = None
    storage_config_id: Optional[str] = None
    storage_path: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def envelope(result: Any, started: float) -> dict:
    return {"result": result, "status": "ok", "time": round(time.perf_counter() - started, 6)}


def error_envelope(message: str) -> dict:
    return {"status": {"error": message}, "time": 0.0}
