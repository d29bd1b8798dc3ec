from functools import lru_cache

from .broadcast import JobBroadcaster
from .config import settings
from .db import SessionLocal
from .job_service import JobService
from .job_store import JobStore
from .qdrant_client import QdrantClient, get_client
from .snapshots import SnapshotMetadataStore, SnapshotService


@lru_cache(maxsize=None)
def get_qdrant_client() -> QdrantClient:
    return get_client()


@lru_cache(maxsize=None)
def get_broadcaster() -> JobBroadcaster:
    return JobBroadcaster()


@lru_cache(maxsize=None)
def get_snapshot_service() -> SnapshotService:
    return SnapshotService(get_qdrant_client(), SnapshotMetadataStore(SessionLocal, settings.storage_default_path))


@lru_cache(maxsize=None)
def get_job_service() -> JobService:
    return JobService(
        store=JobStore(SessionLocal),
        snapshots=get_snapshot_service(),
        broadcaster=get_broadcaster(),
        qdrant_base_url=settings.qdrant_base_url,
        max_concurrent=settings.max_concurrent_jobs,
    )
