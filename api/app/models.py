from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Text, JSON
from sqlalchemy.sql import func
from .db import Base


class Job(Base):
    __tablename__ = "backup_jobs"

    id = Column(String(50), primary_key=True)
    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    collection_name = Column(String(255), nullable=False)
    shard_id = Column(Integer, nullable=True)
    snapshot_name = Column(String(255), nullable=True)
    progress = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    job_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class StorageConfig(Base):
    __tablename__ = "storage_configs"

    id = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)
    path = Column(String(1024), nullable=True)
    s3_endpoint = Column(String(1024), nullable=True)
    s3_bucket = Column(String(255), nullable=True)
    s3_region = Column(String(50), nullable=True)
    s3_access_key = Column(String(255), nullable=True)
    s3_secret_key = Column(Text, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class SnapshotRecord(Base):
    __tablename__ = "snapshot_metadata"

    id = Column(String(50), primary_key=True)
    collection_name = Column(String(255), nullable=False, index=True)
    snapshot_name = Column(String(255), nullable=False)
    shard_id = Column(Integer, nullable=True)
    size = Column(BigInteger, nullable=False, default=0)
    checksum = Column(String(255), nullable=True)
    storage_config_id = Column(String(50), nullable=True)
    storage_path = Column(String(1024), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
