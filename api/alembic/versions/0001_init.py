"""init

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "backup_jobs",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("collection_name", sa.String(length=255), nullable=False),
        sa.Column("shard_id", sa.Integer, nullable=True),
        sa.Column("snapshot_name", sa.String(length=255), nullable=True),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_backup_jobs_status", "backup_jobs", ["status"])
    op.create_table(
        "storage_configs",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=True),
        sa.Column("s3_endpoint", sa.String(length=1024), nullable=True),
        sa.Column("s3_bucket", sa.String(length=255), nullable=True),
        sa.Column("s3_region", sa.String(length=50), nullable=True),
        sa.Column("s3_access_key", sa.String(length=255), nullable=True),
        sa.Column("s3_secret_key", sa.Text, nullable=True),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), onupdate=sa.func.now()),
    )
    op.create_table(
        "snapshot_metadata",
        sa.Column("id", sa.String(length=50), primary_key=True),
        sa.Column("collection_name", sa.String(length=255), nullable=False),
        sa.Column("snapshot_name", sa.String(length=255), nullable=False),
        sa.Column("shard_id", sa.Integer, nullable=True),
        sa.Column("size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("checksum", sa.String(length=255), nullable=True),
        sa.Column("storage_config_id", sa.String(length=50), nullable=True),
        sa.Column("storage_path", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_snapshot_metadata_collection_name", "snapshot_metadata", ["collection_name"])


def downgrade() -> None:
    op.drop_index("ix_snapshot_metadata_collection_name", table_name="snapshot_metadata")
    op.drop_table("snapshot_metadata")
    op.drop_table("storage_configs")
    op.drop_index("ix_backup_jobs_status", table_name="backup_jobs")
    op.drop_table("backup_jobs")
