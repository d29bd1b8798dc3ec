import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import sessionmaker

from .models import Job
from .schemas import JobCreate, JobOut, JobStatus, JobType, TERMINAL_STATUSES


def _to_job(row: Job) -> JobOut:
    return JobOut(
        id=row.id,
        type=JobType(row.type),
        status=JobStatus(row.status),
        collection_name=row.collection_name,
        shard_id=row.shard_id,
        snapshot_name=row.snapshot_name,
        progress=row.progress or 0,
        error=row.error,
        metadata=row.job_metadata,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class JobStore:
    """Persistence for backup jobs. Each call runs in its own session so it is safe from worker threads."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_all(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[JobOut], int]:
        query = select(Job)
        if status is not None:
            query = query.where(Job.status == status.value)
        if job_type is not None:
            query = query.where(Job.type == job_type.value)
        with self._session_factory() as session:
            total = session.scalar(select(func.count()).select_from(query.subquery()))
            rows = session.scalars(
                query.order_by(Job.created_at.desc()).limit(limit).offset((page - 1) * limit)
            ).all()
            return [_to_job(row) for row in rows], total or 0

    def get(self, job_id: str) -> Optional[JobOut]:
        with self._session_factory() as session:
            row = session.get(Job, job_id)
            return _to_job(row) if row else None

    def find_pending(self, limit: Optional[int] = None) -> list[JobOut]:
        query = select(Job).where(Job.status == JobStatus.PENDING.value).order_by(Job.created_at.asc())
        if limit is not None:
            query = query.limit(limit)
        with self._session_factory() as session:
            return [_to_job(row) for row in session.scalars(query).all()]

    def find_running(self) -> list[JobOut]:
        with self._session_factory() as session:
            rows = session.scalars(select(Job).where(Job.status == JobStatus.RUNNING.value)).all()
            return [_to_job(row) for row in rows]

    def create(self, payload: JobCreate) -> JobOut:
        row = Job(
            id=str(uuid.uuid4()),
            type=payload.type.value,
            status=JobStatus.PENDING.value,
            collection_name=payload.collection_name,
            shard_id=payload.shard_id,
            snapshot_name=payload.snapshot_name,
            progress=0,
            job_metadata=payload.metadata,
            created_at=datetime.utcnow(),
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job(row)

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        expected: Iterable[JobStatus],
        error: Optional[str] = None,
        progress: Optional[int] = None,
    ) -> Optional[JobOut]:
        """
        Move a job to ``status`` only if it is currently in one of ``expected``.

        Runs as a single conditional UPDATE, so two callers racing on the same
        row cannot both succeed. Returns the updated job, or None when the row
        is missing or was not in an expected state.
        """
        allowed = [s.value for s in expected]
        if not allowed:
            return None
        now = datetime.utcnow()
        values = {"status": status.value}
        if status == JobStatus.RUNNING:
            values["started_at"] = now
        elif status in TERMINAL_STATUSES:
            values["completed_at"] = now
        elif status == JobStatus.PENDING:
            values.update(progress=0, error=None, started_at=None, completed_at=None)
        if error is not None:
            values["error"] = error
        if progress is not None:
            values["progress"] = progress

        with self._session_factory() as session:
            result = session.execute(
                update(Job).where(Job.id == job_id, Job.status.in_(allowed)).values(**values)
            )
            session.commit()
            if result.rowcount != 1:
                return None
        return self.get(job_id)

    def update_progress(self, job_id: str, progress: int) -> Optional[JobOut]:
        """Record progress of a running job. Returns None when the job is not running."""
        with self._session_factory() as session:
            result = session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
                .values(progress=max(0, min(100, progress)))
            )
            session.commit()
            if result.rowcount != 1:
                return None
        return self.get(job_id)

    def set_snapshot_name(self, job_id: str, snapshot_name: str) -> None:
        with self._session_factory() as session:
            session.execute(update(Job).where(Job.id == job_id).values(snapshot_name=snapshot_name))
            session.commit()

