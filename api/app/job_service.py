"""
Job orchestration for snapshot backups and restores.

Jobs are rows in ``backup_jobs``. The API only creates, cancels and retries
them; a periodic poll (``process_jobs``) claims pending rows and runs them on
a small thread pool. At most ``max_concurrent`` jobs run at once.

Lifecycle::

    pending -> running -> completed | failed | cancelled
    pending -> cancelled
    failed | cancelled -> pending   (retry)

Every status write is a conditional update against the expected current
status, so a job cancelled while its worker is still talking to Qdrant stays
cancelled when the worker finishes.
"""
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from .broadcast import JobBroadcaster
from .exceptions import JobStateError
from .job_store import JobStore
from .logging_setup import get_logger
from .schemas import (
    CANCELLABLE_STATUSES,
    RETRYABLE_STATUSES,
    JobCreate,
    JobOut,
    JobsPage,
    JobStatus,
    JobType,
    RecoverSnapshotRequest,
)
from .snapshots import SnapshotService

logger = get_logger("jobs")

DEFAULT_MAX_CONCURRENT_JOBS = 3
INTERRUPTED_MESSAGE = "Interrupted by service restart"


class JobCancelled(Exception):
    pass


class RunningJob:
    """In-memory handle for a launched job."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.future: Optional[Future] = None
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        if self.future is not None:
            self.future.cancel()

    def check(self) -> None:
        if self._cancelled.is_set():
            raise JobCancelled(self.job_id)

    def pause(self, seconds: float) -> None:
        if seconds > 0 and self._cancelled.wait(seconds):
            raise JobCancelled(self.job_id)


class JobService:
    def __init__(
        self,
        store: JobStore,
        snapshots: SnapshotService,
        broadcaster: JobBroadcaster,
        qdrant_base_url: str,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_JOBS,
        progress_pause: float = 0.5,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.snapshots = snapshots
        self.broadcaster = broadcaster
        self.qdrant_base_url = qdrant_base_url.rstrip("/")
        self.max_concurrent = max_concurrent
        self.progress_pause = progress_pause
        self._executor = executor or ThreadPoolExecutor(max_workers=max(1, max_concurrent), thread_name_prefix="job")
        self._running: dict[str, RunningJob] = {}
        self._running_lock = threading.Lock()
        self._poll_lock = threading.Lock()
        self._handlers: dict[JobType, Callable[[JobOut, RunningJob], None]] = {
            JobType.BACKUP: self._execute_backup,
            JobType.RESTORE: self._execute_restore,
            JobType.SHARD_BACKUP: self._execute_shard_backup,
            JobType.SHARD_RESTORE: self._execute_shard_restore,
        }

    @property
    def running_count(self) -> int:
        with self._running_lock:
            return len(self._running)

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobsPage:
        items, total = self.store.find_all(status, job_type, page, limit)
        return JobsPage(items=items, total=total, page=page, limit=limit)

    def get_job(self, job_id: str) -> Optional[JobOut]:
        return self.store.get(job_id)

    def create_job(self, payload: JobCreate) -> JobOut:
        logger.info("Creating job: %s for %s", payload.type.value, payload.collection_name)
        job = self.store.create(payload)
        self.broadcaster.job_status(job)
        return job

    def cancel_job(self, job_id: str) -> Optional[JobOut]:
        job = self.store.get(job_id)
        if job is None:
            return None
        if job.status not in CANCELLABLE_STATUSES:
            raise JobStateError(f"Cannot cancel job with status: {job.status.value}")

        # The worker releases its own handle, so the slot stays taken until it returns.
        with self._running_lock:
            handle = self._running.get(job_id)
        if handle is not None:
            handle.cancel()

        updated = self.store.transition(job_id, JobStatus.CANCELLED, expected=CANCELLABLE_STATUSES)
        if updated is None:
            current = self.store.get(job_id)
            if current is None:
                return None
            raise JobStateError(f"Cannot cancel job with status: {current.status.value}")
        logger.info("Job cancelled: %s", job_id)
        self.broadcaster.job_status(updated)
        return updated

    def retry_job(self, job_id: str) -> Optional[JobOut]:
        job = self.store.get(job_id)
        if job is None:
            return None
        if job.status not in RETRYABLE_STATUSES:
            raise JobStateError(f"Cannot retry job with status: {job.status.value}")

        updated = self.store.transition(job_id, JobStatus.PENDING, expected=RETRYABLE_STATUSES)
        if updated is None:
            current = self.store.get(job_id)
            if current is None:
                return None
            raise JobStateError(f"Cannot retry job with status: {current.status.value}")
        logger.info("Job queued for retry: %s", job_id)
        self.broadcaster.job_status(updated)
        return updated

    def process_jobs(self) -> list[JobOut]:
        """Claim pending jobs up to the free slots and launch them. Returns the launched jobs."""
        with self._poll_lock:
            slots = self.max_concurrent - self.running_count
            if slots <= 0:
                return []
            launched = []
            for job in self.store.find_pending(limit=slots):
                with self._running_lock:
                    if job.id in self._running:
                        continue
                claimed = self.store.transition(job.id, JobStatus.RUNNING, expected=(JobStatus.PENDING,))
                if claimed is None:
                    continue
                self._launch(claimed)
                launched.append(claimed)
            return launched

    def recover_interrupted(self) -> int:
        """Fail jobs left running by a previous process; nothing here owns them any more."""
        recovered = 0
        for job in self.store.find_running():
            with self._running_lock:
                if job.id in self._running:
                    continue
            failed = self.store.transition(
                job.id, JobStatus.FAILED, expected=(JobStatus.RUNNING,), error=INTERRUPTED_MESSAGE
            )
            if failed is not None:
                recovered += 1
                logger.warning("Job %s marked failed: %s", job.id, INTERRUPTED_MESSAGE)
                self.broadcaster.job_status(failed)
        return recovered

    def shutdown(self, wait: bool = False) -> None:
        with self._running_lock:
            handles = list(self._running.values())
        if not wait:
            for handle in handles:
                handle.cancel()
        self._executor.shutdown(wait=wait)

    def _launch(self, job: JobOut) -> None:
        logger.info("Starting job: %s (%s)", job.id, job.type.value)
        handle = RunningJob(job.id)
        with self._running_lock:
            self._running[job.id] = handle
        self.broadcaster.job_status(job)
        handle.future = self._executor.submit(self._run, job, handle)
        handle.future.add_done_callback(lambda _: self._release(job.id, handle))

    def _release(self, job_id: str, handle: RunningJob) -> None:
        with self._running_lock:
            if self._running.get(job_id) is handle:
                del self._running[job_id]

    def _run(self, job: JobOut, handle: RunningJob) -> None:
        try:
            self._handlers[job.type](job, handle)
            handle.check()
            completed = self.store.transition(
                job.id, JobStatus.COMPLETED, expected=(JobStatus.RUNNING,), progress=100
            )
            if completed is not None:
                logger.info("Job completed: %s", job.id)
                self.broadcaster.job_status(completed)
        except JobCancelled:
            logger.info("Job stopped after cancellation: %s", job.id)
        except Exception as exc:  # noqa: BLE001
            if handle.cancelled:
                logger.info("Job %s raised after cancellation: %s", job.id, exc)
                return
            logger.exception("Job failed: %s", job.id)
            failed = self.store.transition(
                job.id, JobStatus.FAILED, expected=(JobStatus.RUNNING,), error=str(exc) or exc.__class__.__name__
            )
            if failed is not None:
                self.broadcaster.job_status(failed)

    def _progress(self, job: JobOut, handle: RunningJob, progress: int) -> None:
        handle.check()
        updated = self.store.update_progress(job.id, progress)
        if updated is None:
            # Row is no longer running, e.g. cancelled between claim and launch.
            raise JobCancelled(job.id)
        self.broadcaster.job_progress(updated)

    def _restore_request(self, job: JobOut, default_location: Optional[str]) -> RecoverSnapshotRequest:
        metadata = job.metadata or {}
        location = metadata.get("url") or default_location
        if not location:
            raise ValueError("No restore source specified")
        return RecoverSnapshotRequest(
            location=location,
            priority=metadata.get("priority") or "snapshot",
            api_key=metadata.get("api_key"),
        )

    def _require_shard(self, job: JobOut, action: str) -> int:
        if job.shard_id is None:
            raise ValueError(f"Shard ID required for shard {action}")
        return job.shard_id

    def _execute_backup(self, job: JobOut, handle: RunningJob) -> None:
        self._progress(job, handle, 10)
        handle.pause(self.progress_pause)
        storage_config_id = (job.metadata or {}).get("storage_config_id")
        snapshot = self.snapshots.create_snapshot(job.collection_name, wait=True, storage_config_id=storage_config_id)
        self.store.set_snapshot_name(job.id, snapshot.name)
        self._progress(job, handle, 100)

    def _execute_restore(self, job: JobOut, handle: RunningJob) -> None:
        default_location = None
        if job.snapshot_name:
            default_location = f"{self.qdrant_base_url}/collections/{job.collection_name}/snapshots/{job.snapshot_name}"
        request = self._restore_request(job, default_location)
        self._progress(job, handle, 10)
        self.snapshots.recover_snapshot(job.collection_name, request)
        self._progress(job, handle, 100)

    def _execute_shard_backup(self, job: JobOut, handle: RunningJob) -> None:
        shard_id = self._require_shard(job, "backup")
        self._progress(job, handle, 10)
        storage_config_id = (job.metadata or {}).get("storage_config_id")
        snapshot = self.snapshots.create_shard_snapshot(
            job.collection_name, shard_id, wait=True, storage_config_id=storage_config_id
        )
        self.store.set_snapshot_name(job.id, snapshot.name)
        self._progress(job, handle, 100)

    def _execute_shard_restore(self, job: JobOut, handle: RunningJob) -> None:
        shard_id = self._require_shard(job, "restore")
        default_location = None
        if job.snapshot_name:
            default_location = (
                f"{self.qdrant_base_url}/collections/{job.collection_name}"
                f"/shards/{shard_id}/snapshots/{job.snapshot_name}"
            )
        request = self._restore_request(job, default_location)
        self._progress(job, handle, 10)
        self.snapshots.recover_shard_snapshot(job.collection_name, shard_id, request)
        self._progress(job, handle, 100)
