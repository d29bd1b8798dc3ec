import threading
import time

import pytest

from api.app.exceptions import JobStateError, QdrantError
from api.app.job_service import INTERRUPTED_MESSAGE
from api.app.schemas import JobCreate, JobStatus, JobType


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


def backup(collection="docs", **kwargs):
    return JobCreate(type=JobType.BACKUP, collection_name=collection, **kwargs)


def run_all(service):
    launched = service.process_jobs()
    wait_until(lambda: service.running_count == 0)
    return launched


def test_create_job_is_pending_and_broadcast(job_service, broadcaster):
    job = job_service.create_job(backup())

    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert job.started_at is None
    assert broadcaster.statuses(job.id) == ["pending"]


def test_list_jobs_filters_and_paginates(job_service, job_store):
    first = job_service.create_job(backup("a"))
    job_service.create_job(backup("b"))
    job_service.create_job(JobCreate(type=JobType.RESTORE, collection_name="c", snapshot_name="s.snapshot"))
    job_store.transition(first.id, JobStatus.RUNNING, expected=(JobStatus.PENDING,))

    page = job_service.list_jobs(page=1, limit=2)
    assert page.total == 3
    assert len(page.items) == 2
    assert page.items[0].collection_name == "c"

    running = job_service.list_jobs(status=JobStatus.RUNNING)
    assert [j.id for j in running.items] == [first.id]

    restores = job_service.list_jobs(job_type=JobType.RESTORE)
    assert restores.total == 1


def test_cancel_pending_job(job_service, broadcaster):
    job = job_service.create_job(backup())

    cancelled = job_service.cancel_job(job.id)

    assert cancelled.status == JobStatus.CANCELLED
    assert cancelled.completed_at is not None
    assert broadcaster.statuses(job.id) == ["pending", "cancelled"]


def test_cancel_missing_job_returns_none(job_service):
    assert job_service.cancel_job("missing") is None
    assert job_service.retry_job("missing") is None


def test_cancel_completed_job_is_rejected(job_service, job_store):
    job = job_service.create_job(backup())
    run_all(job_service)
    assert job_store.get(job.id).status == JobStatus.COMPLETED

    with pytest.raises(JobStateError, match="completed"):
        job_service.cancel_job(job.id)


def test_retry_failed_job_resets_to_pending(job_service, snapshots):
    snapshots.error = QdrantError("upstream exploded")
    job = job_service.create_job(backup())
    run_all(job_service)

    retried = job_service.retry_job(job.id)

    assert retried.status == JobStatus.PENDING
    assert retried.progress == 0
    assert retried.error is None
    assert retried.started_at is None
    assert retried.completed_at is None


def test_retry_pending_job_is_rejected(job_service):
    job = job_service.create_job(backup())

    with pytest.raises(JobStateError, match="pending"):
        job_service.retry_job(job.id)


def test_backup_runs_to_completion(job_service, job_store, snapshots, broadcaster):
    job = job_service.create_job(backup(metadata={"storage_config_id": "store-1"}))

    launched = run_all(job_service)

    assert [j.id for j in launched] == [job.id]
    done = job_store.get(job.id)
    assert done.status == JobStatus.COMPLETED
    assert done.progress == 100
    assert done.snapshot_name == "docs-snap.snapshot"
    assert done.started_at is not None and done.completed_at is not None
    assert snapshots.calls == [("create_snapshot", "docs", "store-1")]
    assert broadcaster.statuses(job.id) == ["pending", "running", "completed"]
    progress = [j.progress for kind, j in broadcaster.messages if kind == "job_progress"]
    assert progress == [10, 100]


def test_failure_marks_job_failed_with_error(job_service, job_store, snapshots, broadcaster):
    snapshots.error = QdrantError("Qdrant returned 500")
    job = job_service.create_job(backup())

    run_all(job_service)

    failed = job_store.get(job.id)
    assert failed.status == JobStatus.FAILED
    assert "Qdrant returned 500" in failed.error
    assert broadcaster.statuses(job.id)[-1] == "failed"


def test_running_jobs_are_capped(job_service, job_store, snapshots):
    snapshots.gate = threading.Event()
    jobs = [job_service.create_job(backup(f"c{i}")) for i in range(5)]

    launched = job_service.process_jobs()

    assert [j.id for j in launched] == [j.id for j in jobs[:3]]
    assert job_service.running_count == 3
    assert job_service.process_jobs() == []
    assert len(job_store.find_pending()) == 2

    snapshots.gate.set()
    wait_until(lambda: job_service.running_count == 0)
    second = job_service.process_jobs()
    assert [j.id for j in second] == [j.id for j in jobs[3:]]
    wait_until(lambda: job_service.running_count == 0)
    assert all(job_store.get(j.id).status == JobStatus.COMPLETED for j in jobs)


def test_cancelled_running_job_stays_cancelled(job_service, job_store, snapshots):
    snapshots.gate = threading.Event()
    job = job_service.create_job(backup())
    job_service.process_jobs()
    assert snapshots.started.wait(5)

    cancelled = job_service.cancel_job(job.id)
    assert cancelled.status == JobStatus.CANCELLED
    assert job_service.running_count == 1

    snapshots.gate.set()
    wait_until(lambda: job_service.running_count == 0)
    assert job_store.get(job.id).status == JobStatus.CANCELLED


def test_cancelled_jobs_hold_their_slots_until_workers_return(job_service, job_store, snapshots):
    snapshots.gate = threading.Event()
    jobs = [job_service.create_job(backup(f"c{i}")) for i in range(6)]
    job_service.process_jobs()
    wait_until(lambda: len(snapshots.calls) == 3)

    for job in jobs[:3]:
        job_service.cancel_job(job.id)

    assert job_service.process_jobs() == []
    assert all(job_store.get(j.id).status == JobStatus.PENDING for j in jobs[3:])

    snapshots.gate.set()
    wait_until(lambda: job_service.running_count == 0)
    relaunched = job_service.process_jobs()
    assert [j.id for j in relaunched] == [j.id for j in jobs[3:]]
    wait_until(lambda: job_service.running_count == 0)
    assert len(snapshots.calls) == 6


def test_job_cancelled_right_after_claim_never_reaches_qdrant(job_service, job_store, snapshots, monkeypatch):
    job = job_service.create_job(backup())
    claim = job_store.transition

    def claim_then_cancel(job_id, status, expected, **kwargs):
        result = claim(job_id, status, expected, **kwargs)
        if result is not None and status == JobStatus.RUNNING:
            claim(job_id, JobStatus.CANCELLED, expected=(JobStatus.RUNNING,))
        return result

    monkeypatch.setattr(job_store, "transition", claim_then_cancel)

    launched = run_all(job_service)

    assert [j.id for j in launched] == [job.id]
    assert snapshots.calls == []
    assert job_store.get(job.id).status == JobStatus.CANCELLED


def test_claim_only_succeeds_once(job_service, job_store):
    job = job_service.create_job(backup())

    first = job_store.transition(job.id, JobStatus.RUNNING, expected=(JobStatus.PENDING,))
    second = job_store.transition(job.id, JobStatus.RUNNING, expected=(JobStatus.PENDING,))

    assert first is not None and first.status == JobStatus.RUNNING
    assert second is None


def test_restore_defaults_to_snapshot_on_cluster(job_service, snapshots):
    job_service.create_job(JobCreate(type=JobType.RESTORE, collection_name="docs", snapshot_name="s1.snapshot"))

    run_all(job_service)

    name, collection, request = snapshots.calls[0]
    assert (name, collection) == ("recover_snapshot", "docs")
    assert request.location == "http://qdrant.test:6333/collections/docs/snapshots/s1.snapshot"
    assert request.priority == "snapshot"
    assert request.api_key is None


def test_restore_prefers_metadata_url(job_service, snapshots):
    job_service.create_job(
        JobCreate(
            type=JobType.RESTORE,
            collection_name="docs",
            snapshot_name="ignored.snapshot",
            metadata={"url": "s3://bucket/docs.snapshot", "priority": "replica", "api_key": "k"},
        )
    )

    run_all(job_service)

    request = snapshots.calls[0][2]
    assert request.location == "s3://bucket/docs.snapshot"
    assert request.priority == "replica"
    assert request.api_key == "k"


def test_shard_jobs_use_shard_endpoints(job_service, job_store, snapshots):
    backup_job = job_service.create_job(JobCreate(type=JobType.SHARD_BACKUP, collection_name="docs", shard_id=2))
    job_service.create_job(
        JobCreate(type=JobType.SHARD_RESTORE, collection_name="docs", shard_id=1, snapshot_name="docs-1.snapshot")
    )

    run_all(job_service)

    assert job_store.get(backup_job.id).snapshot_name == "docs-2.snapshot"
    calls = {call[0]: call for call in snapshots.calls}
    assert calls["create_shard_snapshot"] == ("create_shard_snapshot", "docs", 2)
    _, collection, shard_id, request = calls["recover_shard_snapshot"]
    assert (collection, shard_id) == ("docs", 1)
    assert request.location == "http://qdrant.test:6333/collections/docs/shards/1/snapshots/docs-1.snapshot"


def test_retried_job_runs_again(job_service, job_store, snapshots):
    snapshots.error = RuntimeError("temporary")
    job = job_service.create_job(backup())
    run_all(job_service)
    assert job_store.get(job.id).status == JobStatus.FAILED

    snapshots.error = None
    job_service.retry_job(job.id)
    run_all(job_service)

    assert job_store.get(job.id).status == JobStatus.COMPLETED


def test_recover_interrupted_fails_orphaned_running_jobs(job_service, job_store, broadcaster):
    job = job_service.create_job(backup())
    job_store.transition(job.id, JobStatus.RUNNING, expected=(JobStatus.PENDING,))

    assert job_service.recover_interrupted() == 1

    failed = job_store.get(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == INTERRUPTED_MESSAGE
    assert broadcaster.statuses(job.id)[-1] == "failed"


def test_job_create_requires_shard_and_restore_source():
    with pytest.raises(ValueError, match="shard_id"):
        JobCreate(type=JobType.SHARD_BACKUP, collection_name="docs")
    with pytest.raises(ValueError, match="snapshot_name or metadata.url"):
        JobCreate(type=JobType.RESTORE, collection_name="docs")
