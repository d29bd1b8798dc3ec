import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="console-test-")
_KEY_FILE = os.path.join(_TMP_DIR, "encryption_key")
with open(_KEY_FILE, "w") as handle:
    handle.write("test-encryption-key")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'console.db')}"
os.environ["CONSOLE_ENCRYPTION_KEY_FILE"] = _KEY_FILE
os.environ["JOB_RUNNER_ENABLED"] = "false"
os.environ["QDRANT_HOST"] = "qdrant.test"

import pytest  # noqa: E402

from api.app.db import Base, SessionLocal, engine  # noqa: E402
from api.app.job_service import JobService  # noqa: E402
from api.app.job_store import JobStore  # noqa: E402

from .fakes import FakeSnapshotService, RecordingBroadcaster  # noqa: E402


@pytest.fixture()
def session_factory():
    Base.metadata.create_all(bind=engine)
    yield SessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture()
def snapshots():
    return FakeSnapshotService()


@pytest.fixture()
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture()
def job_service(job_store, snapshots, broadcaster):
    service = JobService(
        store=job_store,
        snapshots=snapshots,
        broadcaster=broadcaster,
        qdrant_base_url="http://qdrant.test:6333",
        max_concurrent=3,
        progress_pause=0,
    )
    yield service
    if snapshots.gate is not None:
        snapshots.gate.set()
    service.shutdown(wait=True)
