import asyncio
import threading
from concurrent.futures import Future
from typing import Any, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from .logging_setup import get_logger
from .schemas import JobOut

logger = get_logger("broadcast")


class JobBroadcaster:
    """
    Fan job updates out to connected WebSocket clients.

    Job updates are produced on worker and scheduler threads, so ``publish``
    hands the send coroutine to the event loop bound at startup. Until a
    loop is bound, publishing is a no-op.
    """

    def __init__(self):
        self._clients: list[tuple[WebSocket, Optional[str]]] = []
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    async def connect(self, websocket: WebSocket, job_id: Optional[str] = None) -> None:
        await websocket.accept()
        with self._lock:
            self._clients.append((websocket, job_id))
        logger.debug("WebSocket client connected (job filter=%s)", job_id)

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            self._clients = [(ws, job_filter) for ws, job_filter in self._clients if ws is not websocket]

    def job_status(self, job: JobOut) -> None:
        self.publish("job_status", job)

    def job_progress(self, job: JobOut) -> None:
        self.publish("job_progress", job)

    def publish(self, message_type: str, job: JobOut) -> Optional[Future]:
        loop = self._loop
        if loop is None or loop.is_closed():
            return None
        message = {
            "type": message_type,
            "payload": {
                "job_id": job.id,
                "status": job.status.value,
                "progress": job.progress,
                "error": job.error,
                "job": jsonable_encoder(job),
            },
        }
        return asyncio.run_coroutine_threadsafe(self._send(job.id, message), loop)

    async def _send(self, job_id: str, message: dict[str, Any]) -> None:
        with self._lock:
            targets = [ws for ws, job_filter in self._clients if job_filter in (None, job_id)]
        for websocket in targets:
            try:
                await websocket.send_json(message)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Dropping WebSocket client: %s", exc)
                self.disconnect(websocket)
