import asyncio

from fastapi import FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import Base, engine
from .deps import get_broadcaster, get_job_service
from .logging_setup import setup_logging
from .routers import cluster, collections, jobs, snapshots, storage, system
from .scheduler import start_job_poller, stop_job_poller
from .schemas import error_envelope

app = FastAPI(title="Qdrant Backup Console API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"]
    if settings.console_base_url == "*"
    else [settings.console_base_url],
    allow_credentials=settings.console_base_url != "*",
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"]
)


@app.on_event("startup")
async def startup():
    logger = setup_logging(settings.log_level, settings.log_file)
    Base.metadata.create_all(bind=engine)
    get_broadcaster().bind_loop(asyncio.get_running_loop())
    if not settings.job_runner_enabled:
        logger.info("Job runner disabled")
        return
    job_service = get_job_service()
    recovered = job_service.recover_interrupted()
    if recovered:
        logger.warning("Marked %s interrupted job(s) as failed", recovered)
    app.state.job_poller = start_job_poller(job_service, settings.job_poll_interval_seconds)


@app.on_event("shutdown")
def shutdown():
    poller = getattr(app.state, "job_poller", None)
    if poller is not None:
        stop_job_poller(poller)
        get_job_service().shutdown(wait=False)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_envelope(str(exc.detail)), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = "; ".join(error.get("msg", "") for error in exc.errors())
    return JSONResponse(status_code=422, content=error_envelope(f"Invalid request: {messages}"))


@app.get("/healthz")
def health():
    return {"status": "ok"}


@app.websocket("/api/v1/ws")
async def jobs_ws(websocket: WebSocket):
    await _serve_updates(websocket, None)


@app.websocket("/api/v1/ws/jobs/{job_id}")
async def job_ws(websocket: WebSocket, job_id: str):
    await _serve_updates(websocket, job_id)


async def _serve_updates(websocket: WebSocket, job_id):
    broadcaster = get_broadcaster()
    await broadcaster.connect(websocket, job_id)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)


app.include_router(cluster.router)
app.include_router(collections.router)
app.include_router(snapshots.router)
app.include_router(jobs.router)
app.include_router(storage.router)
app.include_router(system.router)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response: Response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "same-origin"
    return response
