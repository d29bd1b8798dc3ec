from apscheduler.schedulers.background import BackgroundScheduler

from .job_service import JobService
from .logging_setup import get_logger

logger = get_logger("scheduler")

POLL_JOB_ID = "process_jobs"


def build_job_poller(job_service: JobService, interval_seconds: float) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        job_service.process_jobs,
        "interval",
        seconds=interval_seconds,
        id=POLL_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def start_job_poller(job_service: JobService, interval_seconds: float) -> BackgroundScheduler:
    scheduler = build_job_poller(job_service, interval_seconds)
    scheduler.start()
    logger.info("Job poller started (every %ss, max %s concurrent jobs)", interval_seconds, job_service.max_concurrent)
    return scheduler


def stop_job_poller(scheduler: BackgroundScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Job poller stopped")
