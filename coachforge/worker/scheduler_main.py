"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from coachforge.core.config import settings
from coachforge.core.logging import configure_logging
from coachforge.db.session import SessionLocal
from coachforge.services.job_runner import sync_program_progress_for_all


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running progress sync once on startup")
            run_progress_sync_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        run_progress_sync_job,
        trigger="cron",
        hour=settings.progress_sync_hour,
        minute=settings.progress_sync_minute,
        id="progress_sync_job",
        replace_existing=True,
    )
    logger.info(
        "Registered progress sync job (daily at %02d:%02d %s)",
        settings.progress_sync_hour,
        settings.progress_sync_minute,
        settings.scheduler_timezone,
    )


def run_progress_sync_job() -> None:
    session = SessionLocal()
    try:
        result = sync_program_progress_for_all(session)
        logger.info(
            "Progress sync complete: programs=%s, updated=%s, failures=%s",
            result.programs_processed,
            result.programs_updated,
            result.failures,
        )
    except Exception:  # pragma: no cover - defensive guard
        logger.exception("Progress sync job failed")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
