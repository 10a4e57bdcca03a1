"""
APScheduler job runner for periodic ESSL sync and attendance processing.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from erp_api.config import settings
from erp_api.core.logging import get_logger

log = get_logger(__name__)

# Global scheduler instance
_scheduler: BackgroundScheduler | None = None


def essl_sync_job():
    """Scheduled job to pull punches from every active ESSL device."""
    from erp_api.core.database import Database
    from erp_api.services.essl import sync_all_devices

    log.info("scheduled_job_starting", job="essl_sync")
    try:
        result = sync_all_devices(Database())
        log.info(
            "scheduled_job_complete",
            job="essl_sync",
            total_records=result["total_records"],
            devices_successful=result["devices_successful"],
            devices_failed=result["devices_failed"],
        )
    except Exception as e:
        log.error("scheduled_job_error", job="essl_sync", error=str(e))


def attendance_process_job():
    """Scheduled job to turn unprocessed punches into daily attendance records."""
    from erp_api.core.database import Database
    from erp_api.services.attendance import process_all_dates

    log.info("scheduled_job_starting", job="attendance_process")
    try:
        result = process_all_dates(Database())
        log.info("scheduled_job_complete", job="attendance_process", **result)
    except Exception as e:
        log.error("scheduled_job_error", job="attendance_process", error=str(e))


def start_scheduler() -> BackgroundScheduler:
    """
    Start the background scheduler.

    Intervals come from settings (essl_sync_interval_minutes,
    attendance_process_interval_minutes).

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        log.warning("scheduler_already_running")
        return _scheduler

    _scheduler = BackgroundScheduler()

    _scheduler.add_job(
        essl_sync_job,
        trigger=IntervalTrigger(minutes=settings.essl_sync_interval_minutes),
        id="essl_sync",
        name="Sync ESSL devices",
        replace_existing=True,
    )

    _scheduler.add_job(
        attendance_process_job,
        trigger=IntervalTrigger(minutes=settings.attendance_process_interval_minutes),
        id="attendance_process",
        name="Process attendance punches",
        replace_existing=True,
    )

    _scheduler.start()
    log.info(
        "scheduler_started",
        essl_sync_minutes=settings.essl_sync_interval_minutes,
        attendance_minutes=settings.attendance_process_interval_minutes,
    )

    return _scheduler


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("scheduler_stopped")
