"""
APScheduler setup for housekeeping jobs.

The only recurring work is notification cleanup: expired notifications and
read ones past the retention window are removed on a fixed interval.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore

from app.database import SessionLocal
from app.services.notification import NotificationDispatcher
from app.config import get_settings
import os

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

settings = get_settings()


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global scheduler
    if scheduler is None:
        tz = os.environ.get('TZ', 'UTC')
        logger.info(f"Scheduler using timezone: {tz}")

        scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            timezone=tz
        )

        _setup_scheduled_jobs()

    return scheduler


def _setup_scheduled_jobs():
    scheduler.add_job(
        cleanup_notifications,
        trigger=IntervalTrigger(hours=settings.notification_cleanup_interval_hours),
        id='notification_cleanup',
        name='Notification Cleanup',
        replace_existing=True,
        max_instances=1,
    )

    logger.info("Scheduled jobs configured:")
    logger.info(f"  - Notification cleanup: every {settings.notification_cleanup_interval_hours} hours")


async def cleanup_notifications() -> Optional[dict]:
    """Delete expired notifications and read ones older than the retention window."""
    logger.info("Starting scheduled notification cleanup")

    db = SessionLocal()

    try:
        removed = NotificationDispatcher(db).cleanup()
        logger.info(
            f"Notification cleanup complete: {removed['expired']} expired, "
            f"{removed['old_read']} old read"
        )
        return removed
    except Exception as e:
        db.rollback()
        logger.error(f"Error in notification cleanup job: {e}")
        return None
    finally:
        db.close()


def start_scheduler():
    """Start the scheduler (call this from FastAPI startup)."""
    scheduler_instance = get_scheduler()

    if not scheduler_instance.running:
        scheduler_instance.start()
        logger.info("APScheduler started successfully")

        for job in scheduler_instance.get_jobs():
            logger.info(f"Next '{job.name}': {job.next_run_time}")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """Stop the scheduler (call this from FastAPI shutdown)."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")
        scheduler = None


def get_scheduler_status() -> dict:
    """Get scheduler status for the health endpoint."""
    if scheduler is None or not scheduler.running:
        return {
            "running": False,
            "jobs": [],
            "next_run": None
        }

    jobs = []
    next_run = None

    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        })
        if job.next_run_time and (next_run is None or job.next_run_time < next_run):
            next_run = job.next_run_time

    return {
        "running": True,
        "jobs": jobs,
        "next_run": next_run.isoformat() if next_run else None
    }
