"""
Scheduled tasks for the offer tracker.
This module sets up the notification poll job that runs within the FastAPI application.
"""

import logging
from datetime import datetime
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from offer_tracker.core.config import get_settings
from offer_tracker.database import async_session
from offer_tracker.services.notification_poller import NotificationPoller
from offer_tracker.services.queue_gateway import SqsQueueClient

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None
poller: Optional[NotificationPoller] = None


def get_poller() -> NotificationPoller:
    """Poller shared by the scheduled job and the CLI"""
    global poller

    if poller is None:
        settings = get_settings()
        poller = NotificationPoller(
            queue=SqsQueueClient(settings),
            session_factory=async_session,
            settings=settings,
        )
    return poller


async def poll_notifications_task():
    """Task to pull one batch of notifications off the queue"""
    try:
        received = await get_poller().poll_once()
        if received > 0:
            logger.info(f"Dispatched {received} notification(s)")
    except Exception as e:
        logger.exception(f"Error in notification poll task: {str(e)}")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.debug(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler() -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    scheduler = AsyncIOScheduler()

    # Add job event listeners
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    settings = get_settings()
    if settings.POLL_ENABLED:
        scheduler.add_job(
            poll_notifications_task,
            IntervalTrigger(seconds=settings.POLL_INTERVAL_SECONDS),
            id="poll_notifications",
            name="Poll Notifications",
            replace_existing=True,
            max_instances=1,  # One batch at a time; messages run in their own tasks
            coalesce=True,
        )
        logger.info(f"Notification poll job added, every {settings.POLL_INTERVAL_SECONDS}s")
    else:
        logger.info("Notification polling is disabled. Set POLL_ENABLED=true to enable")

    return scheduler


async def start_scheduler():
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        if jobs:
            logger.info(f"Active scheduled jobs: {len(jobs)}")
            for job in jobs:
                logger.info(f"  - {job.name}: {job.trigger}")
        else:
            logger.info("No scheduled jobs configured")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped successfully")

    if poller is not None and poller.in_flight:
        logger.info(f"Waiting for {poller.in_flight} in-flight notification(s)")
        await poller.drain()


async def get_scheduler_status():
    """Get current scheduler status and job information"""
    global scheduler

    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info,
        "in_flight": poller.in_flight if poller is not None else 0,
    }
