"""
APScheduler Configuration for the counting device

Background jobs:
- Connectivity check: pings the inventory backend and flips the device's
  online flag (going online replays the offline queue)
- Keg level refresh: added/removed by the KegLevelPoller while a keg product
  is on screen
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from taproom.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 30,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


def start_scheduler(sync_service=None):
    """Start the background job scheduler."""
    if not scheduler.running:
        from taproom.jobs.connectivity_jobs import check_connectivity

        if sync_service is not None:
            # Ping the backend so the online flag follows reality
            scheduler.add_job(
                check_connectivity,
                'interval',
                seconds=settings.CONNECTIVITY_CHECK_INTERVAL_SECONDS,
                args=[sync_service],
                id='connectivity_check',
                name='Connectivity Check',
                replace_existing=True,
            )

        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
        }
        for job in jobs
    ]
