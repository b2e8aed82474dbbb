"""
APScheduler Configuration

Background job scheduler for the count audit service. The only periodic
job is the reconciliation sweep over open references.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

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
    'misfire_grace_time': 60,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_sweep_job():
    """Called by APScheduler; a failing sweep must not kill the scheduler."""
    from app.jobs.reconciliation_jobs import sweep_open_references

    try:
        await sweep_open_references()
    except Exception as e:
        logger.error(f"Reconciliation sweep failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Background job scheduler disabled")
        return

    if not scheduler.running:
        scheduler.add_job(
            run_sweep_job,
            'interval',
            minutes=settings.RECONCILE_SWEEP_INTERVAL_MINUTES,
            id='reconcile_open_references',
            name='Reconcile Open References',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
