"""
APScheduler configuration and job scheduling for SiteGuard.

The scheduler is the collaborator that runs backup jobs off the request
path: a start request adds a one-shot job that fires as soon as possible,
a cancel request removes it if it has not fired yet.
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger


logger = logging.getLogger(__name__)

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    # One worker: jobs never run in parallel
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        jobs = scheduler.get_jobs()
        for job in jobs:
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"Pending job: {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def schedule_as_soon_as_possible(job_id: str):
    """
    Add a one-time backup job that fires immediately.

    Args:
        job_id: Scheduler job id (also the handle used to clear it)

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    # 1 second delay so the request commits before the job starts
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=1)),
        id=job_id,
        name='Full site backup',
        replace_existing=True
    )

    logger.info(f"Scheduled backup job: {job_id}")


def clear_schedule(job_id: str):
    """Remove a pending backup job; a job that already fired is unaffected."""
    if scheduler is None:
        return

    try:
        scheduler.remove_job(job_id)
        logger.info(f"Removed pending backup job: {job_id}")
    except JobLookupError:
        logger.debug(f"No pending backup job to remove: {job_id}")


class APSchedulerTrigger:
    """Scheduler collaborator handed to BackupService."""

    def schedule_as_soon_as_possible(self, job_id: str):
        schedule_as_soon_as_possible(job_id)

    def clear_schedule(self, job_id: str):
        clear_schedule(job_id)


def _execute_backup_wrapper():
    """
    Run one backup job inside the Flask app context.

    Called by APScheduler in its worker thread.
    """
    from siteguard.backup.service import build_orchestrator, execute_full_backup

    with flask_app.app_context():
        service = flask_app.extensions['siteguard']
        execute_full_backup(
            lambda: build_orchestrator(flask_app.config),
            service.state_store
        )


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
