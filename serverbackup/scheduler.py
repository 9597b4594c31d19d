"""
APScheduler configuration for daemon mode.

Runs the backup on a cron schedule instead of relying on an external
crontab. Only one run executes at a time. SIGINT/SIGTERM interrupt the
in-flight run at its next target boundary, then stop the scheduler once that
run has resumed its services.
"""

import signal
import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from serverbackup.config import ConfigurationError


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'server_backup'

# Global scheduler instance
scheduler = None

# Executor of the backup currently running on the scheduler thread
active_executor = None


def init_scheduler(settings, config_name: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
    """
    Initialize and configure APScheduler.

    Args:
        settings: Settings providing the cron schedule
        config_name: Config name reloaded for every run
        overrides: Config overrides reapplied for every run

    Raises:
        ConfigurationError: If the cron expression is invalid
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    try:
        trigger = CronTrigger.from_crontab(settings.schedule_cron)
    except ValueError as e:
        raise ConfigurationError(f"Invalid BACKUP_SCHEDULE '{settings.schedule_cron}': {e}")

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never overlap two backup runs
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(executors=executors, job_defaults=job_defaults)

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config_name, overrides],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name='Server Backup',
        replace_existing=True
    )

    logger.info(f"Scheduled backup job ({settings.schedule_cron})")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() is called.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    for job in get_scheduled_jobs():
        logger.info(f"  - {job['id']}: {job['name']} (next run: {job['next_run'] or 'N/A'})")

    logger.info("Backup scheduler started")
    scheduler.start()


def stop_scheduler():
    """Stop the scheduler, waiting for a running backup to finish."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Backup scheduler stopped")
    scheduler = None


def _handle_shutdown(signum, frame):
    if active_executor is not None:
        logger.info(f"Received signal {signum}, interrupting the running backup...")
        active_executor.request_interrupt(signum)
    else:
        logger.info(f"Received signal {signum}, stopping scheduler...")
    stop_scheduler()


def _execute_backup_wrapper(config_name: Optional[str], overrides: Optional[Dict[str, Any]]):
    """
    Run one backup from the scheduler thread.

    Overrides are reapplied and logging reconfigured for every run, so each
    run gets a fresh log file. Environment values are read once at import.
    """
    from serverbackup import create_executor

    global active_executor

    try:
        executor = create_executor(config_name, overrides)
        active_executor = executor
        report = executor.execute()
        logger.info(f"Scheduled backup finished with exit code {report.exit_code}")
    except Exception as e:
        logger.exception(f"Scheduled backup failed: {e}")
    finally:
        active_executor = None


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs


def run_daemon(config_name: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> int:
    """
    Run backups on the configured schedule until stopped.

    Returns:
        Process exit code
    """
    from serverbackup import configure_logging
    from serverbackup.config import load_settings

    settings = load_settings(config_name, overrides)
    configure_logging(settings)

    init_scheduler(settings, config_name, overrides)
    start_scheduler()
    return 0
