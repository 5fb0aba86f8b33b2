"""
APScheduler-based daemon mode.

Runs backups and cleanups on cron expressions from the configuration
(BACKUP_SCHEDULE, CLEANUP_SCHEDULE) instead of relying on the system crontab.
"""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from .backup.orchestrator import FatalJobError
from .config import Config, ConfigError


logger = logging.getLogger(__name__)


# Global scheduler instance
scheduler = None


def _guarded(name: str, func: Callable) -> Callable:
    """Log failures of a scheduled run instead of killing the scheduler."""
    def run():
        try:
            func()
        except (ConfigError, FatalJobError) as e:
            logger.error(f"Scheduled {name} aborted: {e}")
    run.__name__ = f"scheduled_{name}"
    return run


def init_scheduler(config: Config, backup_func: Callable, cleanup_func: Callable):
    """
    Initialize and configure the scheduler.

    Args:
        config: Config with BACKUP_SCHEDULE and/or CLEANUP_SCHEDULE
        backup_func: Callable running one backup pass
        cleanup_func: Callable running one cleanup pass

    Raises:
        ConfigError: If no schedule is configured or a cron expression is invalid
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    if not config.BACKUP_SCHEDULE and not config.CLEANUP_SCHEDULE:
        raise ConfigError("Daemon mode requires BACKUP_SCHEDULE and/or CLEANUP_SCHEDULE")

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    kwargs = {}
    if config.SCHEDULER_TIMEZONE:
        kwargs['timezone'] = config.SCHEDULER_TIMEZONE

    new_scheduler = BlockingScheduler(executors=executors, job_defaults=job_defaults, **kwargs)

    for job_id, name, expression, func in (
        ('backup', 'Scheduled Backup', config.BACKUP_SCHEDULE, backup_func),
        ('cleanup', 'Scheduled Cleanup', config.CLEANUP_SCHEDULE, cleanup_func),
    ):
        if not expression:
            continue
        try:
            trigger = CronTrigger.from_crontab(expression, timezone=config.SCHEDULER_TIMEZONE)
        except ValueError as e:
            raise ConfigError(f"Invalid cron expression for {job_id}: {expression!r} ({e})")
        new_scheduler.add_job(
            func=_guarded(job_id, func),
            trigger=trigger,
            id=job_id,
            name=name,
            replace_existing=True
        )

    scheduler = new_scheduler
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until the scheduler is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    jobs = scheduler.get_jobs()
    logger.info(f"Starting scheduler with {len(jobs)} job(s):")
    for job in jobs:
        logger.info(f"  - {job.id}: {job.name} ({job.trigger})")

    scheduler.start()


def stop_scheduler(wait: Optional[bool] = True):
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")
    scheduler = None
