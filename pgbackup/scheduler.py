"""
APScheduler setup for running backups on a cron schedule.

Used by `pgbackup schedule` when no external cron is available.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from pgbackup.backup.artifacts import BackupMode
from pgbackup.backup.executor import BackupExecutor


logger = logging.getLogger(__name__)

JOB_ID = 'scheduled_backup'


def run_scheduled_backup(executor: BackupExecutor, mode: BackupMode = BackupMode.FULL):
    """
    Job function: run one backup and log the outcome.

    Args:
        executor: BackupExecutor to run
        mode: Dump mode
    """
    logger.info(f"Scheduled {mode.value} backup starting")
    result = executor.backup(mode)
    if result.success:
        logger.info(f"Scheduled backup finished: {result.artifact_path}")
    else:
        logger.error(f"Scheduled backup failed: {result.error}")
    return result


def create_scheduler(executor: BackupExecutor, cron_expression: str,
                     mode: BackupMode = BackupMode.FULL) -> BlockingScheduler:
    """
    Create a blocking scheduler with the backup job registered.

    Args:
        executor: BackupExecutor the job runs
        cron_expression: Standard 5-field crontab expression (UTC)
        mode: Dump mode for scheduled runs

    Returns:
        Configured (not started) BlockingScheduler

    Raises:
        ValueError: If the cron expression is invalid
    """
    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one backup at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone='UTC')

    scheduler.add_job(
        func=run_scheduled_backup,
        trigger=CronTrigger.from_crontab(cron_expression, timezone='UTC'),
        args=[executor, mode],
        id=JOB_ID,
        name=f"Scheduled {mode.value} backup",
        replace_existing=True
    )

    return scheduler


def run_scheduler(executor: BackupExecutor, cron_expression: str,
                  mode: BackupMode = BackupMode.FULL):
    """
    Block and run backups on schedule until interrupted.
    """
    scheduler = create_scheduler(executor, cron_expression, mode)
    logger.info(f"Backup schedule: '{cron_expression}' (UTC), mode {mode.value}")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
