"""
Top-level backup and cleanup operations.

Both build their collaborators from a Config, run, log a final summary and
hand the result to the notifier.
"""

import logging
from datetime import datetime
from typing import Optional

from .backup.executor import REMOTE
from .backup.models import CleanupStats, RunSummary
from .backup.orchestrator import BackupOrchestrator, FatalJobError, parse_name_filter
from .backup.retention import CleanupDriver
from .backup.services import ComposeController
from .backup.storage import LocalStorage, StorageError, create_remote_storage
from .config import Config, ConfigError
from .notifications import DiscordNotifier


logger = logging.getLogger(__name__)


def build_remote_storage(config: Config, validate: bool = True):
    """
    Create the remote storage handler and optionally check it is reachable.

    Raises:
        ConfigError: If the remote cannot be created or validated
    """
    try:
        remote = create_remote_storage(config)
        if validate:
            remote.test_connection()
        return remote
    except StorageError as e:
        raise ConfigError(f"Remote storage is not usable: {e}")


def log_backup_summary(summary: RunSummary):
    logger.info("=== Backup Summary ===")
    logger.info(f"  Services backed up: {summary.attempted}")
    logger.info(f"  Successful: {summary.succeeded}")
    logger.info(f"  Failed: {summary.failed}")
    if summary.names:
        logger.info(f"  Services: {', '.join(summary.names)}")
    if summary.upload_failed:
        logger.error(f"  Upload failures: {summary.fallback} archive(s) kept in local storage")
    for result in summary.results:
        if result.error:
            logger.info(f"  {result.target}: {result.outcome.value} ({result.error})")


def log_cleanup_summary(stats: CleanupStats, dry_run: bool):
    logger.info("=== Cleanup Complete ===")
    logger.info(f"  Services processed: {stats.targets}")
    logger.info(f"  Total backups: {stats.total}")
    logger.info(f"  Kept: {stats.kept}")
    logger.info(f"  Deleted: {stats.deleted}")
    logger.info(f"  Space freed: {stats.space_freed_mb} MB")
    if stats.delete_failures:
        logger.error(f"  Failed deletions: {stats.delete_failures}")
    if stats.failed_targets:
        logger.error(f"  Services that could not be listed: {', '.join(stats.failed_targets)}")
    if dry_run:
        logger.info("This was a dry run. To actually delete files, run with --cleanup --execute")


def run_backups(config: Config, service_filter: Optional[str] = None, remote=None,
                controller=None, notifier: Optional[DiscordNotifier] = None) -> RunSummary:
    """
    Back up every configured target that matches the filter.

    Raises:
        ConfigError: If storage cannot be set up
        FatalJobError: If a service could not be stopped or restarted
    """
    if remote is None and config.BACKUP_TYPE == REMOTE:
        remote = build_remote_storage(config)
    if controller is None:
        controller = ComposeController(config.COMPOSE_COMMAND)
    if notifier is None:
        notifier = DiscordNotifier(config.DISCORD_WEBHOOK_URL)

    try:
        local_storage = LocalStorage(config.BACKUP_DIR)
    except StorageError as e:
        raise ConfigError(str(e))

    orchestrator = BackupOrchestrator(
        config.DOCKER_SERVICES,
        config.SYSTEM_DIRECTORIES,
        config.BACKUP_TYPE,
        local_storage,
        remote_storage=remote,
        controller=controller,
        max_threads=config.MAX_THREADS,
        temp_root=config.TEMP_DIR
    )

    try:
        summary = orchestrator.run(parse_name_filter(service_filter))
    except FatalJobError as e:
        log_backup_summary(e.summary)
        notifier.send_backup_summary(e.summary, service_filter)
        raise

    log_backup_summary(summary)
    notifier.send_backup_summary(summary, service_filter)
    return summary


def run_cleanup(config: Config, dry_run: bool = True, remote=None,
                notifier: Optional[DiscordNotifier] = None,
                now: Optional[datetime] = None) -> CleanupStats:
    """
    Apply the retention policy to all remote targets.

    Raises:
        ConfigError: If remote storage cannot be set up
    """
    logger.info("=== Starting Cleanup Operations ===")
    if remote is None:
        # Listing failures are reported by the driver, so no upfront check
        remote = build_remote_storage(config, validate=False)
    if notifier is None:
        notifier = DiscordNotifier(config.DISCORD_WEBHOOK_URL)

    driver = CleanupDriver(remote, config.RETENTION, dry_run=dry_run)
    stats = driver.run(now=now)

    log_cleanup_summary(stats, dry_run)
    notifier.send_cleanup_summary(stats, config.RETENTION, dry_run)
    return stats
