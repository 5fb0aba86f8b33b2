"""
Retention policy enforcement for backups.

Classifies the archives of each target into keep/delete sets under a tiered
daily/weekly/monthly policy and removes the expired ones from remote storage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from .models import (
    Archive,
    CleanupStats,
    RetentionDecision,
    RetentionReason,
    RetentionResult,
)
from .naming import InvalidTimestamp, is_backup_file, to_epoch, to_instant
from .storage import StorageError


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Retention thresholds in days.

    Archives up to ``keep_daily`` days old are all kept, one per ISO week is kept
    up to ``keep_weekly`` days and one per calendar month up to ``keep_monthly``.
    """

    keep_daily: int = 7
    keep_weekly: int = 30
    keep_monthly: int = 90

    def __post_init__(self):
        for name in ('keep_daily', 'keep_weekly', 'keep_monthly'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
        if not (self.keep_daily <= self.keep_weekly <= self.keep_monthly):
            raise ValueError(
                "Retention thresholds must satisfy daily <= weekly <= monthly "
                f"(got {self.keep_daily}/{self.keep_weekly}/{self.keep_monthly})"
            )

    def describe(self) -> List[str]:
        months = self.keep_monthly // 30
        return [
            f"Keep all backups from last {self.keep_daily} days (daily)",
            f"Keep one backup per week for last {self.keep_weekly // 7} weeks (weekly)",
            f"Keep one backup per month for last {months} months (monthly)",
            f"Delete everything older than {months} months",
        ]


def classify(archives: Iterable[Archive], policy: RetentionPolicy,
             now: Optional[datetime] = None) -> RetentionResult:
    """
    Decide which archives of one target to keep.

    Args:
        archives: All archives of a single logical target
        policy: Retention thresholds
        now: Reference time (defaults to the current time)

    Returns:
        RetentionResult with one decision per valid archive, oldest first
    """
    now_epoch = int((now if now is not None else datetime.now()).timestamp())
    result = RetentionResult()

    dated = []
    for archive in archives:
        try:
            epoch = to_epoch(archive.timestamp)
            instant = to_instant(archive.timestamp)
        except InvalidTimestamp as e:
            logger.warning(f"Skipping {archive.filename}: {e}")
            result.invalid.append(archive)
            continue
        dated.append((epoch, archive.filename, instant, archive))

    if not dated:
        return result

    dated.sort(key=lambda item: (item[0], item[1]))

    # Sorted oldest first, so the first archive seen per period is the one kept
    weekly_seen = set()
    monthly_seen = set()

    for epoch, _, instant, archive in dated:
        age_days = (now_epoch - epoch) // SECONDS_PER_DAY

        if age_days <= policy.keep_daily:
            keep, reason = True, RetentionReason.DAILY
        elif age_days <= policy.keep_weekly:
            week_id = instant.isocalendar()[:2]
            if week_id in weekly_seen:
                keep, reason = False, RetentionReason.SUPERSEDED
            else:
                weekly_seen.add(week_id)
                keep, reason = True, RetentionReason.WEEKLY_OLDEST
        elif age_days <= policy.keep_monthly:
            month_id = (instant.year, instant.month)
            if month_id in monthly_seen:
                keep, reason = False, RetentionReason.SUPERSEDED
            else:
                monthly_seen.add(month_id)
                keep, reason = True, RetentionReason.MONTHLY_OLDEST
        else:
            keep, reason = False, RetentionReason.EXPIRED

        result.decisions.append(RetentionDecision(archive, keep, reason, age_days))

    return result


_REASON_TEXT = {
    RetentionReason.DAILY: "Daily retention ({age} days old)",
    RetentionReason.WEEKLY_OLDEST: "Weekly retention ({age} days old, oldest in week)",
    RetentionReason.MONTHLY_OLDEST: "Monthly retention ({age} days old, oldest in month)",
    RetentionReason.EXPIRED: "Beyond retention period ({age} days old)",
    RetentionReason.SUPERSEDED: "Not oldest in period ({age} days old)",
}


def describe_decision(decision: RetentionDecision) -> str:
    return _REASON_TEXT[decision.reason].format(age=decision.age_days)


class CleanupDriver:
    """
    Applies the retention policy to every target found on remote storage.
    """

    def __init__(self, remote, policy: RetentionPolicy, dry_run: bool = True):
        """
        Initialize cleanup driver.

        Args:
            remote: Remote storage handler (list_targets / list_archives / delete)
            policy: Retention thresholds
            dry_run: Only report what would be deleted
        """
        self.remote = remote
        self.policy = policy
        self.dry_run = dry_run

    def run(self, now: Optional[datetime] = None) -> CleanupStats:
        """
        Run a cleanup pass over all remote targets.

        Returns:
            CleanupStats with totals for the whole pass
        """
        stats = CleanupStats()
        now = now if now is not None else datetime.now()

        if self.dry_run:
            logger.info("DRY RUN MODE - No files will be deleted")
        else:
            logger.warning("EXECUTE MODE - Files will be permanently deleted!")

        logger.info("Retention Policy:")
        for line in self.policy.describe():
            logger.info(f"  - {line}")

        logger.info("Discovering services...")
        try:
            targets = self.remote.list_targets()
        except StorageError as e:
            message = f"Could not list remote backup directory: {e}"
            logger.error(message)
            stats.errors.append(message)
            return stats

        for target in targets:
            self.cleanup_target(target, stats, now)
            stats.targets += 1

        logger.info(f"Processed {stats.targets} service(s)")
        return stats

    def cleanup_target(self, target: str, stats: CleanupStats, now: datetime) -> Optional[RetentionResult]:
        """
        Classify and prune the archives of a single target.

        Listing failures are recorded on ``stats`` and do not propagate.
        """
        logger.info(f"=== Processing: {target} ===")

        try:
            listing = self.remote.list_archives(target)
        except StorageError as e:
            message = f"Failed to list backups for {target}: {e}"
            logger.error(message)
            stats.failed_targets.append(target)
            stats.errors.append(message)
            return None

        archives = [
            Archive.from_filename(filename, size, target=target)
            for filename, size in listing
            if is_backup_file(filename)
        ]

        if not archives:
            logger.info(f"  No backups found for {target}")
            return None

        result = classify(archives, self.policy, now)
        if result.invalid:
            logger.error(f"  {len(result.invalid)} backup(s) have invalid timestamps and will be skipped")

        logger.info(f"  Total backups: {result.total}")

        for decision in result.decisions:
            filename = decision.archive.filename
            reason = describe_decision(decision)
            if decision.keep:
                logger.info(f"  KEEP: {filename} ({reason})")
            elif self.dry_run:
                logger.info(f"  [DRY RUN] DELETE: {filename} ({reason})")
            else:
                logger.info(f"  DELETE: {filename} ({reason})")
                try:
                    self.remote.delete(target, filename)
                    logger.info("    Deleted successfully")
                except StorageError as e:
                    stats.delete_failures += 1
                    logger.error(f"    Failed to delete: {e}")

        stats.add(result)

        logger.info("  Summary:")
        logger.info(f"    Keeping: {result.kept} backups")
        logger.info(f"    Deleting: {result.deleted} backups")
        logger.info(f"    Total size: {result.total_bytes // BYTES_PER_MB} MB")
        logger.info(f"    Space to free: {result.bytes_to_free // BYTES_PER_MB} MB")
        return result
