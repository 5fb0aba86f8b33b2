"""
Backup orchestration across all configured targets.

Jobs run on a fixed-size worker pool so that at most ``max_threads`` backups are
in flight and a finished job's slot is reused immediately. Results are folded
into the RunSummary on the calling thread only.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, FrozenSet, Iterable, List, Optional

from .executor import run_backup_job
from .models import JobOutcome, JobResult, RunSummary
from .services import ServiceControlError


logger = logging.getLogger(__name__)


class FatalJobError(Exception):
    """Raised when a job hits a condition that must abort the whole run."""

    def __init__(self, target: str, error: Exception, summary: RunSummary):
        super().__init__(f"{target}: {error}")
        self.target = target
        self.error = error
        self.summary = summary


def parse_name_filter(value: Optional[str]) -> Optional[FrozenSet[str]]:
    """
    Parse a comma-separated name filter.

    Returns:
        Set of trimmed names, or None when no filter is given
    """
    if value is None or not value.strip():
        return None
    return frozenset(item.strip() for item in value.split(',') if item.strip())


def is_eligible(name: str, name_filter: Optional[FrozenSet[str]]) -> bool:
    """Exact match against the filter; every target is eligible without one."""
    if name_filter is None:
        return True
    return name.strip() in name_filter


class BackupOrchestrator:
    """
    Dispatches one backup job per eligible target and aggregates the results.
    """

    def __init__(self, docker_services: Iterable, directories: Iterable, backup_type: str,
                 local_storage, remote_storage=None, controller=None, max_threads: int = 1,
                 temp_root: Optional[str] = None, job_runner: Callable = run_backup_job):
        """
        Initialize orchestrator.

        Args:
            docker_services: BackupTarget instances
            directories: DirectoryTarget instances
            backup_type: 'local' or 'remote'
            local_storage: LocalStorage handler
            remote_storage: Remote storage handler
            controller: ComposeController for Docker targets
            max_threads: Maximum number of jobs in flight
            temp_root: Directory for temporary archives
            job_runner: Callable running a single job (returns JobResult)
        """
        self.docker_services = list(docker_services)
        self.directories = list(directories)
        self.backup_type = backup_type
        self.local_storage = local_storage
        self.remote_storage = remote_storage
        self.controller = controller
        self.max_threads = max(1, int(max_threads or 1))
        self.temp_root = temp_root
        self.job_runner = job_runner

    def eligible_targets(self, name_filter: Optional[FrozenSet[str]] = None) -> List:
        """Targets to back up, Docker services first, in configuration order."""
        targets = []
        for target in self.docker_services + self.directories:
            if is_eligible(target.name, name_filter):
                targets.append(target)
            else:
                logger.info(f"Skipping {target.name} (not in filter)")
        return targets

    def run(self, name_filter: Optional[FrozenSet[str]] = None) -> RunSummary:
        """
        Run backups for all eligible targets.

        Returns:
            RunSummary of the run

        Raises:
            FatalJobError: If a service could not be stopped or restarted
        """
        logger.info("=== Starting Backup Operations ===")
        if name_filter is not None:
            logger.info(f"Service filter active: {', '.join(sorted(name_filter))}")

        summary = RunSummary(name_filter=name_filter)
        targets = self.eligible_targets(name_filter)
        summary.attempted = len(targets)
        summary.names = [t.name for t in targets]

        if not targets:
            logger.warning("No services matched the filter. Nothing to backup.")
            return summary

        fatal = None
        futures = {}
        collected = set()
        pool = ThreadPoolExecutor(max_workers=self.max_threads, thread_name_prefix='backup')
        try:
            for target in targets:
                futures[pool.submit(self._run_job, target)] = target

            for future in as_completed(futures):
                collected.add(future)
                try:
                    summary.record(self._collect(futures[future], future))
                except ServiceControlError as e:
                    fatal = FatalJobError(futures[future].name, e, summary)
                    break
        finally:
            # Jobs not yet started are dropped; running jobs finish first
            pool.shutdown(wait=True, cancel_futures=True)

        if fatal is not None:
            for future, target in futures.items():
                if future in collected or future.cancelled():
                    continue
                try:
                    summary.record(self._collect(target, future))
                except ServiceControlError:
                    continue
            logger.error(f"Aborting backup run: {fatal}")
            raise fatal

        self._log_summary(summary)
        return summary

    def _collect(self, target, future) -> JobResult:
        """
        Turn a finished job into a JobResult.

        Raises:
            ServiceControlError: If the job failed to stop or restart its service
        """
        try:
            return future.result()
        except ServiceControlError as e:
            logger.error(f"Fatal error while backing up {target.name}: {e}")
            raise
        except Exception as e:
            logger.exception(f"Backup job for {target.name} crashed: {e}")
            return JobResult(
                target=target.name,
                kind=target.kind,
                outcome=JobOutcome.FAILED,
                error=str(e)
            )

    def _run_job(self, target) -> JobResult:
        return self.job_runner(
            target,
            self.backup_type,
            self.local_storage,
            remote_storage=self.remote_storage,
            controller=self.controller,
            temp_root=self.temp_root
        )

    def _log_summary(self, summary: RunSummary):
        if summary.upload_failed:
            logger.error(
                "ALERT: One or more backups failed to upload. "
                f"Check {self.local_storage.base_path} for local copies."
            )
        elif self.backup_type == 'remote':
            logger.info("All backups uploaded successfully.")

        logger.info(
            f"Backup process complete. Services: {summary.attempted}, "
            f"Successful: {summary.succeeded}, Failed: {summary.failed}"
        )
