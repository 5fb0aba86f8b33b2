"""
Backup executor - runs the backup of a single target.

Workflow:
1. Stop the service's containers (Docker targets only)
2. Create a zip archive in a temporary directory
3. Store the archive (local move, or remote upload with local fallback)
4. Start the containers again (Docker targets only, always)
5. Cleanup temporary files
"""

import os
import shutil
import logging
import tempfile
from datetime import datetime
from typing import Optional

from .compression import create_archive, get_archive_size, CompressionError
from .models import Archive, JobOutcome, JobResult, TargetKind
from .naming import encode
from .services import ServiceControlError
from .storage import StorageError


logger = logging.getLogger(__name__)

LOCAL = 'local'
REMOTE = 'remote'
BACKUP_TYPES = (LOCAL, REMOTE)


class BackupExecutor:
    """
    Runs the complete backup workflow for one target.

    Archive, move and upload problems are reported as a failed (or fallback)
    JobResult. Service control problems raise ServiceControlError, which must
    abort the whole run.
    """

    def __init__(self, target, backup_type: str, local_storage, remote_storage=None,
                 controller=None, temp_root: Optional[str] = None):
        """
        Initialize backup executor.

        Args:
            target: BackupTarget or DirectoryTarget
            backup_type: 'local' or 'remote'
            local_storage: LocalStorage for local-only mode and upload fallback
            remote_storage: Remote storage handler (required for 'remote')
            controller: ComposeController (required for Docker targets)
            temp_root: Directory in which temporary archives are created
        """
        if backup_type not in BACKUP_TYPES:
            raise ValueError(f"Invalid backup type: {backup_type!r}")
        if backup_type == REMOTE and remote_storage is None:
            raise ValueError("Remote backup type requires a remote storage handler")
        if target.kind == TargetKind.DOCKER and controller is None:
            raise ValueError(f"Docker target {target.name} requires a service controller")

        self.target = target
        self.backup_type = backup_type
        self.local_storage = local_storage
        self.remote_storage = remote_storage
        self.controller = controller
        self.temp_root = temp_root
        self.temp_dir = None
        self.archive_path = None
        self.archive = None
        self.logs = []

    def execute(self) -> JobResult:
        """
        Execute the backup job.

        Returns:
            JobResult describing the outcome

        Raises:
            ServiceControlError: If containers cannot be stopped or restarted
        """
        self._log(f"Starting backup for {self.target.name}")

        outcome = JobOutcome.FAILED
        error = None

        try:
            if self.target.kind == TargetKind.DOCKER:
                outcome = self._execute_docker()
            else:
                outcome = self._execute_directory()
        except ServiceControlError:
            raise
        except (CompressionError, StorageError, OSError) as e:
            error = str(e)
            self._log(f"Backup failed for {self.target.name}: {e}", level=logging.ERROR)
        finally:
            self._cleanup()

        if outcome == JobOutcome.SUCCEEDED:
            self._log(f"Backup completed successfully for {self.target.name}")
        elif outcome == JobOutcome.FALLBACK:
            error = f"Upload failed for {self.target.name}; archive kept locally"

        return JobResult(
            target=self.target.name,
            kind=self.target.kind,
            outcome=outcome,
            archive=self.archive if outcome != JobOutcome.FAILED else None,
            error=error,
            logs=list(self.logs)
        )

    def _execute_docker(self) -> JobOutcome:
        directory = self.target.directory

        self._log(f"Stopping containers in {self.target.name}")
        try:
            self.controller.pause(directory)
        except ServiceControlError as e:
            self._log(f"Failed to stop containers in {self.target.name}: {e}", level=logging.ERROR)
            # Some containers may already be down; starting is idempotent
            try:
                self.controller.resume(directory)
            except ServiceControlError as resume_error:
                self._log(f"Failed to restart containers in {self.target.name}: {resume_error}",
                          level=logging.ERROR)
            raise

        try:
            return self._archive_and_store()
        finally:
            self._log(f"Restarting containers in {self.target.name}")
            try:
                self.controller.resume(directory)
            except ServiceControlError as e:
                self._log(f"Failed to restart containers in {self.target.name}: {e}", level=logging.ERROR)
                raise

    def _execute_directory(self) -> JobOutcome:
        if not os.path.isdir(self.target.path):
            raise StorageError(f"Directory {self.target.path} does not exist. Skipping backup.")
        return self._archive_and_store()

    def _archive_and_store(self) -> JobOutcome:
        self.temp_dir = tempfile.mkdtemp(prefix='backup_manager_', dir=self.temp_root)

        filename = encode(self.target.name)
        self._log(f"Creating backup for {self.target.name}: {filename}")

        exclude_patterns = list(getattr(self.target, 'exclude_patterns', ()) or ())
        for pattern in exclude_patterns:
            self._log(f"  Excluding pattern: {pattern}")

        self.archive_path = create_archive(
            self.target.paths,
            os.path.join(self.temp_dir, filename),
            exclude_patterns
        )
        size = get_archive_size(self.archive_path)
        self.archive = Archive.from_filename(filename, size, target=self.target.name)
        self._log(f"Archive created: {filename} ({size / 1024 / 1024:.2f} MB)")

        if self.backup_type == LOCAL:
            return self._store_locally()
        return self._upload()

    def _store_locally(self) -> JobOutcome:
        self._log(f"Moving {self.archive.filename} to local backup directory: {self.local_storage.base_path}")
        self.local_storage.store(self.archive_path)
        self.archive_path = None
        return JobOutcome.SUCCEEDED

    def _upload(self) -> JobOutcome:
        self._log(f"Uploading {self.archive.filename} for {self.target.name}")
        try:
            remote_path = self.remote_storage.upload(self.archive_path, self.target.name)
        except StorageError as e:
            self._log(f"Upload failed for {self.target.name}: {e}. Moving backup to local storage.",
                      level=logging.ERROR)
            self._store_locally()
            return JobOutcome.FALLBACK

        self._log(f"Upload successful ({remote_path}), removing {self.archive.filename}")
        try:
            os.remove(self.archive_path)
        except OSError as e:
            self._log(f"Warning: Failed to remove {self.archive_path}: {e}", level=logging.WARNING)
        self.archive_path = None
        return JobOutcome.SUCCEEDED

    def _cleanup(self):
        """Remove temporary directory and files."""
        if self.temp_dir and os.path.exists(self.temp_dir):
            try:
                shutil.rmtree(self.temp_dir)
            except OSError as e:
                self._log(f"Warning: Failed to cleanup temp directory: {e}", level=logging.WARNING)
        self.temp_dir = None

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, f"[{self.target.name}] {message}")


def run_backup_job(target, backup_type: str, local_storage, remote_storage=None,
                   controller=None, temp_root: Optional[str] = None) -> JobResult:
    """
    Execute the backup of one target.

    Returns:
        JobResult with execution results
    """
    executor = BackupExecutor(
        target,
        backup_type,
        local_storage,
        remote_storage=remote_storage,
        controller=controller,
        temp_root=temp_root
    )
    return executor.execute()
