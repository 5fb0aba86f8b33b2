"""
Backup module for backup-manager.

This module handles the core backup functionality including:
- Archive naming
- Compression
- Service control (docker compose stop/start)
- Storage (local, rclone and S3)
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupExecutor, run_backup_job
from .orchestrator import BackupOrchestrator, FatalJobError, parse_name_filter
from .compression import create_archive
from .services import ComposeController, ServiceControlError
from .storage import LocalStorage, RcloneStorage, S3Storage, StorageError, create_remote_storage
from .retention import CleanupDriver, RetentionPolicy, classify

__all__ = [
    'BackupExecutor',
    'run_backup_job',
    'BackupOrchestrator',
    'FatalJobError',
    'parse_name_filter',
    'create_archive',
    'ComposeController',
    'ServiceControlError',
    'LocalStorage',
    'RcloneStorage',
    'S3Storage',
    'StorageError',
    'create_remote_storage',
    'CleanupDriver',
    'RetentionPolicy',
    'classify'
]
