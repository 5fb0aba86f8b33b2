"""
Unit tests for the top-level operations (backup_manager/operations.py).
"""

import os
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from backup_manager.backup.naming import encode
from backup_manager.backup.orchestrator import FatalJobError
from backup_manager.backup.storage import StorageError
from backup_manager.config import Config, ConfigError
from backup_manager.operations import build_remote_storage, run_backups, run_cleanup


@pytest.fixture
def make_config(tmp_path, service_dir, directory_target):
    def make(**extra):
        values = {
            'BACKUP_TYPE': 'local',
            'BACKUP_DIR': str(tmp_path / 'backups'),
            'REMOTE_BACKUP_DIR': 'b2:/backups',
            'TEMP_DIR': str(tmp_path),
            'DOCKER_SERVICES': [f'vaultwarden:{service_dir}|*.log'],
            'SYSTEM_DIRECTORIES': [f'{directory_target.name}:{directory_target.path}'],
        }
        values.update(extra)
        return Config(values)
    return make


class TestRunBackups:
    """Test a full backup pass."""

    def test_local_backups(self, make_config, fake_controller):
        config = make_config()
        notifier = MagicMock()

        summary = run_backups(config, controller=fake_controller, notifier=notifier)

        assert summary.attempted == 2
        assert summary.succeeded == 2
        assert summary.names == ['vaultwarden', 'etc-nginx']
        assert len(os.listdir(config.BACKUP_DIR)) == 2
        notifier.send_backup_summary.assert_called_once_with(summary, None)

    def test_filtered_remote_backups(self, make_config, fake_controller, fake_remote):
        config = make_config(BACKUP_TYPE='remote')
        notifier = MagicMock()

        summary = run_backups(config, 'etc-nginx', remote=fake_remote,
                              controller=fake_controller, notifier=notifier)

        assert summary.attempted == 1
        assert [t for t, _ in fake_remote.uploads] == ['etc-nginx']
        assert fake_controller.calls == []
        notifier.send_backup_summary.assert_called_once_with(summary, 'etc-nginx')

    def test_fatal_error_reports_partial_summary(self, make_config, controller_factory):
        notifier = MagicMock()

        with pytest.raises(FatalJobError) as exc_info:
            run_backups(make_config(), 'vaultwarden',
                        controller=controller_factory(fail_pause=True), notifier=notifier)

        notifier.send_backup_summary.assert_called_once_with(exc_info.value.summary, 'vaultwarden')
        assert exc_info.value.summary.attempted == 1
        assert exc_info.value.summary.names == ['vaultwarden']

    @patch('backup_manager.operations.create_remote_storage')
    def test_unreachable_remote_is_config_error(self, mock_create, make_config, fake_controller):
        mock_create.return_value.test_connection.side_effect = StorageError('remote b2 not found')

        with pytest.raises(ConfigError, match='remote b2 not found'):
            run_backups(make_config(BACKUP_TYPE='remote'), controller=fake_controller, notifier=MagicMock())


class TestRunCleanup:
    """Test a full cleanup pass."""

    def test_cleanup_uses_configured_policy(self, make_config, remote_factory):
        now = datetime(2024, 1, 16, 12, 0, 0)
        remote = remote_factory({
            'svc': [(encode('svc', now - timedelta(days=d)), 0) for d in (1, 5, 20)]
        })
        config = make_config(KEEP_DAILY=3, KEEP_WEEKLY=3, KEEP_MONTHLY=3)
        notifier = MagicMock()

        stats = run_cleanup(config, dry_run=False, remote=remote, notifier=notifier, now=now)

        assert stats.kept == 1
        assert stats.deleted == 2
        assert len(remote.deleted) == 2
        notifier.send_cleanup_summary.assert_called_once_with(stats, config.RETENTION, False)

    @patch('backup_manager.operations.create_remote_storage')
    def test_cleanup_does_not_probe_remote(self, mock_create, make_config, fake_remote):
        mock_create.return_value = fake_remote

        run_cleanup(make_config(), notifier=MagicMock())

        mock_create.assert_called_once()


class TestBuildRemoteStorage:
    """Test remote storage setup."""

    @patch('backup_manager.operations.create_remote_storage')
    def test_creation_error_wrapped(self, mock_create, make_config):
        mock_create.side_effect = StorageError('Unknown remote backend')

        with pytest.raises(ConfigError):
            build_remote_storage(make_config())

    @patch('backup_manager.operations.create_remote_storage')
    def test_validated(self, mock_create, make_config):
        remote = build_remote_storage(make_config())

        assert remote is mock_create.return_value
        remote.test_connection.assert_called_once()
