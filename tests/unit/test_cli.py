"""
Unit tests for the command-line interface (backup_manager/cli.py).
"""

from unittest.mock import MagicMock, patch

import pytest

from backup_manager import cli
from backup_manager.backup.models import RunSummary
from backup_manager.backup.orchestrator import FatalJobError
from backup_manager.config import ConfigError


@pytest.fixture
def mocks():
    """Patch logging setup, configuration and both operations."""
    with patch('backup_manager.cli.configure_logging') as logging_setup, \
            patch('backup_manager.cli.load_config') as load_config, \
            patch('backup_manager.cli.run_backups') as run_backups, \
            patch('backup_manager.cli.run_cleanup') as run_cleanup:
        config = MagicMock(LOG_LEVEL='INFO', LOG_DIR=None)
        load_config.return_value = config
        yield {
            'configure_logging': logging_setup,
            'load_config': load_config,
            'run_backups': run_backups,
            'run_cleanup': run_cleanup,
            'config': config,
        }


class TestMain:
    """Test operation selection and exit codes."""

    def test_backup_is_default(self, mocks):
        assert cli.main([]) == 0

        mocks['run_backups'].assert_called_once_with(mocks['config'], None)
        mocks['run_cleanup'].assert_not_called()

    def test_service_filter(self, mocks):
        assert cli.main(['--backup', '--service', ' vaultwarden,authentik ']) == 0

        mocks['run_backups'].assert_called_once_with(mocks['config'], 'vaultwarden,authentik')

    def test_empty_service_filter_is_usage_error(self, mocks):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['--service', ' '])
        assert exc_info.value.code == 2

    def test_cleanup_defaults_to_dry_run(self, mocks):
        assert cli.main(['--cleanup']) == 0

        mocks['run_backups'].assert_not_called()
        mocks['run_cleanup'].assert_called_once_with(mocks['config'], dry_run=True)

    def test_all_runs_backup_then_cleanup(self, mocks):
        order = []
        mocks['run_backups'].side_effect = lambda *a, **k: order.append('backup')
        mocks['run_cleanup'].side_effect = lambda *a, **k: order.append('cleanup')

        assert cli.main(['-a']) == 0
        assert order == ['backup', 'cleanup']

    def test_execute_non_interactive(self, mocks):
        assert cli.main(['-c', '-e', '-y']) == 0
        mocks['run_cleanup'].assert_called_once_with(mocks['config'], dry_run=False)

    def test_execute_confirmed(self, mocks):
        assert cli.main(['--cleanup', '--execute'], input_func=lambda prompt: 'yes') == 0
        mocks['run_cleanup'].assert_called_once_with(mocks['config'], dry_run=False)

    @pytest.mark.parametrize('answer', ['no', 'y', 'YES please', ''])
    def test_execute_aborted(self, mocks, answer):
        assert cli.main(['--cleanup', '--execute'], input_func=lambda prompt: answer) == 0
        mocks['run_cleanup'].assert_not_called()

    def test_execute_aborted_on_eof(self, mocks):
        def no_input(prompt):
            raise EOFError()

        assert cli.main(['--all', '--execute'], input_func=no_input) == 0
        mocks['run_backups'].assert_not_called()
        mocks['run_cleanup'].assert_not_called()

    def test_config_error_exits_1(self, mocks):
        mocks['load_config'].side_effect = ConfigError('Configuration file not found')

        assert cli.main([]) == 1
        mocks['run_backups'].assert_not_called()

    def test_config_path_passed_through(self, mocks):
        cli.main(['--config', '/etc/bm.json'])
        mocks['load_config'].assert_called_once_with('/etc/bm.json')

    def test_fatal_job_error_exits_1(self, mocks):
        mocks['run_backups'].side_effect = FatalJobError('svc', RuntimeError('x'), RunSummary())

        assert cli.main(['--all']) == 1
        mocks['run_cleanup'].assert_not_called()

    def test_failed_jobs_still_exit_0(self, mocks):
        mocks['run_backups'].return_value = RunSummary(attempted=2, succeeded=1, failed=1)
        assert cli.main([]) == 0

    def test_remote_setup_error_exits_1(self, mocks):
        mocks['run_cleanup'].side_effect = ConfigError('Remote storage is not usable')
        assert cli.main(['--cleanup']) == 1

    def test_logging_configured_from_config(self, mocks):
        mocks['config'].LOG_LEVEL = 'DEBUG'
        mocks['config'].LOG_DIR = '/var/log/bm'

        cli.main([])

        mocks['configure_logging'].assert_called_with('DEBUG', '/var/log/bm')


class TestDaemon:
    """Test --daemon mode."""

    @patch('backup_manager.scheduler.start_scheduler')
    @patch('backup_manager.scheduler.init_scheduler')
    def test_daemon_registers_operations(self, mock_init, mock_start, mocks):
        assert cli.main(['--daemon', '--service', 'a']) == 0

        mock_init.assert_called_once()
        _, backup_func, cleanup_func = mock_init.call_args[0]
        mock_start.assert_called_once()

        backup_func()
        cleanup_func()
        mocks['run_backups'].assert_called_once_with(mocks['config'], 'a')
        mocks['run_cleanup'].assert_called_once_with(mocks['config'], dry_run=True)

    @patch('backup_manager.scheduler.init_scheduler')
    def test_daemon_without_schedule(self, mock_init, mocks):
        mock_init.side_effect = ConfigError('Daemon mode requires BACKUP_SCHEDULE')
        assert cli.main(['--daemon']) == 1

    @patch('backup_manager.scheduler.stop_scheduler')
    @patch('backup_manager.scheduler.start_scheduler')
    @patch('backup_manager.scheduler.init_scheduler')
    def test_daemon_interrupted(self, mock_init, mock_start, mock_stop, mocks):
        mock_start.side_effect = KeyboardInterrupt()

        assert cli.main(['--daemon']) == 0
        mock_stop.assert_called_once_with(wait=False)
