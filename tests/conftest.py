"""
Shared pytest fixtures for backup-manager tests.

This module provides fixtures for:
- Source directories for Docker services and plain directories
- Local storage in a temporary directory
- Fake remote storage and service controller
- Configuration files
- Mock fixtures for external services (S3)
"""

import json
import threading

import pytest
import boto3
from moto import mock_aws

from backup_manager.backup.models import BackupTarget, DirectoryTarget
from backup_manager.backup.services import ServiceControlError
from backup_manager.backup.storage import LocalStorage, StorageError


class FakeRemote:
    """
    In-memory remote storage.

    ``archives`` maps target name to a list of (filename, size) pairs.
    """

    def __init__(self, archives=None, fail_upload_for=(), fail_list_for=(),
                 fail_delete_for=(), fail_root=False):
        self.archives = {k: list(v) for k, v in (archives or {}).items()}
        self.fail_upload_for = set(fail_upload_for)
        self.fail_list_for = set(fail_list_for)
        self.fail_delete_for = set(fail_delete_for)
        self.fail_root = fail_root
        self.uploads = []
        self.deleted = []
        self._lock = threading.Lock()

    def test_connection(self):
        return True

    def upload(self, local_path, target):
        if target in self.fail_upload_for:
            raise StorageError(f"upload to {target} refused")
        filename = local_path.replace('\\', '/').rsplit('/', 1)[-1]
        with self._lock:
            self.uploads.append((target, filename))
            self.archives.setdefault(target, []).append((filename, 0))
        return f"remote:backups/{target}/{filename}"

    def list_targets(self):
        if self.fail_root:
            raise StorageError("remote unreachable")
        return list(self.archives)

    def list_archives(self, target):
        if target in self.fail_list_for:
            raise StorageError(f"cannot list {target}")
        return list(self.archives.get(target, []))

    def delete(self, target, filename):
        if filename in self.fail_delete_for:
            raise StorageError(f"cannot delete {filename}")
        self.deleted.append((target, filename))
        self.archives[target] = [a for a in self.archives[target] if a[0] != filename]


class FakeController:
    """Records pause/resume calls instead of running docker compose."""

    def __init__(self, fail_pause=False, fail_resume=False):
        self.fail_pause = fail_pause
        self.fail_resume = fail_resume
        self.calls = []

    def pause(self, working_dir):
        self.calls.append(('pause', working_dir))
        if self.fail_pause:
            raise ServiceControlError(f"stop failed in {working_dir}")

    def resume(self, working_dir):
        self.calls.append(('resume', working_dir))
        if self.fail_resume:
            raise ServiceControlError(f"start failed in {working_dir}")


@pytest.fixture
def fake_remote():
    """Empty in-memory remote storage."""
    return FakeRemote()


@pytest.fixture
def remote_factory():
    """Build a FakeRemote with preloaded archives or injected failures."""
    return FakeRemote


@pytest.fixture
def controller_factory():
    return FakeController


@pytest.fixture
def fake_controller():
    return FakeController()


@pytest.fixture
def local_storage(tmp_path):
    """LocalStorage rooted in a temporary backup directory."""
    return LocalStorage(str(tmp_path / 'backups'))


@pytest.fixture
def temp_root(tmp_path):
    path = tmp_path / 'tmp'
    path.mkdir()
    return str(path)


@pytest.fixture
def service_dir(tmp_path):
    """
    Create a compose project directory with data.

    Creates:
    - vaultwarden/docker-compose.yml
    - vaultwarden/data/db.sqlite3
    - vaultwarden/data/icon_cache/icon.png (excluded in tests)
    - vaultwarden/app.log
    """
    root = tmp_path / 'services' / 'vaultwarden'
    (root / 'data' / 'icon_cache').mkdir(parents=True)
    (root / 'docker-compose.yml').write_text('services: {}\n')
    (root / 'data' / 'db.sqlite3').write_bytes(b'sqlite data')
    (root / 'data' / 'icon_cache' / 'icon.png').write_bytes(b'png')
    (root / 'app.log').write_text('log line\n')
    return root


@pytest.fixture
def docker_target(service_dir):
    return BackupTarget(name='vaultwarden', directory=str(service_dir))


@pytest.fixture
def directory_target(tmp_path):
    """A plain directory target with two files."""
    root = tmp_path / 'etc' / 'nginx'
    root.mkdir(parents=True)
    (root / 'nginx.conf').write_text('events {}\n')
    (root / 'mime.types').write_text('types {}\n')
    return DirectoryTarget(name='etc-nginx', path=str(root))


@pytest.fixture
def config_values(tmp_path):
    """Minimal valid configuration values."""
    return {
        'BACKUP_TYPE': 'local',
        'BACKUP_DIR': str(tmp_path / 'backups'),
        'REMOTE_BACKUP_DIR': 'b2:/backups',
    }


@pytest.fixture
def config_file(tmp_path, config_values):
    """
    Write a configuration file and return a function to rewrite it.

    Usage: path = config_file({'MAX_THREADS': 2})
    """
    def write(extra=None):
        values = dict(config_values)
        values.update(extra or {})
        path = tmp_path / 'backup-manager.json'
        path.write_text(json.dumps(values))
        return str(path)
    return write


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
