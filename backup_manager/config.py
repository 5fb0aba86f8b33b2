"""
Configuration loading.

Settings are read from a JSON file and may be overridden by environment
variables of the same (upper-case) name. Example::

    {
        "BACKUP_TYPE": "remote",
        "BACKUP_DIR": "/srv/backups",
        "REMOTE_BACKUP_DIR": "b2:/backups",
        "MAX_THREADS": 2,
        "KEEP_DAILY": 7, "KEEP_WEEKLY": 30, "KEEP_MONTHLY": 90,
        "DOCKER_SERVICES": [
            "vaultwarden:/opt/vaultwarden",
            "nextcloud:/opt/nextcloud:/mnt/data/nextcloud|*/cache/*:*.log",
            {"name": "gitea", "directory": "/opt/gitea", "exclude": ["*.tmp"]}
        ],
        "SYSTEM_DIRECTORIES": ["etc-nginx:/etc/nginx"]
    }
"""

import os
import json
import logging
from typing import Any, Dict, List, Optional

from .backup.executor import LOCAL, REMOTE
from .backup.models import BackupTarget, DirectoryTarget
from .backup.retention import RetentionPolicy


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'BACKUP_MANAGER_CONFIG'
DEFAULT_CONFIG_FILE = 'backup-manager.json'

REQUIRED_KEYS = ('BACKUP_TYPE', 'BACKUP_DIR', 'REMOTE_BACKUP_DIR')

# Keys that may be overridden from the environment, with their types
SCALAR_KEYS = {
    'BACKUP_TYPE': str,
    'BACKUP_DIR': str,
    'REMOTE_BACKUP_DIR': str,
    'REMOTE_BACKEND': str,
    'RCLONE_BIN': str,
    'MAX_THREADS': int,
    'KEEP_DAILY': int,
    'KEEP_WEEKLY': int,
    'KEEP_MONTHLY': int,
    'DISCORD_WEBHOOK_URL': str,
    'TEMP_DIR': str,
    'LOG_LEVEL': str,
    'LOG_DIR': str,
    'COMPOSE_COMMAND': str,
    'BACKUP_SCHEDULE': str,
    'CLEANUP_SCHEDULE': str,
    'SCHEDULER_TIMEZONE': str,
}

_BACKUP_TYPE_ALIASES = {
    '1': LOCAL,
    'local': LOCAL,
    '2': REMOTE,
    'remote': REMOTE,
    'rclone': REMOTE,
}


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


class Config:
    """Validated settings for one invocation."""

    def __init__(self, values: Dict[str, Any]):
        missing = [key for key in REQUIRED_KEYS if not values.get(key)]
        if missing:
            raise ConfigError(
                f"Required configuration variables are missing: {', '.join(missing)} "
                f"(required: {', '.join(REQUIRED_KEYS)})"
            )

        self.BACKUP_TYPE = normalize_backup_type(values['BACKUP_TYPE'])
        self.BACKUP_DIR = str(values['BACKUP_DIR'])
        self.REMOTE_BACKUP_DIR = str(values['REMOTE_BACKUP_DIR'])
        self.REMOTE_BACKEND = str(values.get('REMOTE_BACKEND') or 'rclone').lower()
        self.RCLONE_BIN = values.get('RCLONE_BIN') or 'rclone'
        self.S3 = values.get('S3') or {}
        self.MAX_THREADS = _int(values, 'MAX_THREADS', 1)
        self.DISCORD_WEBHOOK_URL = values.get('DISCORD_WEBHOOK_URL') or None
        self.TEMP_DIR = values.get('TEMP_DIR') or None
        self.LOG_LEVEL = values.get('LOG_LEVEL') or 'INFO'
        self.LOG_DIR = values.get('LOG_DIR') or None
        self.COMPOSE_COMMAND = _compose_command(values.get('COMPOSE_COMMAND'))
        self.BACKUP_SCHEDULE = values.get('BACKUP_SCHEDULE') or None
        self.CLEANUP_SCHEDULE = values.get('CLEANUP_SCHEDULE') or None
        self.SCHEDULER_TIMEZONE = values.get('SCHEDULER_TIMEZONE') or None

        if self.REMOTE_BACKEND not in ('rclone', 's3'):
            raise ConfigError(f"Invalid REMOTE_BACKEND: {self.REMOTE_BACKEND} (expected 'rclone' or 's3')")
        if self.MAX_THREADS < 1:
            raise ConfigError(f"MAX_THREADS must be at least 1, got {self.MAX_THREADS}")
        if not isinstance(self.S3, dict):
            raise ConfigError("S3 must be an object")

        try:
            self.RETENTION = RetentionPolicy(
                keep_daily=_int(values, 'KEEP_DAILY', 7),
                keep_weekly=_int(values, 'KEEP_WEEKLY', 30),
                keep_monthly=_int(values, 'KEEP_MONTHLY', 90)
            )
        except ValueError as e:
            raise ConfigError(f"Invalid retention policy: {e}")

        self.DOCKER_SERVICES = parse_docker_services(_list(values, 'DOCKER_SERVICES'))
        self.SYSTEM_DIRECTORIES = parse_system_directories(_list(values, 'SYSTEM_DIRECTORIES'))

    @property
    def KEEP_DAILY(self) -> int:
        return self.RETENTION.keep_daily

    @property
    def KEEP_WEEKLY(self) -> int:
        return self.RETENTION.keep_weekly

    @property
    def KEEP_MONTHLY(self) -> int:
        return self.RETENTION.keep_monthly


def normalize_backup_type(value) -> str:
    """Map 1/'local' and 2/'remote' to the canonical storage modes."""
    backup_type = _BACKUP_TYPE_ALIASES.get(str(value).strip().lower())
    if backup_type is None:
        raise ConfigError(f"Invalid BACKUP_TYPE specified: {value!r} (expected 1/local or 2/remote)")
    return backup_type


def _int(values: Dict[str, Any], key: str, default: int) -> int:
    value = values.get(key)
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}")


def _list(values: Dict[str, Any], key: str) -> list:
    value = values.get(key)
    if value is None:
        logger.warning(f"{key} is not set in configuration")
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list")
    return value


def _compose_command(value) -> Optional[List[str]]:
    if not value:
        return None
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"COMPOSE_COMMAND must be a string or list of strings, got {value!r}")


def _split_colon_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(':') if part.strip()]


def parse_docker_service(entry) -> Optional[BackupTarget]:
    """
    Parse one Docker service entry.

    Accepts the compact form ``name:main_dir[:extra_dir...][|pattern1:pattern2]``
    or an object with ``name``, ``directory``, ``additional_directories`` and
    ``exclude``. Entries with an empty name are ignored.

    Raises:
        ConfigError: If the entry is malformed
    """
    if isinstance(entry, str):
        service_part, _, exclusions_part = entry.partition('|')
        name, _, dirs_part = service_part.partition(':')
        name = name.strip()
        if not name:
            return None
        directories = _split_colon_list(dirs_part)
        if not directories:
            raise ConfigError(f"Docker service '{name}' has no directory")
        return BackupTarget(
            name=name,
            directory=directories[0],
            additional_directories=tuple(directories[1:]),
            exclude_patterns=tuple(_split_colon_list(exclusions_part))
        )

    if isinstance(entry, dict):
        name = str(entry.get('name') or '').strip()
        if not name:
            return None
        directory = entry.get('directory') or entry.get('path')
        if not directory:
            raise ConfigError(f"Docker service '{name}' has no directory")
        additional = entry.get('additional_directories') or []
        exclude = entry.get('exclude') or entry.get('exclude_patterns') or []
        if not isinstance(additional, list) or not isinstance(exclude, list):
            raise ConfigError(f"Docker service '{name}': additional_directories and exclude must be lists")
        return BackupTarget(
            name=name,
            directory=str(directory),
            additional_directories=tuple(str(d) for d in additional if d),
            exclude_patterns=tuple(str(p) for p in exclude if p)
        )

    raise ConfigError(f"Invalid Docker service entry: {entry!r}")


def parse_system_directory(entry) -> Optional[DirectoryTarget]:
    """
    Parse one plain directory entry (``name:path`` or ``{"name", "path"}``).

    Raises:
        ConfigError: If the entry is malformed
    """
    if isinstance(entry, str):
        name, _, path = entry.partition(':')
    elif isinstance(entry, dict):
        name, path = str(entry.get('name') or ''), str(entry.get('path') or '')
    else:
        raise ConfigError(f"Invalid system directory entry: {entry!r}")

    name = name.strip()
    if not name:
        return None
    path = path.strip()
    if not path:
        raise ConfigError(f"System directory '{name}' has no path")
    return DirectoryTarget(name=name, path=path)


def parse_docker_services(entries: list) -> List[BackupTarget]:
    return [t for t in (parse_docker_service(e) for e in entries) if t is not None]


def parse_system_directories(entries: list) -> List[DirectoryTarget]:
    return [t for t in (parse_system_directory(e) for e in entries) if t is not None]


def apply_env_overrides(values: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Return a copy of ``values`` with scalar keys overridden from the environment."""
    environ = os.environ if environ is None else environ
    merged = dict(values)
    for key in SCALAR_KEYS:
        if environ.get(key):
            merged[key] = environ[key]
    return merged


def resolve_config_path(path: Optional[str] = None) -> str:
    return path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE


def load_config(path: Optional[str] = None, environ=None) -> Config:
    """
    Load and validate configuration.

    Args:
        path: JSON configuration file (defaults to $BACKUP_MANAGER_CONFIG or
            ./backup-manager.json)
        environ: Environment mapping used for overrides (defaults to os.environ)

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    config_path = resolve_config_path(path)

    if not os.path.isfile(config_path):
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            values = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Failed to load configuration file {config_path}: {e}")

    if not isinstance(values, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a JSON object")

    return Config(apply_env_overrides(values, environ))
