"""
Archive filename codec.

Archives are named ``{target}_backup_{YYYY-MM-DD}_{HH-MM-SS}.zip``. The
timestamp is host-local wall-clock time at archive creation, second resolution.
"""

import re
from datetime import datetime
from typing import NamedTuple, Optional


TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'
ARCHIVE_EXTENSION = 'zip'

_FILENAME_RE = re.compile(
    r'^(?P<target>[^/]+)_backup_'
    r'(?P<timestamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})'
    r'\.' + re.escape(ARCHIVE_EXTENSION) + r'$'
)


class NotABackupFile(ValueError):
    """Raised when a filename does not follow the archive naming pattern."""
    pass


class InvalidTimestamp(ValueError):
    """Raised when an archive timestamp cannot be converted to an instant."""
    pass


class ArchiveName(NamedTuple):
    target: str
    timestamp: str


def encode(target_name: str, instant: Optional[datetime] = None, ext: str = ARCHIVE_EXTENSION) -> str:
    """
    Build the archive filename for a target.

    Args:
        target_name: Service or directory backup name
        instant: Creation time (defaults to now, host-local)
        ext: File extension without the dot

    Returns:
        Filename (without path)
    """
    if instant is None:
        instant = datetime.now()
    return f"{target_name}_backup_{instant.strftime(TIMESTAMP_FORMAT)}.{ext}"


def decode(filename: str) -> ArchiveName:
    """
    Split an archive filename into target name and timestamp.

    Raises:
        NotABackupFile: If the filename does not match the pattern exactly
    """
    match = _FILENAME_RE.match(filename or '')
    if not match:
        raise NotABackupFile(f"Not a backup archive: {filename!r}")
    return ArchiveName(match.group('target'), match.group('timestamp'))


def is_backup_file(filename: str) -> bool:
    return _FILENAME_RE.match(filename or '') is not None


def to_instant(timestamp: str) -> datetime:
    """
    Parse an archive timestamp into a (naive, host-local) datetime.

    Raises:
        InvalidTimestamp: If any date or time component is out of range
    """
    try:
        return datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    except (TypeError, ValueError) as e:
        raise InvalidTimestamp(f"Invalid archive timestamp {timestamp!r}: {e}")


def to_epoch(timestamp: str) -> int:
    """Absolute seconds since the epoch for an archive timestamp."""
    instant = to_instant(timestamp)
    try:
        return int(instant.timestamp())
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidTimestamp(f"Archive timestamp {timestamp!r} is out of range: {e}")
