"""
Data records shared by the backup and cleanup workflows.

Targets come from configuration and are immutable for a run. Results and
statistics are built fresh on every invocation and never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, FrozenSet

from .naming import decode


class TargetKind(Enum):
    DOCKER = 'docker'
    DIRECTORY = 'directory'


class JobOutcome(Enum):
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    FALLBACK = 'uploaded-locally-as-fallback'


class RetentionReason(Enum):
    DAILY = 'daily'
    WEEKLY_OLDEST = 'weekly-oldest'
    MONTHLY_OLDEST = 'monthly-oldest'
    EXPIRED = 'expired'
    SUPERSEDED = 'superseded-in-period'


@dataclass(frozen=True)
class BackupTarget:
    """A Docker Compose service whose containers are stopped while archiving."""

    name: str
    directory: str
    additional_directories: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ()

    kind = TargetKind.DOCKER

    @property
    def paths(self) -> List[str]:
        return [self.directory, *self.additional_directories]


@dataclass(frozen=True)
class DirectoryTarget:
    """A plain directory archived without any service control."""

    name: str
    path: str

    kind = TargetKind.DIRECTORY

    @property
    def paths(self) -> List[str]:
        return [self.path]


@dataclass(frozen=True)
class Archive:
    """One timestamped backup artifact of a target."""

    target: str
    filename: str
    timestamp: str
    size: int = 0

    @classmethod
    def from_filename(cls, filename: str, size: int = 0, target: Optional[str] = None) -> 'Archive':
        """
        Build an Archive from a storage filename.

        Raises:
            NotABackupFile: If the filename does not match the archive pattern
        """
        name = decode(filename)
        return cls(
            target=target or name.target,
            filename=filename,
            timestamp=name.timestamp,
            size=int(size or 0)
        )


@dataclass
class JobResult:
    target: str
    kind: TargetKind
    outcome: JobOutcome
    archive: Optional[Archive] = None
    error: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome != JobOutcome.FAILED


@dataclass
class RunSummary:
    """Aggregated outcome of one backup invocation."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    fallback: int = 0
    upload_failed: bool = False
    names: List[str] = field(default_factory=list)
    name_filter: Optional[FrozenSet[str]] = None
    results: List[JobResult] = field(default_factory=list)

    def record(self, result: JobResult):
        """Fold a completed job into the counters."""
        self.results.append(result)
        if result.succeeded:
            self.succeeded += 1
        else:
            self.failed += 1
        if result.outcome == JobOutcome.FALLBACK:
            self.fallback += 1
            self.upload_failed = True

    @property
    def status(self) -> str:
        if self.attempted == 0:
            return 'skipped'
        if self.failed or self.upload_failed:
            return 'partial'
        return 'success'


@dataclass(frozen=True)
class RetentionDecision:
    archive: Archive
    keep: bool
    reason: RetentionReason
    age_days: int


@dataclass
class RetentionResult:
    decisions: List[RetentionDecision] = field(default_factory=list)
    invalid: List[Archive] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.decisions)

    @property
    def kept(self) -> int:
        return sum(1 for d in self.decisions if d.keep)

    @property
    def deleted(self) -> int:
        return len(self.to_delete())

    @property
    def bytes_to_free(self) -> int:
        return sum(d.archive.size for d in self.to_delete())

    @property
    def total_bytes(self) -> int:
        return sum(d.archive.size for d in self.decisions)

    def to_delete(self) -> List[RetentionDecision]:
        return [d for d in self.decisions if not d.keep]


@dataclass
class CleanupStats:
    """Totals accumulated across all targets of one cleanup pass."""

    targets: int = 0
    total: int = 0
    kept: int = 0
    deleted: int = 0
    space_freed_mb: int = 0
    delete_failures: int = 0
    failed_targets: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add(self, result: RetentionResult):
        self.total += result.total
        self.kept += result.kept
        self.deleted += result.deleted
        self.space_freed_mb += result.bytes_to_free // (1024 * 1024)
