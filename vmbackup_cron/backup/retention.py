"""
Retention policy enforcement for backups.

Deletes every object older than the retention window from every bucket
visible through one object store (StorageSession or LocalObjectStore).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Callable

from .storage import StorageError, DeletionError


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one retention sweep."""
    status: str = 'running'
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cutoff: Optional[datetime] = None
    buckets: int = 0
    deleted: int = 0
    retained: int = 0
    failed: int = 0
    error: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'cutoff': self.cutoff.isoformat() if self.cutoff else None,
            'buckets': self.buckets,
            'deleted': self.deleted,
            'retained': self.retained,
            'failed': self.failed,
            'error': self.error,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RetentionSweeper:
    """
    Enforces the retention window on one object store.

    The store is shared with other sweeps and transfers; the sweeper only
    issues independent list and delete calls against it.
    """

    def __init__(
        self,
        store,
        retention: timedelta,
        dry_run: bool = False,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize retention sweeper.

        Args:
            store: Object store exposing list_buckets, list_objects, delete_object
            retention: Maximum object age
            dry_run: Log what would be deleted without deleting
            clock: Returns the current aware UTC datetime
        """
        self.store = store
        self.retention = retention
        self.dry_run = dry_run
        self.clock = clock
        self.result = None

    def run(self) -> SweepResult:
        """
        Run one sweep. Never raises; failures are reported on the result.

        Returns:
            SweepResult with status 'success' or 'failed'
        """
        self.result = SweepResult(started_at=self.clock())
        self._log(f"Starting retention sweep (retention: {self.retention}, dry_run={self.dry_run})")

        try:
            self.sweep()
            self.result.status = 'success'
            self._log(
                f"Retention sweep complete. "
                f"Buckets: {self.result.buckets}, "
                f"Deleted: {self.result.deleted}, "
                f"Retained: {self.result.retained}, "
                f"Delete failures: {self.result.failed}"
            )
        except StorageError as e:
            self.result.status = 'failed'
            self.result.error = str(e)
            self._log(f"Retention sweep aborted: {e}", level=logging.ERROR)
        finally:
            self.result.completed_at = self.clock()

        return self.result

    def sweep(self):
        """
        Delete expired objects from every bucket.

        Raises:
            EnumerationError: If buckets or objects cannot be listed
        """
        if self.result is None:
            self.result = SweepResult(started_at=self.clock())

        cutoff = self.clock() - self.retention
        self.result.cutoff = cutoff

        buckets = self.store.list_buckets()
        self.result.buckets = len(buckets)

        for bucket in buckets:
            self._sweep_bucket(bucket, cutoff)

    def _sweep_bucket(self, bucket: str, cutoff: datetime):
        objects = self.store.list_objects(bucket)

        for obj in objects:
            last_modified = _as_utc(obj['LastModified'])
            if not last_modified < cutoff:
                self.result.retained += 1
                continue

            if self.dry_run:
                self._log(f"Would delete {bucket}/{obj['Key']} (LastModified: {last_modified:%Y-%m-%d %H:%M:%S})")
                self.result.deleted += 1
                continue

            try:
                self.store.delete_object(bucket, obj['Key'])
            except DeletionError as e:
                self.result.failed += 1
                self._log(f"Failed to delete {bucket}/{obj['Key']}: {e}", level=logging.WARNING)
                continue

            self.result.deleted += 1
            self._log(f"Deleted {bucket}/{obj['Key']} (LastModified: {last_modified:%Y-%m-%d %H:%M:%S})")

        self._log(f"Swept bucket {bucket}: {len(objects)} object(s) checked")

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.result.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def run_retention_sweep(store, retention: timedelta, dry_run: bool = False) -> SweepResult:
    """
    Run one retention sweep against a store.

    This function is what the scheduler launches once per backup cycle.

    Returns:
        SweepResult from RetentionSweeper.run()
    """
    sweeper = RetentionSweeper(store, retention, dry_run=dry_run)
    return sweeper.run()
