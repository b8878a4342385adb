"""
Backup cycle executor - orchestrates one complete backup cycle.

Workflow:
1. Check the data store path
2. Create a snapshot (or use the configured one)
3. Build source, destination and origin views
4. Launch a retention sweep without waiting for it
5. Run the transfer engine
6. Stop all views
7. Delete the snapshot created in step 2, whatever happened in between
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Callable

from vmbackup_cron.config import BackupSettings
from .filesystems import (
    new_source_view, new_destination_view, new_origin_view,
    validate_directory, SourceValidationError, ViewError
)
from .snapshot import SnapshotClient, SnapshotError
from .storage import StorageSession
from .transfer import BackupTransfer, TransferError


logger = logging.getLogger(__name__)

DESTINATION_TIME_FORMAT = '%Y-%m-%d-%H-%M'


@dataclass
class CycleResult:
    """Outcome of one backup cycle."""
    started_at: datetime
    destination: str
    snapshot_name: str = ''
    status: str = 'running'
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'destination': self.destination,
            'snapshot_name': self.snapshot_name,
            'status': self.status,
            'error': self.error,
            'error_type': self.error_type,
        }


def destination_for(base: str, started_at: datetime) -> str:
    """
    Per-cycle destination: the base joined with the start time at minute
    resolution, e.g. s3://bucket/backups/2024-01-15-12-30.
    """
    return f"{base.rstrip('/')}/{started_at.strftime(DESTINATION_TIME_FORMAT)}"


class BackupCycle:
    """
    Runs one backup cycle for the configured data store.
    """

    def __init__(
        self,
        settings: BackupSettings,
        snapshot_client: SnapshotClient,
        session: Optional[StorageSession] = None,
        launch_sweep: Optional[Callable[[], None]] = None,
        transfer: Optional[BackupTransfer] = None,
        started_at: Optional[datetime] = None
    ):
        """
        Initialize backup cycle.

        Args:
            settings: Validated backup settings
            snapshot_client: Client for the snapshot HTTP API
            session: Shared storage session for s3:// locations
            launch_sweep: Starts a retention sweep in the background
            transfer: Transfer engine (default: BackupTransfer(settings.concurrency))
            started_at: Cycle start time (default: now, UTC)
        """
        self.settings = settings
        self.snapshot_client = snapshot_client
        self.session = session
        self.launch_sweep = launch_sweep
        self.transfer = transfer or BackupTransfer(settings.concurrency)
        started_at = started_at or datetime.now(timezone.utc)
        self.result = CycleResult(
            started_at=started_at,
            destination=destination_for(settings.dst, started_at)
        )
        self.created_snapshot = None

    def execute(self) -> CycleResult:
        """
        Execute the cycle. Never raises; failures are reported on the result.

        Returns:
            CycleResult with status 'success' or 'failed'
        """
        self._log(f"Starting backup cycle -> {self.result.destination}")

        try:
            self._execute_workflow()
            self.result.status = 'success'
            self._log("Backup cycle completed successfully")

        except (SnapshotError, SourceValidationError, ViewError, TransferError) as e:
            self._fail(e)

        except Exception as e:
            logger.exception(f"Unexpected error in backup cycle {self.result.destination}")
            self._fail(e)

        finally:
            if self.created_snapshot:
                self._delete_snapshot()
            self.result.completed_at = datetime.now(timezone.utc)

        return self.result

    def _execute_workflow(self):
        """Execute the main cycle steps."""
        settings = self.settings

        # Step 1: Data store must exist before any snapshot work
        validate_directory(settings.storage_data_path, what='storage data path')

        # Step 2: Snapshot
        if settings.auto_snapshot:
            self._log(f"Creating snapshot via {settings.snapshot_create_url}")
            self.created_snapshot = self.snapshot_client.create(settings.snapshot_create_url)
            self.result.snapshot_name = self.created_snapshot
            self._log(f"Created snapshot {self.created_snapshot}")
        else:
            self.result.snapshot_name = settings.snapshot_name
            self._log(f"Using existing snapshot {settings.snapshot_name}")

        # Step 3: Views
        views = []
        try:
            src = new_source_view(
                settings.storage_data_path,
                self.result.snapshot_name,
                settings.max_bytes_per_second
            )
            views.append(src)
            origin = new_origin_view(settings.origin, self.session)
            views.append(origin)
            dst = new_destination_view(self.result.destination, self.session)
            views.append(dst)

            # Step 4: Retention sweep runs on its own
            if self.launch_sweep is not None:
                self._log("Launching retention sweep")
                self.launch_sweep()

            # Step 5: Transfer
            self._log(f"Running transfer {src!r} -> {dst!r} (concurrency={self.transfer.concurrency})")
            stats = self.transfer.run(src, dst, origin)
            self._log(
                f"Transfer done: uploaded={stats.uploaded}, copied={stats.copied}, "
                f"deleted={stats.deleted}, unchanged={stats.skipped}"
            )

        finally:
            # Step 6: Release views
            for view in views:
                view.stop()

    def _delete_snapshot(self):
        """Delete the snapshot this cycle created; a failure fails the cycle."""
        try:
            self.snapshot_client.delete(self.settings.snapshot_delete_url, self.created_snapshot)
            self._log(f"Deleted snapshot {self.created_snapshot}")
        except SnapshotError as e:
            self._fail(e)

    def _fail(self, error: Exception):
        self.result.status = 'failed'
        if self.result.error is None:
            self.result.error = str(error)
            self.result.error_type = type(error).__name__
        self._log(f"Backup cycle failed: {error}", level=logging.ERROR)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.result.logs.append(f"[{timestamp}] {message}")
        logger.log(level, f"[{self.result.destination}] {message}")


def execute_backup_cycle(
    settings: BackupSettings,
    snapshot_client: SnapshotClient,
    session: Optional[StorageSession] = None,
    launch_sweep: Optional[Callable[[], None]] = None
) -> CycleResult:
    """
    Run one backup cycle starting now.

    Returns:
        CycleResult with execution results
    """
    cycle = BackupCycle(settings, snapshot_client, session=session, launch_sweep=launch_sweep)
    return cycle.execute()
