"""
Backup module for vmbackup-cron.

This module handles the core backup functionality including:
- Snapshot lifecycle (create/delete over HTTP)
- Filesystem views (snapshot source, s3:// and fs:// destinations, origin)
- Transfer engine with bounded concurrency and bandwidth limiting
- Backup cycle orchestration
- Retention sweeps
"""

from .executor import BackupCycle, CycleResult, execute_backup_cycle
from .snapshot import SnapshotClient, SnapshotError
from .storage import StorageSession, LocalObjectStore, StorageError
from .transfer import BackupTransfer, TransferError
from .retention import RetentionSweeper, SweepResult, run_retention_sweep

__all__ = [
    'BackupCycle',
    'CycleResult',
    'execute_backup_cycle',
    'SnapshotClient',
    'SnapshotError',
    'StorageSession',
    'LocalObjectStore',
    'StorageError',
    'BackupTransfer',
    'TransferError',
    'RetentionSweeper',
    'SweepResult',
    'run_retention_sweep'
]
