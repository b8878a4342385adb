"""
Backup transfer engine.

Copies a snapshot into a destination view, full or incremental:
1. Remove the completion marker from the destination
2. Delete destination parts that are gone from, or changed in, the source
3. Copy missing parts, server-side from the origin when it holds them,
   otherwise uploaded from the source
4. Write the completion marker
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List

from .filesystems import Part


logger = logging.getLogger(__name__)

BACKUP_COMPLETE_FILENAME = 'backup_complete.ignore'


class TransferError(Exception):
    """Raised when the transfer engine fails to complete a backup."""
    pass


@dataclass
class TransferStats:
    """Counters for one transfer run."""
    uploaded: int = 0
    copied: int = 0
    deleted: int = 0
    skipped: int = 0
    bytes_uploaded: int = 0
    failures: List[str] = field(default_factory=list)


class BackupTransfer:
    """
    Runs one full or incremental backup from a source view to a destination.
    """

    def __init__(self, concurrency: int = 10):
        """
        Initialize transfer engine.

        Args:
            concurrency: Number of parallel copy workers
        """
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self.concurrency = concurrency

    def run(self, src, dst, origin) -> TransferStats:
        """
        Back up src into dst, reusing origin where possible.

        Args:
            src: LocalSourceView
            dst: LocalDirView or S3View
            origin: LocalDirView, S3View or NilOriginView

        Returns:
            TransferStats for the run

        Raises:
            TransferError: If listing fails or any part cannot be transferred
        """
        stats = TransferStats()

        try:
            src_parts = [p for p in src.list_parts() if p.path != BACKUP_COMPLETE_FILENAME]
            dst_parts = {p.path: p for p in dst.list_parts() if p.path != BACKUP_COMPLETE_FILENAME}
            origin_parts = set(origin.list_parts())
        except Exception as e:
            raise TransferError(f"Cannot list parts for backup {src!r} -> {dst!r}: {e}") from e

        logger.info(
            f"Backing up {len(src_parts)} parts from {src!r} to {dst!r} "
            f"(dst has {len(dst_parts)}, origin has {len(origin_parts)}, concurrency={self.concurrency})"
        )

        try:
            dst.delete_part(BACKUP_COMPLETE_FILENAME)
        except Exception as e:
            raise TransferError(f"Cannot remove completion marker in {dst!r}: {e}") from e

        src_index = {p.path: p for p in src_parts}
        stale = [path for path, part in dst_parts.items() if src_index.get(path) != part]
        missing = [p for p in src_parts if dst_parts.get(p.path) != p]
        stats.skipped = len(src_parts) - len(missing)

        use_origin = bool(origin_parts) and hasattr(dst, 'supports_server_copy') and dst.supports_server_copy(origin)

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            futures = {pool.submit(dst.delete_part, path): ('delete', path) for path in stale}
            self._collect(futures, stats)

            futures = {}
            for part in missing:
                if use_origin and part in origin_parts:
                    futures[pool.submit(dst.copy_part, origin, part)] = ('copy', part)
                else:
                    futures[pool.submit(self._upload, src, dst, part)] = ('upload', part)
            self._collect(futures, stats)

        if stats.failures:
            raise TransferError(
                f"{len(stats.failures)} part(s) failed while backing up {src!r} to {dst!r}; "
                f"first error: {stats.failures[0]}"
            )

        try:
            dst.write_file(BACKUP_COMPLETE_FILENAME, b'')
        except Exception as e:
            raise TransferError(f"Cannot write completion marker in {dst!r}: {e}") from e

        logger.info(
            f"Backup {src!r} -> {dst!r} complete: uploaded={stats.uploaded} "
            f"({stats.bytes_uploaded} bytes), copied={stats.copied}, "
            f"deleted={stats.deleted}, unchanged={stats.skipped}"
        )
        return stats

    @staticmethod
    def _upload(src, dst, part: Part):
        with src.open_part(part) as reader:
            dst.upload_part(part, reader)

    @staticmethod
    def _collect(futures, stats: TransferStats):
        for future in as_completed(futures):
            action, target = futures[future]
            try:
                future.result()
            except Exception as e:
                name = target.path if isinstance(target, Part) else target
                stats.failures.append(f"{action} {name}: {e}")
                logger.error(f"Failed to {action} {name}: {e}")
                continue

            if action == 'delete':
                stats.deleted += 1
            elif action == 'copy':
                stats.copied += 1
            else:
                stats.uploaded += 1
                stats.bytes_uploaded += target.size
