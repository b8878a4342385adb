"""
Filesystem views used by the transfer engine.

Supports:
- LocalSourceView: a snapshot directory on the local filesystem (read side)
- LocalDirView: an fs:// destination or origin directory
- S3View: an s3:// destination or origin (bucket + prefix)
- NilOriginView: stands in for an unset origin and never has reusable data

Every view lists "parts": files identified by their path relative to the
view root and their size.
"""

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List, BinaryIO, Optional

from vmbackup_cron.config import split_location, ConfigurationError
from .storage import StorageSession
from .throttle import RateLimiter, ThrottledReader


logger = logging.getLogger(__name__)


class SourceValidationError(Exception):
    """Raised when the snapshot source is missing or not a directory."""
    pass


class ViewError(Exception):
    """Raised when a destination or origin view cannot be built."""
    pass


@dataclass(frozen=True)
class Part:
    """One file of a backup, relative to the view root."""
    path: str
    size: int


def validate_directory(path: str, what: str = 'snapshot'):
    """
    Check that a path can be opened and is a directory.

    Raises:
        SourceValidationError: If the path is missing or not a directory
    """
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError as e:
        raise SourceValidationError(f"Cannot open {what} at {path!r}: {e}")
    try:
        st = os.fstat(fd)
    except OSError as e:
        raise SourceValidationError(f"Cannot stat {path!r}: {e}")
    finally:
        os.close(fd)

    if not stat.S_ISDIR(st.st_mode):
        raise SourceValidationError(f"{what.capitalize()} {path!r} must be a directory")


def _list_local_parts(root: Path) -> List[Part]:
    parts = []
    for file_path in root.rglob('*'):
        if file_path.is_file():
            parts.append(Part(file_path.relative_to(root).as_posix(), file_path.stat().st_size))
    return sorted(parts, key=lambda p: p.path)


class LocalSourceView:
    """
    Read side of a transfer: the snapshot directory.

    All reads share one RateLimiter when a bandwidth cap is configured.
    """

    def __init__(self, directory: str, max_bytes_per_second: int = 0):
        """
        Initialize local source view.

        Args:
            directory: Snapshot directory
            max_bytes_per_second: Aggregate read cap; 0 means unlimited
        """
        self.directory = Path(directory)
        self.max_bytes_per_second = max_bytes_per_second
        self.limiter = RateLimiter(max_bytes_per_second) if max_bytes_per_second > 0 else None

    def __repr__(self):
        return f"LocalSourceView({str(self.directory)!r})"

    def list_parts(self) -> List[Part]:
        return _list_local_parts(self.directory)

    def open_part(self, part: Part) -> ThrottledReader:
        return ThrottledReader(open(self.directory / part.path, 'rb'), self.limiter)

    def stop(self):
        if self.limiter is not None:
            self.limiter.stop()


class LocalDirView:
    """Destination or origin view backed by a local directory."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def __repr__(self):
        return f"LocalDirView({str(self.directory)!r})"

    def list_parts(self) -> List[Part]:
        if not self.directory.exists():
            return []
        return _list_local_parts(self.directory)

    def supports_server_copy(self, origin) -> bool:
        return isinstance(origin, LocalDirView)

    def upload_part(self, part: Part, reader: BinaryIO):
        dest = self.directory / part.path
        dest.parent.mkdir(parents=True, exist_ok=True)
        with open(dest, 'wb') as f:
            shutil.copyfileobj(reader, f)

    def copy_part(self, origin: 'LocalDirView', part: Part):
        dest = self.directory / part.path
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(origin.directory / part.path, dest)

    def delete_part(self, path: str):
        try:
            (self.directory / path).unlink()
        except FileNotFoundError:
            pass

    def write_file(self, path: str, data: bytes):
        dest = self.directory / path
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)

    def stop(self):
        """Local directories hold no background resources."""
        pass


class S3View:
    """Destination or origin view: objects under bucket/prefix."""

    def __init__(self, session: StorageSession, bucket: str, prefix: str = ''):
        self.session = session
        self.bucket = bucket
        self.prefix = prefix.strip('/')

    def __repr__(self):
        return f"S3View('s3://{self.bucket}/{self.prefix}')"

    def _key(self, path: str) -> str:
        return f"{self.prefix}/{path}" if self.prefix else path

    def list_parts(self) -> List[Part]:
        list_prefix = f"{self.prefix}/" if self.prefix else ''
        parts = []
        for obj in self.session.list_objects(self.bucket, prefix=list_prefix):
            parts.append(Part(obj['Key'][len(list_prefix):], obj['Size']))
        return sorted(parts, key=lambda p: p.path)

    def supports_server_copy(self, origin) -> bool:
        return isinstance(origin, S3View) and origin.session is self.session

    def upload_part(self, part: Part, reader: BinaryIO):
        self.session.upload(self.bucket, self._key(part.path), reader, part.size)

    def copy_part(self, origin: 'S3View', part: Part):
        self.session.copy(origin.bucket, origin._key(part.path), self.bucket, self._key(part.path))

    def delete_part(self, path: str):
        self.session.delete_object(self.bucket, self._key(path))

    def write_file(self, path: str, data: bytes):
        self.session.put_bytes(self.bucket, self._key(path), data)

    def stop(self):
        """The shared session outlives the view; nothing to release."""
        pass


class NilOriginView:
    """Origin used when none is configured: holds no reusable data."""

    def __repr__(self):
        return "NilOriginView()"

    def list_parts(self) -> List[Part]:
        return []

    def stop(self):
        pass


def snapshot_path(storage_data_path: str, snapshot_name: str) -> str:
    return os.path.join(storage_data_path, 'snapshots', snapshot_name)


def new_source_view(storage_data_path: str, snapshot_name: str, max_bytes_per_second: int = 0) -> LocalSourceView:
    """
    Build the source view for a snapshot.

    Raises:
        SourceValidationError: If the snapshot name is empty or the snapshot
            directory is missing or not a directory
    """
    if not snapshot_name:
        raise SourceValidationError("SNAPSHOT_NAME or SNAPSHOT_CREATE_URL must be provided")

    path = snapshot_path(storage_data_path, snapshot_name)
    validate_directory(path)
    logger.debug(f"Snapshot source at {path} (max {max_bytes_per_second or 'unlimited'} bytes/s)")
    return LocalSourceView(path, max_bytes_per_second)


def _new_remote_view(uri: str, session: Optional[StorageSession], what: str):
    try:
        scheme, root, prefix = split_location(uri)
    except ConfigurationError as e:
        raise ViewError(f"Cannot parse {what}={uri!r}: {e}")

    if scheme == 'fs':
        return LocalDirView(root)

    if session is None:
        raise ViewError(f"Cannot use {what}={uri!r}: no storage session configured")
    return S3View(session, root, prefix)


def new_destination_view(uri: str, session: Optional[StorageSession] = None):
    """
    Build the destination view for a URI.

    Raises:
        ViewError: If the URI is malformed or needs a missing session
    """
    return _new_remote_view(uri, session, 'dst')


def new_origin_view(uri: str, session: Optional[StorageSession] = None):
    """
    Build the origin view; an empty URI yields a NilOriginView.

    Raises:
        ViewError: If the URI is malformed or needs a missing session
    """
    if not uri:
        return NilOriginView()
    return _new_remote_view(uri, session, 'origin')
