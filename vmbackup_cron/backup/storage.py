"""
Object storage access for backups and retention sweeps.

Supports:
- StorageSession: boto3 S3 client bound to one endpoint, shared process-wide
- LocalObjectStore: a local directory exposed through the same object API
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional, BinaryIO

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError


logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024

_MISSING_KEY_CODES = ('NoSuchKey', '404', 'NotFound')


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class EnumerationError(StorageError):
    """Raised when buckets or objects cannot be listed."""
    pass


class DeletionError(StorageError):
    """Raised when a single object cannot be deleted."""
    pass


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class StorageSession:
    """
    Shared client/credentials binding to one S3-compatible endpoint.

    Created once at startup and handed to every sweep and every S3 view.
    boto3 clients are thread-safe, so concurrent listing and deletion need
    no extra locking.
    """

    def __init__(
        self,
        access_key: str = '',
        secret_key: str = '',
        region: str = 'us-east-1',
        endpoint: str = '',
        force_path_style: bool = True,
        page_size: int = 1000
    ):
        """
        Initialize storage session.

        Args:
            access_key: Access key ID (empty = boto3 default credential chain)
            secret_key: Secret access key
            region: Region name
            endpoint: Custom endpoint URL (empty = AWS)
            force_path_style: Use path-style bucket addressing
            page_size: Max keys requested per listing page
        """
        self.endpoint = endpoint
        self.region = region
        self.page_size = page_size

        client_kwargs = {
            'region_name': region,
            'config': BotoConfig(s3={'addressing_style': 'path' if force_path_style else 'auto'}),
        }
        if endpoint:
            client_kwargs['endpoint_url'] = endpoint
        if access_key and secret_key:
            client_kwargs['aws_access_key_id'] = access_key
            client_kwargs['aws_secret_access_key'] = secret_key

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client for {endpoint or 'AWS'}: {e}")

    @classmethod
    def from_settings(cls, settings) -> 'StorageSession':
        return cls(
            access_key=settings.access_key,
            secret_key=settings.secret_key,
            region=settings.region,
            endpoint=settings.s3_endpoint,
            force_path_style=settings.force_path_style,
            page_size=settings.list_page_size
        )

    def list_buckets(self) -> List[str]:
        """
        List all buckets visible to the current credentials.

        Raises:
            EnumerationError: If listing fails
        """
        try:
            response = self.s3_client.list_buckets()
        except ClientError as e:
            raise EnumerationError(f"S3 list buckets failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise EnumerationError(f"S3 list buckets failed: {e}")

        return [bucket['Name'] for bucket in response.get('Buckets', [])]

    def list_objects(self, bucket: str, prefix: str = '') -> List[Dict[str, Any]]:
        """
        List every object in a bucket, following all pages.

        Args:
            bucket: Bucket name
            prefix: Optional key prefix to filter by

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            EnumerationError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            pages = paginator.paginate(
                Bucket=bucket,
                Prefix=prefix,
                PaginationConfig={'PageSize': self.page_size}
            )
            for page in pages:
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise EnumerationError(f"S3 list objects in {bucket} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise EnumerationError(f"S3 list objects in {bucket} failed: {e}")

    def delete_object(self, bucket: str, key: str):
        """
        Delete one object. A key that is already gone is not an error.

        Raises:
            DeletionError: If deletion fails
        """
        try:
            self.s3_client.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_KEY_CODES:
                logger.debug(f"S3 object {bucket}/{key} already deleted")
                return
            raise DeletionError(f"S3 delete {bucket}/{key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise DeletionError(f"S3 delete {bucket}/{key} failed: {e}")

    def upload(self, bucket: str, key: str, reader: BinaryIO, size: int):
        """
        Upload a stream to S3.

        Streams larger than MULTIPART_THRESHOLD go through a multipart upload.

        Raises:
            StorageError: If upload fails
        """
        try:
            if size > MULTIPART_THRESHOLD:
                self._multipart_upload(bucket, key, reader)
            else:
                self.s3_client.put_object(Bucket=bucket, Key=key, Body=reader.read())
        except ClientError as e:
            raise StorageError(f"S3 upload to {bucket}/{key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload to {bucket}/{key} failed: {e}")

    def put_bytes(self, bucket: str, key: str, data: bytes):
        """Write a small object in one request."""
        try:
            self.s3_client.put_object(Bucket=bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"S3 put {bucket}/{key} failed: {e}")

    def copy(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str):
        """
        Server-side copy of one object.

        Raises:
            StorageError: If copy fails
        """
        try:
            self.s3_client.copy(
                {'Bucket': src_bucket, 'Key': src_key},
                dst_bucket,
                dst_key
            )
        except ClientError as e:
            raise StorageError(f"S3 copy {src_bucket}/{src_key} -> {dst_bucket}/{dst_key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 copy {src_bucket}/{src_key} -> {dst_bucket}/{dst_key} failed: {e}")

    def _multipart_upload(self, bucket: str, key: str, reader: BinaryIO):
        """
        Upload a large stream in MULTIPART_CHUNK_SIZE parts.

        The upload is aborted if any part fails.
        """
        response = self.s3_client.create_multipart_upload(Bucket=bucket, Key=key)
        upload_id = response['UploadId']

        parts = []

        try:
            part_number = 1

            while True:
                data = reader.read(MULTIPART_CHUNK_SIZE)
                if not data:
                    break

                response = self.s3_client.upload_part(
                    Bucket=bucket,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=data
                )

                parts.append({
                    'PartNumber': part_number,
                    'ETag': response['ETag']
                })

                part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id} for {bucket}/{key}: {abort_error}")
            raise


class LocalObjectStore:
    """
    Local directory presented as a single-bucket object store.

    The bucket name is the root directory; keys are paths relative to it.
    Used by retention sweeps when backups go to an fs:// destination.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def list_buckets(self) -> List[str]:
        if not self.root.exists():
            return []
        return [str(self.root)]

    def list_objects(self, bucket: str, prefix: str = '') -> List[Dict[str, Any]]:
        """
        List files below the root.

        Raises:
            EnumerationError: If the directory cannot be walked
        """
        base = Path(bucket)
        if not base.exists():
            return []

        try:
            objects = []

            for file_path in base.rglob('*'):
                if not file_path.is_file():
                    continue
                key = file_path.relative_to(base).as_posix()
                if prefix and not key.startswith(prefix):
                    continue
                stat = file_path.stat()
                objects.append({
                    'Key': key,
                    'LastModified': datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    'Size': stat.st_size
                })

            return objects

        except OSError as e:
            raise EnumerationError(f"Failed to list local files in {base}: {e}")

    def delete_object(self, bucket: str, key: str):
        """
        Delete one file and prune directories it leaves empty.

        Raises:
            DeletionError: If deletion fails
        """
        base = Path(bucket)
        full_path = base / key

        try:
            full_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise DeletionError(f"Failed to delete local file {full_path}: {e}")

        parent = full_path.parent
        while parent != base and base in parent.parents:
            try:
                os.rmdir(parent)
            except OSError:
                break
            parent = parent.parent


def create_object_store(settings, session: Optional[StorageSession] = None):
    """
    Pick the object store swept for retention, based on the destination scheme.

    Args:
        settings: BackupSettings
        session: Shared StorageSession, required for s3:// destinations

    Returns:
        StorageSession or LocalObjectStore
    """
    from vmbackup_cron.config import split_location

    scheme, root, _ = split_location(settings.dst)
    if scheme == 'fs':
        return LocalObjectStore(root)
    if session is None:
        raise StorageError("An S3 destination needs a StorageSession")
    return session
