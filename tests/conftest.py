"""
Shared pytest fixtures for vmbackup-cron tests.

This module provides fixtures for:
- Flask app with the scheduler disabled
- Settings factory for BackupSettings
- A data store directory with a snapshot in it
- Mock S3 (moto) and a StorageSession bound to it
"""

from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from vmbackup_cron import create_app
from vmbackup_cron.config import BackupSettings
from vmbackup_cron.backup.storage import StorageSession


SNAPSHOT_NAME = '20240115120000-17A9C0D1E2F3A4B5'


@pytest.fixture
def data_dir(tmp_path):
    """
    Create a data store directory with one snapshot.

    Creates:
    - snapshots/<SNAPSHOT_NAME>/data/small/part1/index.bin
    - snapshots/<SNAPSHOT_NAME>/data/small/part1/values.bin
    - snapshots/<SNAPSHOT_NAME>/indexdb/table/items.bin
    """
    root = tmp_path / 'victoria-metrics-data'
    snapshot = root / 'snapshots' / SNAPSHOT_NAME

    (snapshot / 'data' / 'small' / 'part1').mkdir(parents=True)
    (snapshot / 'data' / 'small' / 'part1' / 'index.bin').write_bytes(b'index' * 10)
    (snapshot / 'data' / 'small' / 'part1' / 'values.bin').write_bytes(b'values' * 20)
    (snapshot / 'indexdb' / 'table').mkdir(parents=True)
    (snapshot / 'indexdb' / 'table' / 'items.bin').write_bytes(b'items' * 5)

    return root


@pytest.fixture
def make_settings(tmp_path, data_dir):
    """
    Factory building BackupSettings from config-style keys.

    Defaults: existing snapshot, fs:// destination under tmp_path.
    """
    def _make(**overrides):
        conf = {
            'STORAGE_DATA_PATH': str(data_dir),
            'SNAPSHOT_NAME': SNAPSHOT_NAME,
            'DST': f"fs://{tmp_path / 'backups'}",
            'CONCURRENCY': 10,
            'MAX_BYTES_PER_SECOND': 0,
            'RETENTION': '30d',
            'CYCLE_INTERVAL_MINUTES': 60,
        }
        conf.update(overrides)
        return BackupSettings.from_mapping(conf)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture(scope='function')
def app(tmp_path, data_dir):
    """
    Create Flask app with test configuration.

    The scheduler is never started in tests.
    """
    app = create_app('testing', overrides={
        'TESTING': True,
        'LOG_DIR': str(tmp_path / 'logs'),
        'STORAGE_DATA_PATH': str(data_dir),
        'SNAPSHOT_NAME': SNAPSHOT_NAME,
        'SNAPSHOT_CREATE_URL': '',
        'DST': f"fs://{tmp_path / 'backups'}",
        'ORIGIN': '',
    })

    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


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


@pytest.fixture
def s3_session(mock_s3):
    """StorageSession bound to the mocked S3."""
    return StorageSession(
        access_key='test_access_key',
        secret_key='test_secret_key',
        region='us-east-1'
    )


@pytest.fixture
def snapshot_client():
    """Mock SnapshotClient returning SNAPSHOT_NAME on create."""
    client = MagicMock()
    client.create.return_value = SNAPSHOT_NAME
    return client
