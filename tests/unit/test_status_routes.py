"""
Unit tests for the app factory and status routes.
"""

from unittest.mock import patch

import pytest

from vmbackup_cron import create_app, build_runtime
from vmbackup_cron.config import ConfigurationError
from vmbackup_cron.backup.storage import LocalObjectStore, StorageSession


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}


class TestStatus:

    def test_status_without_scheduler(self, client):
        response = client.get('/api/status')

        data = response.get_json()
        assert response.status_code == 200
        assert data['scheduler']['initialized'] is False
        assert data['retention'] == 30 * 24 * 3600
        assert data['interval'] == 3600
        assert data['snapshot_mode'] == 'existing'
        assert data['destination'].endswith('/backups')


class TestAppFactory:

    def test_runtime_is_registered(self, app):
        runtime = app.extensions['vmbackup_cron']

        assert runtime.session is None
        assert isinstance(runtime.object_store, LocalObjectStore)
        assert runtime.snapshot_client.timeout == 60

    def test_conflicting_snapshot_modes_fail_startup(self, tmp_path, data_dir):
        with pytest.raises(ConfigurationError, match="SNAPSHOT_NAME shouldn't be set"):
            create_app('testing', overrides={
                'LOG_DIR': str(tmp_path / 'logs'),
                'STORAGE_DATA_PATH': str(data_dir),
                'SNAPSHOT_NAME': 'snap',
                'SNAPSHOT_CREATE_URL': 'http://vm:8428/snapshot/create',
                'DST': f"fs://{tmp_path}",
            })

    def test_scheduler_started_when_enabled(self, tmp_path, data_dir):
        with patch('vmbackup_cron.scheduler.init_scheduler') as mock_init, \
                patch('vmbackup_cron.scheduler.start_scheduler') as mock_start, \
                patch('vmbackup_cron.atexit.register'):
            app = create_app('testing', overrides={
                'LOG_DIR': str(tmp_path / 'logs'),
                'STORAGE_DATA_PATH': str(data_dir),
                'SNAPSHOT_NAME': 'snap',
                'DST': f"fs://{tmp_path}",
                'SCHEDULER_ENABLED': True,
            })

        mock_init.assert_called_once_with(app.extensions['vmbackup_cron'])
        mock_start.assert_called_once()

    def test_s3_destination_builds_one_session(self, make_settings, mock_s3):
        runtime = build_runtime(make_settings(DST='s3://test-bucket/backups'))

        assert isinstance(runtime.session, StorageSession)
        assert runtime.object_store is runtime.session

    def test_scheduler_disabled_by_string_override(self, tmp_path, data_dir):
        with patch('vmbackup_cron.scheduler.init_scheduler') as mock_init:
            create_app('production', overrides={
                'LOG_DIR': str(tmp_path / 'logs'),
                'STORAGE_DATA_PATH': str(data_dir),
                'SNAPSHOT_NAME': 'snap',
                'SNAPSHOT_CREATE_URL': '',
                'DST': f"fs://{tmp_path}",
                'SCHEDULER_ENABLED': 'false',
            })

        mock_init.assert_not_called()
