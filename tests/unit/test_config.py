"""
Unit tests for configuration (vmbackup_cron/config.py, vmbackup_cron/utils/units.py).
"""

from datetime import timedelta

import pytest

from vmbackup_cron.config import (
    BackupSettings,
    ConfigurationError,
    as_bool,
    derive_delete_url,
    split_location
)
from vmbackup_cron.utils.units import parse_duration, parse_bytes


class TestSnapshotMode:
    """Exactly one of snapshot name / create URL is accepted."""

    def test_existing_snapshot(self, make_settings):
        settings = make_settings()

        assert settings.auto_snapshot is False
        assert settings.snapshot_delete_url == ''

    def test_create_url_only(self, make_settings):
        settings = make_settings(
            SNAPSHOT_NAME='',
            SNAPSHOT_CREATE_URL='http://victoriametrics:8428/snapshot/create'
        )

        assert settings.auto_snapshot is True

    def test_both_rejected(self, make_settings):
        with pytest.raises(ConfigurationError, match="shouldn't be set"):
            make_settings(SNAPSHOT_CREATE_URL='http://victoriametrics:8428/snapshot/create')

    def test_neither_rejected(self, make_settings):
        with pytest.raises(ConfigurationError, match="must be provided"):
            make_settings(SNAPSHOT_NAME='', SNAPSHOT_CREATE_URL='')

    def test_delete_url_derived(self, make_settings):
        settings = make_settings(SNAPSHOT_NAME='', SNAPSHOT_CREATE_URL='http://h/snapshot/create')

        assert settings.snapshot_delete_url == 'http://h/snapshot/delete'

    def test_explicit_delete_url_kept(self, make_settings):
        settings = make_settings(
            SNAPSHOT_NAME='',
            SNAPSHOT_CREATE_URL='http://h/snapshot/create',
            SNAPSHOT_DELETE_URL='http://other/api/remove'
        )

        assert settings.snapshot_delete_url == 'http://other/api/remove'


class TestDeriveDeleteUrl:

    def test_replaces_final_segment(self):
        assert derive_delete_url('http://h/snapshot/create') == 'http://h/snapshot/delete'

    def test_keeps_port_and_query(self):
        assert (
            derive_delete_url('http://vm:8428/snapshot/create?authKey=secret')
            == 'http://vm:8428/snapshot/delete?authKey=secret'
        )

    def test_trailing_slash(self):
        assert derive_delete_url('http://h/snapshot/create/') == 'http://h/snapshot/delete'


class TestLocations:

    def test_split_s3(self):
        assert split_location('s3://bucket/path/to/dir') == ('s3', 'bucket', 'path/to/dir')

    def test_split_s3_bucket_only(self):
        assert split_location('s3://bucket') == ('s3', 'bucket', '')

    def test_split_fs(self):
        assert split_location('fs:///var/backups') == ('fs', '/var/backups', '')

    @pytest.mark.parametrize('uri', ['gs://bucket/dir', '/plain/path', 's3://', 'fs://'])
    def test_invalid_locations(self, uri):
        with pytest.raises(ConfigurationError):
            split_location(uri)

    def test_missing_dst(self, make_settings):
        with pytest.raises(ConfigurationError, match="DST"):
            make_settings(DST='')

    def test_bad_origin(self, make_settings):
        with pytest.raises(ConfigurationError):
            make_settings(ORIGIN='azblob://container/dir')


class TestNumericSettings:

    def test_defaults(self, make_settings):
        settings = make_settings()

        assert settings.concurrency == 10
        assert settings.max_bytes_per_second == 0
        assert settings.retention == timedelta(days=30)
        assert settings.cycle_interval == timedelta(minutes=60)

    @pytest.mark.parametrize('value', [0, -1, 'many'])
    def test_invalid_concurrency(self, make_settings, value):
        with pytest.raises(ConfigurationError, match='CONCURRENCY'):
            make_settings(CONCURRENCY=value)

    def test_bandwidth_with_units(self, make_settings):
        assert make_settings(MAX_BYTES_PER_SECOND='10MiB').max_bytes_per_second == 10 * 1024 * 1024

    def test_interval_accepts_duration(self, make_settings):
        assert make_settings(CYCLE_INTERVAL_MINUTES='2h').cycle_interval == timedelta(hours=2)

    def test_retention_must_exceed_max_cycle_duration(self, make_settings):
        with pytest.raises(ConfigurationError, match='must exceed'):
            make_settings(RETENTION='2h', MAX_CYCLE_DURATION='3h')

    def test_retention_exceeding_max_cycle_duration(self, make_settings):
        settings = make_settings(RETENTION='1d', MAX_CYCLE_DURATION='3h')

        assert settings.max_cycle_duration == timedelta(hours=3)

    def test_invalid_retention(self, make_settings):
        with pytest.raises(ConfigurationError, match='RETENTION'):
            make_settings(RETENTION='forever')

    def test_settings_are_immutable(self, make_settings):
        settings = make_settings()

        with pytest.raises(Exception):
            settings.concurrency = 3


class TestBooleanSettings:

    @pytest.mark.parametrize('value, expected', [
        ('false', False), ('0', False), ('no', False), ('', False), (False, False),
        ('true', True), (' Yes ', True), ('on', True), (True, True),
    ])
    def test_as_bool(self, value, expected):
        assert as_bool(value) is expected

    def test_string_false_overrides_are_honored(self, make_settings):
        settings = make_settings(RETENTION_DRY_RUN='false', S3_FORCE_PATH_STYLE='false')

        assert settings.retention_dry_run is False
        assert settings.force_path_style is False

    def test_string_true_overrides_are_honored(self, make_settings):
        settings = make_settings(RETENTION_DRY_RUN='true', S3_FORCE_PATH_STYLE='true')

        assert settings.retention_dry_run is True
        assert settings.force_path_style is True


class TestUnits:

    @pytest.mark.parametrize('text, expected', [
        ('30d', timedelta(days=30)),
        ('720h', timedelta(hours=720)),
        ('1h30m', timedelta(hours=1, minutes=30)),
        ('90s', timedelta(seconds=90)),
        ('2w', timedelta(weeks=2)),
        ('1.5h', timedelta(minutes=90)),
    ])
    def test_parse_duration(self, text, expected):
        assert parse_duration(text) == expected

    def test_bare_number_uses_default_unit(self):
        assert parse_duration('60', default_unit='m') == timedelta(hours=1)

    @pytest.mark.parametrize('text', ['', '10', '5x', 'h', '1h 30m'])
    def test_parse_duration_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    @pytest.mark.parametrize('text, expected', [
        ('0', 0),
        ('512', 512),
        ('10KB', 10000),
        ('1MB', 1000000),
        ('1GiB', 1024 ** 3),
        ('2 kib', 2048),
    ])
    def test_parse_bytes(self, text, expected):
        assert parse_bytes(text) == expected

    @pytest.mark.parametrize('text', ['ten', '10XB', '-5'])
    def test_parse_bytes_invalid(self, text):
        with pytest.raises(ValueError):
            parse_bytes(text)
