import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Mapping, Any
from urllib.parse import urlsplit, urlunsplit

from vmbackup_cron.utils.units import parse_duration, parse_bytes


SUPPORTED_SCHEMES = ('s3', 'fs')


class ConfigurationError(Exception):
    """Raised when settings are missing, conflicting or malformed."""
    pass


def as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _env_bool(name: str, default: str) -> bool:
    return as_bool(os.environ.get(name, default))


class Config:
    """Base configuration"""

    # Snapshot source
    STORAGE_DATA_PATH = os.environ.get('STORAGE_DATA_PATH') or 'victoria-metrics-data'
    SNAPSHOT_NAME = os.environ.get('SNAPSHOT_NAME', '')
    SNAPSHOT_CREATE_URL = os.environ.get('SNAPSHOT_CREATE_URL', '')
    SNAPSHOT_DELETE_URL = os.environ.get('SNAPSHOT_DELETE_URL', '')
    SNAPSHOT_TIMEOUT = int(os.environ.get('SNAPSHOT_TIMEOUT', '60'))

    # Transfer
    DST = os.environ.get('DST', '')
    ORIGIN = os.environ.get('ORIGIN', '')
    CONCURRENCY = os.environ.get('CONCURRENCY', '10')
    MAX_BYTES_PER_SECOND = os.environ.get('MAX_BYTES_PER_SECOND', '0')

    # Retention (RETION is the legacy variable name)
    RETENTION = os.environ.get('RETENTION') or os.environ.get('RETION') or '30d'
    RETENTION_DRY_RUN = _env_bool('RETENTION_DRY_RUN', 'false')

    # Scheduler (TICK_MIN is the legacy variable name)
    CYCLE_INTERVAL_MINUTES = os.environ.get('CYCLE_INTERVAL_MINUTES') or os.environ.get('TICK_MIN') or '60'
    MAX_CONCURRENT_CYCLES = os.environ.get('MAX_CONCURRENT_CYCLES', '2')
    MAX_CYCLE_DURATION = os.environ.get('MAX_CYCLE_DURATION', '')
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', 'true')
    SCHEDULER_TIMEZONE = 'UTC'

    # Object storage
    S3_ENDPOINT = os.environ.get('S3_ENDPOINT', '')
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID', '')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY', '')
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'
    S3_FORCE_PATH_STYLE = _env_bool('S3_FORCE_PATH_STYLE', 'true')
    S3_LIST_PAGE_SIZE = int(os.environ.get('S3_LIST_PAGE_SIZE', '1000'))

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    LOG_DIR = os.path.join(BASE_DIR, 'data', 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(DevelopmentConfig):
    """Test configuration: never starts the scheduler"""
    TESTING = True
    SCHEDULER_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def derive_delete_url(create_url: str) -> str:
    """
    Build the snapshot delete URL from the create URL.

    The final path segment is replaced with "delete", so
    http://host:8428/snapshot/create becomes http://host:8428/snapshot/delete.
    """
    parts = urlsplit(create_url)
    path = parts.path.rstrip('/')
    head, _, _ = path.rpartition('/')
    return urlunsplit((parts.scheme, parts.netloc, f"{head}/delete", parts.query, parts.fragment))


def split_location(uri: str):
    """
    Split a destination/origin URI into (scheme, bucket_or_root, prefix).

    s3://bucket/path/to/dir -> ('s3', 'bucket', 'path/to/dir')
    fs:///var/backups      -> ('fs', '/var/backups', '')

    Raises:
        ConfigurationError: If the scheme is not supported
    """
    scheme, sep, rest = uri.partition('://')
    if not sep:
        raise ConfigurationError(f"Location {uri!r} has no scheme; expected one of {', '.join(SUPPORTED_SCHEMES)}")
    if scheme not in SUPPORTED_SCHEMES:
        raise ConfigurationError(f"Unsupported scheme {scheme!r} in {uri!r}; expected one of {', '.join(SUPPORTED_SCHEMES)}")

    if scheme == 'fs':
        if not rest:
            raise ConfigurationError(f"Missing directory in {uri!r}")
        return scheme, rest, ''

    bucket, _, prefix = rest.partition('/')
    if not bucket:
        raise ConfigurationError(f"Missing bucket in {uri!r}")
    return scheme, bucket, prefix.strip('/')


@dataclass(frozen=True)
class BackupSettings:
    """Validated, process-wide backup settings."""

    storage_data_path: str
    snapshot_name: str
    snapshot_create_url: str
    snapshot_delete_url: str
    snapshot_timeout: int
    dst: str
    origin: str
    concurrency: int
    max_bytes_per_second: int
    retention: timedelta
    retention_dry_run: bool
    cycle_interval: timedelta
    max_concurrent_cycles: int
    max_cycle_duration: Optional[timedelta]
    s3_endpoint: str
    access_key: str
    secret_key: str
    region: str
    force_path_style: bool
    list_page_size: int

    @property
    def auto_snapshot(self) -> bool:
        return bool(self.snapshot_create_url)

    @classmethod
    def from_mapping(cls, conf: Mapping[str, Any]) -> 'BackupSettings':
        """
        Build settings from a Flask config mapping.

        Raises:
            ConfigurationError: On any missing, conflicting or malformed value
        """
        snapshot_name = conf.get('SNAPSHOT_NAME') or ''
        create_url = conf.get('SNAPSHOT_CREATE_URL') or ''
        delete_url = conf.get('SNAPSHOT_DELETE_URL') or ''

        if create_url and snapshot_name:
            raise ConfigurationError(
                "SNAPSHOT_NAME shouldn't be set if SNAPSHOT_CREATE_URL is set, "
                "since snapshots are created automatically in this case"
            )
        if not create_url and not snapshot_name:
            raise ConfigurationError("SNAPSHOT_NAME or SNAPSHOT_CREATE_URL must be provided")
        if create_url and not delete_url:
            delete_url = derive_delete_url(create_url)

        dst = conf.get('DST') or ''
        if not dst:
            raise ConfigurationError("DST must be provided, e.g. s3://bucket/path or fs:///path")
        split_location(dst)

        origin = conf.get('ORIGIN') or ''
        if origin:
            split_location(origin)

        concurrency = _to_int(conf.get('CONCURRENCY', 10), 'CONCURRENCY')
        if concurrency <= 0:
            raise ConfigurationError(f"CONCURRENCY must be a positive integer, got {concurrency}")

        try:
            max_bytes = parse_bytes(conf.get('MAX_BYTES_PER_SECOND', 0))
        except ValueError as e:
            raise ConfigurationError(f"MAX_BYTES_PER_SECOND: {e}")
        if max_bytes < 0:
            raise ConfigurationError(f"MAX_BYTES_PER_SECOND must not be negative, got {max_bytes}")

        retention = _to_duration(conf.get('RETENTION', '30d'), 'RETENTION')
        interval = _to_duration(conf.get('CYCLE_INTERVAL_MINUTES', 60), 'CYCLE_INTERVAL_MINUTES', default_unit='m')
        if retention <= timedelta(0):
            raise ConfigurationError("RETENTION must be positive")
        if interval <= timedelta(0):
            raise ConfigurationError("CYCLE_INTERVAL_MINUTES must be positive")

        max_cycles = _to_int(conf.get('MAX_CONCURRENT_CYCLES', 2), 'MAX_CONCURRENT_CYCLES')
        if max_cycles <= 0:
            raise ConfigurationError(f"MAX_CONCURRENT_CYCLES must be a positive integer, got {max_cycles}")

        max_cycle_duration = None
        if conf.get('MAX_CYCLE_DURATION'):
            max_cycle_duration = _to_duration(conf['MAX_CYCLE_DURATION'], 'MAX_CYCLE_DURATION')
            # Retention must outlive the longest cycle
            if retention <= max_cycle_duration:
                raise ConfigurationError(
                    f"RETENTION ({retention}) must exceed MAX_CYCLE_DURATION ({max_cycle_duration})"
                )

        return cls(
            storage_data_path=conf.get('STORAGE_DATA_PATH') or 'victoria-metrics-data',
            snapshot_name=snapshot_name,
            snapshot_create_url=create_url,
            snapshot_delete_url=delete_url,
            snapshot_timeout=_to_int(conf.get('SNAPSHOT_TIMEOUT', 60), 'SNAPSHOT_TIMEOUT'),
            dst=dst.rstrip('/'),
            origin=origin,
            concurrency=concurrency,
            max_bytes_per_second=max_bytes,
            retention=retention,
            retention_dry_run=as_bool(conf.get('RETENTION_DRY_RUN', False)),
            cycle_interval=interval,
            max_concurrent_cycles=max_cycles,
            max_cycle_duration=max_cycle_duration,
            s3_endpoint=conf.get('S3_ENDPOINT') or '',
            access_key=conf.get('AWS_ACCESS_KEY_ID') or '',
            secret_key=conf.get('AWS_SECRET_ACCESS_KEY') or '',
            region=conf.get('AWS_REGION') or 'us-east-1',
            force_path_style=as_bool(conf.get('S3_FORCE_PATH_STYLE', True)),
            list_page_size=_to_int(conf.get('S3_LIST_PAGE_SIZE', 1000), 'S3_LIST_PAGE_SIZE'),
        )


def _to_int(value, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _to_duration(value, name: str, default_unit: Optional[str] = None) -> timedelta:
    try:
        return parse_duration(value, default_unit=default_unit)
    except ValueError as e:
        raise ConfigurationError(f"{name}: {e}")
