import os
import logging
import atexit
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'vmbackup-cron.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # botocore is chatty at DEBUG
    logging.getLogger('botocore').setLevel(logging.WARNING)

    app.logger.setLevel(log_level)
    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def build_runtime(settings):
    """
    Build the objects shared by every cycle and sweep.

    The storage session is created here, once, when the destination or
    origin is on S3.
    """
    from vmbackup_cron.backup.snapshot import SnapshotClient
    from vmbackup_cron.backup.storage import StorageSession, create_object_store
    from vmbackup_cron.config import split_location
    from vmbackup_cron.scheduler import BackupRuntime

    schemes = {split_location(settings.dst)[0]}
    if settings.origin:
        schemes.add(split_location(settings.origin)[0])

    session = StorageSession.from_settings(settings) if 's3' in schemes else None

    return BackupRuntime(
        settings=settings,
        snapshot_client=SnapshotClient(timeout=settings.snapshot_timeout),
        session=session,
        object_store=create_object_store(settings, session)
    )


def create_app(config_name=None, overrides=None):
    """
    Application factory.

    Raises:
        ConfigurationError: If settings are invalid; nothing is scheduled
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from vmbackup_cron.config import config, BackupSettings, as_bool
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # Configure logging
    configure_logging(app)

    settings = BackupSettings.from_mapping(app.config)
    app.logger.info(
        f"Backing up {settings.storage_data_path} to {settings.dst} every {settings.cycle_interval} "
        f"(retention: {settings.retention}, concurrency: {settings.concurrency})"
    )
    if settings.auto_snapshot:
        app.logger.info(f"Snapshot create url {settings.snapshot_create_url}")
        app.logger.info(f"Snapshot delete url {settings.snapshot_delete_url}")
    if settings.max_cycle_duration is None:
        app.logger.warning(
            "MAX_CYCLE_DURATION is not set; make sure RETENTION exceeds the longest backup cycle"
        )

    runtime = build_runtime(settings)
    app.extensions['vmbackup_cron'] = runtime

    from vmbackup_cron.routes import status_routes
    app.register_blueprint(status_routes.bp)

    if as_bool(app.config.get('SCHEDULER_ENABLED', True)):
        from vmbackup_cron.scheduler import init_scheduler, start_scheduler, stop_scheduler

        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(runtime)
        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler disabled in this process")

    return app
