"""
APScheduler configuration and job scheduling for vmbackup-cron.

Manages:
- The recurring backup cycle (first run at startup, then every interval)
- One-shot retention sweeps launched by each cycle
- Scheduler diagnostics for the status endpoint
"""

import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from vmbackup_cron.backup.executor import execute_backup_cycle
from vmbackup_cron.backup.retention import run_retention_sweep


logger = logging.getLogger(__name__)

CYCLE_JOB_ID = 'backup_cycle'
HISTORY_SIZE = 20
SWEEP_WORKERS = 4

# Global scheduler instance and runtime reference
scheduler = None
runtime = None


class BackupRuntime:
    """
    Long-lived objects shared by every cycle and sweep.

    Built once at startup and handed to the scheduler; holds the storage
    session so no job creates its own.
    """

    def __init__(self, settings, snapshot_client, session=None, object_store=None):
        self.settings = settings
        self.snapshot_client = snapshot_client
        self.session = session
        self.object_store = object_store
        self.cycle_history = deque(maxlen=HISTORY_SIZE)
        self.sweep_history = deque(maxlen=HISTORY_SIZE)
        self.running_cycles = 0
        self.running_sweeps = 0
        self._lock = threading.Lock()

    def track(self, kind: str, delta: int):
        with self._lock:
            setattr(self, f'running_{kind}', getattr(self, f'running_{kind}') + delta)


def init_scheduler(backup_runtime: BackupRuntime):
    """
    Initialize and configure APScheduler.

    Args:
        backup_runtime: Shared runtime objects
    """
    global scheduler, runtime

    if scheduler is not None:
        return scheduler

    runtime = backup_runtime
    settings = backup_runtime.settings

    jobstores = {
        'default': MemoryJobStore()
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=settings.max_concurrent_cycles),
        'sweeps': ThreadPoolExecutor(max_workers=SWEEP_WORKERS)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': settings.max_concurrent_cycles,  # Overlap bound; extra ticks are skipped
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    # First cycle runs immediately, then once per interval
    scheduler.add_job(
        func=_execute_cycle_wrapper,
        trigger=IntervalTrigger(seconds=settings.cycle_interval.total_seconds(), timezone='UTC'),
        next_run_time=datetime.now(timezone.utc),
        id=CYCLE_JOB_ID,
        name='Backup Cycle',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after the runtime is built.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started successfully (state={scheduler.state}, running={scheduler.running})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler stopped")


def launch_sweep():
    """
    Queue one retention sweep on the sweep executor and return at once.

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    scheduler.add_job(
        func=_execute_sweep_wrapper,
        trigger=DateTrigger(run_date=now),
        id=f"sweep_{int(now.timestamp())}_{uuid.uuid4().hex[:8]}",
        name='Retention Sweep',
        executor='sweeps',
        max_instances=1,
        misfire_grace_time=None,
        replace_existing=False
    )


def _execute_cycle_wrapper():
    """
    Run one backup cycle in scheduler context.

    A failed cycle is logged and recorded; the next tick still fires.
    """
    global runtime

    runtime.track('cycles', 1)
    try:
        result = execute_backup_cycle(
            runtime.settings,
            runtime.snapshot_client,
            session=runtime.session,
            launch_sweep=launch_sweep
        )
        runtime.cycle_history.append(result)
        if result.status == 'success':
            logger.info(f"Backup cycle {result.destination} completed with status: {result.status}")
        else:
            logger.error(
                f"Backup cycle {result.destination} completed with status: {result.status} "
                f"({result.error_type}: {result.error})"
            )
    except Exception as e:
        logger.exception(f"Backup cycle crashed: {e}")
    finally:
        runtime.track('cycles', -1)


def _execute_sweep_wrapper():
    """
    Run one retention sweep in scheduler context.

    A failed sweep is logged and recorded; the schedule continues.
    """
    global runtime

    runtime.track('sweeps', 1)
    try:
        result = run_retention_sweep(
            runtime.object_store,
            runtime.settings.retention,
            dry_run=runtime.settings.retention_dry_run
        )
        runtime.sweep_history.append(result)
        if result.status == 'success':
            logger.info(f"Retention sweep completed: deleted={result.deleted}, failed={result.failed}")
        else:
            logger.error(f"Retention sweep failed: {result.error}")
    except Exception as e:
        logger.exception(f"Retention sweep crashed: {e}")
    finally:
        runtime.track('sweeps', -1)


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def get_scheduler_diagnostics() -> dict:
    """
    Get scheduler state plus the most recent cycle and sweep results.

    Returns:
        Dict with scheduler state, jobs, and recent results
    """
    global scheduler, runtime

    if scheduler is None:
        return {
            'initialized': False,
            'running': False,
            'state': 'NOT_INITIALIZED'
        }

    diagnostics = {
        'initialized': True,
        'running': scheduler.running,
        'state': str(scheduler.state),
        'jobs': get_scheduled_jobs()
    }

    if runtime is not None:
        diagnostics.update({
            'running_cycles': runtime.running_cycles,
            'running_sweeps': runtime.running_sweeps,
            'last_cycle': runtime.cycle_history[-1].to_dict() if runtime.cycle_history else None,
            'last_sweep': runtime.sweep_history[-1].to_dict() if runtime.sweep_history else None
        })

    return diagnostics
