"""
Retention of job artifacts.

Finished jobs keep their outputs for a fixed window, then a one-shot timer
removes the registry record and deletes the input file and working
directory. The orphan sweep reclaims anything on disk that no live job owns
(failed jobs, jobs lost to a restart).
"""

import logging
import shutil
import threading
import time
from pathlib import Path

from conversion.registry import JOB_LOG_NAME, registry
from conversion.service.config import (
    get_failed_retention_seconds,
    get_min_orphan_age_seconds,
    get_orphan_max_age_seconds,
    get_outputs_dir,
    get_retention_seconds,
    get_sweep_interval_seconds,
    get_uploads_dir,
)
from conversion.utils import directory_size, latest_mtime, log_has_finished

logger = logging.getLogger(__name__)

# Armed timers by job id
_timers = {}
_lock = threading.Lock()


def remove_path(path):
    path = Path(path)
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error('Error deleting %s: %s', path, e)


def delete_job_artifacts(job):
    """Delete the input file and working directory of a job"""
    remove_path(job.input_path)
    remove_path(job.job_dir)


def cleanup_job(job_id):
    """
    Remove a job's record and artifacts.

    The record is removed first, so once this returns no endpoint can
    reach the job and there is nothing left on disk. Calling it again for
    the same id does nothing.

    Returns:
        bool: True if a job was removed by this call
    """
    with _lock:
        timer = _timers.pop(job_id, None)
    if timer is not None:
        timer.cancel()

    job = registry.delete(job_id)
    if job is None:
        return False

    delete_job_artifacts(job)
    logger.info('Deleted job %s and its artifacts', job_id)
    return True


def schedule_cleanup(job_id, delay=None):
    """
    Arm a one-shot timer that cleans up the job after the retention window.

    Args:
        job_id: Job id
        delay: Seconds to wait (default from settings)

    Returns:
        threading.Timer or None if the job does not exist
    """
    if job_id not in registry:
        return None

    if delay is None:
        delay = get_retention_seconds()

    timer = threading.Timer(delay, cleanup_job, args=(job_id,))
    timer.daemon = True
    timer.name = f'retention-{job_id}'

    with _lock:
        previous = _timers.pop(job_id, None)
        _timers[job_id] = timer
    if previous is not None:
        previous.cancel()

    timer.start()
    logger.info('Scheduled cleanup of job %s in %s seconds', job_id, delay)
    return timer


def schedule_failed_cleanup(job_id):
    """
    Schedule cleanup for a failed job if failed-job retention is enabled.

    Returns:
        threading.Timer or None when failed jobs are kept
    """
    delay = get_failed_retention_seconds()
    if delay is None:
        return None
    return schedule_cleanup(job_id, delay=delay)


def pending_cleanups():
    """Ids of jobs with an armed cleanup timer"""
    with _lock:
        return set(_timers)


def cancel_scheduled_cleanups():
    """Disarm every pending timer without deleting anything"""
    with _lock:
        timers = list(_timers.values())
        _timers.clear()
    for timer in timers:
        timer.cancel()


def _unfinished_job_ids(outputs_dir):
    """Ids of job directories whose log shows the job is still queued or running"""
    unfinished = set()
    for job_dir in outputs_dir.iterdir():
        log_path = job_dir / JOB_LOG_NAME
        if not job_dir.is_dir() or not log_path.is_file():
            continue
        try:
            if not log_has_finished(log_path):
                unfinished.add(job_dir.name)
        except OSError as e:
            logger.error('Could not read %s: %s', log_path, e)
            unfinished.add(job_dir.name)
    return unfinished


def find_orphaned_artifacts(max_age_seconds=None, now=None, keep_unfinished=True):
    """
    Find uploads and job directories that no live job owns.

    A job is live if this process's registry holds it. With
    ``keep_unfinished`` a job is also live while its log has no done or
    error banner, which is the only ownership a process without the
    serving registry (the Huey consumer, a management command) can see.
    The age is never below the retention window.

    Args:
        max_age_seconds: Minimum age to be considered abandoned (default from settings)
        now: Current time as a timestamp (for tests)
        keep_unfinished: Treat jobs whose log is not finished as live

    Returns:
        list of dicts with 'path', 'kind', 'age' (seconds) and 'size' (bytes)
    """
    if max_age_seconds is None:
        max_age_seconds = get_orphan_max_age_seconds()
    max_age_seconds = max(max_age_seconds, get_min_orphan_age_seconds())
    if now is None:
        now = time.time()

    owned_names = set()
    owned_ids = set()
    for job_id in registry.ids():
        job = registry.find(job_id)
        if job is not None:
            owned_ids.add(job.id)
            owned_names.add(Path(job.input_path).name)
            owned_names.add(Path(job.job_dir).name)

    uploads_dir = get_uploads_dir()
    outputs_dir = get_outputs_dir()
    if keep_unfinished and outputs_dir.exists():
        owned_ids |= _unfinished_job_ids(outputs_dir)

    candidates = []
    if uploads_dir.exists():
        candidates.extend((p, 'upload') for p in uploads_dir.iterdir() if p.is_file())
    if outputs_dir.exists():
        candidates.extend((p, 'job') for p in outputs_dir.iterdir() if p.is_dir())

    orphans = []
    for path, kind in candidates:
        # Uploads are named after their job id
        job_id = path.stem if kind == 'upload' else path.name
        if path.name in owned_names or job_id in owned_ids:
            continue
        try:
            age = now - latest_mtime(path)
        except FileNotFoundError:
            continue
        if age > max_age_seconds:
            orphans.append({
                'path': path,
                'kind': kind,
                'age': age,
                'size': directory_size(path),
            })

    return orphans


def sweep_orphaned_artifacts(max_age_seconds=None, keep_unfinished=True):
    """
    Delete everything find_orphaned_artifacts reports.

    Returns:
        list of deleted paths
    """
    deleted = []
    orphans = find_orphaned_artifacts(max_age_seconds=max_age_seconds, keep_unfinished=keep_unfinished)
    for info in orphans:
        remove_path(info['path'])
        deleted.append(info['path'])
        logger.info('Swept orphaned %s %s', info['kind'], info['path'])
    return deleted


# Sweeper thread of the serving process and its stop flag
_sweeper = None


def start_periodic_sweep(interval=None):
    """
    Sweep orphans from this process every ``interval`` seconds.

    This process's registry is authoritative for its own jobs, so jobs lost
    to a restart are reclaimed here even though their logs never finished.

    Returns:
        threading.Thread: The sweeper (the running one if already started)
    """
    global _sweeper
    if interval is None:
        interval = get_sweep_interval_seconds()

    with _lock:
        if _sweeper is not None:
            return _sweeper[0]
        stop = threading.Event()

        def loop():
            while not stop.wait(interval):
                try:
                    sweep_orphaned_artifacts(keep_unfinished=False)
                except OSError:
                    logger.exception('Orphan sweep failed')

        thread = threading.Thread(target=loop, name='orphan-sweeper', daemon=True)
        _sweeper = (thread, stop)
    thread.start()
    return thread


def stop_periodic_sweep():
    """Stop the sweeper thread if one is running"""
    global _sweeper
    with _lock:
        sweeper, _sweeper = _sweeper, None
    if sweeper is not None:
        sweeper[1].set()
