"""
Conversion pipeline for a single job.

Steps:
1. PROBING - Read the input duration with ffprobe (failure is not fatal)
2. CONVERTING - Transcode to a normalized MP4, reporting progress
3. PACKAGING-HLS - Stream-copy the MP4 into an HLS playlist
4. PACKAGING-DASH - Stream-copy the MP4 into a DASH manifest
5. DONE - Mark complete and schedule retention cleanup

Any failure after probing moves the job to ERROR and skips the rest.
"""

import logging

from conversion.registry import Job, registry
from conversion.retention import schedule_cleanup, schedule_failed_cleanup
from conversion.service.config import get_stage_timeout
from conversion.service.encoder import (
    ProcessLaunchError,
    StageCancelled,
    StageFailure,
    build_dash_args,
    build_hls_args,
    build_transcode_args,
    run_encoder,
)
from conversion.service.probe import ProbeFailure, probe_duration
from conversion.service.progress import extract_progress
from conversion.utils import DONE_BANNER, ERROR_BANNER, write_log

logger = logging.getLogger(__name__)


def _check_cancelled(cancel_event, stage):
    if cancel_event is not None and cancel_event.is_set():
        raise StageCancelled(stage, 'Cancelled')


def _fail(job_id, message, log_path):
    registry.update(job_id, status=Job.STATUS_ERROR, error=message)
    try:
        write_log(log_path, ERROR_BANNER)
        write_log(log_path, f"Error: {message}")
    except OSError as e:
        logger.error('Could not write log for job %s: %s', job_id, e)
    schedule_failed_cleanup(job_id)


def run_conversion(job_id, cancel_event=None):
    """
    Drive a job through every stage.

    Never raises: every failure ends up recorded on the job.

    Args:
        job_id: Id of a job in the registry
        cancel_event: Optional threading.Event checked before and during each stage

    Returns:
        Job: The final record, or None if the job does not exist
    """
    job = registry.find(job_id)
    if job is None:
        logger.warning('Job %s not found, nothing to run', job_id)
        return None

    log_path = job.log_path
    try:
        write_log(log_path, "=== JOB STARTED ===")
        write_log(log_path, f"Job: {job_id}")
        write_log(log_path, f"Input: {job.input_path} ({job.original_filename or 'unnamed'})")
        _run_stages(job, cancel_event, log_path)
    except (StageFailure, ProcessLaunchError) as e:
        logger.warning('Job %s failed: %s', job_id, e)
        _fail(job_id, str(e), log_path)
    except Exception as e:
        logger.exception('Unexpected error while converting job %s', job_id)
        _fail(job_id, f'Internal error: {e}', log_path)

    return registry.find(job_id)


def _run_stages(job, cancel_event, log_path):
    job_id = job.id

    def log(message):
        write_log(log_path, message)

    # PROBING
    _check_cancelled(cancel_event, Job.STATUS_PROBING)
    registry.update(job_id, status=Job.STATUS_PROBING)
    log("=== PROBING ===")

    try:
        duration = probe_duration(job.input_path, timeout=get_stage_timeout(Job.STATUS_PROBING))
        log(f"Duration: {duration:.2f}s")
    except ProbeFailure as e:
        duration = None
        log(f"Probe failed, progress will not be estimated: {e}")
        logger.info('Probe failed for job %s: %s', job_id, e)

    # CONVERTING
    _check_cancelled(cancel_event, Job.STATUS_CONVERTING)
    registry.update(job_id, status=Job.STATUS_CONVERTING, duration=duration)
    log("=== CONVERTING ===")
    job.job_dir.mkdir(parents=True, exist_ok=True)

    def on_line(line):
        current = registry.find(job_id)
        if current is None:
            return
        progress = extract_progress(line, duration, current.progress)
        if progress != current.progress:
            registry.update(job_id, progress=progress)

    run_encoder(
        build_transcode_args(job.input_path, job.output_path),
        Job.STATUS_CONVERTING,
        on_line=on_line,
        timeout=get_stage_timeout(Job.STATUS_CONVERTING),
        cancel_event=cancel_event,
        logger=log,
    )
    log(f"Transcoded: {job.output_path}")

    # PACKAGING-HLS
    _check_cancelled(cancel_event, Job.STATUS_PACKAGING_HLS)
    registry.update(job_id, status=Job.STATUS_PACKAGING_HLS)
    log("=== PACKAGING HLS ===")
    job.hls_dir.mkdir(parents=True, exist_ok=True)
    run_encoder(
        build_hls_args(job.output_path, job.hls_dir),
        Job.STATUS_PACKAGING_HLS,
        timeout=get_stage_timeout(Job.STATUS_PACKAGING_HLS),
        cancel_event=cancel_event,
        logger=log,
    )

    # PACKAGING-DASH
    _check_cancelled(cancel_event, Job.STATUS_PACKAGING_DASH)
    registry.update(job_id, status=Job.STATUS_PACKAGING_DASH)
    log("=== PACKAGING DASH ===")
    job.dash_dir.mkdir(parents=True, exist_ok=True)
    run_encoder(
        build_dash_args(job.output_path, job.dash_dir),
        Job.STATUS_PACKAGING_DASH,
        timeout=get_stage_timeout(Job.STATUS_PACKAGING_DASH),
        cancel_event=cancel_event,
        logger=log,
    )

    # DONE
    log(DONE_BANNER)
    registry.update(job_id, status=Job.STATUS_DONE, progress=100)
    logger.info('Job %s finished', job_id)
    schedule_cleanup(job_id)
