"""
Configuration adapter for conversion settings.

Centralizes access to Django settings so the pipeline, views, commands
and tasks all read the same values.
"""

from pathlib import Path

from django.conf import settings


def get_storage_root():
    """Get the root directory holding uploads and job outputs"""
    return Path(settings.CONVERTER_STORAGE_ROOT)


def get_uploads_dir():
    """Get the directory where uploaded inputs are stored"""
    return get_storage_root() / 'uploads'


def get_outputs_dir():
    """Get the directory holding one working directory per job"""
    return get_storage_root() / 'outputs'


def ensure_storage_dirs():
    """
    Create the storage directories if they are missing.

    Returns:
        tuple: (uploads_dir, outputs_dir)
    """
    uploads_dir = get_uploads_dir()
    outputs_dir = get_outputs_dir()
    uploads_dir.mkdir(parents=True, exist_ok=True)
    outputs_dir.mkdir(parents=True, exist_ok=True)
    return uploads_dir, outputs_dir


def get_max_upload_size():
    """Get the upload size ceiling in bytes"""
    return settings.CONVERTER_MAX_UPLOAD_SIZE


def get_retention_seconds():
    """Get the delay between a job finishing and its artifacts being deleted"""
    return settings.CONVERTER_RETENTION_SECONDS


def get_failed_retention_seconds():
    """
    Get the retention delay for failed jobs.

    Returns:
        float or None: None means failed jobs are never scheduled for cleanup
    """
    return getattr(settings, 'CONVERTER_FAILED_RETENTION_SECONDS', None)


def get_orphan_max_age_seconds():
    """Get the age after which unowned artifacts are swept"""
    return settings.CONVERTER_ORPHAN_MAX_AGE_SECONDS


def get_min_orphan_age_seconds():
    """
    Get the smallest orphan age a sweep may use.

    A sweep must never reclaim a finished job before its retention window
    has closed.
    """
    return max(get_retention_seconds(), get_failed_retention_seconds() or 0)


def get_sweep_interval_seconds():
    """Get how often the serving process sweeps orphaned artifacts"""
    return getattr(settings, 'CONVERTER_SWEEP_INTERVAL_SECONDS', 60 * 60)


def get_max_concurrent_jobs():
    """Get the number of pipelines allowed to run at once (at least 1)"""
    return max(1, int(settings.CONVERTER_MAX_CONCURRENT_JOBS))


def get_stage_timeout(stage):
    """
    Get the timeout for a pipeline stage.

    Args:
        stage: Stage name ('probing', 'converting', 'packaging-hls', 'packaging-dash')

    Returns:
        float or None: Timeout in seconds, None for unbounded
    """
    timeouts = getattr(settings, 'CONVERTER_STAGE_TIMEOUTS', None) or {}
    return timeouts.get(stage)


def get_stream_tick_seconds():
    """Get the interval between push stream updates"""
    return settings.CONVERTER_STREAM_TICK_SECONDS


def get_ffmpeg_binary():
    """Get the ffmpeg executable name or path"""
    return settings.CONVERTER_FFMPEG_BINARY


def get_ffprobe_binary():
    """Get the ffprobe executable name or path"""
    return settings.CONVERTER_FFPROBE_BINARY
