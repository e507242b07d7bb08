"""
High-level operations that can be used by views and management commands.

This module provides testable functions that encapsulate submission logic,
making it easy to test without going through Django views or commands.
"""

import logging
import os
import shutil
from pathlib import Path

from conversion.registry import JOB_LOG_NAME, generate_job_id, registry
from conversion.service.config import ensure_storage_dirs, get_max_upload_size
from conversion.utils import QUEUED_BANNER, write_log
from conversion.workers import get_pool

logger = logging.getLogger(__name__)


class SubmissionError(Exception):
    """Raised when an upload is missing or unacceptable"""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.status = status


def _input_destination(filename, job_id):
    uploads_dir, _ = ensure_storage_dirs()
    suffix = Path(os.path.basename(filename or '')).suffix.lower()
    # Keep the extension only when it looks like one
    if not suffix[1:].isalnum() or len(suffix) > 10:
        suffix = ''
    return uploads_dir / f'{job_id}{suffix}'


def _job_dir_for(job_id):
    _, outputs_dir = ensure_storage_dirs()
    return outputs_dir / job_id


def _register(job_id, input_path, original_filename):
    job_dir = _job_dir_for(job_id)
    # Lets processes without this registry see the job as unfinished
    write_log(job_dir / JOB_LOG_NAME, QUEUED_BANNER)
    return registry.create(input_path, job_dir=job_dir, original_filename=original_filename,
                           job_id=job_id)


def save_uploaded_file(uploaded_file, job_id):
    """
    Save an uploaded file into the uploads directory, named after its job.

    Returns:
        Path: Location of the stored input
    """
    dest = _input_destination(uploaded_file.name, job_id)
    with open(dest, 'wb') as f:
        for chunk in uploaded_file.chunks():
            f.write(chunk)
    return dest


def submit_upload(uploaded_file, enqueue=True):
    """
    Register an uploaded file as a new conversion job.

    This is the core operation used by:
    - Web POST /api/convert
    - Any caller holding a Django UploadedFile

    Args:
        uploaded_file: Django UploadedFile, or None
        enqueue: If True, hand the job to the worker pool

    Returns:
        Job: The new queued job

    Raises:
        SubmissionError: If the file is missing, empty or too large
    """
    if uploaded_file is None:
        raise SubmissionError('Missing file')

    if not uploaded_file.size:
        raise SubmissionError('Uploaded file is empty')

    max_size = get_max_upload_size()
    if uploaded_file.size > max_size:
        raise SubmissionError(f'File exceeds the {max_size} byte limit', status=413)

    job_id = generate_job_id()
    input_path = save_uploaded_file(uploaded_file, job_id)
    job = _register(job_id, input_path, uploaded_file.name)
    logger.info('Created job %s for %s (%d bytes)', job.id, uploaded_file.name, uploaded_file.size)

    if enqueue:
        get_pool().submit(job.id)

    return job


def submit_path(source_path):
    """
    Register a local file as a new conversion job without enqueueing it.

    The file is copied into the uploads directory so retention never
    touches the caller's original.

    Raises:
        SubmissionError: If the path is not a readable, non-empty file
    """
    source_path = Path(source_path)
    if not source_path.is_file():
        raise SubmissionError(f'File not found: {source_path}')
    if source_path.stat().st_size == 0:
        raise SubmissionError('Input file is empty')

    job_id = generate_job_id()
    input_path = _input_destination(source_path.name, job_id)
    shutil.copy2(source_path, input_path)
    job = _register(job_id, input_path, source_path.name)
    logger.info('Created job %s for %s', job.id, source_path)
    return job
