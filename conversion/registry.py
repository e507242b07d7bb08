"""
Job registry for conversion jobs.

Provides thread-safe job storage that is written by the pipeline workers and
read by the status/stream endpoints and the retention timers.

Records are immutable snapshots: every update swaps in a new Job, so a reader
always holds a fully-formed record no matter what writers do afterwards.
"""

import dataclasses
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from nanoid import generate


JOB_LOG_NAME = 'convert.log'

def generate_job_id():
    """Generate NanoID with A-Z a-z 0-9 alphabet"""
    alphabet = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'
    return generate(alphabet, size=21)


class JobNotFound(Exception):
    """Raised when a job id is not in the registry"""


class InvalidTransition(ValueError):
    """Raised when an update would move a job's status backwards"""


@dataclass(frozen=True)
class Job:
    """One conversion request and its lifecycle state"""

    # Status values
    STATUS_QUEUED = 'queued'
    STATUS_PROBING = 'probing'
    STATUS_CONVERTING = 'converting'
    STATUS_PACKAGING_HLS = 'packaging-hls'
    STATUS_PACKAGING_DASH = 'packaging-dash'
    STATUS_DONE = 'done'
    STATUS_ERROR = 'error'

    # Forward order of the pipeline; error may follow any non-terminal status
    STATUS_ORDER = (
        STATUS_QUEUED,
        STATUS_PROBING,
        STATUS_CONVERTING,
        STATUS_PACKAGING_HLS,
        STATUS_PACKAGING_DASH,
        STATUS_DONE,
    )
    TERMINAL_STATUSES = (STATUS_DONE, STATUS_ERROR)

    id: str
    input_path: Path
    job_dir: Path
    original_filename: str = ''
    status: str = STATUS_QUEUED
    progress: int = 0
    duration: Optional[float] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def output_path(self):
        return self.job_dir / 'output.mp4'

    @property
    def hls_dir(self):
        return self.job_dir / 'hls'

    @property
    def dash_dir(self):
        return self.job_dir / 'dash'

    @property
    def log_path(self):
        return self.job_dir / JOB_LOG_NAME

    @property
    def artifact_paths(self):
        """All locations owned by this job"""
        return (self.input_path, self.output_path, self.hls_dir, self.dash_dir)

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def is_done(self):
        return self.status == self.STATUS_DONE

    def snapshot(self):
        """Public view of the job used by the status and stream endpoints"""
        return {
            'id': self.id,
            'status': self.status,
            'progress': self.progress,
            'error': self.error,
        }


UPDATABLE_FIELDS = frozenset({'status', 'progress', 'duration', 'error'})


def _check_transition(current, new):
    if new == current:
        return
    if new == Job.STATUS_ERROR:
        return
    if new not in Job.STATUS_ORDER:
        raise InvalidTransition(f'Unknown status: {new!r}')
    if Job.STATUS_ORDER.index(new) < Job.STATUS_ORDER.index(current):
        raise InvalidTransition(f'Cannot move job from {current!r} back to {new!r}')


class JobRegistry:
    """Concurrency-safe store of Job records keyed by id"""

    def __init__(self):
        self._jobs = {}
        # Ids handed out by create() but not yet stored
        self._pending = set()
        self._lock = threading.Lock()

    def _allocate_id(self, job_id=None):
        with self._lock:
            if job_id is None:
                job_id = generate_job_id()
                while job_id in self._jobs or job_id in self._pending:
                    job_id = generate_job_id()
            elif job_id in self._jobs or job_id in self._pending:
                raise ValueError(f'Job id already in use: {job_id}')
            self._pending.add(job_id)
        return job_id

    def create(self, input_path, job_dir=None, original_filename='', job_id=None):
        """
        Register a new queued job.

        Only the id is allocated under the lock; a ``job_dir`` factory runs
        outside it.

        Args:
            input_path: Path of the uploaded input file
            job_dir: Working directory for outputs, or a callable(job_id) returning one
            original_filename: Client-supplied name, for display only
            job_id: Id reserved by the caller with generate_job_id (default: allocate one)

        Returns:
            Job: The new record

        Raises:
            ValueError: If ``job_id`` is already in use
        """
        job_id = self._allocate_id(job_id)
        try:
            if callable(job_dir):
                job_dir = job_dir(job_id)
            job = Job(
                id=job_id,
                input_path=Path(input_path),
                job_dir=Path(job_dir) if job_dir else Path(input_path).parent / job_id,
                original_filename=original_filename or '',
            )
            with self._lock:
                self._jobs[job_id] = job
            return job
        finally:
            with self._lock:
                self._pending.discard(job_id)

    def get(self, job_id):
        """
        Get a job record.

        Raises:
            JobNotFound: If no job has this id
        """
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def find(self, job_id):
        """Get a job record, or None if it does not exist"""
        with self._lock:
            return self._jobs.get(job_id)

    def update(self, job_id, **fields):
        """
        Apply a partial update to a job.

        Progress is clamped so it never decreases, terminal jobs are left
        untouched, and ``error`` is only kept when the status is ``error``.

        Args:
            job_id: Job id
            **fields: Any of status, progress, duration, error

        Returns:
            Job: The updated record, or None if the job does not exist

        Raises:
            InvalidTransition: If the status would move backwards
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update job field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.is_terminal:
                return job

            changes = {}

            status = fields.get('status', job.status)
            _check_transition(job.status, status)
            changes['status'] = status

            if 'progress' in fields and fields['progress'] is not None:
                progress = max(0, min(100, int(fields['progress'])))
                changes['progress'] = max(job.progress, progress)

            if 'duration' in fields:
                changes['duration'] = fields['duration']

            if status == Job.STATUS_ERROR:
                changes['error'] = fields.get('error') or job.error or 'Conversion failed'

            updated = dataclasses.replace(job, **changes)
            self._jobs[job_id] = updated
            return updated

    def delete(self, job_id):
        """
        Remove a job record.

        Returns:
            Job: The removed record, or None if it was already gone
        """
        with self._lock:
            return self._jobs.pop(job_id, None)

    def ids(self):
        """Ids of all jobs currently held"""
        with self._lock:
            return set(self._jobs)

    def clear(self):
        with self._lock:
            self._jobs.clear()
            self._pending.clear()

    def __len__(self):
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id):
        with self._lock:
            return job_id in self._jobs


# Process-wide registry shared by views, workers and retention timers
registry = JobRegistry()
