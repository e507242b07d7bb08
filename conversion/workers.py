"""
Bounded worker pool for conversion pipelines.

Submitted jobs wait in a FIFO queue (status ``queued``) until one of a fixed
number of worker threads picks them up. Each job gets a cancellation token
that the pipeline checks between and during stages.
"""

import logging
import queue
import threading

from conversion.pipeline import run_conversion
from conversion.retention import start_periodic_sweep, stop_periodic_sweep
from conversion.service.config import get_max_concurrent_jobs

logger = logging.getLogger(__name__)

_STOP = object()


class ConversionWorkerPool:
    """Fixed-size pool of daemon threads running run_conversion"""

    def __init__(self, size):
        self.size = max(1, int(size))
        self._queue = queue.Queue()
        self._tokens = {}
        self._threads = []
        self._lock = threading.Lock()

    def _ensure_started(self):
        with self._lock:
            if self._threads:
                return
            for index in range(self.size):
                thread = threading.Thread(
                    target=self._work, name=f'conversion-worker-{index}', daemon=True
                )
                thread.start()
                self._threads.append(thread)

    def submit(self, job_id):
        """
        Queue a job for conversion.

        Returns:
            threading.Event: The job's cancellation token
        """
        token = threading.Event()
        with self._lock:
            self._tokens[job_id] = token
        self._ensure_started()
        self._queue.put(job_id)
        logger.info('Queued job %s (%d waiting)', job_id, self._queue.qsize())
        return token

    def cancel(self, job_id):
        """
        Set a job's cancellation token.

        Returns:
            bool: True if the job was queued or running in this pool
        """
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            return False
        token.set()
        logger.info('Cancellation requested for job %s', job_id)
        return True

    def is_tracking(self, job_id):
        with self._lock:
            return job_id in self._tokens

    @property
    def waiting(self):
        """Number of jobs not yet picked up by a worker"""
        return self._queue.qsize()

    def _work(self):
        while True:
            job_id = self._queue.get()
            try:
                if job_id is _STOP:
                    return
                with self._lock:
                    token = self._tokens.get(job_id)
                try:
                    run_conversion(job_id, cancel_event=token)
                except Exception:
                    logger.exception('Worker crashed while running job %s', job_id)
                finally:
                    with self._lock:
                        self._tokens.pop(job_id, None)
            finally:
                self._queue.task_done()

    def join(self):
        """Block until every queued job has been processed"""
        self._queue.join()

    def shutdown(self, wait=False):
        """Cancel all jobs and stop the workers"""
        with self._lock:
            tokens = list(self._tokens.values())
            threads = list(self._threads)
            self._threads = []
        for token in tokens:
            token.set()
        for _ in threads:
            self._queue.put(_STOP)
        if wait:
            for thread in threads:
                thread.join()


_pool = None
_pool_lock = threading.Lock()


def get_pool():
    """Get the process-wide pool, creating it on first use"""
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ConversionWorkerPool(get_max_concurrent_jobs())
            # The process that runs jobs is the one whose registry can judge orphans
            start_periodic_sweep()
        return _pool


def reset_pool():
    """Stop and discard the process-wide pool"""
    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    stop_periodic_sweep()
    if pool is not None:
        pool.shutdown()
