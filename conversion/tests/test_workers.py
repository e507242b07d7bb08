"""
Tests for conversion/workers.py
"""
import threading
from unittest.mock import patch

from django.test import SimpleTestCase, override_settings

from conversion import retention, workers
from conversion.workers import ConversionWorkerPool, get_pool, reset_pool


class ConversionWorkerPoolTest(SimpleTestCase):
    """Tests for the bounded worker pool"""

    def setUp(self):
        self.run_patcher = patch('conversion.workers.run_conversion')
        self.mock_run = self.run_patcher.start()
        self.pool = None

    def tearDown(self):
        if self.pool is not None:
            self.pool.shutdown(wait=True)
        self.run_patcher.stop()

    def test_runs_submitted_jobs(self):
        self.pool = ConversionWorkerPool(2)

        self.pool.submit('job-a')
        self.pool.submit('job-b')
        self.pool.join()

        ran = sorted(c.args[0] for c in self.mock_run.call_args_list)
        self.assertEqual(ran, ['job-a', 'job-b'])

    def test_passes_cancellation_token(self):
        self.pool = ConversionWorkerPool(1)

        token = self.pool.submit('job-a')
        self.pool.join()

        self.mock_run.assert_called_once_with('job-a', cancel_event=token)

    def test_never_exceeds_pool_size(self):
        self.pool = ConversionWorkerPool(2)
        lock = threading.Lock()
        release = threading.Event()
        state = {'running': 0, 'peak': 0}

        def fake_run(job_id, cancel_event=None):
            with lock:
                state['running'] += 1
                state['peak'] = max(state['peak'], state['running'])
            release.wait(timeout=5)
            with lock:
                state['running'] -= 1

        self.mock_run.side_effect = fake_run

        for index in range(5):
            self.pool.submit(f'job-{index}')
        threading.Timer(0.2, release.set).start()
        self.pool.join()

        self.assertEqual(self.mock_run.call_count, 5)
        self.assertLessEqual(state['peak'], 2)

    def test_cancel_sets_token(self):
        self.pool = ConversionWorkerPool(1)
        started = threading.Event()
        tokens = {}

        def fake_run(job_id, cancel_event=None):
            tokens[job_id] = cancel_event
            started.set()
            cancel_event.wait(timeout=5)

        self.mock_run.side_effect = fake_run

        self.pool.submit('job-a')
        self.assertTrue(started.wait(timeout=5))

        self.assertTrue(self.pool.is_tracking('job-a'))
        self.assertTrue(self.pool.cancel('job-a'))
        self.pool.join()

        self.assertTrue(tokens['job-a'].is_set())
        self.assertFalse(self.pool.is_tracking('job-a'))

    def test_cancel_unknown_job(self):
        self.pool = ConversionWorkerPool(1)

        self.assertFalse(self.pool.cancel('job-a'))

    def test_worker_survives_crash(self):
        self.pool = ConversionWorkerPool(1)
        self.mock_run.side_effect = [RuntimeError('boom'), None]

        with self.assertLogs('conversion.workers', level='ERROR'):
            self.pool.submit('job-a')
            self.pool.join()
        self.pool.submit('job-b')
        self.pool.join()

        self.assertEqual(self.mock_run.call_count, 2)

    def test_shutdown_cancels_tracked_jobs(self):
        self.pool = ConversionWorkerPool(1)
        started = threading.Event()

        def fake_run(job_id, cancel_event=None):
            started.set()
            cancel_event.wait(timeout=5)

        self.mock_run.side_effect = fake_run
        token = self.pool.submit('job-a')
        self.assertTrue(started.wait(timeout=5))

        self.pool.shutdown(wait=True)
        self.pool = None

        self.assertTrue(token.is_set())


class GetPoolTest(SimpleTestCase):
    def tearDown(self):
        reset_pool()

    @override_settings(CONVERTER_MAX_CONCURRENT_JOBS=3)
    def test_pool_is_shared(self):
        reset_pool()

        pool = get_pool()

        self.assertIs(get_pool(), pool)
        self.assertEqual(pool.size, 3)

    def test_reset_discards_pool(self):
        pool = get_pool()

        reset_pool()

        self.assertIsNone(workers._pool)
        self.assertIsNot(get_pool(), pool)

    def test_pool_arms_orphan_sweeper(self):
        reset_pool()

        get_pool()
        sweeper = retention._sweeper[0]
        self.assertTrue(sweeper.is_alive())
        self.assertEqual(sweeper.name, 'orphan-sweeper')

        reset_pool()
        sweeper.join(timeout=5)
        self.assertIsNone(retention._sweeper)
        self.assertFalse(sweeper.is_alive())
