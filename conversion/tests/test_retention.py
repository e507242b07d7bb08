"""
Tests for conversion/retention.py
"""
import os
import tempfile
import time
from pathlib import Path

from django.test import SimpleTestCase, override_settings

from conversion.registry import Job, generate_job_id, registry
from conversion.retention import (
    cancel_scheduled_cleanups,
    cleanup_job,
    find_orphaned_artifacts,
    pending_cleanups,
    schedule_cleanup,
    schedule_failed_cleanup,
    start_periodic_sweep,
    stop_periodic_sweep,
    sweep_orphaned_artifacts,
)
from conversion.utils import write_log


class RetentionTestCase(SimpleTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.settings_override = override_settings(CONVERTER_STORAGE_ROOT=self.temp_dir.name)
        self.settings_override.enable()
        self.root = Path(self.temp_dir.name)
        self.uploads_dir = self.root / 'uploads'
        self.outputs_dir = self.root / 'outputs'
        self.uploads_dir.mkdir()
        self.outputs_dir.mkdir()

    def tearDown(self):
        cancel_scheduled_cleanups()
        registry.clear()
        self.settings_override.disable()
        self.temp_dir.cleanup()

    def make_job(self, status=Job.STATUS_DONE):
        """Create a job with an input file and populated working directory"""
        input_path = self.uploads_dir / f'{generate_job_id()}.mov'
        input_path.write_bytes(b'input')
        job = registry.create(input_path, job_dir=lambda job_id: self.outputs_dir / job_id)
        job.hls_dir.mkdir(parents=True)
        job.dash_dir.mkdir(parents=True)
        job.output_path.write_bytes(b'mp4')
        (job.hls_dir / 'index.m3u8').write_text('#EXTM3U\n')
        if status == Job.STATUS_DONE:
            registry.update(job.id, status=Job.STATUS_DONE, progress=100)
        elif status == Job.STATUS_ERROR:
            registry.update(job.id, status=Job.STATUS_ERROR, error='converting failed')
        return registry.get(job.id)

    def age(self, path, seconds):
        stamp = time.time() - seconds
        for child in [path, *path.rglob('*')] if path.is_dir() else [path]:
            os.utime(child, (stamp, stamp))


class CleanupJobTest(RetentionTestCase):
    """Tests for deleting a job and its artifacts"""

    def test_cleanup_removes_record_and_files(self):
        job = self.make_job()

        self.assertTrue(cleanup_job(job.id))

        self.assertNotIn(job.id, registry)
        self.assertFalse(job.input_path.exists())
        self.assertFalse(job.job_dir.exists())

    def test_cleanup_twice_is_a_no_op(self):
        job = self.make_job()

        self.assertTrue(cleanup_job(job.id))
        self.assertFalse(cleanup_job(job.id))

    def test_cleanup_tolerates_missing_files(self):
        job = self.make_job()
        job.input_path.unlink()

        self.assertTrue(cleanup_job(job.id))
        self.assertFalse(job.job_dir.exists())


class ScheduleCleanupTest(RetentionTestCase):
    """Tests for retention timers"""

    def test_timer_fires_after_delay(self):
        job = self.make_job()

        timer = schedule_cleanup(job.id, delay=0.05)
        timer.join(timeout=5)

        self.assertNotIn(job.id, registry)
        self.assertFalse(job.job_dir.exists())
        self.assertNotIn(job.id, pending_cleanups())

    @override_settings(CONVERTER_RETENTION_SECONDS=3600)
    def test_default_delay_from_settings(self):
        job = self.make_job()

        timer = schedule_cleanup(job.id)

        self.assertEqual(timer.interval, 3600)
        self.assertTrue(timer.daemon)
        self.assertIn(job.id, pending_cleanups())
        # Still reachable before the window closes
        self.assertIn(job.id, registry)
        self.assertTrue(job.output_path.exists())

    def test_unknown_job_schedules_nothing(self):
        self.assertIsNone(schedule_cleanup('doesnotexist', delay=1))
        self.assertEqual(pending_cleanups(), set())

    def test_rescheduling_replaces_timer(self):
        job = self.make_job()

        first = schedule_cleanup(job.id, delay=3600)
        second = schedule_cleanup(job.id, delay=3600)

        self.assertIsNot(first, second)
        first.join(timeout=5)
        self.assertFalse(first.is_alive())
        self.assertTrue(second.is_alive())

    def test_early_cleanup_disarms_timer(self):
        job = self.make_job()
        timer = schedule_cleanup(job.id, delay=3600)

        cleanup_job(job.id)
        timer.join(timeout=5)

        self.assertFalse(timer.is_alive())
        self.assertEqual(pending_cleanups(), set())

    def test_cancel_scheduled_cleanups_keeps_files(self):
        job = self.make_job()
        timer = schedule_cleanup(job.id, delay=3600)

        cancel_scheduled_cleanups()
        timer.join(timeout=5)

        self.assertIn(job.id, registry)
        self.assertTrue(job.job_dir.exists())

    def test_failed_jobs_kept_by_default(self):
        job = self.make_job(status=Job.STATUS_ERROR)

        self.assertIsNone(schedule_failed_cleanup(job.id))
        self.assertEqual(pending_cleanups(), set())

    @override_settings(CONVERTER_FAILED_RETENTION_SECONDS=120)
    def test_failed_retention_when_configured(self):
        job = self.make_job(status=Job.STATUS_ERROR)

        timer = schedule_failed_cleanup(job.id)

        self.assertEqual(timer.interval, 120)


class OrphanSweepTest(RetentionTestCase):
    """Tests for reclaiming artifacts that no live job owns"""

    def make_orphans(self, age_seconds):
        upload = self.uploads_dir / 'lost.mov'
        upload.write_bytes(b'x' * 10)
        job_dir = self.outputs_dir / 'lostjob'
        (job_dir / 'hls').mkdir(parents=True)
        (job_dir / 'hls' / 'segment_000.ts').write_bytes(b'y' * 20)
        self.age(upload, age_seconds)
        self.age(job_dir, age_seconds)
        return upload, job_dir

    def test_finds_old_orphans(self):
        upload, job_dir = self.make_orphans(age_seconds=7200)

        orphans = find_orphaned_artifacts(max_age_seconds=3600)

        by_path = {info['path']: info for info in orphans}
        self.assertEqual(set(by_path), {upload, job_dir})
        self.assertEqual(by_path[upload]['kind'], 'upload')
        self.assertEqual(by_path[upload]['size'], 10)
        self.assertEqual(by_path[job_dir]['kind'], 'job')
        self.assertEqual(by_path[job_dir]['size'], 20)
        self.assertGreater(by_path[job_dir]['age'], 3600)

    def test_recent_orphans_are_left_alone(self):
        self.make_orphans(age_seconds=60)

        self.assertEqual(find_orphaned_artifacts(max_age_seconds=3600), [])

    def test_live_jobs_are_never_orphans(self):
        job = self.make_job(status=Job.STATUS_ERROR)
        self.age(job.input_path, 7200)
        self.age(job.job_dir, 7200)

        self.assertEqual(find_orphaned_artifacts(max_age_seconds=3600), [])

    def test_recently_touched_file_keeps_directory(self):
        _, job_dir = self.make_orphans(age_seconds=7200)
        (job_dir / 'hls' / 'index.m3u8').write_text('#EXTM3U\n')

        paths = [info['path'] for info in find_orphaned_artifacts(max_age_seconds=3600)]

        self.assertNotIn(job_dir, paths)

    def test_sweep_deletes_orphans(self):
        upload, job_dir = self.make_orphans(age_seconds=7200)

        deleted = sweep_orphaned_artifacts(max_age_seconds=3600)

        self.assertEqual(set(deleted), {upload, job_dir})
        self.assertFalse(upload.exists())
        self.assertFalse(job_dir.exists())

    def test_sweep_with_missing_storage(self):
        self.uploads_dir.rmdir()
        self.outputs_dir.rmdir()

        self.assertEqual(sweep_orphaned_artifacts(max_age_seconds=0), [])


class DiskOwnershipTest(RetentionTestCase):
    """Ownership as seen by a process whose registry is empty"""

    def make_job_on_disk(self, banners, age_seconds=2 * 24 * 3600):
        job_id = generate_job_id()
        upload = self.uploads_dir / f'{job_id}.mov'
        upload.write_bytes(b'input')
        job_dir = self.outputs_dir / job_id
        for banner in banners:
            write_log(job_dir / 'convert.log', banner)
        self.age(upload, age_seconds)
        self.age(job_dir, age_seconds)
        return upload, job_dir

    def test_queued_job_is_kept(self):
        upload, job_dir = self.make_job_on_disk(['=== QUEUED ==='])

        self.assertEqual(sweep_orphaned_artifacts(max_age_seconds=3600), [])
        self.assertTrue(upload.exists())
        self.assertTrue(job_dir.exists())

    def test_running_job_is_kept(self):
        upload, job_dir = self.make_job_on_disk(['=== QUEUED ===', '=== JOB STARTED ===', '=== CONVERTING ==='])

        self.assertEqual(find_orphaned_artifacts(max_age_seconds=3600), [])

    def test_finished_jobs_are_swept(self):
        done_upload, done_dir = self.make_job_on_disk(['=== QUEUED ===', '=== DONE ==='])
        failed_upload, failed_dir = self.make_job_on_disk(['=== QUEUED ===', '=== ERROR ==='])

        deleted = sweep_orphaned_artifacts(max_age_seconds=3600)

        self.assertEqual(set(deleted), {done_upload, done_dir, failed_upload, failed_dir})

    def test_registry_sweep_reclaims_unfinished_jobs(self):
        """A job lost to a restart never finishes its log; the serving process reclaims it"""
        upload, job_dir = self.make_job_on_disk(['=== QUEUED ===', '=== CONVERTING ==='])

        deleted = sweep_orphaned_artifacts(max_age_seconds=3600, keep_unfinished=False)

        self.assertEqual(set(deleted), {upload, job_dir})

    @override_settings(CONVERTER_RETENTION_SECONDS=4 * 3600)
    def test_max_age_never_below_retention_window(self):
        upload, job_dir = self.make_job_on_disk(['=== DONE ==='], age_seconds=2 * 3600)

        self.assertEqual(find_orphaned_artifacts(max_age_seconds=60), [])

        paths = {info['path'] for info in find_orphaned_artifacts(max_age_seconds=60,
                                                                 now=time.time() + 3 * 3600)}
        self.assertEqual(paths, {upload, job_dir})

    @override_settings(CONVERTER_FAILED_RETENTION_SECONDS=6 * 3600)
    def test_max_age_never_below_failed_retention_window(self):
        self.make_job_on_disk(['=== ERROR ==='], age_seconds=3 * 3600)

        self.assertEqual(find_orphaned_artifacts(max_age_seconds=60), [])


class PeriodicSweepTest(RetentionTestCase):
    def setUp(self):
        super().setUp()
        stop_periodic_sweep()

    def tearDown(self):
        stop_periodic_sweep()
        super().tearDown()

    def test_sweeps_in_background(self):
        job_dir = self.outputs_dir / 'lostjob'
        job_dir.mkdir()
        (job_dir / 'convert.log').write_text('[2024-01-01 00:00:00] === CONVERTING ===\n')
        self.age(job_dir, 2 * 24 * 3600)

        start_periodic_sweep(interval=0.05)
        deadline = time.monotonic() + 5
        while job_dir.exists() and time.monotonic() < deadline:
            time.sleep(0.05)

        self.assertFalse(job_dir.exists())

    def test_start_is_idempotent(self):
        first = start_periodic_sweep(interval=3600)

        self.assertIs(start_periodic_sweep(interval=3600), first)

    def test_stop_ends_thread(self):
        thread = start_periodic_sweep(interval=3600)

        stop_periodic_sweep()
        thread.join(timeout=5)

        self.assertFalse(thread.is_alive())
