"""
Django management command for converting a local media file.

This is a thin CLI wrapper around the conversion pipeline. The job runs in
this process, so nothing needs to be serving requests.
"""
import json

from django.core.management.base import BaseCommand, CommandError

from conversion.operations import SubmissionError, submit_path
from conversion.pipeline import run_conversion
from conversion.registry import Job
from conversion.service.encoder import DASH_MANIFEST_NAME, HLS_PLAYLIST_NAME


class Command(BaseCommand):
    help = 'Convert a local media file to MP4, HLS and DASH'

    def add_arguments(self, parser):
        parser.add_argument(
            'input',
            type=str,
            help='Path to the media file'
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Output result as JSON'
        )

    def handle(self, *args, **options):
        output_json = options['json']

        try:
            job = submit_path(options['input'])
        except SubmissionError as e:
            raise CommandError(str(e))

        if not output_json:
            self.stdout.write(f"Job {job.id}: converting {options['input']}")

        job = run_conversion(job.id)

        result = {
            'id': job.id,
            'status': job.status,
            'progress': job.progress,
            'duration': job.duration,
            'error': job.error,
            'output': str(job.output_path),
            'hls': str(job.hls_dir / HLS_PLAYLIST_NAME),
            'dash': str(job.dash_dir / DASH_MANIFEST_NAME),
            'log': str(job.log_path),
        }

        if output_json:
            self.stdout.write(json.dumps(result, indent=2))
        elif job.status == Job.STATUS_DONE:
            self.stdout.write(self.style.SUCCESS('Conversion complete'))
            self.stdout.write(f"  MP4:  {result['output']}")
            self.stdout.write(f"  HLS:  {result['hls']}")
            self.stdout.write(f"  DASH: {result['dash']}")
        else:
            self.stdout.write(f"  Log:  {result['log']}")

        if job.status != Job.STATUS_DONE:
            raise CommandError(f"Conversion failed: {job.error}")
