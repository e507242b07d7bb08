"""
Management command to clean up abandoned conversion artifacts.

Finds uploads and job directories that no live job owns (failed jobs,
jobs lost to a restart) and removes them.
"""
from django.core.management.base import BaseCommand

from conversion.retention import remove_path, find_orphaned_artifacts


def _plural(count, one, many):
    return one if count == 1 else many


class Command(BaseCommand):
    help = 'Clean up uploads and job directories left behind by failed or abandoned jobs'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting'
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Delete without confirmation'
        )
        parser.add_argument(
            '--max-age',
            type=int,
            default=None,
            help='Minimum age in minutes before an artifact is considered abandoned '
                 '(default: CONVERTER_ORPHAN_MAX_AGE_SECONDS)'
        )

    def handle(self, *args, **options):
        """Find and clean up abandoned artifacts"""
        dry_run = options['dry_run']
        force = options['force']
        max_age = options['max_age']
        max_age_seconds = max_age * 60 if max_age is not None else None

        orphans = find_orphaned_artifacts(max_age_seconds=max_age_seconds)

        if not orphans:
            self.stdout.write(self.style.SUCCESS("No abandoned artifacts found"))
            return

        count = len(orphans)
        self.stdout.write(f"\nFound {count} abandoned {_plural(count, 'artifact', 'artifacts')}:")
        self.stdout.write(f"{'=' * 80}")

        total_size = 0
        for info in orphans:
            total_size += info['size']
            age_str = f"{int(info['age'] // 3600)}h{int(info['age'] % 3600 // 60):02d}m"
            size_mb = info['size'] / (1024 * 1024)
            self.stdout.write(
                f"{info['kind']:6} | {info['path'].name:40} | "
                f"Age: {age_str:>9} | Size: {size_mb:6.1f} MB"
            )

        self.stdout.write(f"{'=' * 80}")
        self.stdout.write(f"Total size: {total_size / (1024 * 1024):.1f} MB\n")

        if dry_run:
            self.stdout.write(self.style.WARNING(
                f"\nDRY RUN: Would delete {count} {_plural(count, 'artifact', 'artifacts')}"
            ))
            self.stdout.write("Run without --dry-run to actually delete")
            return

        if not force:
            response = input(f"\nDelete these {count} {_plural(count, 'artifact', 'artifacts')}? [y/N]: ")
            if response.lower() != 'y':
                self.stdout.write("Cancelled")
                return

        deleted_count = 0
        for info in orphans:
            remove_path(info['path'])
            if info['path'].exists():
                self.stdout.write(self.style.ERROR(f"✗ Failed to delete {info['path'].name}"))
            else:
                self.stdout.write(self.style.SUCCESS(f"✓ Deleted: {info['path'].name}"))
                deleted_count += 1

        self.stdout.write(self.style.SUCCESS(
            f"\n✓ Deleted {deleted_count} of {count} {_plural(count, 'artifact', 'artifacts')}"
        ))
