"""
Huey maintenance tasks.

Run the consumer with ``python manage.py run_huey``. Pipelines themselves do
not go through Huey: they need the in-process job registry, so they run on
the worker pool in conversion.workers.
"""

import logging

from huey import crontab
from huey.contrib.djhuey import periodic_task

from conversion.retention import sweep_orphaned_artifacts as sweep

logger = logging.getLogger(__name__)


@periodic_task(crontab(minute='15'))
def sweep_orphaned_artifacts():
    """
    Hourly removal of uploads and job directories nobody owns anymore.

    The consumer cannot see the serving registry, so jobs whose log is
    not finished are always kept.
    """
    deleted = sweep()
    if deleted:
        logger.info('Orphan sweep removed %d path(s)', len(deleted))
    return [str(path) for path in deleted]
