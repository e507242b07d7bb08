import atexit

from django.apps import AppConfig


def _shutdown():
    """Stop pipelines and retention timers when the process exits"""
    from conversion.retention import cancel_scheduled_cleanups
    from conversion.workers import reset_pool

    reset_pool()
    cancel_scheduled_cleanups()


class ConversionConfig(AppConfig):
    name = 'conversion'
    default_auto_field = 'django.db.models.BigAutoField'

    def ready(self):
        """Register process teardown"""
        atexit.register(_shutdown)
