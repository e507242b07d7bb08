"""
Django settings for the videoconverter project.

Every tunable can be overridden through an environment variable of the same
name. Converter settings are read through conversion.service.config.
"""

import os
import tempfile
from pathlib import Path


def _env_int(name, default):
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    return int(value)


def _env_float(name, default):
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    return float(value)


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-videoconverter-dev-key')

DEBUG = os.environ.get('DJANGO_DEBUG', 'false').lower() in ('1', 'true', 'yes')

ALLOWED_HOSTS = [h.strip() for h in os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',') if h.strip()]

INSTALLED_APPS = [
    'django.contrib.staticfiles',
    'huey.contrib.djhuey',
    'conversion',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'videoconverter.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
            ],
        },
    },
]

WSGI_APPLICATION = 'videoconverter.wsgi.application'

# Jobs live in memory only; there is no database.
DATABASES = {}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = False
USE_TZ = True

STATIC_URL = 'static/'

# Uploads above this stream to a temporary file instead of memory
FILE_UPLOAD_MAX_MEMORY_SIZE = 10 * 1024 * 1024

# Converter storage
CONVERTER_STORAGE_ROOT = Path(
    os.environ.get('CONVERTER_STORAGE_ROOT', Path(tempfile.gettempdir()) / 'video-converter')
)
CONVERTER_STORAGE_ROOT.mkdir(parents=True, exist_ok=True)

# 5 GiB upload ceiling
CONVERTER_MAX_UPLOAD_SIZE = _env_int('CONVERTER_MAX_UPLOAD_SIZE', 5 * 1024 * 1024 * 1024)

# Retention window after success, and optional window for failed jobs (None = keep)
CONVERTER_RETENTION_SECONDS = _env_float('CONVERTER_RETENTION_SECONDS', 60 * 60)
CONVERTER_FAILED_RETENTION_SECONDS = _env_float('CONVERTER_FAILED_RETENTION_SECONDS', None)

# Age after which unowned uploads/job directories are swept
CONVERTER_ORPHAN_MAX_AGE_SECONDS = _env_float('CONVERTER_ORPHAN_MAX_AGE_SECONDS', 24 * 60 * 60)

# How often the serving process runs the orphan sweep itself
CONVERTER_SWEEP_INTERVAL_SECONDS = _env_float('CONVERTER_SWEEP_INTERVAL_SECONDS', 60 * 60)

CONVERTER_MAX_CONCURRENT_JOBS = _env_int('CONVERTER_MAX_CONCURRENT_JOBS', 2)

# Per-stage timeouts in seconds (None = unbounded)
CONVERTER_STAGE_TIMEOUTS = {
    'probing': _env_float('CONVERTER_PROBING_TIMEOUT', 60),
    'converting': _env_float('CONVERTER_CONVERTING_TIMEOUT', 6 * 60 * 60),
    'packaging-hls': _env_float('CONVERTER_PACKAGING_HLS_TIMEOUT', 60 * 60),
    'packaging-dash': _env_float('CONVERTER_PACKAGING_DASH_TIMEOUT', 60 * 60),
}

CONVERTER_STREAM_TICK_SECONDS = _env_float('CONVERTER_STREAM_TICK_SECONDS', 1.0)

CONVERTER_FFMPEG_BINARY = os.environ.get('CONVERTER_FFMPEG_BINARY', 'ffmpeg')
CONVERTER_FFPROBE_BINARY = os.environ.get('CONVERTER_FFPROBE_BINARY', 'ffprobe')

# Huey runs maintenance tasks only (python manage.py run_huey)
HUEY = {
    'huey_class': 'huey.SqliteHuey',
    'name': 'videoconverter',
    'filename': str(CONVERTER_STORAGE_ROOT / 'huey.sqlite3'),
    'immediate': False,
    'consumer': {
        'workers': 1,
        'worker_type': 'thread',
    },
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'conversion': {
            'handlers': ['console'],
            'level': os.environ.get('CONVERTER_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
