"""
URL configuration for the videoconverter project.

API paths keep the layout existing clients depend on:
/api/convert, /api/status/<id>, /api/progress/<id>, /api/download/<id>,
/api/hls/<id>/<file>, /api/dash/<id>/<file>.
"""

from django.urls import path

from conversion.views import (
    cancel_view,
    convert_view,
    dash_asset_view,
    download_view,
    hls_asset_view,
    home_view,
    progress_stream,
    status_view,
)

urlpatterns = [
    path('', home_view, name='home'),
    path('api/convert', convert_view, name='convert'),
    path('api/status/<str:job_id>', status_view, name='job_status'),
    path('api/progress/<str:job_id>', progress_stream, name='job_progress'),
    path('api/download/<str:job_id>', download_view, name='job_download'),
    path('api/cancel/<str:job_id>', cancel_view, name='job_cancel'),
    path('api/hls/<str:job_id>', hls_asset_view, name='hls_index'),
    path('api/hls/<str:job_id>/<path:filename>', hls_asset_view, name='hls_asset'),
    path('api/dash/<str:job_id>', dash_asset_view, name='dash_index'),
    path('api/dash/<str:job_id>/<path:filename>', dash_asset_view, name='dash_asset'),
]
