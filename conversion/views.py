import json
import time

from django.http import FileResponse, JsonResponse, StreamingHttpResponse
from django.shortcuts import render
from django.urls import reverse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from conversion.operations import SubmissionError, submit_upload
from conversion.registry import Job, JobNotFound, registry
from conversion.service.config import get_stream_tick_seconds
from conversion.service.encoder import DASH_MANIFEST_NAME, HLS_PLAYLIST_NAME
from conversion.utils import content_type_for, resolve_asset_path
from conversion.workers import get_pool


class ArtifactNotReady(Exception):
    """Raised when an artifact is requested before its job is done"""


def _get_done_job(job_id):
    job = registry.find(job_id)
    if job is None or not job.is_done:
        raise ArtifactNotReady(job_id)
    return job


def _not_ready():
    return JsonResponse({'error': 'Not ready'}, status=404)


def _not_found():
    return JsonResponse({'error': 'Not found'}, status=404)


def format_event(event, data):
    """Encode one Server-Sent Event"""
    return f'event: {event}\ndata: {json.dumps(data)}\n\n'


def result_urls(job_id):
    """Locators for a finished job's primary download and streaming entry points"""
    return {
        'downloadUrl': reverse('job_download', args=[job_id]),
        'hlsUrl': reverse('hls_asset', args=[job_id, HLS_PLAYLIST_NAME]),
        'dashUrl': reverse('dash_asset', args=[job_id, DASH_MANIFEST_NAME]),
    }


@require_GET
def home_view(request):
    """Upload page."""
    return render(request, 'conversion/index.html')


@csrf_exempt
@require_POST
def convert_view(request):
    """
    Accept a media upload and start converting it.

    Params:
        file (required): multipart file field

    Returns:
        JSON {"jobId": ...}, or {"error": ...} with 400/413
    """
    try:
        job = submit_upload(request.FILES.get('file'))
    except SubmissionError as e:
        return JsonResponse({'error': str(e)}, status=e.status)

    return JsonResponse({'jobId': job.id})


@require_GET
def status_view(request, job_id):
    """Snapshot of a job's state for polling clients."""
    try:
        job = registry.get(job_id)
    except JobNotFound:
        return _not_found()

    return JsonResponse(job.snapshot())


@require_GET
def progress_stream(request, job_id):
    """
    SSE endpoint that streams a job's progress.

    Sends a ``progress`` event right away and then once per tick. When the
    job is done a final ``done`` event carries the result URLs; when it
    fails the stream just ends after the last ``progress`` event.
    """
    tick = get_stream_tick_seconds()

    def event_stream():
        while True:
            job = registry.find(job_id)
            if job is None:
                yield format_event('error', {'error': 'Job not found'})
                break

            yield format_event('progress', {
                'status': job.status,
                'progress': job.progress,
                'error': job.error,
            })

            if job.status == Job.STATUS_DONE:
                yield format_event('done', result_urls(job.id))
                break

            if job.status == Job.STATUS_ERROR:
                break

            time.sleep(tick)

    response = StreamingHttpResponse(event_stream(), content_type='text/event-stream')
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response


@require_GET
def download_view(request, job_id):
    """Primary MP4 output, available once the job is done."""
    try:
        job = _get_done_job(job_id)
    except ArtifactNotReady:
        return _not_ready()

    if not job.output_path.is_file():
        return _not_found()

    return FileResponse(
        open(job.output_path, 'rb'),
        as_attachment=True,
        filename=f'{job.id}.mp4',
        content_type='video/mp4',
    )


def _asset_response(directory, filename):
    path = resolve_asset_path(directory, filename)
    if path is None:
        return _not_found()

    content_type = content_type_for(path)
    if content_type:
        return FileResponse(open(path, 'rb'), content_type=content_type)
    return FileResponse(open(path, 'rb'))


@require_GET
def hls_asset_view(request, job_id, filename=HLS_PLAYLIST_NAME):
    """HLS playlist or segment of a finished job."""
    try:
        job = _get_done_job(job_id)
    except ArtifactNotReady:
        return _not_ready()

    return _asset_response(job.hls_dir, filename)


@require_GET
def dash_asset_view(request, job_id, filename=DASH_MANIFEST_NAME):
    """DASH manifest or segment of a finished job."""
    try:
        job = _get_done_job(job_id)
    except ArtifactNotReady:
        return _not_ready()

    return _asset_response(job.dash_dir, filename)


@csrf_exempt
@require_POST
def cancel_view(request, job_id):
    """
    Request cancellation of a queued or running job.

    Returns:
        200 when the request was accepted, 404 for unknown jobs,
        409 for jobs that already finished
    """
    try:
        job = registry.get(job_id)
    except JobNotFound:
        return _not_found()

    if job.is_terminal:
        return JsonResponse({'error': f'Job already {job.status}'}, status=409)

    if not get_pool().cancel(job_id):
        return JsonResponse({'error': 'Job is not running in this process'}, status=409)

    return JsonResponse({'id': job_id, 'cancelling': True})
