"""
Encoder invocation with ffmpeg.

Builds the fixed argument lists for the transcode and packaging stages and
runs ffmpeg while streaming its diagnostic output line by line.
"""

import subprocess
import threading
import time
from collections import deque
from pathlib import Path

from conversion.service.config import get_ffmpeg_binary

# How often the waiting loop checks for cancellation and timeouts
POLL_INTERVAL = 0.5

# Diagnostic lines kept for error messages and job logs
STDERR_TAIL_LINES = 20

HLS_PLAYLIST_NAME = 'index.m3u8'
HLS_SEGMENT_PATTERN = 'segment_%03d.ts'
DASH_MANIFEST_NAME = 'stream.mpd'

# Normalized output: H.264 main@4.1 / AAC stereo, moov atom at the front
TRANSCODE_ARGS = [
    '-c:v', 'libx264',
    '-profile:v', 'main',
    '-level', '4.1',
    '-pix_fmt', 'yuv420p',
    '-preset', 'medium',
    '-crf', '22',
    '-c:a', 'aac',
    '-b:a', '128k',
    '-ar', '48000',
    '-ac', '2',
    '-movflags', '+faststart',
]


class ProcessLaunchError(Exception):
    """Raised when the encoder binary is missing or cannot be started"""


class StageFailure(Exception):
    """Raised when the encoder exits with a non-zero status"""

    def __init__(self, stage, message, returncode=None, stderr_tail=None):
        super().__init__(message)
        self.stage = stage
        self.returncode = returncode
        self.stderr_tail = list(stderr_tail or [])


class StageTimeout(StageFailure):
    """Raised when a stage runs past its timeout"""


class StageCancelled(StageFailure):
    """Raised when a job's cancellation token is set during a stage"""


def build_transcode_args(input_path, output_path):
    """Build ffmpeg arguments that normalize the input into a progressive MP4"""
    return ['-y', '-i', str(input_path)] + TRANSCODE_ARGS + [str(output_path)]


def build_hls_args(source_path, hls_dir):
    """Build ffmpeg arguments for stream-copy HLS packaging (VOD, 6s segments)"""
    hls_dir = Path(hls_dir)
    return [
        '-y',
        '-i', str(source_path),
        '-codec', 'copy',
        '-start_number', '0',
        '-hls_time', '6',
        '-hls_list_size', '0',
        '-hls_playlist_type', 'vod',
        '-hls_segment_filename', str(hls_dir / HLS_SEGMENT_PATTERN),
        str(hls_dir / HLS_PLAYLIST_NAME),
    ]


def build_dash_args(source_path, dash_dir):
    """Build ffmpeg arguments for stream-copy DASH packaging (timeline + template)"""
    return [
        '-y',
        '-i', str(source_path),
        '-codec', 'copy',
        '-seg_duration', '6',
        '-use_timeline', '1',
        '-use_template', '1',
        '-f', 'dash',
        str(Path(dash_dir) / DASH_MANIFEST_NAME),
    ]


def iter_diagnostic_lines(stream, chunk_size=4096):
    """
    Yield decoded lines from a binary stream as they arrive.

    ffmpeg redraws its status line with carriage returns, so both
    ``\\r`` and ``\\n`` end a line. Empty lines are skipped.
    """
    pending = b''
    while True:
        chunk = stream.read1(chunk_size) if hasattr(stream, 'read1') else stream.read(chunk_size)
        if not chunk:
            break
        pending += chunk.replace(b'\r\n', b'\n').replace(b'\r', b'\n')
        *lines, pending = pending.split(b'\n')
        for line in lines:
            if line.strip():
                yield line.decode('utf-8', errors='replace')
    if pending.strip():
        yield pending.decode('utf-8', errors='replace')


def _terminate(process):
    process.kill()
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        pass


def run_encoder(args, stage, on_line=None, timeout=None, cancel_event=None, logger=None):
    """
    Run ffmpeg and wait for it to exit.

    Diagnostic output is read on a separate thread while this thread waits,
    so ``on_line`` sees each line as soon as ffmpeg prints it.

    Args:
        args: ffmpeg arguments (without the binary)
        stage: Stage name, used in error messages
        on_line: Optional callable(str) invoked for each diagnostic line
        timeout: Optional timeout in seconds
        cancel_event: Optional threading.Event; when set the process is killed
        logger: Optional callable(str) for logging

    Returns:
        list: The last diagnostic lines

    Raises:
        ProcessLaunchError: If ffmpeg cannot be started
        StageTimeout: If the timeout expires
        StageCancelled: If the cancellation token is set
        StageFailure: If ffmpeg exits with a non-zero status
    """
    def log(message):
        if logger:
            logger(message)

    cmd = [get_ffmpeg_binary()] + list(args)
    log(f"Running: {' '.join(cmd)}")

    try:
        process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
    except OSError as e:
        raise ProcessLaunchError(f'Could not start {cmd[0]}: {e}') from e

    tail = deque(maxlen=STDERR_TAIL_LINES)
    callback_errors = []

    def pump():
        for line in iter_diagnostic_lines(process.stderr):
            tail.append(line)
            if on_line is None or callback_errors:
                continue
            try:
                on_line(line)
            except Exception as e:
                # Keep draining so ffmpeg never blocks on a full pipe
                callback_errors.append(e)

    reader = threading.Thread(target=pump, name=f'encoder-{stage}', daemon=True)
    reader.start()

    deadline = time.monotonic() + timeout if timeout is not None else None
    try:
        while True:
            try:
                returncode = process.wait(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass

            if cancel_event is not None and cancel_event.is_set():
                _terminate(process)
                raise StageCancelled(stage, 'Cancelled', stderr_tail=tail)

            if deadline is not None and time.monotonic() >= deadline:
                _terminate(process)
                raise StageTimeout(
                    stage, f'{stage} timed out after {timeout:g} seconds', stderr_tail=tail
                )
    finally:
        reader.join(timeout=5)
        if process.stderr:
            process.stderr.close()

    if callback_errors:
        raise callback_errors[0]

    if returncode != 0:
        for line in tail:
            log(f'ffmpeg: {line}')
        raise StageFailure(
            stage,
            f'{stage} failed: ffmpeg exited with {returncode}',
            returncode=returncode,
            stderr_tail=tail,
        )

    return list(tail)
