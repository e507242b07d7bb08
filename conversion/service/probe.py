"""
Duration probing with ffprobe.

A failed probe is never fatal to a job; callers catch ProbeFailure and
continue with an unknown duration.
"""

import math
import subprocess

from conversion.service.config import get_ffprobe_binary


class ProbeFailure(Exception):
    """Raised when the input duration cannot be determined"""


def build_probe_args(input_path):
    """Build the ffprobe command that prints the container duration only"""
    return [
        get_ffprobe_binary(),
        '-v', 'error',
        '-show_entries', 'format=duration',
        '-of', 'default=noprint_wrappers=1:nokey=1',
        str(input_path),
    ]


def parse_duration(output):
    """
    Parse ffprobe's duration output.

    Args:
        output: Raw stdout text from ffprobe

    Returns:
        float: Duration in seconds

    Raises:
        ProbeFailure: If the output is not a finite positive number
    """
    text = (output or '').strip()
    try:
        value = float(text)
    except ValueError:
        raise ProbeFailure(f'ffprobe returned a non-numeric duration: {text[:80]!r}')

    if not math.isfinite(value) or value <= 0:
        raise ProbeFailure(f'ffprobe returned an unusable duration: {text!r}')

    return value


def probe_duration(input_path, timeout=None):
    """
    Get the duration of a media file.

    Args:
        input_path: Path to the media file
        timeout: Optional timeout in seconds

    Returns:
        float: Duration in seconds

    Raises:
        ProbeFailure: If ffprobe is missing, fails, times out or prints garbage
    """
    cmd = build_probe_args(input_path)
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except OSError as e:
        raise ProbeFailure(f'Could not run {cmd[0]}: {e}') from e
    except subprocess.TimeoutExpired as e:
        raise ProbeFailure(f'ffprobe timed out after {timeout} seconds') from e

    if result.returncode != 0:
        stderr = (result.stderr or '').strip()
        raise ProbeFailure(f'ffprobe exited with {result.returncode}: {stderr[:200]}')

    return parse_duration(result.stdout)
