"""
Progress extraction from encoder diagnostics.

ffmpeg reports its position as ``time=HH:MM:SS.ff`` on its status line.
These helpers turn one such line into a completion percentage. They are
pure: the caller owns the previous value and stores the result.
"""

import math
import re

TIME_PATTERN = re.compile(r'time=([0-9:.]+)')

# The transcode stage never reports completion on its own; only the
# orchestrator sets 100 once every stage has finished.
MAX_TRANSCODE_RATIO = 0.99


def parse_timestamp(value):
    """
    Convert an ``HH:MM:SS[.fraction]`` string to seconds.

    Args:
        value: Timestamp text, e.g. '00:01:02.50'

    Returns:
        float: Total seconds, or None if the value is not three numeric parts
    """
    parts = value.split(':')
    if len(parts) != 3:
        return None

    try:
        hours, minutes, seconds = (float(part) for part in parts)
    except ValueError:
        return None

    if not all(math.isfinite(n) for n in (hours, minutes, seconds)):
        return None

    return hours * 3600 + minutes * 60 + seconds


def extract_progress(line, duration, previous):
    """
    Compute the progress implied by one line of encoder output.

    Args:
        line: A single diagnostic line
        duration: Known input duration in seconds, or None
        previous: Progress value before this line

    Returns:
        int: New progress, never lower than ``previous``
    """
    match = TIME_PATTERN.search(line)
    if not match:
        return previous

    seconds = parse_timestamp(match.group(1))
    if seconds is None:
        return previous

    # Without a duration there is nothing to measure against
    if not duration or duration <= 0:
        return previous

    ratio = min(seconds / duration, MAX_TRANSCODE_RATIO)
    # Round half up
    percent = int(math.floor(ratio * 100 + 0.5))
    return max(previous, percent)
