import os
from datetime import datetime
from pathlib import Path

QUEUED_BANNER = "=== QUEUED ==="

# Banners that mark a job log as finished
DONE_BANNER = "=== DONE ==="
ERROR_BANNER = "=== ERROR ==="

ASSET_CONTENT_TYPES = {
    '.m3u8': 'application/vnd.apple.mpegurl',
    '.ts': 'video/MP2T',
    '.mpd': 'application/dash+xml',
    '.m4s': 'video/iso.segment',
    '.mp4': 'video/mp4',
}


def write_log(log_path, message):
    """Append message to log file"""
    if log_path:
        os.makedirs(os.path.dirname(log_path), exist_ok=True)
        with open(log_path, 'a') as f:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            f.write(f"[{timestamp}] {message}\n")


def resolve_asset_path(directory, filename):
    """
    Resolve a client-supplied asset name inside a job directory.

    Any directory component is stripped first, so ``../secret`` becomes
    ``secret`` and is looked up inside ``directory``.

    Args:
        directory: The job's HLS or DASH directory
        filename: Requested file name

    Returns:
        Path to an existing file inside ``directory``, or None
    """
    safe_name = os.path.basename(str(filename).replace('\\', '/'))
    if safe_name in ('', '.', '..'):
        return None

    directory = Path(directory).resolve()
    candidate = (directory / safe_name).resolve()
    if candidate.parent != directory or not candidate.is_file():
        return None
    return candidate


def content_type_for(path):
    """Content-Type for a streaming asset, or None to let Django guess"""
    return ASSET_CONTENT_TYPES.get(Path(path).suffix.lower())


def directory_size(path):
    """Total size in bytes of a file or directory tree"""
    path = Path(path)
    if path.is_file():
        return path.stat().st_size
    return sum(f.stat().st_size for f in path.rglob('*') if f.is_file())


def latest_mtime(path):
    """Most recent modification time within a file or directory tree"""
    path = Path(path)
    mtime = path.stat().st_mtime
    if path.is_dir():
        for child in path.rglob('*'):
            try:
                mtime = max(mtime, child.stat().st_mtime)
            except FileNotFoundError:
                continue
    return mtime


def log_has_finished(log_path):
    """True if a job log carries a done or error banner"""
    with open(log_path, errors='replace') as f:
        for line in f:
            if line.rstrip().endswith((DONE_BANNER, ERROR_BANNER)):
                return True
    return False
