import logging
import os
from datetime import datetime, timedelta
from typing import Optional

from videoconv.errors import StorageUnavailable

logger = logging.getLogger(__name__)


def format_timemark(seconds: Optional[float]) -> str:
    """Media position as HH:MM:SS."""
    if not seconds or seconds < 0:
        return "00:00:00"
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_clock(remaining_seconds: float, now: Optional[datetime] = None) -> str:
    """Local wall-clock time ``remaining_seconds`` from now, as HH:MM:SS."""
    now = now or datetime.now()
    return (now + timedelta(seconds=remaining_seconds)).strftime("%H:%M:%S")


def ensure_directory(path: str):
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageUnavailable(f"Cannot create directory {path}: {e}") from e


def remove_file(path: str) -> bool:
    """Delete ``path`` if present. A missing file counts as success.

    Returns True when this call removed the file.
    """
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to delete {path}: {e}")
        return False


def is_safe_filename(name: str) -> bool:
    return bool(name) and name not in (".", "..") and os.path.basename(name) == name and "\\" not in name
