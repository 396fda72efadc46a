"""Utility helper functions"""

import math
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from dateutil import parser as date_parser

from .logging import get_logger

logger = get_logger(__name__)


def generate_id() -> str:
    """Generate a compact unique identifier for database rows"""
    return uuid.uuid4().hex


def correlation_id() -> str:
    """Short id used to tag the log lines of one run"""
    return str(uuid.uuid4())[:8]


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601, treating naive values as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a stored timestamp into an aware datetime (naive values are UTC)"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = date_parser.isoparse(value) if "T" in value else date_parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (Python's round() is banker's rounding)"""
    return int(math.floor(value + 0.5))


def hours_between(earlier: datetime, later: datetime) -> int:
    """Whole hours between two instants, rounded half-up"""
    return round_half_up((later - earlier).total_seconds() / 3600.0)


def exponential_backoff(attempt: int, base_delay: float = 1.0) -> float:
    """
    Delay before the next attempt.

    Args:
        attempt: The attempt that just failed (1-based)
        base_delay: Base delay in seconds

    Returns:
        base_delay * 2^(attempt - 1)
    """
    return base_delay * (2 ** (attempt - 1))


def ensure_parent_dir(path: Union[str, Path]) -> Path:
    """Create the parent directory of a file path if needed"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def file_exists(path: Optional[Union[str, Path]]) -> bool:
    """True when path is set and points at an existing file"""
    return bool(path) and Path(path).is_file()
