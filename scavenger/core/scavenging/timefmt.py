"""Countdown text helpers (``H:MM:SS`` / ``MM:SS``)."""
from __future__ import annotations

from scavenger.infra.logging_config import get_logger

logger = get_logger(__name__)


def parse_time_to_seconds(text: str | None) -> int:
    """
    Parse a countdown such as ``1:02:03`` or ``02:03`` into seconds.

    Unreadable input yields 0, which callers treat as "unknown".
    """
    if not text:
        return 0

    parts = text.strip().split(":")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        logger.warning(f"Invalid time format: {text!r}")
        return 0

    if any(n < 0 for n in numbers):
        logger.warning(f"Negative component in time: {text!r}")
        return 0

    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return hours * 3600 + minutes * 60 + seconds
    if len(numbers) == 2:
        minutes, seconds = numbers
        return minutes * 60 + seconds

    logger.warning(f"Invalid time format: {text!r}")
    return 0


def format_duration(seconds: int) -> str:
    """Format seconds as ``H:MM:SS``."""
    seconds = max(0, int(seconds))
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours}:{minutes:02d}:{secs:02d}"
