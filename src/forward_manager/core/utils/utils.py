"""Common formatting helpers."""

from datetime import timedelta
from typing import Final

# Size constants
BYTES_PER_KB: Final = 1024

# Size units
SIZE_UNITS: Final = ["B", "KB", "MB", "GB", "TB"]


def format_bytes(bytes_: float) -> str:
    """Format a byte count into human readable form.

    Args:
        bytes_: Number of bytes to format

    Returns:
        str: Formatted string with appropriate unit, e.g. ``1.5 KB``
    """
    for unit in SIZE_UNITS[:-1]:
        if bytes_ < BYTES_PER_KB:
            return f"{bytes_:.1f} {unit}"
        bytes_ /= BYTES_PER_KB
    return f"{bytes_:.1f} {SIZE_UNITS[-1]}"


def format_endpoint(endpoint: tuple[str, int] | None) -> str:
    if endpoint is None:
        return "-"
    return f"{endpoint[0]}:{endpoint[1]}"


def format_duration(seconds: float) -> str:
    """Format elapsed seconds as ``H:MM:SS``."""
    return str(timedelta(seconds=int(seconds)))
