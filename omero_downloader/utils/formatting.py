"""
Human-readable renderings of sizes, durations and id lists.
"""

from typing import Iterable


def format_size(bytes_size: int) -> str:
    """Renders a byte count with a binary unit, e.g. 1536 -> '1.5 KB'."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_ids(ids: Iterable[int], limit: int = 12) -> str:
    """Joins ids in ascending order, eliding the middle of long lists."""
    ordered = sorted(ids)
    if len(ordered) <= limit:
        return ", ".join(map(str, ordered))
    head = ", ".join(map(str, ordered[: limit - 2]))
    return f"{head}, ... ({len(ordered) - limit + 1} more), {ordered[-1]}"
