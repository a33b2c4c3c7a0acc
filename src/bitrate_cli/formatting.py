"""
Human-readable formatting for CLI output.
"""
import math
from typing import Optional


def format_bitrate(bps: int) -> str:
    if bps >= 1_000_000:
        return f"{bps / 1_000_000:.2f} Mbps"
    if bps >= 1_000:
        return f"{bps / 1_000:.1f} Kbps"
    return f"{bps} bps"


def format_bytes(count: Optional[int]) -> str:
    if count is None:
        return "-"
    if count < 1000:
        return f"{count} bytes"
    value = count / 1000
    for unit in ("KB", "MB"):
        if value < 1000:
            return f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.1f} GB"


def format_duration(seconds: float) -> str:
    """H:MM:SS above an hour, M:SS otherwise."""
    if not math.isfinite(seconds):
        return "N/A"
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_gop_pattern(pattern: Optional[str], min_length: int) -> str:
    if pattern == "fixed":
        return f"Fixed ({min_length})"
    if pattern == "mostly_fixed":
        return "Mostly Fixed"
    if pattern == "variable":
        return "Variable"
    return "-"
