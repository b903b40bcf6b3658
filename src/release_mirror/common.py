"""
Common utilities

Formatting helpers shared by the sync pipeline and CLI summaries.
"""

from typing import TypeAlias

# Common type aliases
Project: TypeAlias = str
Version: TypeAlias = str
Filename: TypeAlias = str


def format_bytes(size_bytes: int) -> str:
    """
    Format byte count as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        str: Formatted size (e.g., "1.5 MB", "2.3 GB")
    """
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024.0:
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} TB"


def pluralize(count: int, word: str) -> str:
    """Return correct singular/plural form of a word."""
    return word if count == 1 else f"{word}s"


def format_duration(seconds: float) -> str:
    """
    Format duration as human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        str: Formatted duration (e.g., "1.5s", "2m 30s", "1h 15m")
    """
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {seconds % 60:.0f}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def asset_label(project: str, version: str, filename: str) -> str:
    """Log prefix identifying one asset."""
    return f"[{project}/{version}/{filename}]"
