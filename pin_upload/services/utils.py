"""Shared utility functions for app services."""

import os


def format_file_size(size_bytes: int) -> str:
    """Format a file size in bytes to a human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 GB")
    """
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format an elapsed duration (e.g., "850ms", "12.41s", "3m 5.2s")."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    return f"{int(seconds // 60)}m {seconds % 60:.1f}s"


def file_name_without_ext(file_name: str) -> str:
    """Strip the final extension from a file name ("1.png" -> "1", "a.tar.gz" -> "a.tar")."""
    stem, _ext = os.path.splitext(file_name)
    return stem
