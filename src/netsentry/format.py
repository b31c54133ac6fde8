"""Human-readable byte and rate formatting."""

from __future__ import annotations


def format_bytes(num_bytes: int) -> str:
    kb = num_bytes / 1024
    mb = kb / 1024
    gb = mb / 1024

    if gb >= 1:
        return f"{gb:.1f} GB"
    if mb >= 1:
        return f"{mb:.1f} MB"
    if kb >= 1:
        return f"{kb:.0f} KB"
    return f"{num_bytes} B"


def format_rate(bytes_per_second: float) -> str:
    """Format a bytes-per-second rate, e.g. ``1.2 KB/s``."""
    kb = bytes_per_second / 1024
    mb = kb / 1024
    gb = mb / 1024

    if gb >= 1:
        return f"{gb:.1f} GB/s"
    if mb >= 1:
        return f"{mb:.1f} MB/s"
    if kb >= 1:
        return f"{kb:.1f} KB/s"
    return f"{bytes_per_second:.0f} B/s"
