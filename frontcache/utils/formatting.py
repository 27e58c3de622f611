"""
Helper functions for formatting data into human-readable strings.
"""

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")
_DURATION_UNITS = (("d", 86400), ("h", 3600), ("m", 60), ("s", 1))


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 KB')."""
    if bytes_size <= 0:
        return "0 B"
    size = float(bytes_size)
    for unit in _SIZE_UNITS[:-1]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} {_SIZE_UNITS[-1]}"


def format_duration(seconds: float) -> str:
    """Formats seconds as e.g. '3d 2h 5m'. Zero-valued units are left out."""
    remaining = int(seconds)
    parts = []
    for suffix, length in _DURATION_UNITS:
        count, remaining = divmod(remaining, length)
        if count:
            parts.append(f"{count}{suffix}")
    return " ".join(parts) or "0s"


def format_ttl(ttl_ms: int | None) -> str:
    """Formats a millisecond TTL, where None means the entry never expires."""
    if ttl_ms is None:
        return "never expires"
    return format_duration(ttl_ms / 1000)
