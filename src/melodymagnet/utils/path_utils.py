from __future__ import annotations
from re import sub as _re_sub

_UNSAFE = r'[\\/:*?"<>|\x00-\x1f]'


def sanitize_name(name: str, fallback: str = "unknown") -> str:
    safe = _re_sub(_UNSAFE, "_", name).strip(". ")
    if not safe:
        safe = fallback
    # Truncate to avoid OS path length issues
    if len(safe) > 120:
        safe = safe[:120].rstrip(". ")
    return safe
