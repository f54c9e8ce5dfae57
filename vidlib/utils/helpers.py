"""
General helper utilities.

These functions are intentionally dependency-light so they can be reused
across services and routes without pulling in Flask app globals.
"""

from __future__ import annotations

import time
from typing import Any, Optional


_MASK_PREFIX_LEN = 12


def now_ms() -> int:
    """Current epoch milliseconds as int."""
    return int(time.time() * 1000)


def clamp_int(value: Any, minimum: int, maximum: int, default: int) -> int:
    """Clamp a value to an integer within [minimum, maximum]."""
    try:
        return max(minimum, min(maximum, int(value)))
    except (TypeError, ValueError):
        return default


def parse_bool(value: Any, default: bool = False) -> bool:
    """Interpret JSON/query values like true, "1", "yes" as booleans."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    val = str(value).strip().lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def mask_token(token: Optional[str]) -> str:
    """Shorten a session token for log output."""
    if not token:
        return "None"
    if len(token) <= _MASK_PREFIX_LEN:
        return token
    return token[:_MASK_PREFIX_LEN] + "..."


def get_client_ip(request) -> str:
    """Get client IP address from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First entry is the original client
        return forwarded_for.split(",")[0].strip()
    return request.remote_addr or ""
