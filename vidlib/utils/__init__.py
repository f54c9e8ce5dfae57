"""Utility helpers shared by services and routes."""

from .helpers import (
    clamp_int,
    get_client_ip,
    mask_token,
    now_ms,
    parse_bool,
)
from .error_handlers import make_error_response, register_error_handlers

__all__ = [
    "clamp_int",
    "get_client_ip",
    "mask_token",
    "now_ms",
    "parse_bool",
    "make_error_response",
    "register_error_handlers",
]
