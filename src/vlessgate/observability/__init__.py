"""Observability."""

from .metrics import (
    ACTIVE_SESSIONS,
    BYTES_TRANSFERRED,
    DECODE_ERRORS,
    FALLBACKS,
    RELAY_ATTEMPTS,
    TUNNEL_CONNECTIONS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "ACTIVE_SESSIONS",
    "BYTES_TRANSFERRED",
    "DECODE_ERRORS",
    "FALLBACKS",
    "RELAY_ATTEMPTS",
    "TUNNEL_CONNECTIONS",
    "generate_metrics",
    "get_content_type",
]
