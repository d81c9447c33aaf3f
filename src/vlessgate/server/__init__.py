"""Tunnel relay server."""

from .attempt import AttemptOutcome, AttemptResult, RelayAttempt
from .fallback import FallbackPolicy
from .orchestrator import RelayOrchestrator, SessionOutcome, SessionState
from .relay import RelayServer
from .transport import DuplexTransport, WebSocketTransport, pump_websocket

__all__ = [
    "AttemptOutcome",
    "AttemptResult",
    "DuplexTransport",
    "FallbackPolicy",
    "RelayAttempt",
    "RelayOrchestrator",
    "RelayServer",
    "SessionOutcome",
    "SessionState",
    "WebSocketTransport",
    "pump_websocket",
]
