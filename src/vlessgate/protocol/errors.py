"""Error taxonomy for tunnel sessions.

Decode errors are fatal for the connection: the WebSocket is dropped without
any response frame, since the protocol defines no error frame. Destination
errors are recoverable and only ever drive the fallback decision. Transport
errors mean the caller is gone.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from vlessgate.core.destination import Destination


class RelayError(Exception):
    """Base class for all relay errors."""


class DecodeError(RelayError):
    """The inbound request could not be decoded."""

    kind = "malformed"


class IncompleteHeaderError(DecodeError):
    """The buffer ends before the request header does."""

    kind = "incomplete"

    def __init__(self, needed: int, available: int) -> None:
        self.needed = needed
        self.available = available
        super().__init__(f"Header truncated: need at least {needed} bytes, have {available}")


class AuthenticationError(DecodeError):
    """The request identity does not match the configured one."""

    kind = "auth"

    def __init__(self, identity: bytes) -> None:
        self.identity = bytes(identity)
        super().__init__(f"Unknown identity: {self.identity_str}")

    @property
    def identity_str(self) -> str:
        if len(self.identity) == 16:
            return str(UUID(bytes=self.identity))
        return self.identity.hex()


class UnsupportedCommandError(DecodeError):
    """The request asks for something other than a TCP connect."""

    kind = "command"

    def __init__(self, command: int) -> None:
        self.command = command
        super().__init__(f"Unsupported command: {command}")


class UnsupportedAddressFamilyError(DecodeError):
    """The request uses an address type we cannot parse."""

    kind = "address_family"

    def __init__(self, address_family: int) -> None:
        self.address_family = address_family
        super().__init__(f"Unsupported address family: {address_family}")


class EarlyDataError(DecodeError):
    """The 0-RTT early data blob is not valid base64url."""

    kind = "early_data"


class DestinationUnreachableError(RelayError):
    """Connecting to a destination failed."""

    def __init__(self, destination: Destination, reason: str) -> None:
        self.destination = destination
        self.reason = reason
        super().__init__(f"Destination {destination} unreachable: {reason}")


class TransportClosedError(RelayError):
    """The caller's duplex connection is closed."""
