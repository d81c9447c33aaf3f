"""Tunnel protocol codec."""

from .early_data import EARLY_DATA_HEADER, decode_early_data
from .errors import (
    AuthenticationError,
    DecodeError,
    DestinationUnreachableError,
    EarlyDataError,
    IncompleteHeaderError,
    RelayError,
    TransportClosedError,
    UnsupportedAddressFamilyError,
    UnsupportedCommandError,
)
from .header import (
    MAX_HEADER_LENGTH,
    AddressFamily,
    Command,
    RequestHeader,
    decode_request_header,
    format_ipv6,
)
from .response import ResponseFramer, frame_response

__all__ = [
    # Header
    "AddressFamily",
    "Command",
    "RequestHeader",
    "MAX_HEADER_LENGTH",
    "decode_request_header",
    "format_ipv6",
    # Early data
    "EARLY_DATA_HEADER",
    "decode_early_data",
    # Response
    "ResponseFramer",
    "frame_response",
    # Errors
    "RelayError",
    "DecodeError",
    "IncompleteHeaderError",
    "AuthenticationError",
    "UnsupportedCommandError",
    "UnsupportedAddressFamilyError",
    "EarlyDataError",
    "DestinationUnreachableError",
    "TransportClosedError",
]
