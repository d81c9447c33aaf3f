"""0-RTT early data carried in the WebSocket handshake."""

from __future__ import annotations

import base64
import binascii

from vlessgate.protocol.errors import EarlyDataError

EARLY_DATA_HEADER = "Sec-WebSocket-Protocol"

_URLSAFE = str.maketrans("-_", "+/")


def decode_early_data(value: str | None) -> bytes:
    """Decode a base64url early data blob.

    Missing padding is tolerated. An absent or empty value yields ``b""``.
    """
    if not value:
        return b""

    basic = value.strip().translate(_URLSAFE)
    basic += "=" * (-len(basic) % 4)
    try:
        return base64.b64decode(basic, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EarlyDataError(f"Invalid early data: {e}") from e
