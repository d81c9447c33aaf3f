"""Request header codec.

Wire layout of the request header::

    offset 0        version          1 byte
    offset 1..16    identity         16 bytes
    offset 17       addons length N  1 byte
    offset 18..     addons           N bytes (skipped)
    next            command          1 byte  (1 = TCP)
    next            port             2 bytes, big-endian
    next            address family   1 byte  (1 = IPv4, 2 = FQDN, 3 = IPv6)
    next            address          4 bytes | 1-byte length + name | 16 bytes

The payload starts right after the address.
"""

from __future__ import annotations

import hmac
import struct
from dataclasses import dataclass
from enum import IntEnum

from vlessgate.core.destination import Destination
from vlessgate.protocol.errors import (
    AuthenticationError,
    IncompleteHeaderError,
    UnsupportedAddressFamilyError,
    UnsupportedCommandError,
)

IDENTITY_LENGTH = 16

# version + identity + addons length
FIXED_PREFIX_LENGTH = 1 + IDENTITY_LENGTH + 1

# Largest possible header: 255 addon bytes and a 255-byte FQDN.
MAX_HEADER_LENGTH = FIXED_PREFIX_LENGTH + 255 + 1 + 2 + 1 + 1 + 255

_PORT = struct.Struct(">H")
_IPV6_GROUPS = struct.Struct(">8H")


class Command(IntEnum):
    """Request commands."""

    TCP = 1
    UDP = 2
    MUX = 3


class AddressFamily(IntEnum):
    """Destination address types."""

    IPV4 = 1
    FQDN = 2
    IPV6 = 3


@dataclass(frozen=True)
class RequestHeader:
    """Decoded request header."""

    version: int
    identity: bytes
    addons: bytes
    command: Command
    port: int
    address_family: AddressFamily
    hostname: str
    header_length: int

    @property
    def addons_length(self) -> int:
        return len(self.addons)

    @property
    def destination(self) -> Destination:
        return Destination(hostname=self.hostname, port=self.port)


def _require(size: int, needed: int) -> None:
    if size < needed:
        raise IncompleteHeaderError(needed, size)


def format_ipv6(raw: bytes) -> str:
    """Render 16 bytes as eight colon-joined lowercase hex groups.

    No zero-compression is applied, so ``::1`` comes out as
    ``0:0:0:0:0:0:0:1``.
    """
    return ":".join(format(group, "x") for group in _IPV6_GROUPS.unpack(raw))


def decode_request_header(
    buffer: bytes | bytearray | memoryview, expected_identity: bytes
) -> RequestHeader:
    """Decode a request header from the start of ``buffer``.

    Fields are validated as soon as they are available, so an identity
    mismatch is reported before anything that follows it is looked at, and
    an unsupported command before the port and address.

    Raises:
        IncompleteHeaderError: If ``buffer`` ends inside the header.
        AuthenticationError: If the identity does not match.
        UnsupportedCommandError: If the command is not TCP.
        UnsupportedAddressFamilyError: If the address type is unknown.
    """
    data = bytes(buffer)
    size = len(data)

    _require(size, 1 + IDENTITY_LENGTH)
    version = data[0]
    offset = 1

    identity = data[offset : offset + IDENTITY_LENGTH]
    if not hmac.compare_digest(identity, bytes(expected_identity)):
        raise AuthenticationError(identity)
    offset += IDENTITY_LENGTH

    _require(size, offset + 1)
    addons_length = data[offset]
    offset += 1

    _require(size, offset + addons_length + 1)
    addons = data[offset : offset + addons_length]
    offset += addons_length

    command = data[offset]
    offset += 1
    if command != Command.TCP:
        raise UnsupportedCommandError(command)

    _require(size, offset + 3)
    (port,) = _PORT.unpack_from(data, offset)
    offset += 2

    address_family = data[offset]
    offset += 1

    if address_family == AddressFamily.IPV4:
        _require(size, offset + 4)
        hostname = ".".join(str(b) for b in data[offset : offset + 4])
        offset += 4
    elif address_family == AddressFamily.FQDN:
        _require(size, offset + 1)
        name_length = data[offset]
        offset += 1
        _require(size, offset + name_length)
        hostname = data[offset : offset + name_length].decode("utf-8", errors="replace")
        offset += name_length
    elif address_family == AddressFamily.IPV6:
        _require(size, offset + 16)
        hostname = format_ipv6(data[offset : offset + 16])
        offset += 16
    else:
        raise UnsupportedAddressFamilyError(address_family)

    return RequestHeader(
        version=version,
        identity=identity,
        addons=addons,
        command=Command(command),
        port=port,
        address_family=AddressFamily(address_family),
        hostname=hostname,
        header_length=offset,
    )
