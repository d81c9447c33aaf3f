"""Shared test helpers: header encoder, fake transport, local TCP targets."""

from __future__ import annotations

import asyncio
import contextlib
import socket
import struct
from uuid import UUID

from vlessgate.core.destination import Destination
from vlessgate.core.outbound import open_outbound_connection
from vlessgate.protocol.errors import DestinationUnreachableError, TransportClosedError
from vlessgate.protocol.header import AddressFamily

TEST_UUID = UUID("90cd4a77-141a-43c9-991b-08263cfe9c10")
IDENTITY = TEST_UUID.bytes
OTHER_IDENTITY = UUID("00000000-0000-4000-8000-000000000001").bytes


def encode_request_header(
    hostname: str,
    port: int,
    address_family: int = AddressFamily.FQDN,
    *,
    identity: bytes = IDENTITY,
    version: int = 0,
    command: int = 1,
    addons: bytes = b"",
) -> bytes:
    """Build a request header the way a client would."""
    out = bytearray([version])
    out += identity
    out.append(len(addons))
    out += addons
    out.append(command)
    out += struct.pack(">H", port)
    out.append(address_family)
    if address_family == AddressFamily.IPV4:
        out += bytes(int(part) for part in hostname.split("."))
    elif address_family == AddressFamily.FQDN:
        name = hostname.encode("utf-8")
        out.append(len(name))
        out += name
    elif address_family == AddressFamily.IPV6:
        out += struct.pack(">8H", *(int(group, 16) for group in hostname.split(":")))
    else:
        raise ValueError(f"cannot encode address family {address_family}")
    return bytes(out)


class FakeTransport:
    """In-memory DuplexTransport that records what is sent to the caller."""

    def __init__(self, peer: str = "203.0.113.7") -> None:
        self.peer = peer
        self.sent: list[bytes] = []
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def received(self) -> bytes:
        return b"".join(self.sent)

    def close(self) -> None:
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise TransportClosedError("closed")
        self.sent.append(bytes(data))


class TcpTarget:
    """Local TCP server standing in for a tunnel destination.

    Modes:
        echo: write every chunk back as it arrives.
        silent: read until EOF, then close without writing.
        reply: read until EOF, then write ``reply`` and close.
        hangup: write ``reply`` as soon as data arrives, then close.
        reset: write ``reply`` as soon as data arrives, wait for ``proceed``,
            then reset the connection.
        slow: wait for ``proceed`` before reading anything, then behave
            like ``reply``.
    """

    def __init__(self, mode: str = "echo", reply: bytes = b"") -> None:
        self.mode = mode
        self.reply = reply
        self.received = bytearray()
        self.connections = 0
        self.saw_eof = False
        self.port = 0
        self.proceed = asyncio.Event()
        self._server: asyncio.Server | None = None

    @property
    def address(self) -> Destination:
        return Destination("127.0.0.1", self.port)

    async def __aenter__(self) -> TcpTarget:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc: object) -> None:
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        try:
            if self.mode in ("hangup", "reset"):
                data = await reader.read(65536)
                self.received.extend(data)
                writer.write(self.reply)
                await writer.drain()
                if self.mode == "reset":
                    await self.proceed.wait()
                    sock = writer.get_extra_info("socket")
                    # zero linger turns close into RST
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
                    writer.transport.abort()
                return
            if self.mode == "slow":
                await self.proceed.wait()
            while True:
                data = await reader.read(65536)
                if not data:
                    self.saw_eof = True
                    break
                self.received.extend(data)
                if self.mode == "echo":
                    writer.write(data)
                    await writer.drain()
            if self.mode in ("reply", "slow") and self.reply:
                writer.write(self.reply)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()


class RoutingConnector:
    """Connection factory that maps destinations onto local ports.

    Destinations without a route behave as unreachable, except those listed
    in ``direct``, which are dialled as given. Every call is recorded in
    ``calls``.
    """

    def __init__(
        self,
        routes: dict[Destination, int] | None = None,
        direct: tuple[Destination, ...] = (),
    ) -> None:
        self.routes = dict(routes or {})
        self.direct = set(direct)
        self.calls: list[Destination] = []

    async def __call__(self, destination: Destination, timeout: float | None = None):
        self.calls.append(destination)
        if destination in self.direct:
            return await open_outbound_connection(destination, timeout)
        port = self.routes.get(destination)
        if port is None:
            raise DestinationUnreachableError(destination, "connection refused")
        return await open_outbound_connection(Destination("127.0.0.1", port), timeout)
