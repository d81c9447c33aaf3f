"""Outbound TCP connections to tunnel destinations."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import structlog

from vlessgate.core.destination import Destination
from vlessgate.protocol.errors import DestinationUnreachableError

logger = structlog.get_logger()


class OutboundConnection:
    """Full-duplex byte stream to a destination with half-close support."""

    def __init__(
        self,
        destination: Destination,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self.destination = destination
        self._reader = reader
        self._writer = writer
        self._eof_sent = False

    @property
    def closing(self) -> bool:
        return self._writer.is_closing()

    async def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; ``b""`` means the destination closed."""
        return await self._reader.read(n)

    async def write(self, data: bytes) -> None:
        """Write ``data`` and wait until the transport buffer drains."""
        self._writer.write(data)
        await self._writer.drain()

    def write_eof(self) -> None:
        """Close the write side while keeping the read side open."""
        if self._eof_sent or self._writer.is_closing():
            return
        self._eof_sent = True
        if self._writer.can_write_eof():
            self._writer.write_eof()

    def close(self) -> None:
        self._writer.close()

    async def wait_closed(self) -> None:
        with contextlib.suppress(OSError):
            await self._writer.wait_closed()


ConnectionFactory = Callable[[Destination, float | None], Awaitable[OutboundConnection]]


async def open_outbound_connection(
    destination: Destination, timeout: float | None = None
) -> OutboundConnection:
    """Open a TCP connection to ``destination``.

    Raises:
        DestinationUnreachableError: If the hostname is unusable, or the
            connection fails or times out.
    """
    if not destination.hostname:
        raise DestinationUnreachableError(destination, "empty hostname")

    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(destination.hostname, destination.port),
            timeout=timeout,
        )
    except TimeoutError:
        raise DestinationUnreachableError(destination, f"connect timed out after {timeout}s") from None
    except (OSError, ValueError) as e:
        raise DestinationUnreachableError(destination, str(e) or type(e).__name__) from e

    logger.debug("Outbound connection established", destination=str(destination))
    return OutboundConnection(destination, reader, writer)
