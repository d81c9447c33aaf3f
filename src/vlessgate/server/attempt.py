"""A single relay attempt against one destination."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from vlessgate.core.destination import Destination
from vlessgate.core.outbound import ConnectionFactory, OutboundConnection, open_outbound_connection
from vlessgate.observability.metrics import BYTES_TRANSFERRED
from vlessgate.protocol.errors import DestinationUnreachableError, TransportClosedError
from vlessgate.protocol.response import ResponseFramer
from vlessgate.server.transport import DuplexTransport

logger = structlog.get_logger()


class AttemptResult(Enum):
    """How an attempt ended."""

    RESPONDED = "responded"
    UNREACHABLE = "unreachable"
    NO_RESPONSE = "no_response"
    CALLER_CLOSED = "caller_closed"


@dataclass(frozen=True)
class AttemptOutcome:
    """Final record of a relay attempt."""

    destination: Destination
    result: AttemptResult
    bytes_sent: int = 0
    bytes_received: int = 0
    error: str | None = None

    @property
    def produced_response(self) -> bool:
        return self.result == AttemptResult.RESPONDED


class RelayAttempt:
    """Relays one payload tap to one destination.

    ``run`` makes exactly one connection attempt. Request bytes flow from the
    payload to the destination; response bytes flow back through a
    ``ResponseFramer`` so the caller sees the ``[version, 0]`` envelope in
    front of the first chunk. When the payload ends the destination is
    half-closed and may keep sending. The attempt is over once the
    destination closes or the caller goes away, and the outbound connection
    is always closed before the outcome is returned.
    """

    def __init__(
        self,
        destination: Destination,
        payload: AsyncIterator[bytes],
        transport: DuplexTransport,
        version: int,
        *,
        connector: ConnectionFactory = open_outbound_connection,
        connect_timeout: float | None = None,
        read_chunk_size: int = 64 * 1024,
        on_response: Callable[[], None] | None = None,
    ) -> None:
        self.destination = destination
        self.produced_response = False
        self.bytes_sent = 0
        self.bytes_received = 0
        self._payload = payload
        self._transport = transport
        self._framer = ResponseFramer(version)
        self._connector = connector
        self._connect_timeout = connect_timeout
        self._read_chunk_size = read_chunk_size
        self._on_response = on_response
        self._upstream_error: str | None = None
        self._log = logger.bind(peer=transport.peer, destination=str(destination))

    async def run(self) -> AttemptOutcome:
        self._log.info("Outbound connection")
        try:
            connection = await self._connector(self.destination, self._connect_timeout)
        except DestinationUnreachableError as e:
            self._log.info("Outbound connection failed", error=e.reason)
            return self._outcome(AttemptResult.UNREACHABLE, e.reason)

        caller_closed = False
        error: str | None = None

        upstream = asyncio.create_task(self._pump_upstream(connection))
        downstream = asyncio.create_task(self._pump_downstream(connection))
        caller_gone = asyncio.create_task(self._transport.wait_closed())
        try:
            await asyncio.wait({downstream, caller_gone}, return_when=asyncio.FIRST_COMPLETED)
            if downstream.done():
                exc = downstream.exception()
                if isinstance(exc, TransportClosedError):
                    caller_closed = True
                elif isinstance(exc, OSError):
                    error = str(exc) or type(exc).__name__
                elif exc is not None:
                    raise exc
            else:
                caller_closed = True
        finally:
            for task in (upstream, downstream, caller_gone):
                task.cancel()
            results = await asyncio.gather(
                upstream, downstream, caller_gone, return_exceptions=True
            )
            if isinstance(results[0], Exception):
                self._log.error("Upstream pump crashed", error=str(results[0]))
            connection.close()
            await connection.wait_closed()

        if caller_closed:
            self._log.debug("Caller closed during attempt")
        if error is None:
            error = self._upstream_error

        if self.produced_response:
            result = AttemptResult.RESPONDED
        elif caller_closed:
            result = AttemptResult.CALLER_CLOSED
        else:
            result = AttemptResult.NO_RESPONSE
            if error is None:
                error = "closed without response"

        self._log.debug(
            "Outbound connection closed",
            result=result.value,
            sent=self.bytes_sent,
            received=self.bytes_received,
            error=error,
        )
        return self._outcome(result, error)

    async def _pump_upstream(self, connection: OutboundConnection) -> None:
        try:
            async for chunk in self._payload:
                await connection.write(chunk)
                self.bytes_sent += len(chunk)
                BYTES_TRANSFERRED.labels(direction="upstream").inc(len(chunk))
            connection.write_eof()
        except OSError as e:
            self._upstream_error = str(e) or type(e).__name__
            self._log.debug("Upstream write failed", error=self._upstream_error)
            # unblocks the downstream read
            connection.close()

    async def _pump_downstream(self, connection: OutboundConnection) -> None:
        while True:
            chunk = await connection.read(self._read_chunk_size)
            if not chunk:
                return
            if not self.produced_response:
                self.produced_response = True
                if self._on_response is not None:
                    self._on_response()
            await self._transport.send(self._framer.frame(chunk))
            self.bytes_received += len(chunk)
            BYTES_TRANSFERRED.labels(direction="downstream").inc(len(chunk))

    def _outcome(self, result: AttemptResult, error: str | None = None) -> AttemptOutcome:
        return AttemptOutcome(
            destination=self.destination,
            result=result,
            bytes_sent=self.bytes_sent,
            bytes_received=self.bytes_received,
            error=error,
        )
