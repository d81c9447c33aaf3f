"""Lifecycle of one tunneled connection."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from vlessgate.core.config import RelayConfig
from vlessgate.core.destination import Destination, build_candidates
from vlessgate.core.outbound import ConnectionFactory, open_outbound_connection
from vlessgate.core.streams import InboundChannel, PayloadTap, ReplayableStream
from vlessgate.observability.metrics import DECODE_ERRORS
from vlessgate.protocol.errors import DecodeError, IncompleteHeaderError, RelayError, TransportClosedError
from vlessgate.protocol.header import RequestHeader, decode_request_header
from vlessgate.server.attempt import AttemptOutcome, RelayAttempt
from vlessgate.server.fallback import FallbackPolicy
from vlessgate.server.transport import DuplexTransport

logger = structlog.get_logger()


class SessionState(Enum):
    """Tunnel session states."""

    AWAITING_HEADER = "awaiting_header"
    RELAYING = "relaying"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class SessionOutcome:
    """Result of a tunnel session."""

    state: SessionState
    header: RequestHeader | None = None
    attempts: list[AttemptOutcome] = field(default_factory=list)
    error: RelayError | None = None

    @property
    def responded(self) -> bool:
        return any(a.produced_response for a in self.attempts)


class RelayOrchestrator:
    """Drives a tunnel session from the first inbound byte to close.

    Inbound chunks are buffered until the request header decodes. A header
    that arrives split over several chunks is reassembled; the largest
    possible header is a few hundred bytes, so the buffer stays small. Any
    decode error ends the session before a destination is contacted.
    Everything after the header is the payload, which is relayed to the
    decoded destination and, if that one never answers, to the configured
    fallback.
    """

    def __init__(
        self,
        config: RelayConfig,
        connector: ConnectionFactory = open_outbound_connection,
    ) -> None:
        self.config = config
        self.state = SessionState.AWAITING_HEADER
        self._connector = connector

    async def run(self, inbound: InboundChannel, transport: DuplexTransport) -> SessionOutcome:
        log = logger.bind(peer=transport.peer)
        self.state = SessionState.AWAITING_HEADER

        try:
            header, remainder = await self._read_header(inbound)
        except TransportClosedError as e:
            log.debug("Inbound connection closed before request", error=str(e))
            return self._finish(SessionState.FAILED, error=e)
        except DecodeError as e:
            DECODE_ERRORS.labels(kind=e.kind).inc()
            log.warning("Rejected tunnel request", kind=e.kind, error=str(e))
            return self._finish(SessionState.FAILED, error=e)

        self.state = SessionState.RELAYING
        log.debug(
            "Request header decoded",
            version=header.version,
            destination=str(header.destination),
            addons=header.addons_length,
            early_payload=len(remainder),
        )

        candidates = build_candidates(header.destination, self.config.fallback)
        payload = ReplayableStream(
            inbound, head=remainder, max_retained=self.config.replay_buffer_limit
        )
        policy = FallbackPolicy(self._attempt_factory(header, transport), peer=transport.peer)
        try:
            attempts = await policy.resolve(candidates, payload)
        finally:
            payload.release()

        responded = any(a.produced_response for a in attempts)
        self.state = SessionState.CLOSED if responded else SessionState.FAILED
        return SessionOutcome(state=self.state, header=header, attempts=attempts)

    async def _read_header(self, inbound: InboundChannel) -> tuple[RequestHeader, bytes]:
        buffer = bytearray()
        pending: IncompleteHeaderError | None = None

        async for chunk in inbound:
            buffer.extend(chunk)
            try:
                header = decode_request_header(buffer, self.config.identity)
            except IncompleteHeaderError as e:
                pending = e
                continue
            return header, bytes(buffer[header.header_length :])

        if pending is None:
            raise TransportClosedError("Inbound connection closed before sending data")
        raise pending

    def _attempt_factory(
        self, header: RequestHeader, transport: DuplexTransport
    ) -> Callable[[Destination, PayloadTap, Callable[[], None]], RelayAttempt]:
        def factory(
            destination: Destination, tap: PayloadTap, on_response: Callable[[], None]
        ) -> RelayAttempt:
            return RelayAttempt(
                destination,
                tap,
                transport,
                header.version,
                connector=self._connector,
                connect_timeout=self.config.connect_timeout,
                read_chunk_size=self.config.read_chunk_size,
                on_response=on_response,
            )

        return factory

    def _finish(self, state: SessionState, error: RelayError | None = None) -> SessionOutcome:
        self.state = state
        return SessionOutcome(state=state, error=error)
