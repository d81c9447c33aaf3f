"""Caller-side duplex transports."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog
from aiohttp import WSMsgType, web

from vlessgate.core.streams import InboundChannel
from vlessgate.protocol.errors import TransportClosedError

logger = structlog.get_logger()


class DuplexTransport(Protocol):
    """Outbound half of the caller's connection."""

    peer: str

    @property
    def closed(self) -> bool: ...

    async def send(self, data: bytes) -> None: ...

    async def wait_closed(self) -> None: ...


class WebSocketTransport:
    """``DuplexTransport`` over an aiohttp server-side WebSocket."""

    def __init__(self, ws: web.WebSocketResponse, peer: str = "unknown") -> None:
        self.peer = peer
        self._ws = ws
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set() or self._ws.closed

    def mark_closed(self) -> None:
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise TransportClosedError("WebSocket is closed")
        try:
            await self._ws.send_bytes(data)
        except (ConnectionError, RuntimeError) as e:
            self.mark_closed()
            raise TransportClosedError(f"WebSocket send failed: {e}") from e


async def pump_websocket(
    ws: web.WebSocketResponse,
    channel: InboundChannel,
    transport: WebSocketTransport,
) -> None:
    """Feed binary messages from ``ws`` into ``channel`` until the socket closes."""
    try:
        async for msg in ws:
            if msg.type == WSMsgType.BINARY:
                await channel.feed(msg.data)
            elif msg.type == WSMsgType.TEXT:
                logger.debug("Ignoring text message", peer=transport.peer, size=len(msg.data))
            elif msg.type == WSMsgType.ERROR:
                logger.info(
                    "Inbound connection closed with error",
                    peer=transport.peer,
                    error=str(ws.exception()),
                )
                break
    finally:
        if ws.close_code not in (None, 1000, 1001, 1005):
            logger.info("Inbound connection closed", peer=transport.peer, code=ws.close_code)
        channel.close()
        transport.mark_closed()
