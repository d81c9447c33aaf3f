"""Relay server: WebSocket upgrade endpoint plus health, stats and metrics."""

from __future__ import annotations

import asyncio
import contextlib
import time
import weakref

import structlog
from aiohttp import WSCloseCode, web

from vlessgate.core.config import RelaySettings
from vlessgate.core.destination import Destination
from vlessgate.core.outbound import ConnectionFactory, open_outbound_connection
from vlessgate.core.streams import InboundChannel
from vlessgate.observability.metrics import (
    ACTIVE_SESSIONS,
    DECODE_ERRORS,
    TUNNEL_CONNECTIONS,
    generate_metrics,
    get_content_type,
)
from vlessgate.protocol.early_data import EARLY_DATA_HEADER, decode_early_data
from vlessgate.protocol.errors import DecodeError, EarlyDataError
from vlessgate.server.orchestrator import RelayOrchestrator, SessionState
from vlessgate.server.transport import WebSocketTransport, pump_websocket

logger = structlog.get_logger()

DEFAULT_BIND_PORT = 8080


def _peer_address(request: web.Request) -> str:
    """Best-effort client address for logging."""
    connecting_ip = request.headers.get("CF-Connecting-IP")
    if connecting_ip:
        return connecting_ip
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote or "unknown"


class RelayServer:
    """Accepts tunnel WebSockets and hands each one to a RelayOrchestrator."""

    def __init__(
        self,
        settings: RelaySettings,
        connector: ConnectionFactory = open_outbound_connection,
    ) -> None:
        self.settings = settings
        self.relay_config = settings.to_relay_config()
        self._connector = connector
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._websockets: weakref.WeakSet[web.WebSocketResponse] = weakref.WeakSet()
        self._started_at = time.monotonic()
        self._active_sessions = 0
        self._stats = {
            "sessions_total": 0,
            "sessions_closed": 0,
            "sessions_failed": 0,
            "requests_rejected": 0,
        }

    @property
    def active_sessions(self) -> int:
        return self._active_sessions

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._handle_health_check)
        app.router.add_get("/stats", self._handle_stats)
        if self.settings.metrics_enabled:
            app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_route("*", "/{path:.*}", self._handle_tunnel_request)
        app.on_shutdown.append(self._close_websockets)
        return app

    async def start(self) -> None:
        """Start listening on the configured bind address."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        host, port = self._parse_bind(self.settings.bind)
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        self._started_at = time.monotonic()

        logger.info(
            "Relay server started",
            host=host,
            port=port,
            fallback=str(self.relay_config.fallback) if self.relay_config.fallback else None,
            metrics=self.settings.metrics_enabled,
        )

    def _parse_bind(self, bind: str) -> tuple[str, int]:
        """Parse ``port``, ``host:port`` or ``[v6]:port`` into host and port."""
        bind = bind.strip()
        if bind.isdigit():
            return "0.0.0.0", int(bind)
        address = Destination.parse(bind, default_port=DEFAULT_BIND_PORT)
        return address.hostname or "0.0.0.0", address.port

    async def stop(self) -> None:
        """Stop the relay server gracefully."""
        logger.info("Stopping relay server...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("Relay server stopped")

    async def _close_websockets(self, app: web.Application) -> None:
        for ws in list(self._websockets):
            with contextlib.suppress(Exception):
                await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "healthy",
                "sessions": self._active_sessions,
                "uptime": round(time.monotonic() - self._started_at, 1),
            }
        )

    async def _handle_stats(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "active_sessions": self._active_sessions,
                "fallback": str(self.relay_config.fallback) if self.relay_config.fallback else None,
                **self._stats,
            }
        )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def _handle_tunnel_request(self, request: web.Request) -> web.StreamResponse:
        upgrade = request.headers.get("Upgrade", "")
        if request.method != "GET" or upgrade.lower() != "websocket":
            return web.Response(status=426, headers={"Upgrade": "websocket"})

        peer = _peer_address(request)
        header_name = self.settings.early_data_header
        early_value = request.headers.get(header_name)
        try:
            early_data = decode_early_data(early_value)
        except EarlyDataError as e:
            DECODE_ERRORS.labels(kind=e.kind).inc()
            TUNNEL_CONNECTIONS.labels(result="rejected").inc()
            self._stats["requests_rejected"] += 1
            logger.warning("Rejected tunnel request", peer=peer, kind=e.kind, error=str(e))
            return web.Response(status=400, text="Bad Request")

        protocols: tuple[str, ...] = ()
        if early_value and header_name.lower() == EARLY_DATA_HEADER.lower():
            # echo the offered subprotocol so the client accepts the handshake
            protocols = (early_value.strip(),)

        ws = web.WebSocketResponse(
            protocols=protocols,
            heartbeat=self.settings.ws_heartbeat or None,
            max_msg_size=self.settings.ws_max_msg_size,
        )
        await ws.prepare(request)
        self._websockets.add(ws)

        logger.info("Inbound connection", peer=peer, early_data=len(early_data))

        transport = WebSocketTransport(ws, peer)
        channel = InboundChannel(maxsize=self.settings.inbound_queue_size)
        if early_data:
            await channel.feed(early_data)
        pump = asyncio.create_task(pump_websocket(ws, channel, transport))

        orchestrator = RelayOrchestrator(self.relay_config, connector=self._connector)
        close_code = WSCloseCode.OK
        result = "failed"

        self._active_sessions += 1
        self._stats["sessions_total"] += 1
        ACTIVE_SESSIONS.inc()
        try:
            outcome = await orchestrator.run(channel, transport)
            if outcome.state == SessionState.CLOSED:
                result = "closed"
            elif isinstance(outcome.error, DecodeError):
                result = "rejected"
                close_code = WSCloseCode.PROTOCOL_ERROR
        except Exception as e:
            logger.error("Tunnel session error", peer=peer, error=str(e))
            close_code = WSCloseCode.INTERNAL_ERROR
        finally:
            self._active_sessions -= 1
            ACTIVE_SESSIONS.dec()
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
            if not ws.closed:
                with contextlib.suppress(Exception):
                    await ws.close(code=close_code)
            self._websockets.discard(ws)

        TUNNEL_CONNECTIONS.labels(result=result).inc()
        if result == "closed":
            self._stats["sessions_closed"] += 1
        elif result == "rejected":
            self._stats["requests_rejected"] += 1
        else:
            self._stats["sessions_failed"] += 1
        logger.debug("Inbound connection finished", peer=peer, result=result)
        return ws
