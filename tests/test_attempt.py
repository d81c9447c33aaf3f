"""Tests for outbound connections and single relay attempts."""

from __future__ import annotations

import asyncio

import pytest

from vlessgate.core.destination import Destination
from vlessgate.core.outbound import open_outbound_connection
from vlessgate.core.streams import InboundChannel, ReplayableStream
from vlessgate.protocol.errors import DestinationUnreachableError
from vlessgate.server.attempt import AttemptResult, RelayAttempt

from helpers import FakeTransport, TcpTarget


async def _payload(*chunks: bytes, close: bool = True) -> ReplayableStream:
    channel = InboundChannel()
    for chunk in chunks:
        await channel.feed(chunk)
    if close:
        channel.close()
    return ReplayableStream(channel)


class TestOpenOutboundConnection:
    """Tests for open_outbound_connection."""

    @pytest.mark.asyncio
    async def test_empty_hostname(self):
        with pytest.raises(DestinationUnreachableError) as exc_info:
            await open_outbound_connection(Destination("", 443))
        assert exc_info.value.reason == "empty hostname"

    @pytest.mark.asyncio
    async def test_hostname_with_nul_byte(self):
        """A hostname the resolver refuses is reported as unreachable."""
        with pytest.raises(DestinationUnreachableError):
            await open_outbound_connection(Destination("a\x00b", 443), timeout=2.0)

    @pytest.mark.asyncio
    async def test_refused(self):
        async with TcpTarget() as target:
            closed_port = target.port
        with pytest.raises(DestinationUnreachableError):
            await open_outbound_connection(Destination("127.0.0.1", closed_port), timeout=2.0)

    @pytest.mark.asyncio
    async def test_write_and_half_close(self):
        async with TcpTarget("reply", reply=b"done") as target:
            connection = await open_outbound_connection(target.address, timeout=2.0)
            await connection.write(b"abc")
            connection.write_eof()
            connection.write_eof()
            assert await connection.read(100) == b"done"
            connection.close()
            await connection.wait_closed()

        assert target.saw_eof
        assert bytes(target.received) == b"abc"


class TestRelayAttempt:
    """Tests for RelayAttempt.run."""

    @pytest.mark.asyncio
    async def test_on_response_fires_once(self):
        calls = []
        async with TcpTarget("echo") as target:
            payload = await _payload(b"a", b"b", b"c")
            transport = FakeTransport()
            attempt = RelayAttempt(
                target.address,
                payload.tap(),
                transport,
                version=0,
                connect_timeout=2.0,
                on_response=lambda: calls.append(1),
            )
            outcome = await asyncio.wait_for(attempt.run(), 5.0)

        assert calls == [1]
        assert outcome.result == AttemptResult.RESPONDED
        assert outcome.produced_response
        assert outcome.bytes_sent == 3
        assert transport.received == b"\x00\x00abc"

    @pytest.mark.asyncio
    async def test_unreachable(self):
        async with TcpTarget() as target:
            closed_port = target.port
        payload = await _payload(b"x")

        attempt = RelayAttempt(
            Destination("127.0.0.1", closed_port), payload.tap(), FakeTransport(), version=0
        )
        outcome = await attempt.run()

        assert outcome.result == AttemptResult.UNREACHABLE
        assert outcome.error
        assert payload.replayable

    @pytest.mark.asyncio
    async def test_unusable_hostname_is_unreachable(self):
        payload = await _payload(b"x")

        attempt = RelayAttempt(Destination("a\x00b", 443), payload.tap(), FakeTransport(), version=0)
        outcome = await attempt.run()

        assert outcome.result == AttemptResult.UNREACHABLE
        assert payload.replayable

    @pytest.mark.asyncio
    async def test_silent_destination(self):
        async with TcpTarget("silent") as target:
            payload = await _payload(b"request")
            transport = FakeTransport()
            outcome = await asyncio.wait_for(
                RelayAttempt(target.address, payload.tap(), transport, version=0).run(), 5.0
            )

        assert outcome.result == AttemptResult.NO_RESPONSE
        assert outcome.bytes_sent == 7
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_caller_already_gone(self):
        async with TcpTarget("silent") as target:
            payload = await _payload(b"request", close=False)
            transport = FakeTransport()
            transport.close()
            outcome = await asyncio.wait_for(
                RelayAttempt(target.address, payload.tap(), transport, version=0).run(), 5.0
            )

        assert outcome.result == AttemptResult.CALLER_CLOSED
        assert not outcome.produced_response
