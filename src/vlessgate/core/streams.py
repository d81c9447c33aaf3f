"""Inbound byte channels and replayable payload streams."""

from __future__ import annotations

import asyncio

import structlog

logger = structlog.get_logger()


class InboundChannel:
    """Bounded FIFO of inbound chunks with an end-of-stream marker.

    The producer side (``feed``) suspends while the channel is full, which
    pushes backpressure onto whatever reads the caller's socket. ``receive``
    returns ``None`` once the channel is closed and drained.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def feed(self, chunk: bytes) -> None:
        if self._closed:
            raise RuntimeError("Inbound channel is closed")
        if chunk:
            await self._queue.put(bytes(chunk))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # receive() notices the close once the backlog is drained
            pass

    async def receive(self) -> bytes | None:
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> InboundChannel:
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.receive()
        if chunk is None:
            raise StopAsyncIteration
        return chunk


class ReplayableStream:
    """Payload stream that several readers can consume independently.

    Chunks pulled from the live source are kept so that a later tap can
    replay them from the start. Once ``release`` is called no new taps can
    be made and nothing more is kept; the newest tap still receives the
    chunks it has not read yet, and each is dropped once it has been read.

    Args:
        source: Live chunk source.
        head: Bytes that precede everything from ``source``.
        max_retained: Stop retaining (release) once more than this many bytes
            are held. ``None`` means no limit.
    """

    def __init__(
        self,
        source: InboundChannel,
        head: bytes = b"",
        max_retained: int | None = None,
    ) -> None:
        self._source = source
        self._history: list[bytes] = [bytes(head)] if head else []
        self._offset = 0
        self._pulled = len(self._history)
        self._retained_bytes = len(head)
        self._max_retained = max_retained
        self._retaining = True
        self._eof = False
        self._newest_tap: PayloadTap | None = None
        self._lock = asyncio.Lock()

    @property
    def replayable(self) -> bool:
        return self._retaining

    @property
    def retained_bytes(self) -> int:
        return self._retained_bytes

    def tap(self) -> PayloadTap:
        """Return a new reader positioned at the first payload byte."""
        if not self._retaining:
            raise RuntimeError("Payload already released, cannot replay")
        self._newest_tap = PayloadTap(self)
        return self._newest_tap

    def release(self) -> None:
        """Stop retaining chunks for replay."""
        if not self._retaining:
            return
        self._retaining = False
        reader = self._newest_tap
        self._discard_before(reader._index if reader is not None else self._pulled)

    def _discard_before(self, index: int) -> None:
        count = index - self._offset
        if count <= 0:
            return
        self._retained_bytes -= sum(len(chunk) for chunk in self._history[:count])
        del self._history[:count]
        self._offset = index

    async def _chunk_at(self, index: int) -> bytes | None:
        async with self._lock:
            if index < self._offset:
                raise RuntimeError(f"Payload chunk {index} is no longer retained")
            if index < self._pulled:
                chunk = self._history[index - self._offset]
                if not self._retaining:
                    self._discard_before(index + 1)
                return chunk
            if self._eof:
                return None

            chunk = await self._source.receive()
            if chunk is None:
                self._eof = True
                return None

            self._pulled += 1
            if self._retaining:
                self._history.append(chunk)
                self._retained_bytes += len(chunk)
                if self._max_retained is not None and self._retained_bytes > self._max_retained:
                    logger.debug(
                        "Replay buffer limit reached",
                        retained=self._retained_bytes,
                        limit=self._max_retained,
                    )
                    self.release()
            if not self._retaining:
                self._discard_before(self._pulled)
            return chunk


class PayloadTap:
    """Single reader over a ``ReplayableStream``."""

    def __init__(self, stream: ReplayableStream) -> None:
        self._stream = stream
        self._index = 0
        self.bytes_read = 0

    def __aiter__(self) -> PayloadTap:
        return self

    async def __anext__(self) -> bytes:
        chunk = await self._stream._chunk_at(self._index)
        if chunk is None:
            raise StopAsyncIteration
        self._index += 1
        self.bytes_read += len(chunk)
        return chunk
