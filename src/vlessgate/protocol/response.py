"""Response envelope framing."""

from __future__ import annotations

STATUS_OK = 0x00


def frame_response(chunk: bytes, first: bool, version: int) -> bytes:
    """Prefix the ``[version, 0x00]`` envelope when ``first`` is set."""
    if first:
        return bytes((version, STATUS_OK)) + chunk
    return chunk


class ResponseFramer:
    """Frames the response of a single relay attempt.

    The envelope goes in front of the first chunk only; every later chunk
    passes through untouched.
    """

    def __init__(self, version: int) -> None:
        self.version = version
        self._framed = False

    @property
    def framed(self) -> bool:
        return self._framed

    def frame(self, chunk: bytes) -> bytes:
        first = not self._framed
        self._framed = True
        return frame_response(chunk, first, self.version)
