"""Output channel between a streaming turn's relay task and the HTTP response."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from .errors import StreamWriteError

_CLOSED = object()


class StreamChannel:
    """
    Single-producer, single-consumer queue of text chunks.

    The relay task writes with ``send`` and finishes with ``close``; the HTTP
    layer iterates the channel. Once the reader stops (client went away) or the
    channel is closed, ``send`` raises ``StreamWriteError``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._reader_gone = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, chunk: str) -> None:
        if self._reader_gone:
            raise StreamWriteError("Stream reader disconnected")
        if self._closed:
            raise StreamWriteError("Stream already closed")
        self._queue.put_nowait(chunk)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def detach(self) -> None:
        """Mark the reader as gone; later writes fail."""
        self._reader_gone = True

    async def __aiter__(self) -> AsyncIterator[str]:
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSED:
                    return
                yield item  # type: ignore[misc]
        finally:
            self.detach()

    async def read_all(self) -> str:
        return "".join([chunk async for chunk in self])
