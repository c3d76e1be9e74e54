import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TransportWriteFailure(Exception):
    """The remote end of a frame stream is gone."""


class Transport(Protocol):
    def write(self, frame: str) -> bool: ...
    def close(self) -> None: ...
    def on_close(self, callback: Callable[[], None]) -> None: ...


class FrameStream:
    """Long-lived pull connection carrying rendered frames to one client.

    The buffer only keeps the newest frames: when the consumer falls behind,
    the oldest pending frame is dropped and ``write`` reports the frame as not
    delivered.
    """

    def __init__(self, buffer: int = 1):
        self._buffer = max(1, buffer)
        self._q: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._closed = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, frame: str) -> bool:
        if self._closed:
            raise TransportWriteFailure("stream closed")
        delivered = True
        while self._q.qsize() >= self._buffer:
            self._q.get_nowait()
            delivered = False
        self._q.put_nowait(frame)
        return delivered

    def on_close(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def close(self) -> None:
        """Server-side close; the consumer ends after the pending frame."""
        if self._closed:
            return
        self._closed = True
        self._callbacks.clear()
        self._q.put_nowait(None)

    def peer_closed(self) -> None:
        """Called by the transport when the client went away."""
        callbacks = list(self._callbacks)
        self.close()
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception("stream close callback failed")

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._q.get()
            if frame is None:
                return
            yield frame
