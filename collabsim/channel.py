# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim Unbounded Channel
#
# Single-loop asyncio channel used for incoming envelope streams and
# observer notifications. Sends never block; a closed channel rejects
# new items but still yields whatever was buffered before close().

import asyncio
from typing import Any, Optional

_CLOSED = object()


class Channel:
    """Unbounded async channel with end-of-stream. None is reserved as the end marker."""

    def __init__(self, name: str = ""):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        # Buffered items, not counting the end-of-stream marker
        return self._queue.qsize() - (1 if self._closed and not self._drained else 0)

    def try_send(self, item: Any) -> bool:
        """Push an item without waiting. Returns False if the channel is closed."""
        if self._closed:
            return False
        self._queue.put_nowait(item)
        return True

    async def send(self, item: Any) -> None:
        if not self.try_send(item):
            raise ConnectionError(f"Channel {self.name} is closed")

    def close(self) -> None:
        """Stop accepting items. Pending receivers see end-of-stream after the buffer drains."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def recv(self) -> Optional[Any]:
        """Next item, or None once the channel is closed and empty."""
        if self._drained:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            return None
        return item

    def try_recv(self) -> Optional[Any]:
        """Next item if one is buffered, else None."""
        if self._drained or self._queue.empty():
            return None
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._drained = True
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.recv()
        if item is None:
            raise StopAsyncIteration
        return item
