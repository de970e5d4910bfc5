# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim In-Memory Connection
#
# Creates a pair of connected Conn instances that exchange frames via
# shared asyncio.Queue objects, plus a one-shot KillSignal. No real
# network involved.
#
#   client_conn, server_conn, kill = in_memory()
#   await client_conn.send(frame)     # readable on server_conn
#   kill.fire()                       # both ends see end-of-stream
#
# recv() returns None for end-of-stream. That happens when:
#   - the kill signal fires (abrupt transport loss, buffered frames lost)
#   - either end calls close() (after buffered frames are drained)

import asyncio
import itertools
import logging
from typing import Optional, Tuple

from collabsim.rpc.errors import ConnectionClosed

logger = logging.getLogger(__name__)

_EOF = None
_conn_ids = itertools.count()


class KillSignal:
    """One-shot publisher that forces an in-memory transport to end-of-stream."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def fire(self) -> None:
        if not self._event.is_set():
            logger.debug("Kill signal fired")
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class Conn:
    """One end of an in-memory duplex frame pipe.
    Create a pair with in_memory().
    """

    def __init__(self, send_queue: asyncio.Queue, recv_queue: asyncio.Queue, kill: KillSignal, name: str = ""):
        self.send_queue = send_queue
        self.recv_queue = recv_queue
        self.kill = kill
        self.name = name
        self.closed = False
        self._eof = False
        self.frames_sent = 0
        self.frames_received = 0

    @property
    def killed(self) -> bool:
        return self.kill.fired

    async def send(self, data: bytes) -> None:
        if self.kill.fired:
            raise ConnectionClosed("other half hung up")
        if self.closed:
            raise ConnectionClosed(f"Connection {self.name} is closed")
        await self.send_queue.put(data)
        self.frames_sent += 1

    async def recv(self) -> Optional[bytes]:
        """Next frame, or None once the stream has ended."""
        if self._eof or self.kill.fired:
            return None

        get = asyncio.ensure_future(self.recv_queue.get())
        killed = asyncio.ensure_future(self.kill.wait())
        try:
            await asyncio.wait({get, killed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            killed.cancel()
            if not get.done():
                get.cancel()

        if self.kill.fired:
            # Abrupt loss: a frame that raced the kill is dropped with the rest
            return None
        data = get.result()
        if data is _EOF:
            self._eof = True
            return None
        self.frames_received += 1
        return data

    async def close(self) -> None:
        """Close this end. Both ends read end-of-stream once buffered frames drain."""
        if not self.closed:
            self.closed = True
            await self.send_queue.put(_EOF)
            await self.recv_queue.put(_EOF)

    def __repr__(self) -> str:
        return f"Conn({self.name!r}, closed={self.closed}, killed={self.killed})"


def in_memory(name_a: str = "", name_b: str = "") -> Tuple[Conn, Conn, KillSignal]:
    """
    Create a connected (client, server) pair sharing one kill signal.
    What the client sends, the server receives, and vice versa.
    """
    n = next(_conn_ids)
    q_client_to_server: asyncio.Queue = asyncio.Queue()
    q_server_to_client: asyncio.Queue = asyncio.Queue()
    kill = KillSignal()

    client = Conn(q_client_to_server, q_server_to_client, kill, name=name_a or f"client-{n}")
    server = Conn(q_server_to_client, q_client_to_server, kill, name=name_b or f"server-{n}")
    return client, server, kill
