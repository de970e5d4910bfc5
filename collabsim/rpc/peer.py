# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim Peer — typed RPC routing over many connections
#
# A Peer multiplexes connections. For each one it keeps:
#   - an outbound queue of envelopes
#   - pending requests, keyed by message id, awaiting a response
#   - the inbound stream of TypedEnvelopes handed to the caller
#
# connect() and reconnect() return an io coroutine that moves frames
# between the queues and the transport. The caller must schedule it
# (BackgroundExecutor.spawn); without it, nothing flows.
#
# reconnect() swaps the transport under an existing ConnectionId:
# pending requests survive, unsent envelopes move to the new transport,
# and inbound messages keep arriving on the original stream.

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Coroutine, Dict, Iterator, List, Optional, Tuple

from collabsim.channel import Channel
from collabsim.rpc.conn import Conn
from collabsim.rpc.errors import ConnectionClosed, ConnectionNotFound, ProtocolError, RequestFailed
from collabsim.rpc.proto import (
    ConnectionId,
    Envelope,
    Error,
    Message,
    Receipt,
    RequestMessage,
    TypedEnvelope,
    build_typed_envelope,
    decode_envelope,
    encode_envelope,
)

logger = logging.getLogger(__name__)


@dataclass
class _ConnectionState:
    conn: Conn
    incoming: Channel
    outgoing: asyncio.Queue = field(default_factory=asyncio.Queue)
    message_ids: Iterator[int] = field(default_factory=itertools.count)
    response_channels: Dict[int, asyncio.Future] = field(default_factory=dict)


class Peer:
    """Connection registry and typed envelope router."""

    def __init__(self, name: str = "peer"):
        self.name = name
        self._connections: Dict[ConnectionId, _ConnectionState] = {}
        self._connection_ids = itertools.count()

    @property
    def connection_ids(self) -> List[ConnectionId]:
        return sorted(self._connections)

    def is_connected(self, connection_id: ConnectionId) -> bool:
        return connection_id in self._connections

    # ── Connection lifecycle ────────────────────────────────────────

    async def connect(self, conn: Conn) -> Tuple[ConnectionId, Coroutine, Channel]:
        """
        Register a transport. Returns (connection_id, io, incoming).
        io must be spawned on a background executor.
        """
        connection_id = ConnectionId(next(self._connection_ids))
        state = _ConnectionState(conn=conn, incoming=Channel(name=str(connection_id)))
        self._connections[connection_id] = state
        logger.info(f"{self.name}: connected {connection_id}")
        return connection_id, self._drive_io(connection_id, state, conn, state.outgoing), state.incoming

    async def reconnect(self, connection_id: ConnectionId, conn: Conn) -> Coroutine:
        """Replace the transport behind connection_id. Returns the new io coroutine."""
        state = self._state(connection_id)
        old_conn = state.conn
        old_outgoing = state.outgoing

        outgoing: asyncio.Queue = asyncio.Queue()
        while not old_outgoing.empty():
            outgoing.put_nowait(old_outgoing.get_nowait())
        state.conn = conn
        state.outgoing = outgoing

        await old_conn.close()
        logger.info(f"{self.name}: reconnected {connection_id} ({outgoing.qsize()} envelopes carried over)")
        return self._drive_io(connection_id, state, conn, outgoing)

    async def disconnect(self, connection_id: ConnectionId) -> None:
        """Drop routing for connection_id. Pending requests fail, the inbound stream ends."""
        state = self._connections.pop(connection_id, None)
        if state is None:
            return
        for future in state.response_channels.values():
            if not future.done():
                future.set_exception(ConnectionClosed(f"{connection_id} was disconnected"))
        state.response_channels.clear()
        state.incoming.close()
        await state.conn.close()
        logger.info(f"{self.name}: disconnected {connection_id}")

    async def reset(self) -> None:
        for connection_id in self.connection_ids:
            await self.disconnect(connection_id)

    # ── Outbound ────────────────────────────────────────────────────

    async def send(self, connection_id: ConnectionId, message: Message) -> int:
        """Queue a message on connection_id. Returns its message id."""
        state = self._state(connection_id)
        message_id = next(state.message_ids)
        state.outgoing.put_nowait(Envelope.wrap(message, message_id))
        return message_id

    async def forward_send(self, sender_id: ConnectionId, receiver_id: ConnectionId, message: Message) -> int:
        """Queue a message on receiver_id, marked as originating from sender_id."""
        state = self._state(receiver_id)
        message_id = next(state.message_ids)
        state.outgoing.put_nowait(Envelope.wrap(message, message_id, original_sender_id=sender_id.value))
        return message_id

    async def request(self, connection_id: ConnectionId, message: RequestMessage) -> Message:
        """Send a request and wait for its response payload."""
        state = self._state(connection_id)
        message_id = next(state.message_ids)
        future = asyncio.get_running_loop().create_future()
        state.response_channels[message_id] = future
        state.outgoing.put_nowait(Envelope.wrap(message, message_id))
        try:
            response: TypedEnvelope = await future
        finally:
            state.response_channels.pop(message_id, None)

        if isinstance(response.payload, Error):
            raise RequestFailed(response.payload.message)
        if not isinstance(response.payload, message.Response):
            raise ProtocolError(
                f"Expected {message.Response.__name__} in response to {type(message).__name__}, "
                f"got {response.payload_type_name}"
            )
        return response.payload

    async def respond(self, receipt: Receipt, response: Message) -> None:
        """Answer the request identified by receipt."""
        expected = receipt.message_type.Response
        if not isinstance(response, expected):
            raise TypeError(
                f"{receipt.message_type.__name__} expects {expected.__name__}, "
                f"got {type(response).__name__}"
            )
        await self._respond(receipt, response)

    async def respond_with_error(self, receipt: Receipt, error: Error) -> None:
        await self._respond(receipt, error)

    async def _respond(self, receipt: Receipt, response: Message) -> None:
        state = self._state(receipt.sender_id)
        message_id = next(state.message_ids)
        state.outgoing.put_nowait(Envelope.wrap(response, message_id, responding_to=receipt.message_id))

    # ── Internals ───────────────────────────────────────────────────

    def _state(self, connection_id: ConnectionId) -> _ConnectionState:
        state = self._connections.get(connection_id)
        if state is None:
            raise ConnectionNotFound(f"no such connection: {connection_id}")
        return state

    async def _drive_io(
        self,
        connection_id: ConnectionId,
        state: _ConnectionState,
        conn: Conn,
        outgoing: asyncio.Queue,
    ) -> None:
        """Pump frames between conn and the connection's queues until the stream ends."""
        read = asyncio.ensure_future(conn.recv())
        write = asyncio.ensure_future(outgoing.get())
        try:
            while True:
                done, _ = await asyncio.wait({read, write}, return_when=asyncio.FIRST_COMPLETED)

                # Writes first, so an envelope already dequeued is never abandoned
                if write in done:
                    envelope = write.result()
                    try:
                        await conn.send(encode_envelope(envelope))
                    except ConnectionClosed:
                        logger.debug(f"{self.name}: {connection_id} lost envelope {envelope.id} ({envelope.tag})")
                    write = asyncio.ensure_future(outgoing.get())

                if read in done:
                    data = read.result()
                    if data is None:
                        logger.info(f"{self.name}: {connection_id} transport ended")
                        return
                    self._route(connection_id, state, data)
                    read = asyncio.ensure_future(conn.recv())
        finally:
            read.cancel()
            write.cancel()

    def _route(self, connection_id: ConnectionId, state: _ConnectionState, data: bytes) -> None:
        try:
            envelope = decode_envelope(data)
            typed = build_typed_envelope(connection_id, envelope)
        except ProtocolError as e:
            logger.warning(f"{self.name}: dropping frame on {connection_id}: {e}")
            return

        if envelope.responding_to is not None:
            future: Optional[asyncio.Future] = state.response_channels.pop(envelope.responding_to, None)
            if future is not None:
                if future.done():
                    return
                if typed is None:
                    future.set_exception(ProtocolError(f"Unknown response tag {envelope.tag!r}"))
                else:
                    future.set_result(typed)
                return

        if typed is None:
            logger.warning(f"{self.name}: unknown message tag {envelope.tag!r} on {connection_id}")
            return
        logger.debug(f"{self.name}: {connection_id} received {typed.payload_type_name} #{typed.message_id}")
        state.incoming.try_send(typed)
