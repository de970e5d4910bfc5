# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim RPC Client
#
# Client side of the collaboration RPC. Authentication and transport are
# pluggable: set_login_and_connect_callbacks() installs
#   login()          -> (user_id, access_token)
#   connect(opts)    -> Conn
# so tests can route both through a FakeServer instead of a real backend.
#
# Lifecycle:
#   SIGNED_OUT -> AUTHENTICATING -> CONNECTING -> CONNECTED
#   CONNECTED  -> CONNECTION_LOST          (transport ended)
#   CONNECTION_LOST -> RECONNECTING -> CONNECTED | CONNECTION_ERROR
#
# There is no automatic retry loop; callers drive reconnect() explicitly.

import asyncio
import inspect
import logging
import secrets
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Type

from collabsim.executor import BackgroundExecutor
from collabsim.models import Model
from collabsim.rpc.conn import Conn
from collabsim.rpc.errors import ConnectionNotFound, RpcError
from collabsim.rpc.peer import Peer
from collabsim.rpc.proto import ConnectionId, Error, Message, Receipt, RequestMessage, TypedEnvelope

logger = logging.getLogger(__name__)


class Status(Enum):
    SIGNED_OUT = "signed_out"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CONNECTION_LOST = "connection_lost"
    RECONNECTING = "reconnecting"
    CONNECTION_ERROR = "connection_error"


@dataclass(frozen=True)
class Credentials:
    user_id: int
    access_token: str


@dataclass(frozen=True)
class ConnectionOptions:
    user_id: int
    access_token: str
    is_reconnection: bool
    connection_token: int


LoginCallback = Callable[[], Awaitable[Tuple[int, str]]]
ConnectCallback = Callable[[ConnectionOptions], Awaitable[Conn]]
Handler = Callable[[TypedEnvelope], Optional[Awaitable[None]]]


class MessageSubscription:
    """Handle returned by Client.subscribe()."""

    def __init__(self, handlers: List[Handler], handler: Handler):
        self._handlers = handlers
        self.handler = handler

    def cancel(self) -> None:
        if self.handler in self._handlers:
            self._handlers.remove(self.handler)


class Client(Model):
    """RPC client with pluggable authentication and transport."""

    def __init__(self, executor: Optional[BackgroundExecutor] = None, name: str = "client"):
        super().__init__()
        self.name = name
        self.executor = executor or BackgroundExecutor(name)
        self.peer = Peer(name=name)
        self.connection_token: int = secrets.randbits(128)
        self.credentials: Optional[Credentials] = None
        self.connection_id: Optional[ConnectionId] = None
        self._status = Status.SIGNED_OUT
        self._status_changed = asyncio.Event()
        self._login: Optional[LoginCallback] = None
        self._connect: Optional[ConnectCallback] = None
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._io_task: Optional[asyncio.Task] = None

    # ── Status ──────────────────────────────────────────────────────

    @property
    def status(self) -> Status:
        return self._status

    @property
    def user_id(self) -> Optional[int]:
        return self.credentials.user_id if self.credentials else None

    def _set_status(self, status: Status) -> None:
        if status is self._status:
            return
        logger.info(f"{self.name}: {self._status.value} -> {status.value}")
        self._status = status
        self._status_changed.set()
        self._status_changed = asyncio.Event()
        self.notify()
        self.emit(status)

    async def wait_for_status(self, status: Status) -> None:
        while self._status is not status:
            await self._status_changed.wait()

    # ── Connection ──────────────────────────────────────────────────

    def set_login_and_connect_callbacks(self, login: LoginCallback, connect: ConnectCallback) -> None:
        self._login = login
        self._connect = connect

    async def authenticate_and_connect(self) -> None:
        """Log in if needed, open a new connection and start receiving."""
        if self._login is None or self._connect is None:
            raise RpcError("login and connect callbacks are not set")

        if self.credentials is None:
            self._set_status(Status.AUTHENTICATING)
            try:
                user_id, access_token = await self._login()
            except Exception:
                self._set_status(Status.CONNECTION_ERROR)
                raise
            self.credentials = Credentials(user_id, access_token)

        self._set_status(Status.CONNECTING)
        try:
            conn = await self._connect(self._options(is_reconnection=False))
        except Exception:
            self._set_status(Status.CONNECTION_ERROR)
            raise

        if self.connection_id is not None:
            await self.peer.disconnect(self.connection_id)
        connection_id, io, incoming = await self.peer.connect(conn)
        self.connection_id = connection_id
        self._spawn_io(io)
        self.executor.spawn(self._dispatch(incoming))
        self._set_status(Status.CONNECTED)

    async def reconnect(self) -> None:
        """Re-establish the transport behind the current connection, keeping its token."""
        if self.credentials is None or self.connection_id is None:
            raise RpcError("cannot reconnect before the first connection")
        self._set_status(Status.RECONNECTING)
        try:
            conn = await self._connect(self._options(is_reconnection=True))
            io = await self.peer.reconnect(self.connection_id, conn)
        except Exception:
            self._set_status(Status.CONNECTION_ERROR)
            raise
        self._spawn_io(io)
        self._set_status(Status.CONNECTED)

    async def disconnect(self) -> None:
        if self.connection_id is not None:
            await self.peer.disconnect(self.connection_id)
            self.connection_id = None
        self._set_status(Status.SIGNED_OUT)

    def _options(self, is_reconnection: bool) -> ConnectionOptions:
        return ConnectionOptions(
            user_id=self.credentials.user_id,
            access_token=self.credentials.access_token,
            is_reconnection=is_reconnection,
            connection_token=self.connection_token,
        )

    def _spawn_io(self, io) -> None:
        self._io_task = self.executor.spawn(self._run_io(io))

    async def _run_io(self, io) -> None:
        task = asyncio.current_task()
        await io
        # A newer transport may already have replaced this one
        if self._io_task is task and self._status is Status.CONNECTED:
            self._set_status(Status.CONNECTION_LOST)

    # ── Messages ────────────────────────────────────────────────────

    def subscribe(self, message_type: Type[Message], handler: Handler) -> MessageSubscription:
        """Call handler(envelope) for every incoming message of message_type."""
        handlers = self._handlers[message_type.TAG]
        handlers.append(handler)
        return MessageSubscription(handlers, handler)

    async def _dispatch(self, incoming) -> None:
        async for envelope in incoming:
            handlers = list(self._handlers.get(envelope.tag, ()))
            if not handlers:
                logger.debug(f"{self.name}: unhandled {envelope.payload_type_name}")
                continue
            for handler in handlers:
                try:
                    result = handler(envelope)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"{self.name}: error handling {envelope.payload_type_name}: {e!r}")

    def _require_connection(self) -> ConnectionId:
        if self.connection_id is None:
            raise ConnectionNotFound(f"{self.name} is not connected")
        return self.connection_id

    async def send(self, message: Message) -> int:
        return await self.peer.send(self._require_connection(), message)

    async def request(self, message: RequestMessage) -> Message:
        return await self.peer.request(self._require_connection(), message)

    async def respond(self, receipt: Receipt, response: Message) -> None:
        await self.peer.respond(receipt, response)

    async def respond_with_error(self, receipt: Receipt, error: Error) -> None:
        await self.peer.respond_with_error(receipt, error)
