# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim Wire Protocol
#
# Every message type is a pydantic model with a stable TAG. On the wire a
# message travels inside an Envelope:
#   - id             per-connection message id assigned by the sender
#   - responding_to  id of the request this answers, if any
#   - original_sender_id  connection the message was forwarded from, if any
#   - tag + payload  the message itself
#
# Envelopes are serialized to sorted-key JSON and zlib-compressed. The
# receiving peer turns them back into TypedEnvelopes; recovering the
# concrete message type is a tag lookup, never a host-type check.

import json
import zlib
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from collabsim.rpc.errors import ProtocolError

M = TypeVar("M", bound="Message")

_REGISTRY: Dict[str, Type["Message"]] = {}


# ── Connection addressing ───────────────────────────────────────────

@dataclass(frozen=True, order=True)
class ConnectionId:
    """Peer-assigned identifier for one transport instance."""
    value: int

    def __str__(self) -> str:
        return f"conn-{self.value}"


@dataclass(frozen=True)
class Receipt:
    """Addresses the response to one request envelope."""
    sender_id: ConnectionId
    message_id: int
    message_type: Type["RequestMessage"]


# ── Message base classes ────────────────────────────────────────────

class Message(BaseModel):
    """Base class for all wire messages."""

    TAG: ClassVar[str] = ""

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        tag = cls.__dict__.get("TAG")
        if not tag:
            return
        existing = _REGISTRY.get(tag)
        if existing is not None and existing is not cls:
            raise ValueError(f"Duplicate message tag {tag!r}: {existing.__name__} and {cls.__name__}")
        _REGISTRY[tag] = cls


class RequestMessage(Message):
    """A message that expects exactly one response of type Response."""

    Response: ClassVar[Type[Message]]


def message_type_for(tag: str) -> Optional[Type[Message]]:
    return _REGISTRY.get(tag)


# ── Messages ────────────────────────────────────────────────────────

class Ack(Message):
    TAG: ClassVar[str] = "ack"


class Error(Message):
    TAG: ClassVar[str] = "error"
    message: str


class Ping(RequestMessage):
    TAG: ClassVar[str] = "ping"
    Response: ClassVar[Type[Message]] = Ack


class User(BaseModel):
    id: int
    github_login: str
    avatar_url: str = ""


class Channel(BaseModel):
    id: int
    name: str


class ChannelMessage(BaseModel):
    id: int
    body: str
    timestamp: int = 0
    sender_id: int = 0
    nonce: Optional[int] = None


class GetUsersResponse(Message):
    TAG: ClassVar[str] = "get_users_response"
    users: List[User] = Field(default_factory=list)


class GetUsers(RequestMessage):
    TAG: ClassVar[str] = "get_users"
    Response: ClassVar[Type[Message]] = GetUsersResponse
    user_ids: List[int] = Field(default_factory=list)


class GetChannelsResponse(Message):
    TAG: ClassVar[str] = "get_channels_response"
    channels: List[Channel] = Field(default_factory=list)


class GetChannels(RequestMessage):
    TAG: ClassVar[str] = "get_channels"
    Response: ClassVar[Type[Message]] = GetChannelsResponse


class JoinChannelResponse(Message):
    TAG: ClassVar[str] = "join_channel_response"
    messages: List[ChannelMessage] = Field(default_factory=list)
    done: bool = False


class JoinChannel(RequestMessage):
    TAG: ClassVar[str] = "join_channel"
    Response: ClassVar[Type[Message]] = JoinChannelResponse
    channel_id: int


class LeaveChannel(Message):
    TAG: ClassVar[str] = "leave_channel"
    channel_id: int


class SendChannelMessageResponse(Message):
    TAG: ClassVar[str] = "send_channel_message_response"
    message: ChannelMessage


class SendChannelMessage(RequestMessage):
    TAG: ClassVar[str] = "send_channel_message"
    Response: ClassVar[Type[Message]] = SendChannelMessageResponse
    channel_id: int
    body: str
    nonce: Optional[int] = None


class ChannelMessageSent(Message):
    TAG: ClassVar[str] = "channel_message_sent"
    channel_id: int
    message: ChannelMessage


# ── Envelopes ───────────────────────────────────────────────────────

class Envelope(BaseModel):
    """Wire form of one message."""
    id: int
    responding_to: Optional[int] = None
    original_sender_id: Optional[int] = None
    tag: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def wrap(
        cls,
        message: Message,
        message_id: int,
        responding_to: Optional[int] = None,
        original_sender_id: Optional[int] = None,
    ) -> "Envelope":
        if not message.TAG:
            raise TypeError(f"{type(message).__name__} has no wire tag")
        return cls(
            id=message_id,
            responding_to=responding_to,
            original_sender_id=original_sender_id,
            tag=message.TAG,
            payload=message.model_dump(mode="json"),
        )


@dataclass
class TypedEnvelope(Generic[M]):
    """A received message, tagged with the connection it arrived on."""
    sender_id: ConnectionId
    message_id: int
    payload: M
    responding_to: Optional[int] = None
    original_sender_id: Optional[int] = None

    @property
    def payload_type_name(self) -> str:
        return type(self.payload).__name__

    @property
    def tag(self) -> str:
        return self.payload.TAG

    def receipt(self) -> Receipt:
        if not isinstance(self.payload, RequestMessage):
            raise TypeError(f"{self.payload_type_name} is not a request")
        return Receipt(self.sender_id, self.message_id, type(self.payload))

    def downcast(self, message_type: Type[M]) -> Optional["TypedEnvelope[M]"]:
        """Return self if the payload carries message_type's tag, else None."""
        if self.payload.TAG == message_type.TAG:
            return self
        return None


def build_typed_envelope(sender_id: ConnectionId, envelope: Envelope) -> Optional[TypedEnvelope]:
    """Decode an envelope's payload. Returns None for unknown tags."""
    message_type = message_type_for(envelope.tag)
    if message_type is None:
        return None
    try:
        payload = message_type.model_validate(envelope.payload)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {envelope.tag} payload: {e}") from e
    return TypedEnvelope(
        sender_id=sender_id,
        message_id=envelope.id,
        payload=payload,
        responding_to=envelope.responding_to,
        original_sender_id=envelope.original_sender_id,
    )


# ── Wire format helpers ─────────────────────────────────────────────

def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize + compress an envelope."""
    raw = json.dumps(envelope.model_dump(mode="json"), sort_keys=True).encode("utf-8")
    return zlib.compress(raw)


def decode_envelope(data: bytes) -> Envelope:
    """Decompress + deserialize an envelope."""
    try:
        raw = zlib.decompress(data)
        return Envelope.model_validate(json.loads(raw))
    except (zlib.error, ValueError) as e:
        raise ProtocolError(f"Malformed frame ({len(data)} bytes): {e}") from e
