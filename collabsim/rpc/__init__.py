from collabsim.rpc.errors import (
    RpcError,
    ConnectionClosed,
    ConnectionNotFound,
    ConnectionRefused,
    RequestFailed,
    ProtocolError,
    HarnessError,
)
from collabsim.rpc.conn import Conn, KillSignal, in_memory
from collabsim.rpc.proto import ConnectionId, Receipt, TypedEnvelope
from collabsim.rpc.peer import Peer
from collabsim.rpc.client import Client, ConnectionOptions, Status
