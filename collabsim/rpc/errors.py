# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim RPC Errors
#
# Two classes of failure:
#   - RpcError and subclasses: expected protocol failures. Tests catch these
#     and assert on the message.
#   - HarnessError: misuse of the test harness itself. Subclasses
#     AssertionError so it fails the running test outright.


class RpcError(Exception):
    """Base class for recoverable RPC failures."""
    pass


class ConnectionClosed(RpcError):
    """The transport ended, or a request was abandoned by a disconnect."""
    pass


class ConnectionNotFound(RpcError):
    """No live connection with the given id."""
    pass


class ConnectionRefused(RpcError):
    """A connection attempt was denied by the server."""
    pass


class RequestFailed(RpcError):
    """The remote peer answered a request with an Error message."""
    pass


class ProtocolError(RpcError):
    """A frame could not be decoded into an envelope."""
    pass


class HarnessError(AssertionError):
    """The harness was used incorrectly. Not recoverable."""
    pass
