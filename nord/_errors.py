from typing import List, Optional, Tuple

from wsproto.events import RejectConnection

__all__ = (
    'GatewayError',
    'ResolutionError',
    'TransportError',
    'HeartbeatTimeout',
    'ProtocolError',
    'SessionInvalidated',
    'ConnectionClosed',
    'ConnectionRejected',
    'GatewayClosed',
)


class GatewayError(Exception):
    """Base class for all errors raised by nord."""


class ResolutionError(GatewayError):
    """Exception raised when the gateway URL could not be resolved.

    This is the only failure surfaced to the caller of `connect()`, startup
    should be aborted as it is never retried internally.

    The `status` attribute is the HTTP status of the response, or None if the
    request failed before a response was received.
    """

    status: Optional[int]

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)

        self.status = status


class TransportError(GatewayError):
    """The socket failed to open or dropped unexpectedly."""


class HeartbeatTimeout(GatewayError):
    """The last HEARTBEAT was never acknowledged before the next was due."""


class ProtocolError(GatewayError):
    """A malformed or unexpected envelope was received.

    The `raw` attribute holds the offending message as it was received.
    """

    raw: Optional[str]

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)

        self.raw = raw


class SessionInvalidated(GatewayError):
    """The gateway declared the session invalid.

    The `resumable` attribute is the flag sent with the INVALID_SESSION
    opcode, indicating whether a RESUME may be attempted.
    """

    resumable: bool

    def __init__(self, resumable: bool) -> None:
        super().__init__(
            f"Session invalidated ({'resumable' if resumable else 'not resumable'})"
        )

        self.resumable = resumable


class ConnectionClosed(Exception):
    """The WebSocket closed, raised from `GatewayConnection.receive()`.

    Attributes:
        data:
            Closing frame to echo back before closing the TCP socket, None
            when the close was initiated locally and nothing is left to send.
        code: Close code of the frame received, 1006 if the socket dropped.
        reason: Close reason sent by the other side, if any.
    """

    data: Optional[bytes]
    code: Optional[int]
    reason: Optional[str]

    def __init__(
        self,
        data: Optional[bytes],
        code: Optional[int] = None,
        reason: Optional[str] = None
    ) -> None:
        message = f'WebSocket closed with code {code}'
        if reason:
            message += f': {reason}'
        super().__init__(message)

        self.data = data
        self.code = code
        self.reason = reason


class ConnectionRejected(TransportError):
    """Exception raised when the WebSocket upgrade request was rejected.

    Depending on the status code this may not be recoverable, but the session
    treats it like any other failure to open the socket.
    """

    code: int
    headers: List[Tuple[bytes, bytes]]

    def __init__(self, event: RejectConnection) -> None:
        super().__init__(
            f'Gateway rejected the WebSocket connection - Error code {event.status_code}'
        )

        self.code = event.status_code
        self.headers = event.headers


class GatewayClosed(GatewayError):
    """The gateway closed the connection with a code that forbids reconnecting.

    The `code` attribute is the close code received.
    """

    code: Optional[int]

    def __init__(self, code: Optional[int]) -> None:
        super().__init__(f'Gateway closed the connection with code {code}')

        self.code = code
