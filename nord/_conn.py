from collections import deque
from typing import Generator, List, Optional, Tuple
from urllib.parse import urlencode, urlsplit

from wsproto import ConnectionType, WSConnection
from wsproto.connection import ConnectionState
from wsproto.events import (
    AcceptConnection, BytesMessage, CloseConnection, Ping, RejectConnection,
    Request, TextMessage
)

from ._errors import ConnectionClosed, ConnectionRejected

__all__ = ('GatewayConnection',)


class GatewayConnection:
    """Sans-I/O WebSocket framing for one gateway socket.

    This wraps a `wsproto.WSConnection` object and should be wrapped with a
    network layer: bytes read from the TCP socket are passed to `receive()`
    and every bytes object returned by the methods here should be written
    back. Complete text messages are buffered and retrieved with
    `messages()`, decoding them into envelopes is left to the caller.

    A new instance is required for every TCP socket opened, the WebSocket
    state cannot be reused after closure.
    """

    def __init__(self, uri: str, *, version: int = 8) -> None:
        """Initialize the framing state for a new socket.

        Parameters:
            uri:
                URI to open a websocket to. This should be the URL returned by
                the Get Gateway or Get Gateway Bot endpoints. The scheme is
                optional, the port defaults to 443 or 80 for `ws://`.
            version:
                Gateway version to request in the query parameters.
        """
        if '://' not in uri:
            uri = 'wss://' + uri

        parts = urlsplit(uri)

        self.secure = parts.scheme != 'ws'
        self.host = parts.hostname
        self.port = parts.port or (443 if self.secure else 80)
        self.path = parts.path.rstrip('/') or '/'
        self.version = version

        self.accepted = False

        self._proto = WSConnection(ConnectionType.CLIENT)
        self._messages = deque()  # Complete text messages received
        self._text_buffer = ''
        self._bytes_buffer = bytearray()

    @property
    def query_params(self) -> str:
        """Query parameters to add to the URL."""
        return urlencode({'v': self.version, 'encoding': 'json'})

    @property
    def destination(self) -> Tuple[str, int]:
        """The host and port to open a TCP socket to."""
        return self.host, self.port

    @property
    def closing(self) -> bool:
        """Whether a closing handshake is in progress or has completed.

        Nothing more should be sent once this is true.
        """
        return self._proto.state in {
            ConnectionState.CLOSED, ConnectionState.LOCAL_CLOSING,
            ConnectionState.REMOTE_CLOSING
        }

    def messages(self) -> Generator[str, None, None]:
        """Generator that yields complete text messages which have been received.

        This will consume an internal deque until no more items can be removed
        and return, meaning that messages are removed when retrieved so that
        no duplicates appear.
        """
        while True:
            try:
                yield self._messages.popleft()
            except IndexError:
                # There are no more messages to consume
                return

    def connect(self) -> bytes:
        """Generate the upgrade request converting the TCP socket to a WebSocket.

        Keep calling `receive()` with the data read until `accepted` is true.
        """
        host = self.host if self.port in (80, 443) else f'{self.host}:{self.port}'
        return self._proto.send(Request(host, self.path + '?' + self.query_params))

    def send(self, text: str) -> bytes:
        """Generate a text frame to send."""
        return self._proto.send(TextMessage(text))

    def close(self, code: int = 1000) -> bytes:
        """Generate the bytes to send a closing frame to the WebSocket.

        After having sent this you should continue receiving bytes and calling
        `receive()` until `ConnectionClosed` is raised at which point the TCP
        socket should be closed.

        Parameters:
            code:
                The close code. Both 1000 and 1001 end the session on the
                gateway side, any other code keeps it available for a RESUME.
        """
        return self._proto.send(CloseConnection(code))

    def receive(self, data: Optional[bytes]) -> List[bytes]:
        """Receive data from the TCP socket.

        This method may return data to send back, in cases such as PING frames
        which must be answered with a PONG.

        Parameters:
            data: The bytes received, or None when the socket reached EOF.

        Raises:
            ConnectionRejected: The upgrade request was refused.
            ConnectionClosed: The WebSocket closed and the TCP socket should too.

        Returns:
            A list of bytes to respond back with. See `messages()` for how to
            get the messages received.
        """
        # WSProto uses None instead of an empty byte string.
        if data is not None and len(data) == 0:
            data = None

        self._proto.receive_data(data)

        res = []

        for event in self._proto.events():
            if isinstance(event, AcceptConnection):
                self.accepted = True

            elif isinstance(event, Ping):
                res.append(self._proto.send(event.response()))

            elif isinstance(event, RejectConnection):
                raise ConnectionRejected(event)

            elif isinstance(event, CloseConnection):
                if self._proto.state == ConnectionState.CLOSED:
                    # We initiated the closing and have now received a reply,
                    # WSProto yields a CloseConnection to the initiatior (us)
                    raise ConnectionClosed(None, event.code, event.reason)
                else:
                    # It should be ConnectionState.REMOTE_CLOSING and we need
                    # to reply to the closure
                    raise ConnectionClosed(
                        self._proto.send(event.response()), event.code, event.reason
                    )

            elif isinstance(event, TextMessage):
                self._text_buffer += event.data

                if not event.message_finished:
                    continue

                self._messages.append(self._text_buffer)
                self._text_buffer = ''

            elif isinstance(event, BytesMessage):
                # Without compression a binary frame still carries JSON text,
                # only decode once complete as fragments may split characters
                self._bytes_buffer.extend(event.data)

                if not event.message_finished:
                    continue

                self._messages.append(self._bytes_buffer.decode('utf-8'))
                self._bytes_buffer = bytearray()

        return res
