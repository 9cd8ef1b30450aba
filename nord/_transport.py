import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

from wsproto.utilities import ProtocolError as WebSocketProtocolError

from ._conn import GatewayConnection
from ._errors import ConnectionClosed, TransportError

__all__ = ('TransportSocket', 'WebSocketTransport')


log = logging.getLogger(__name__)

READ_SIZE = 2 ** 16


MessageHandler = Callable[[str], None]
EndHandler = Callable[[Optional[int]], None]
DisconnectHandler = Callable[[Exception], None]


class TransportSocket(ABC):
    """Message-oriented duplex channel to the gateway.

    Implementations report what happens on the socket through the three
    handlers given on construction:

    - `on_message(text)` for every complete message received, in order.
    - `on_end(code)` when the socket closed, with the close code if any.
    - `on_disconnect(exc)` when the socket failed abnormally.

    At most one of `on_end` and `on_disconnect` is called, and neither is
    called once `close()` has been called locally.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: MessageHandler,
        on_end: EndHandler,
        on_disconnect: DisconnectHandler,
    ) -> None:
        self.url = url

        self.on_message = on_message
        self.on_end = on_end
        self.on_disconnect = on_disconnect

    @abstractmethod
    async def open(self) -> None:
        """Open the socket, raising `TransportError` if that fails."""

    @abstractmethod
    def send(self, text: str) -> None:
        """Queue a message to be sent, without waiting for it to be written."""

    @abstractmethod
    def close(self, code: int = 1000) -> None:
        """Close the socket without reporting `on_end` or `on_disconnect`."""


class WebSocketTransport(TransportSocket):
    """Transport socket using asyncio streams and `GatewayConnection` framing."""

    def __init__(
        self,
        url: str,
        *,
        on_message: MessageHandler,
        on_end: EndHandler,
        on_disconnect: DisconnectHandler,
        version: int = 8,
    ) -> None:
        super().__init__(
            url, on_message=on_message, on_end=on_end, on_disconnect=on_disconnect
        )

        self._conn = GatewayConnection(url, version=version)

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None

        self._closed = False

    def _write_all(self, chunks: Iterable[bytes]) -> None:
        for chunk in chunks:
            self._writer.write(chunk)

    def _deliver(self) -> None:
        for message in self._conn.messages():
            if self._closed:
                return

            # A failing handler must not stop the read loop
            try:
                self.on_message(message)
            except Exception:
                log.exception('Message handler raised an exception')

    async def open(self) -> None:
        host, port = self._conn.destination

        log.debug('Opening TCP connection to %s:%s', host, port)
        try:
            self._reader, self._writer = await asyncio.open_connection(
                host, port, ssl=self._conn.secure or None
            )
        except OSError as exc:
            raise TransportError(f'Could not connect to {host}:{port}: {exc}') from exc

        try:
            self._writer.write(self._conn.connect())

            while not self._conn.accepted:
                data = await self._reader.read(READ_SIZE)
                if not data:
                    raise TransportError('Socket closed during the WebSocket handshake')

                self._write_all(self._conn.receive(data))
        except TransportError:
            self._writer.close()
            raise
        except (OSError, WebSocketProtocolError) as exc:
            self._writer.close()
            raise TransportError(f'WebSocket handshake failed: {exc}') from exc

        self._read_task = asyncio.ensure_future(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            # Messages may have arrived together with the handshake response
            self._deliver()

            while not self._closed:
                data = await self._reader.read(READ_SIZE)
                try:
                    self._write_all(self._conn.receive(data))
                finally:
                    self._deliver()

        except ConnectionClosed as exc:
            if exc.data is not None:
                self._writer.write(exc.data)
            self._writer.close()

            if not self._closed:
                self._closed = True
                self.on_end(exc.code)

        except (OSError, WebSocketProtocolError, UnicodeDecodeError) as exc:
            self._writer.close()

            if not self._closed:
                self._closed = True
                self.on_disconnect(TransportError(str(exc)))

    def send(self, text: str) -> None:
        if self._writer is None or self._closed or self._conn.closing:
            raise TransportError('Socket is not open')

        self._writer.write(self._conn.send(text))

    def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True

        if self._writer is not None:
            if not self._conn.closing:
                self._writer.write(self._conn.close(code))
            self._writer.close()

        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
