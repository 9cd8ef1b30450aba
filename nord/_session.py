import asyncio
import enum
import logging
import sys
from functools import partial
from typing import Any, Callable, Dict, Optional

from ._commands import CommandHandler, CommandRegistry
from ._dispatch import DispatchRouter, Handler
from ._envelope import DispatchEvent, Envelope
from ._errors import (
    GatewayClosed, HeartbeatTimeout, ProtocolError, SessionInvalidated,
    TransportError
)
from ._heartbeat import HeartbeatMonitor
from ._http import API_VERSION, GatewayInfo, HTTPClient, resolve_gateway
from ._opcode import Opcode, should_reconnect
from ._transport import TransportSocket, WebSocketTransport

__all__ = ('SessionState', 'Session', 'connect', 'register')


log = logging.getLogger(__name__)

# Closing with 1000 or 1001 ends the session on the gateway, anything else
# keeps it around so that it can be resumed from the next socket.
RESUMABLE_CLOSE_CODE = 4000

VOICE_CHANNEL_TYPE = 2


SocketFactory = Callable[..., TransportSocket]


class SessionState(enum.Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    AWAITING_HELLO = 'awaiting hello'
    IDENTIFYING = 'identifying'
    RESUMING = 'resuming'
    LIVE = 'live'
    RECONNECTING = 'reconnecting'
    CLOSED = 'closed'


class Session:
    """Gateway session for one token, kept alive across socket failures.

    The session owns exactly one transport socket and one heartbeat monitor
    at a time. Whenever the socket drops, a HEARTBEAT goes unacknowledged or
    the gateway asks for it, both are replaced and the session is resumed
    (or identified again if it cannot be). None of this is surfaced to
    consumers other than as a gap in the events delivered.

    All methods must be called from the event loop the session was started
    on, there is no locking.

    Attributes:
        state: Current state of the connection.
        gateway: Resolved gateway URL and shard count, cached after the first connect.
        sequence: Last sequence number received, sent with heartbeats and RESUME.
        session_id: ID of the session received in READY.
        resuming: Whether the current handshake attempts a RESUME.
        socket: The transport socket currently owned.
        heartbeat: The heartbeat monitor of the current socket.
    """

    state: SessionState
    gateway: Optional[GatewayInfo]
    sequence: Optional[int]
    session_id: Optional[str]
    resuming: bool
    socket: Optional[TransportSocket]
    heartbeat: Optional[HeartbeatMonitor]

    def __init__(
        self,
        token: str,
        *,
        is_bot: bool = True,
        intents: Optional[int] = None,
        properties: Optional[Dict[str, Any]] = None,
        command_prefix: str = '!',
        api_version: int = API_VERSION,
        logger: Optional[logging.Logger] = None,
        http: Optional[HTTPClient] = None,
        socket_factory: Optional[SocketFactory] = None,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
    ) -> None:
        """Initialize the session without connecting.

        Parameters:
            token: The authorization token to IDENTIFY and make requests with.
            is_bot: Whether the token belongs to a bot or a user account.
            intents: Intents indicating what events will be received, omitted if None.
            properties: Properties about the connection sent with IDENTIFY.
            command_prefix: Prefix marking messages as commands.
            api_version: Gateway version to connect with.
            logger: Logger used for everything this session logs.
            http: REST client to use instead of creating one.
            socket_factory:
                Callable creating the transport socket, called with the URL and
                the `on_message`, `on_end` and `on_disconnect` keyword arguments.
            reconnect_delay: Initial delay before retrying a failed socket open.
            max_reconnect_delay: Maximum delay between socket open attempts.
        """
        self.token = token
        self.is_bot = is_bot
        self.intents = intents
        if properties is None:
            properties = {'$os': sys.platform, '$browser': 'nord', '$device': 'nord'}
        self.properties = properties

        self.log = logger or log
        self.http = http or HTTPClient(token, is_bot=is_bot)

        if socket_factory is None:
            socket_factory = partial(WebSocketTransport, version=api_version)
        self._socket_factory = socket_factory

        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

        self.state = SessionState.DISCONNECTED
        self.gateway = None

        self.sequence = None
        self.session_id = None
        self.resuming = False

        self.socket = None
        self.heartbeat = None

        # Bumped every time the socket is superseded, signals from older
        # sockets and monitors carry a stale generation and are ignored.
        self._generation = 0
        self._connect_task: Optional[asyncio.Future] = None
        self._closed: Optional[asyncio.Future] = None

        self.commands = CommandRegistry(command_prefix, logger=self.log)
        self.router = DispatchRouter(self, self.commands, logger=self.log)

    @property
    def shard_count(self) -> Optional[int]:
        """The recommended amount of shards, once the gateway has been resolved."""
        return self.gateway.shards if self.gateway is not None else None

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self.router.user

    @property
    def guilds(self) -> Dict[str, Dict[str, Any]]:
        return self.router.guilds

    @property
    def acknowledged(self) -> bool:
        """Whether the last HEARTBEAT on the current socket was acknowledged."""
        return self.heartbeat is not None and self.heartbeat.acknowledged

    @property
    def latency(self) -> float:
        return float('inf') if self.heartbeat is None else self.heartbeat.latency

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    # Lifecycle

    async def start(self) -> None:
        """Resolve the gateway and open the first socket.

        This returns once the socket is open, the handshake continues in the
        background as envelopes are received.

        Raises:
            ResolutionError: The gateway URL could not be resolved.
        """
        if self.state is not SessionState.DISCONNECTED:
            raise RuntimeError(f'Session cannot be started while {self.state.value}')

        self._closed = asyncio.get_running_loop().create_future()

        try:
            await self._connect()
        except Exception:
            if self.state is not SessionState.CLOSED:
                self.state = SessionState.DISCONNECTED
            raise

    async def _connect(self) -> None:
        attempt = 0

        while self.state is not SessionState.CLOSED:
            self.state = SessionState.CONNECTING

            if self.gateway is None:
                self.log.info('Requesting gateway endpoint')
                self.gateway = await resolve_gateway(self.http, self.is_bot)
                self.log.info(
                    'Gateway resolved to %s with %d recommended shard(s)',
                    self.gateway.url, self.gateway.shards
                )

            previous, self.socket = self.socket, None
            if previous is not None:
                previous.close(RESUMABLE_CLOSE_CODE if self.resuming else 1000)

            self._generation += 1
            generation = self._generation

            socket = self._socket_factory(
                self.gateway.url,
                on_message=partial(self._on_message, generation),
                on_end=partial(self._on_end, generation),
                on_disconnect=partial(self._on_disconnect, generation),
            )
            self.socket = socket

            self.log.info('Connecting to %s', self.gateway.url)
            try:
                await socket.open()
            except TransportError as exc:
                if self.socket is socket:
                    self.socket = None

                attempt += 1
                delay = min(self.max_reconnect_delay, self.reconnect_delay * 2 ** (attempt - 1))
                self.log.warning(
                    'Connecting failed (attempt %d): %s; retrying in %.2fs', attempt, exc, delay
                )
                await asyncio.sleep(delay)
                continue

            if self.state is SessionState.CLOSED:
                # Closed while the socket was opening
                socket.close(1000)
                return

            if generation == self._generation and self.state is SessionState.CONNECTING:
                self.state = SessionState.AWAITING_HELLO
            return

    def reconnect(self, *, resume: bool = True) -> None:
        """Replace the socket and heartbeat monitor with new ones.

        This is what every failure leads to. The previous socket is closed
        once the new connection attempt starts.

        Parameters:
            resume:
                Whether to RESUME the current session. When False, or when no
                session has been established yet, the next handshake is a
                fresh IDENTIFY.
        """
        if self.state is SessionState.CLOSED:
            return

        if self._connect_task is not None and not self._connect_task.done():
            self.log.debug('Reconnect requested while already connecting')
            return

        self._generation += 1
        self._stop_heartbeat()

        if not resume:
            self.session_id = None
            self.sequence = None
        self.resuming = self.session_id is not None

        self.state = SessionState.RECONNECTING
        self.log.info('Reconnecting (%s)', 'resume' if self.resuming else 'identify')

        self._connect_task = asyncio.ensure_future(self._connect())
        self._connect_task.add_done_callback(self._connect_done)

    def _connect_done(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            self.log.error('Reconnecting failed, closing the session', exc_info=exc)
            self._shutdown(exc)

    def _stop_heartbeat(self) -> None:
        if self.heartbeat is not None:
            self.heartbeat.stop()
            self.heartbeat = None

    def _shutdown(self, exc: Optional[BaseException]) -> None:
        self.state = SessionState.CLOSED
        self._generation += 1
        self._stop_heartbeat()

        if self.socket is not None:
            self.socket.close(1000)
            self.socket = None

        if self._closed is not None and not self._closed.done():
            if exc is None:
                self._closed.set_result(None)
            else:
                self._closed.set_exception(exc)
                # Retrieved here so that it is not reported when nobody waits
                self._closed.exception()

    async def close(self) -> None:
        """Shut the session down for good, it never reconnects after this."""
        if self.state is not SessionState.CLOSED:
            self.log.info('Closing the session')
            self._shutdown(None)

        task = self._connect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        await self.http.close()

    async def wait_closed(self) -> None:
        """Wait until the session has been closed.

        Raises:
            GatewayClosed:
                The gateway closed the connection with a code that does not
                allow reconnecting, such as an invalid token.
        """
        if self._closed is None:
            raise RuntimeError('Session has not been started')

        await asyncio.shield(self._closed)

    # Socket signals

    def _on_message(self, generation: int, raw: str) -> None:
        if generation != self._generation:
            return

        try:
            self._handle(Envelope.loads(raw))
        except ProtocolError as exc:
            self.log.warning('Dropping envelope: %s', exc)

    def _on_end(self, generation: int, code: Optional[int]) -> None:
        if generation != self._generation:
            return

        self.log.info('End of socket, close code %s', code)
        self._stop_heartbeat()
        self.socket = None

        if not should_reconnect(code):
            self.log.error('Gateway closed the connection with code %s, not reconnecting', code)
            self._shutdown(GatewayClosed(code))
            return

        self.reconnect()

    def _on_disconnect(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return

        if not isinstance(exc, TransportError):
            exc = TransportError(str(exc))

        self.log.error('Socket disconnected by host: %s', exc)
        self._stop_heartbeat()
        self.socket = None

        self.reconnect()

    def _on_heartbeat_timeout(self, generation: int) -> None:
        if generation != self._generation:
            return

        exc = HeartbeatTimeout('No HEARTBEAT_ACK received since the last HEARTBEAT')
        self.log.warning('%s, reconnecting', exc)

        self.reconnect()

    # Envelope handling

    def _handle(self, envelope: Envelope) -> None:
        op = envelope.op

        self.log.debug('Received OP %d: %s', op, op.name)

        if op is Opcode.DISPATCH:
            self._handle_dispatch(envelope.dispatch)

        elif op is Opcode.HEARTBEAT:
            # The gateway wants a HEARTBEAT right away, no ACK is expected
            self._send_heartbeat()

        elif op is Opcode.RECONNECT:
            self.log.info('Gateway requested a reconnect')
            self.reconnect()

        elif op is Opcode.INVALID_SESSION:
            exc = SessionInvalidated(bool(envelope.d))
            self.log.warning('%s', exc)
            self.reconnect(resume=exc.resumable)

        elif op is Opcode.HELLO:
            self._handle_hello(envelope.d)

        elif op is Opcode.HEARTBEAT_ACK:
            if self.heartbeat is not None:
                self.heartbeat.acknowledge()

        else:
            raise ProtocolError(f'Unexpected {op.name} opcode received from the gateway')

    def _handle_dispatch(self, event: DispatchEvent) -> None:
        if event.sequence is not None:
            # READY starts a new session, its sequence numbers start over
            if event.name == 'READY':
                self.sequence = event.sequence
            elif self.sequence is not None and event.sequence < self.sequence:
                self.log.warning(
                    'Keeping sequence %d over lower sequence %d of %s',
                    self.sequence, event.sequence, event.name
                )
            else:
                self.sequence = event.sequence

        self.router.route(event)

    def _handle_hello(self, data: Any) -> None:
        try:
            interval = data['heartbeat_interval'] / 1000
        except (KeyError, TypeError) as exc:
            raise ProtocolError(f'HELLO without a valid heartbeat interval: {data!r}') from exc

        self._stop_heartbeat()

        self.heartbeat = HeartbeatMonitor(
            interval,
            send=self._send_heartbeat,
            on_timeout=partial(self._on_heartbeat_timeout, self._generation),
        )
        self.heartbeat.start()
        self.log.info('Heartbeat set to %dms', interval * 1000)

        if self.resuming:
            self.state = SessionState.RESUMING
            self._send(Opcode.RESUME, {
                'token': self.token,
                'session_id': self.session_id,
                'seq': self.sequence,
            })
        else:
            self.state = SessionState.IDENTIFYING
            self._send(Opcode.IDENTIFY, self._identify_payload())

    def _identify_payload(self) -> Dict[str, Any]:
        data = {
            'token': self.token,
            'properties': self.properties,
            'compress': False,
            'large_threshold': 100,
            'presence': {
                'since': None,
                'status': 'online',
                'game': None,
                'afk': False,
            },
        }

        if self.intents is not None:
            data['intents'] = int(self.intents)

        return data

    def _ready(self, session_id: str) -> None:
        self.session_id = session_id
        # A READY in reply to a RESUME means the gateway declined it
        self.resuming = False
        self.state = SessionState.LIVE
        self.log.info('Session %s ready', session_id)

    def _resumed(self) -> None:
        self.resuming = False
        self.state = SessionState.LIVE
        self.log.info('Session %s resumed', self.session_id)

    # Sending

    def _send(self, op: Opcode, data: Any) -> bool:
        if self.socket is None:
            self.log.warning('Not sending %s, no socket is open', op.name)
            return False

        self.log.debug('Sending OP %d: %s', op, op.name)

        try:
            self.socket.send(Envelope(op, data).dumps())
        except TransportError as exc:
            self.log.warning('Sending %s failed: %s', op.name, exc)
            return False

        return True

    def _send_heartbeat(self) -> None:
        self._send(Opcode.HEARTBEAT, self.sequence)

    # Public surface

    def on_event(self, name: str, handler: Optional[Handler] = None) -> Any:
        """Register the handler called with the payload of a DISPATCH event.

        The name is matched regardless of case, with spaces and underscores
        interchangeable, so 'message create' replaces a handler registered for
        'MESSAGE_CREATE'. Can also be used as a decorator.
        """
        if handler is None:
            return partial(self.on_event, name)

        self.router.callbacks.register(name, handler)
        return handler

    def register_command(self, word: str, handler: Optional[CommandHandler] = None) -> Any:
        """Register the handler for messages starting with the prefix and word.

        The handler is called with the rest of the message and the raw message
        payload. Can also be used as a decorator.
        """
        if handler is None:
            return partial(self.register_command, word)

        self.commands.register(word, handler)
        return handler

    def status_update(
        self,
        status: str,
        game: Optional[Dict[str, Any]] = None,
        since: Optional[int] = None,
        afk: bool = False
    ) -> bool:
        """Send a STATUS_UPDATE command.

        Returns:
            Whether the command could be sent, it is dropped without a socket.
        """
        return self._send(Opcode.STATUS_UPDATE, {
            'since': since,
            'game': game,
            'status': status,
            'afk': afk,
        })

    async def join_voice_channel(
        self,
        channel_id: str,
        self_mute: bool = False,
        self_deaf: bool = False
    ) -> bool:
        """Join a voice channel, fetching it first to find its guild.

        Returns:
            Whether the VOICE_STATE_UPDATE was sent. Nothing is sent if the
            channel could not be fetched or is not a voice channel.
        """
        channel = await self.http.get_channel(channel_id)

        if not isinstance(channel, dict) or 'guild_id' not in channel:
            self.log.warning('join_voice_channel called with an invalid channel ID %s', channel_id)
            return False

        if channel.get('type') != VOICE_CHANNEL_TYPE:
            self.log.warning('join_voice_channel called on non-voice channel %s', channel_id)
            return False

        return self._send(Opcode.VOICE_STATE_UPDATE, {
            'guild_id': channel['guild_id'],
            'channel_id': channel_id,
            'self_mute': self_mute,
            'self_deaf': self_deaf,
        })

    def leave_voice_channel(self, guild_id: str) -> bool:
        # There is only one voice channel per guild to be in
        return self._send(Opcode.VOICE_STATE_UPDATE, {
            'guild_id': guild_id,
            'channel_id': None,
            'self_mute': False,
            'self_deaf': False,
        })

    async def send_message(self, channel_id: str, content: str) -> Any:
        return await self.http.create_message(channel_id, content)

    async def get_current_user(self) -> Any:
        """The current user from READY, or requested if not ready yet."""
        if self.router.user is not None:
            return self.router.user

        return await self.http.get_current_user()

    async def get_guild(self, guild_id: str) -> Any:
        """The guild from the last GUILD_CREATE, or requested if not received."""
        guild = self.router.guilds.get(guild_id)
        if guild is not None:
            return guild

        return await self.http.get_guild(guild_id)


def register(token: str, is_bot: bool = True) -> HTTPClient:
    """Create a REST client for the token without connecting to the gateway."""
    return HTTPClient(token, is_bot=is_bot)


async def connect(token: str, is_bot: bool = True, **options: Any) -> Session:
    """Create a session for the token and open its first socket.

    Only one session should exist per token at a time. Additional keyword
    arguments are passed to `Session`.

    Raises:
        ResolutionError: The gateway URL could not be resolved.
    """
    session = Session(token, is_bot=is_bot, **options)

    try:
        await session.start()
    except BaseException:
        await session.close()
        raise

    return session
