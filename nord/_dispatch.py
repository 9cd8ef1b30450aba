import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from ._envelope import DispatchEvent
from ._errors import ProtocolError

if TYPE_CHECKING:
    from ._commands import CommandRegistry
    from ._session import Session

__all__ = (
    'normalize_event_name',
    'CallbackRegistry',
    'DispatchRouter',
)


log = logging.getLogger(__name__)


Handler = Callable[..., Any]


def normalize_event_name(name: str) -> str:
    """Convert an event name to the form the gateway sends.

    Both 'message create' and 'Message_Create' become 'MESSAGE_CREATE'.
    """
    return '_'.join(name.upper().split())


def _log_task_exception(task: 'asyncio.Future') -> None:
    if task.cancelled():
        return

    exc = task.exception()
    if exc is not None:
        log.error('Asynchronous handler raised an exception', exc_info=exc)


def invoke_handler(handler: Handler, *args: Any, logger: logging.Logger = log) -> None:
    """Call a consumer handler, isolating the caller from its failures.

    Exceptions are logged and swallowed so that one faulty handler does not
    stop the envelopes after it from being processed. A returned awaitable is
    scheduled on the running loop.
    """
    try:
        result = handler(*args)
    except Exception:
        logger.exception('Handler %r raised an exception', handler)
        return

    if inspect.isawaitable(result):
        asyncio.ensure_future(result).add_done_callback(_log_task_exception)


class CallbackRegistry:
    """One handler per normalized event name, the last registration wins."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def __contains__(self, name: str) -> bool:
        return normalize_event_name(name) in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[normalize_event_name(name)] = handler

    def unregister(self, name: str) -> Optional[Handler]:
        return self._handlers.pop(normalize_event_name(name), None)

    def get(self, name: str) -> Optional[Handler]:
        return self._handlers.get(normalize_event_name(name))

    def emit(self, name: str, *args: Any, logger: logging.Logger = log) -> bool:
        """Invoke the handler registered for the event name.

        Returns:
            Whether a handler was registered. Emitting an event nobody
            registered for is a no-op returning False.
        """
        handler = self.get(name)
        if handler is None:
            return False

        invoke_handler(handler, *args, logger=logger)
        return True


class DispatchRouter:
    """Routes DISPATCH events to consumer handlers and the session's own state.

    Every event is first handed to the handler registered for its name, then
    a built-in `parse_<name>` method runs if one exists for it. Names without
    a parser still reach registered handlers.

    Attributes:
        callbacks: Registry of consumer handlers, keyed by event name.
        user: Snapshot of the current user from the last READY.
        guilds: Guild payloads by ID, replaced on every GUILD_CREATE.
    """

    callbacks: CallbackRegistry
    user: Optional[Dict[str, Any]]
    guilds: Dict[str, Dict[str, Any]]

    def __init__(
        self,
        session: 'Session',
        commands: 'CommandRegistry',
        *,
        logger: logging.Logger = log
    ) -> None:
        self.session = session
        self.commands = commands
        self.log = logger

        self.callbacks = CallbackRegistry()
        self.user = None
        self.guilds = {}

    def route(self, event: DispatchEvent) -> None:
        """Handle one DISPATCH event.

        Raises:
            ProtocolError: The payload is missing fields a built-in parser needs.
        """
        self.log.debug('Dispatch event: %s', event.name)

        self.callbacks.emit(event.name, event.data, logger=self.log)

        parser = getattr(self, f'parse_{event.name.lower()}', None)
        if parser is None:
            return

        try:
            parser(event.data)
        except (AttributeError, KeyError, TypeError) as exc:
            raise ProtocolError(f'Malformed {event.name} payload: {exc!r}') from exc

    def parse_ready(self, data: Dict[str, Any]) -> None:
        session_id = data['session_id']
        self.user = data['user']
        self.session._ready(session_id)

    def parse_resumed(self, data: Any) -> None:
        self.session._resumed()

    def parse_guild_create(self, data: Dict[str, Any]) -> None:
        self.guilds[data['id']] = data

    def parse_message_create(self, data: Dict[str, Any]) -> None:
        self.commands.handle(data)
