import logging
import re
from typing import Any, Callable, Dict, Optional, Tuple

from ._dispatch import invoke_handler

__all__ = ('CommandRegistry',)


log = logging.getLogger(__name__)


_COMMAND_RE = re.compile(r'([^ ]+)(?: (.*))?', re.DOTALL)


CommandHandler = Callable[[str, Dict[str, Any]], Any]


class CommandRegistry:
    """Word-keyed handlers for messages starting with a prefix.

    A message '!roll 2 d6' with the default prefix invokes the handler
    registered for 'roll' with the argument string '2 d6' and the raw
    message payload.
    """

    def __init__(self, prefix: str = '!', *, logger: logging.Logger = log) -> None:
        if not prefix:
            raise ValueError('Command prefix cannot be empty')

        self.prefix = prefix
        self.log = logger

        self._handlers: Dict[str, CommandHandler] = {}

    def register(self, word: str, handler: CommandHandler) -> None:
        self._handlers[word] = handler

    def parse(self, content: Optional[str]) -> Optional[Tuple[str, str]]:
        """Split message content into the command word and argument string.

        Returns:
            A tuple of the word and the arguments, or None if the content is
            not a command. The arguments are everything after the single
            space following the word.
        """
        if not isinstance(content, str) or not content.startswith(self.prefix):
            return None

        match = _COMMAND_RE.match(content, len(self.prefix))
        if match is None:
            return None

        return match.group(1), match.group(2) or ''

    def handle(self, message: Dict[str, Any]) -> bool:
        """Invoke the command handler for a MESSAGE_CREATE payload.

        Returns:
            Whether a handler was invoked.
        """
        if not isinstance(message, dict):
            return False

        parsed = self.parse(message.get('content'))
        if parsed is None:
            return False

        word, args = parsed
        self.log.debug('Command received: %s', word)

        handler = self._handlers.get(word)
        if handler is None:
            return False

        invoke_handler(handler, args, message, logger=self.log)
        return True
