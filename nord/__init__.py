"""Gateway session client with heartbeating and transparent resuming.

The WebSocket framing is implemented sans-I/O on top of `wsproto`, with an
asyncio network layer owning the socket. REST requests go through `aiohttp`.
"""

from ._commands import *
from ._conn import *
from ._dispatch import *
from ._envelope import *
from ._errors import *
from ._heartbeat import *
from ._http import *
from ._opcode import *
from ._session import *
from ._transport import *
