import json
from typing import Any, Dict, List, Optional, Tuple

import pytest

from nord import HTTPClient, Opcode, Session, TransportError, TransportSocket


class FakeSocket(TransportSocket):
    """Transport socket recording what is sent, fed by the test."""

    def __init__(self, url: str, *, fail: bool = False, **handlers) -> None:
        super().__init__(url, **handlers)

        self.fail = fail
        self.opened = False
        self.closed_with: Optional[int] = None
        self.sent: List[Dict[str, Any]] = []

    async def open(self) -> None:
        if self.fail:
            raise TransportError('Connection refused')
        self.opened = True

    def send(self, text: str) -> None:
        self.sent.append(json.loads(text))

    def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def receive(
        self,
        op: Opcode,
        d: Any = None,
        *,
        s: Optional[int] = None,
        t: Optional[str] = None
    ) -> None:
        self.on_message(json.dumps({'op': int(op), 'd': d, 's': s, 't': t}))

    @property
    def sent_ops(self) -> List[int]:
        return [payload['op'] for payload in self.sent]


class SocketFactory:
    def __init__(self) -> None:
        self.sockets: List[FakeSocket] = []
        self.failures = 0

    def __call__(self, url: str, **handlers) -> FakeSocket:
        fail = self.failures > 0
        if fail:
            self.failures -= 1

        socket = FakeSocket(url, fail=fail, **handlers)
        self.sockets.append(socket)
        return socket

    @property
    def current(self) -> FakeSocket:
        return self.sockets[-1]


class FakeHTTP(HTTPClient):
    """REST client answering from canned responses."""

    def __init__(self, is_bot: bool = True) -> None:
        super().__init__('token', is_bot=is_bot)

        self.responses: Dict[Tuple[str, str], Any] = {
            ('GET', '/gateway/bot'): (200, {'url': 'wss://gateway.example', 'shards': 2}),
            ('GET', '/gateway'): (200, {'url': 'wss://gateway.example'}),
        }
        self.requests: List[Tuple[str, str, Any]] = []

    async def request_raw(self, method: str, path: str, body: Optional[Any] = None):
        self.requests.append((method, path, body))

        response = self.responses[(method, path)]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def sockets() -> SocketFactory:
    return SocketFactory()


@pytest.fixture()
def http() -> FakeHTTP:
    return FakeHTTP()


@pytest.fixture()
def session(sockets: SocketFactory, http: FakeHTTP) -> Session:
    return Session(
        'token', http=http, socket_factory=sockets,
        properties={}, reconnect_delay=0,
    )
