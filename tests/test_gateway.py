import pytest
from wsproto import ConnectionType, WSConnection
from wsproto.events import (
    AcceptConnection, BytesMessage, CloseConnection, Ping, Pong,
    RejectConnection, Request, TextMessage
)

from nord import ConnectionClosed, ConnectionRejected, GatewayConnection


@pytest.fixture()
def connection() -> GatewayConnection:
    return GatewayConnection('wss://gateway.discord.gg/')


@pytest.fixture()
def server(connection: GatewayConnection) -> WSConnection:
    server = WSConnection(ConnectionType.SERVER)

    server.receive_data(connection.connect())

    for event in server.events():
        assert isinstance(event, Request)
        connection.receive(server.send(AcceptConnection()))

    return server


class TestHandshake:
    def test_request(self, connection: GatewayConnection) -> None:
        server = WSConnection(ConnectionType.SERVER)
        server.receive_data(connection.connect())

        events = list(server.events())

        assert len(events) == 1
        assert events[0].host == 'gateway.discord.gg'
        assert events[0].target == '/?v=8&encoding=json'

    def test_accepted(self, connection: GatewayConnection, server: WSConnection) -> None:
        assert connection.accepted
        assert not connection.closing

    def test_rejected(self, connection: GatewayConnection) -> None:
        server = WSConnection(ConnectionType.SERVER)
        server.receive_data(connection.connect())
        list(server.events())

        with pytest.raises(ConnectionRejected) as exc_info:
            connection.receive(server.send(RejectConnection(status_code=400)))

        assert exc_info.value.code == 400
        assert not connection.accepted


class TestMessages:
    def test_text(self, connection: GatewayConnection, server: WSConnection) -> None:
        assert connection.receive(server.send(TextMessage('{"op": 11}'))) == []

        assert list(connection.messages()) == ['{"op": 11}']
        # Messages are consumed when retrieved
        assert list(connection.messages()) == []

    def test_fragmented(self, connection: GatewayConnection, server: WSConnection) -> None:
        connection.receive(server.send(TextMessage('{"op": ', message_finished=False)))
        assert list(connection.messages()) == []

        connection.receive(server.send(TextMessage('11}')))
        assert list(connection.messages()) == ['{"op": 11}']

    def test_binary(self, connection: GatewayConnection, server: WSConnection) -> None:
        connection.receive(server.send(BytesMessage('{"d": "é"}'.encode()[:-3], message_finished=False)))
        connection.receive(server.send(BytesMessage('{"d": "é"}'.encode()[-3:])))

        assert list(connection.messages()) == ['{"d": "é"}']

    def test_send(self, connection: GatewayConnection, server: WSConnection) -> None:
        server.receive_data(connection.send('{"op": 1, "d": null}'))

        events = list(server.events())

        assert len(events) == 1
        assert isinstance(events[0], TextMessage)
        assert events[0].data == '{"op": 1, "d": null}'

    def test_ping(self, connection: GatewayConnection, server: WSConnection) -> None:
        res = connection.receive(server.send(Ping(b'liveness')))

        assert len(res) == 1

        server.receive_data(res[0])
        events = list(server.events())
        assert isinstance(events[0], Pong)
        assert events[0].payload == b'liveness'


class TestClose:
    def test_remote_close(self, connection: GatewayConnection, server: WSConnection) -> None:
        with pytest.raises(ConnectionClosed) as exc_info:
            connection.receive(server.send(CloseConnection(4004, 'Authentication failed.')))

        assert exc_info.value.code == 4004
        assert exc_info.value.reason == 'Authentication failed.'
        # The closing frame has to be echoed back
        assert exc_info.value.data is not None
        assert connection.closing

    def test_local_close(self, connection: GatewayConnection, server: WSConnection) -> None:
        server.receive_data(connection.close(4000))
        assert connection.closing

        events = list(server.events())
        assert isinstance(events[0], CloseConnection)
        assert events[0].code == 4000

        with pytest.raises(ConnectionClosed) as exc_info:
            connection.receive(server.send(events[0].response()))

        assert exc_info.value.data is None

    def test_eof(self, connection: GatewayConnection, server: WSConnection) -> None:
        with pytest.raises(ConnectionClosed) as exc_info:
            connection.receive(b'')

        assert exc_info.value.code == 1006
