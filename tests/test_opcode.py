import pytest

from nord import CloseCode, Intents, Opcode, should_reconnect


class TestShouldReconnect:
    def test_no_code(self) -> None:
        assert should_reconnect(None)

    @pytest.mark.parametrize('code', (1000, 1001, 1006, 1011, 3000))
    def test_websocket_codes(self, code: int) -> None:
        assert should_reconnect(code)

    @pytest.mark.parametrize('code', (
        CloseCode.GENERIC_ERROR, CloseCode.INVALID_SEQ, CloseCode.SESSION_TIMED_OUT,
    ))
    def test_recoverable(self, code: CloseCode) -> None:
        assert should_reconnect(code)

    @pytest.mark.parametrize('code', (
        4004, 4010, 4011, 4012, 4013, 4014,
    ))
    def test_fatal(self, code: int) -> None:
        assert not should_reconnect(code)

    def test_unknown_gateway_code(self) -> None:
        assert should_reconnect(4999)


def test_opcode_values() -> None:
    assert Opcode.DISPATCH == 0
    assert Opcode.STATUS_UPDATE == 3
    assert Opcode.RESUME == 6
    assert Opcode.HEARTBEAT_ACK == 11


def test_intents_combine() -> None:
    assert int(Intents.GUILDS | Intents.GUILD_MESSAGES) == 513
