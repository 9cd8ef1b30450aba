import enum
from typing import Union

__all__ = (
    'Opcode',
    'CloseCode',
    'Intents',
    'FATAL_CLOSE_CODES',
    'should_reconnect',
)


class Opcode(enum.IntEnum):
    """Gateway opcodes, the `op` field of every envelope."""

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    STATUS_UPDATE = 3
    VOICE_STATE_UPDATE = 4
    VOICE_SERVER_PING = 5
    RESUME = 6
    RECONNECT = 7
    REQUEST_GUILD_MEMBERS = 8
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class CloseCode(enum.IntEnum):
    """Close codes the gateway may end a socket with."""

    GENERIC_ERROR = 4000
    UNKNOWN_OPCODE = 4001
    DECODING_ERROR = 4002
    NOT_AUTHENTICATED = 4003
    AUTHENTICATION_FAILED = 4004
    ALREADY_AUTHENTICATED = 4005
    INVALID_SEQ = 4007
    RATE_LIMITED = 4008
    SESSION_TIMED_OUT = 4009
    INVALID_SHARD = 4010
    SHARDING_REQUIRED = 4011
    INVALID_API_VERSION = 4012
    INVALID_INTENTS = 4013
    DISALLOWED_INTENTS = 4014


class Intents(enum.IntFlag):
    """Bits of the `intents` field sent with IDENTIFY."""

    GUILDS = 1 << 0
    GUILD_MEMBERS = 1 << 1
    GUILD_BANS = 1 << 2
    GUILD_EMOJIS = 1 << 3
    GUILD_INTEGRATIONS = 1 << 4
    GUILD_WEBHOOKS = 1 << 5
    GUILD_INVITES = 1 << 6
    GUILD_VOICE_STATES = 1 << 7
    GUILD_PRESENCES = 1 << 8
    GUILD_MESSAGES = 1 << 9
    GUILD_MESSAGE_REACTIONS = 1 << 10
    GUILD_MESSAGE_TYPING = 1 << 11
    DIRECT_MESSAGES = 1 << 12
    DIRECT_MESSAGE_REACTIONS = 1 << 13
    DIRECT_MESSAGE_TYPING = 1 << 14


# Closing with any of these means the next IDENTIFY would be rejected for the
# same reason, see
# https://discord.com/developers/docs/topics/opcodes-and-status-codes#gateway-gateway-close-event-codes
FATAL_CLOSE_CODES = frozenset({
    CloseCode.AUTHENTICATION_FAILED,
    CloseCode.INVALID_SHARD,
    CloseCode.SHARDING_REQUIRED,
    CloseCode.INVALID_API_VERSION,
    CloseCode.INVALID_INTENTS,
    CloseCode.DISALLOWED_INTENTS,
})


def should_reconnect(code: Union[int, CloseCode, None]) -> bool:
    """Determine whether the session may reconnect after a close code.

    The lookup is conservative in returning False: when True is returned it
    may still not be completely safe to reconnect, but False means that
    reconnecting will only be rejected again.

    Parameters:
        code:
            The close code the socket ended with. None (no close frame, the
            TCP connection simply dropped) always returns True.

    Returns:
        Whether the session should reconnect and continue.
    """
    if code is None:
        return True

    # Regular WebSocket close codes (1000-3999) and gateway codes without a
    # documented meaning are treated like a dropped connection.
    return code not in FATAL_CLOSE_CODES
