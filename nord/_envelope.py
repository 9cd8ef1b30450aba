from typing import Any, Dict, NamedTuple, Optional

from ._errors import ProtocolError
from ._opcode import Opcode

try:
    from ujson import dumps as json_dumps
    from ujson import loads as json_loads
except ImportError:
    from json import dumps as json_dumps
    from json import loads as json_loads


__all__ = ('Envelope', 'DispatchEvent')


class DispatchEvent(NamedTuple):
    """View of a DISPATCH envelope carrying a named event."""

    name: str
    sequence: Optional[int]
    data: Any


class Envelope(NamedTuple):
    """Wire unit exchanged with the gateway.

    Envelopes are immutable, a fresh one is constructed for every outbound
    command and `loads()` is the only place raw messages are decoded.
    """

    op: Opcode
    d: Any = None
    s: Optional[int] = None
    t: Optional[str] = None

    @classmethod
    def loads(cls, raw: str) -> 'Envelope':
        """Decode a received text message into an envelope.

        Raises:
            ProtocolError:
                The message is not a JSON object, has an unknown opcode or
                mistyped `s`/`t` fields. A DISPATCH without an event name is
                also rejected.
        """
        try:
            payload = json_loads(raw)
        except ValueError as exc:
            raise ProtocolError(f'Invalid JSON received: {exc}', raw) from exc

        if not isinstance(payload, dict):
            raise ProtocolError('Envelope is not a JSON object', raw)

        try:
            op = Opcode(payload.get('op'))
        except ValueError:
            raise ProtocolError(f"Unknown opcode {payload.get('op')!r}", raw) from None

        s = payload.get('s')
        if s is not None and (not isinstance(s, int) or isinstance(s, bool)):
            raise ProtocolError(f'Sequence must be an integer, got {s!r}', raw)

        t = payload.get('t')
        if t is not None and not isinstance(t, str):
            raise ProtocolError(f'Event name must be a string, got {t!r}', raw)

        if op is Opcode.DISPATCH and t is None:
            raise ProtocolError('DISPATCH envelope without an event name', raw)

        return cls(op, payload.get('d'), s, t)

    def dumps(self) -> str:
        """Encode the envelope as a JSON text message."""
        return json_dumps(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return {'op': int(self.op), 'd': self.d, 's': self.s, 't': self.t}

    @property
    def dispatch(self) -> DispatchEvent:
        """The DISPATCH view of this envelope.

        Raises:
            ValueError: The envelope is not a DISPATCH.
        """
        if self.op != Opcode.DISPATCH:
            raise ValueError(f'{self.op.name} envelope is not a DISPATCH')

        return DispatchEvent(self.t, self.s, self.d)
