import asyncio
import time
from typing import Callable, Optional

__all__ = ('HeartbeatMonitor',)


class HeartbeatMonitor:
    """Periodic HEARTBEAT scheduler tracking whether the gateway acknowledged.

    Every `interval` seconds `tick()` runs: if the previous HEARTBEAT was
    acknowledged a new one is sent with `send`, otherwise `on_timeout` is
    called and nothing is sent. One missed acknowledgement is enough.

    A monitor belongs to exactly one socket. Once stopped it can never tick
    again, a new monitor has to be created for the next socket.

    Attributes:
        interval: Amount of seconds between heartbeats.
        acknowledged: Whether the last heartbeat was acknowledged.
        latency:
            Seconds between the last acknowledged HEARTBEAT and its ACK, or
            infinity before one has been measured.
    """

    interval: float
    acknowledged: bool
    latency: float

    def __init__(
        self,
        interval: float,
        *,
        send: Callable[[], None],
        on_timeout: Callable[[], None],
    ) -> None:
        self.interval = interval
        self.acknowledged = True
        self.latency = float('inf')

        self._send = send
        self._on_timeout = on_timeout

        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self._sent_at: Optional[float] = None

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self._stopped:
            raise RuntimeError('Cannot restart a stopped heartbeat monitor')
        if self._task is not None:
            raise RuntimeError('Heartbeat monitor already started')

        self._task = asyncio.ensure_future(self._run())

    def stop(self) -> None:
        """Cancel the timer, no more ticks will happen after this returns."""
        self._stopped = True

        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> bool:
        """Run one scheduled heartbeat.

        Returns:
            Whether a HEARTBEAT was sent. False either when the monitor has
            been stopped or when the previous one was never acknowledged.
        """
        if self._stopped:
            return False

        if not self.acknowledged:
            # The timeout callback is expected to replace this monitor
            self._stopped = True
            self._on_timeout()
            return False

        self.acknowledged = False
        self._sent_at = time.monotonic()
        self._send()
        return True

    def acknowledge(self) -> None:
        """Record a HEARTBEAT_ACK from the gateway."""
        self.acknowledged = True

        if self._sent_at is not None:
            self.latency = time.monotonic() - self._sent_at
            self._sent_at = None
