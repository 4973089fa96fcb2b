"""Periodic heartbeat towards the central system."""

from __future__ import annotations

import time
from typing import Callable

DEFAULT_HEARTBEAT_INTERVAL = 86400


def _tick_ms() -> int:
    return int(time.monotonic() * 1000)


class HeartbeatService:
    """Calls ``send_heartbeat`` each time ``interval`` seconds have passed.

    ``interval`` may be changed at any time, e.g. after a configuration change.
    """

    def __init__(
        self,
        send_heartbeat: Callable[[], None],
        interval: int = DEFAULT_HEARTBEAT_INTERVAL,
        tick_ms: Callable[[], int] = _tick_ms,
    ) -> None:
        self.interval = interval
        self._send = send_heartbeat
        self._tick_ms = tick_ms
        self._last_heartbeat = tick_ms()

    def loop(self) -> bool:
        """Send a heartbeat if it is due; return whether one was sent."""
        now = self._tick_ms()
        if now - self._last_heartbeat >= self.interval * 1000:
            self._last_heartbeat = now
            self._send()
            return True
        return False