"""Monotonic clock port and system adapter.

Provides :class:`ClockPort` (Protocol) and :class:`SystemClock`.

The bridge needs time for two things: the discovery cooldown (an
active BLE scan must not start within a minimum window of the
previous one) and the waits between discovery rounds and after each
command write.  Both go through this port so tests can drive them
with a deterministic fake instead of real seconds.

``now()`` wraps ``time.monotonic()``: the epoch is arbitrary and only
differences between two calls are meaningful (PEP 418).
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic clock plus cooperative sleep.

    The default implementation is :class:`SystemClock`.  Tests inject
    ``m223s2mqtt.testing.FakeClock``, whose ``sleep()`` advances
    ``now()`` without waiting.
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for *seconds*."""
        ...


class SystemClock:
    """Production clock backed by ``time.monotonic()`` and ``asyncio.sleep()``.

    Satisfies :class:`ClockPort` structurally (PEP 544).
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        """Sleep on the running event loop."""
        await asyncio.sleep(seconds)
