"""Deterministic fake clock for testing.

Satisfies ClockPort (PEP 544 structural subtyping) with a manually
controllable time value.  ``sleep()`` advances that value instead of
waiting, then yields once to the event loop so other tasks still get
to run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field


@dataclass
class FakeClock:
    """Test double for ClockPort.

    Attributes:
        _time: The current "now" value returned by ``now()``.
        sleeps: Every duration passed to ``sleep()``, in call order.

    Example::

        clock = FakeClock(42.0)
        await clock.sleep(8.0)
        assert clock.now() == 50.0
        assert clock.sleeps == [8.0]
    """

    _time: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def now(self) -> float:
        """Return the manually set time value."""
        return self._time

    def advance(self, seconds: float) -> None:
        """Move time forward by *seconds*."""
        self._time += seconds

    async def sleep(self, seconds: float) -> None:
        """Advance time by *seconds* and yield to the loop."""
        self.sleeps.append(seconds)
        self._time += seconds
        await asyncio.sleep(0)
