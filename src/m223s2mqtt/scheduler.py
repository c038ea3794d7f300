"""Periodic polling and the out-of-band "turn off" trigger.

:class:`PollingScheduler` fires :meth:`Session.run_cycle` immediately
and then every ``interval`` seconds, measured from the end of the
previous fire.  Before each fire it applies the idle-disconnect
policy: once the command counter says the appliance has been kept
connected for ``idle_disconnect_after`` seconds (counter × interval),
the session is disconnected first so that the next cycle starts from
a fresh connection.

The off trigger is an :class:`asyncio.Event`.  The MQTT callback only
sets it; a companion task waits on it and sends the off command
immediately, whatever phase the polling loop is in.  Several triggers
arriving before the task wakes collapse into one command.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from m223s2mqtt._clock import ClockPort
from m223s2mqtt.session import CycleOutcome, Session

logger = logging.getLogger(__name__)


class PollingScheduler:
    """Drives a :class:`Session` on a fixed cadence.

    Args:
        session: The session to drive.
        clock: Used for the pause between fires.
        shutdown_event: Stops both loops when set.
        interval: Seconds between fires.
        idle_disconnect_after: Counter-derived connection age (seconds)
            after which the session is disconnected before the next fire.
    """

    def __init__(
        self,
        session: Session,
        clock: ClockPort,
        shutdown_event: asyncio.Event,
        *,
        interval: float = 7.5,
        idle_disconnect_after: float = 600.0,
    ) -> None:
        self._session = session
        self._clock = clock
        self._shutdown_event = shutdown_event
        self._interval = interval
        self._idle_disconnect_after = idle_disconnect_after
        self._off_requested = asyncio.Event()

    @property
    def off_requested(self) -> bool:
        return self._off_requested.is_set()

    # -- Off trigger --------------------------------------------------------

    def request_off(self) -> None:
        """Wake the off task.  Safe to call from any callback on the loop."""
        self._off_requested.set()

    async def on_off_message(self, topic: str, payload: str) -> None:
        """MQTT handler for the off topic.  Any payload triggers."""
        logger.info("Turn-off requested via %s", topic)
        self.request_off()

    # -- Polling ------------------------------------------------------------

    def idle_limit_reached(self) -> bool:
        """Whether the counter implies the connection outlived the limit."""
        elapsed = self._session.state.counter * self._interval
        return elapsed >= self._idle_disconnect_after

    async def tick(self) -> CycleOutcome | None:
        """Run one scheduled fire: idle check, then one session cycle.

        Returns the cycle outcome, or None if the cycle crashed.
        """
        if self.idle_limit_reached():
            logger.info(
                "Connection idle limit of %.0fs reached, disconnecting",
                self._idle_disconnect_after,
            )
            await self._session.disconnect()
        try:
            return await self._session.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Polling cycle crashed")
            return None

    async def run(self) -> None:
        """Poll until shutdown, serving off requests alongside."""
        off_task = asyncio.create_task(self._off_loop())
        try:
            while not self._shutdown_event.is_set():
                await self.tick()
                await self._sleep(self._interval)
        finally:
            off_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await off_task

    async def _off_loop(self) -> None:
        while True:
            await self._off_requested.wait()
            self._off_requested.clear()
            try:
                await self._session.turn_off()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Turn-off failed")

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early once shutdown is requested."""
        sleep_task = asyncio.ensure_future(self._clock.sleep(seconds))
        shutdown_task = asyncio.ensure_future(self._shutdown_event.wait())
        _done, pending = await asyncio.wait(
            {sleep_task, shutdown_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
