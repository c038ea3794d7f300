"""Timed command write pipeline.

One command write is::

    WriteValue(data, {"type": "command"})  ──ack──▶  settle delay  ──▶  done
                  │
                  └── no ack within the timeout ──▶ WriteTimeout

The ``type=command`` option selects a write-with-response; the
appliance ignores plain requests.  After an acknowledged write the
peripheral needs a short pause before it accepts the next action, so
completion is only signalled once the settle delay has passed.

The pipeline does not serialise concurrent writes.  A timeout stops
the wait only; the underlying bus call is not aborted on the daemon
side.
"""

from __future__ import annotations

import asyncio
import logging

from dbus_fast import Variant

from m223s2mqtt._bus import BusPort
from m223s2mqtt._clock import ClockPort
from m223s2mqtt._errors import BusCallError, WriteFailed, WriteTimeout
from m223s2mqtt.protocol import format_frame

logger = logging.getLogger(__name__)

CHARACTERISTIC_INTERFACE = "org.bluez.GattCharacteristic1"


class WritePipeline:
    """Sends encoded frames to the write characteristic.

    Args:
        bus: D-Bus port.
        clock: Used for the settle delay.
        timeout: Seconds to wait for the acknowledgment.
        settle_delay: Seconds to wait after the acknowledgment.
    """

    def __init__(
        self,
        bus: BusPort,
        clock: ClockPort,
        *,
        timeout: float = 10.0,
        settle_delay: float = 0.1,
    ) -> None:
        self._bus = bus
        self._clock = clock
        self._timeout = timeout
        self._settle_delay = settle_delay

    async def write_command(self, path: str, data: bytes) -> None:
        """Write *data* to the characteristic at *path*.

        Raises:
            WriteTimeout: No acknowledgment within the timeout.
            WriteFailed: The write was rejected.
        """
        logger.debug(
            "Writing command",
            extra={"frame": format_frame(data), "path": path},
        )
        try:
            await asyncio.wait_for(
                self._bus.call(
                    path,
                    CHARACTERISTIC_INTERFACE,
                    "WriteValue",
                    signature="aya{sv}",
                    body=[bytes(data), {"type": Variant("s", "command")}],
                ),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            msg = f"No acknowledgment for write to {path} within {self._timeout}s"
            raise WriteTimeout(msg) from exc
        except BusCallError as exc:
            msg = f"Write to {path} failed: {exc}"
            raise WriteFailed(msg) from exc

        await self._clock.sleep(self._settle_delay)
