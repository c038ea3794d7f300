"""Device lookup among the peers BlueZ already knows about.

BlueZ keeps one object per known peer below each adapter
(``/org/bluez/hci0/dev_XX_XX_...``).  :class:`DeviceLocator` looks for
the one whose ``Address`` matches the appliance, in up to N rounds.
When the first round misses, it asks every adapter to start an
active scan so the peer can show up in later rounds, and stops that
scan again once the lookup is over.

Active scans are rate-limited by :class:`DiscoveryThrottle` so that a
device that is simply switched off does not keep the radio scanning
every polling cycle.
"""

from __future__ import annotations

import logging

from m223s2mqtt._bus import BusPort
from m223s2mqtt._clock import ClockPort
from m223s2mqtt._errors import BusCallError

logger = logging.getLogger(__name__)

ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"


class DiscoveryThrottle:
    """Refuses a new active scan within *min_interval* of the previous one."""

    def __init__(self, clock: ClockPort, min_interval: float) -> None:
        self._clock = clock
        self._min_interval = min_interval
        self._last_start: float | None = None

    @property
    def last_start(self) -> float | None:
        return self._last_start

    def try_acquire(self) -> bool:
        """Record a scan start and return True, unless still cooling down."""
        now = self._clock.now()
        last = self._last_start
        if last is not None and now < last + self._min_interval:
            return False
        self._last_start = now
        return True


class DeviceLocator:
    """Finds the object path of the appliance.

    Args:
        bus: D-Bus port.
        address: Bluetooth address of the appliance.
        throttle: Shared scan cooldown.
        clock: Used for the pause between rounds.
        rounds: Number of lookup rounds.
        round_delay: Pause between two rounds, in seconds.
        root: Object path whose children are the adapters.
    """

    def __init__(
        self,
        bus: BusPort,
        *,
        address: str,
        throttle: DiscoveryThrottle,
        clock: ClockPort,
        rounds: int = 5,
        round_delay: float = 1.0,
        root: str = "/org/bluez",
    ) -> None:
        self._bus = bus
        self._address = address.upper()
        self._throttle = throttle
        self._clock = clock
        self._rounds = rounds
        self._round_delay = round_delay
        self._root = root
        self._adapters: tuple[str, ...] = ()

    @property
    def adapters(self) -> tuple[str, ...]:
        """Adapter names found by the last enumeration, e.g. ``("hci0",)``."""
        return self._adapters

    async def enumerate_adapters(self) -> tuple[str, ...]:
        """(Re)read the adapter list from the bus."""
        try:
            info = await self._bus.introspect(self._root)
        except BusCallError as exc:
            logger.error("Can't enumerate adapters: %s", exc)
            return self._adapters
        self._adapters = info.children
        logger.info("Found %d adapters", len(self._adapters))
        return self._adapters

    async def locate(self) -> str | None:
        """Return the appliance's object path, or None if it was not found."""
        if not self._adapters:
            await self.enumerate_adapters()

        found: str | None = None
        scan_tried = False
        scan_started = False
        for round_no in range(self._rounds):
            found = await self._find_once()
            if found is not None:
                break
            if not scan_tried:
                scan_started = await self._start_discovery()
                scan_tried = True
            if round_no < self._rounds - 1:
                await self._clock.sleep(self._round_delay)

        if scan_started:
            await self._stop_discovery()
        return found

    # -- Internal -----------------------------------------------------------

    def _adapter_path(self, adapter: str) -> str:
        return f"{self._root}/{adapter}"

    async def _find_once(self) -> str | None:
        for adapter in self._adapters:
            adapter_path = self._adapter_path(adapter)
            try:
                info = await self._bus.introspect(adapter_path)
            except BusCallError as exc:
                logger.warning("Can't enumerate peers of %s: %s", adapter, exc)
                continue
            for node in info.children:
                node_path = f"{adapter_path}/{node}"
                try:
                    address = await self._bus.get_property(
                        node_path,
                        DEVICE_INTERFACE,
                        "Address",
                    )
                except BusCallError:
                    continue
                if isinstance(address, str) and address.upper() == self._address:
                    return node_path
        return None

    async def _start_discovery(self) -> bool:
        if not self._throttle.try_acquire():
            logger.info("Skipping discovery, last scan started too recently")
            return False

        started = False
        for adapter in self._adapters:
            try:
                await self._bus.call(
                    self._adapter_path(adapter),
                    ADAPTER_INTERFACE,
                    "StartDiscovery",
                )
            except BusCallError as exc:
                logger.warning("Can't start discovery on %s: %s", adapter, exc)
                continue
            logger.info("Started discovery", extra={"adapter": adapter})
            started = True
        return started

    async def _stop_discovery(self) -> None:
        for adapter in self._adapters:
            try:
                await self._bus.call(
                    self._adapter_path(adapter),
                    ADAPTER_INTERFACE,
                    "StopDiscovery",
                )
            except BusCallError as exc:
                logger.warning("Can't stop discovery on %s: %s", adapter, exc)
                continue
            logger.info("Stopped discovery", extra={"adapter": adapter})
