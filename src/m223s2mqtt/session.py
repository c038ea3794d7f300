"""Session state machine for one multicooker.

The :class:`Session` owns everything that changes while the bridge
runs: the appliance state (:class:`DeviceState`), the resolved object
paths (:class:`SessionContext`) and the in-flight command tasks.

Lifecycle::

    Disconnected ──connect ok──▶ Connected ──auth granted──▶ Authorized
         ▲                           ▲                           │
         │                           └────auth refused───────────┤
         └──────connect failed / disconnect (from any state)     │
                                                                 ▼
                             Off / Setting / Delayed / Heating / Unknown /
                             On / Keep warm   (from every query reply)

One polling cycle (:meth:`Session.run_cycle`) is::

    locate ─▶ connect (unless already connected) ─▶ resolve paths
           ─▶ spawn [start notify ─▶ write auth]  (unless authorized)
                    ─▶ write query

``run_cycle`` returns as soon as the command tail is spawned; the
device's answers arrive later as notifications and are applied by
:meth:`Session.on_notify_changed`.  Cycles may overlap, so every
continuation reads the live state instead of a captured snapshot.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from m223s2mqtt._bus import BusPort
from m223s2mqtt._errors import (
    BusCallError,
    ConnectFailed,
    DeviceNotFound,
    ErrorPublisher,
    M223sError,
    MalformedNotification,
    ResolveFailed,
)
from m223s2mqtt.locator import DEVICE_INTERFACE, DeviceLocator
from m223s2mqtt.protocol import (
    AuthResult,
    Invalid,
    InvalidReason,
    LifecycleState,
    Program,
    QueryResult,
    decode,
    encode_auth,
    encode_off,
    encode_query,
    format_frame,
    friendly_name,
    to_program,
    to_state,
)
from m223s2mqtt.publisher import StatePublisher
from m223s2mqtt.topology import TopologyResolver
from m223s2mqtt.writer import CHARACTERISTIC_INTERFACE, WritePipeline

logger = logging.getLogger(__name__)


@dataclass
class DeviceState:
    """Last known appliance state plus the outgoing command counter."""

    counter: int = 0
    program: Program | int = Program.FRYING
    state: LifecycleState | int = LifecycleState.DISCONNECTED
    temperature: int = 0
    hours: int = 0
    minutes: int = 0

    @property
    def authorized(self) -> bool:
        return self.state >= LifecycleState.AUTHORIZED

    def take_counter(self) -> int:
        """Return the counter for the next frame and advance it (mod 256)."""
        value = self.counter
        self.counter = (self.counter + 1) & 0xFF
        return value


@dataclass
class SessionContext:
    """Object paths and subscription flags of the current process.

    ``write_path`` and ``notify_path`` are resolved once and kept until
    the process exits, across reconnects.
    """

    device_path: str | None = None
    write_path: str | None = None
    notify_path: str | None = None
    subscribed: bool = False
    notifying: bool = False

    @property
    def resolved(self) -> bool:
        return self.write_path is not None and self.notify_path is not None


class CycleOutcome(StrEnum):
    """How far one :meth:`Session.run_cycle` got."""

    NOT_FOUND = "not_found"
    CONNECT_FAILED = "connect_failed"
    RESOLVE_FAILED = "resolve_failed"
    ISSUED = "issued"


@dataclass
class Session:
    """Drives the appliance through connect, authorize and query.

    Args:
        bus: D-Bus port.
        locator: Finds the appliance's object path.
        writer: Sends encoded frames.
        publisher: Republishes the state on every transition.
        auth_key: 8-byte authorization key.
        write_uuid: UUID of the command characteristic.
        notify_uuid: UUID of the reply characteristic.
        errors: Optional publisher for recoverable failures.
    """

    bus: BusPort
    locator: DeviceLocator
    writer: WritePipeline
    publisher: StatePublisher
    auth_key: bytes
    write_uuid: str
    notify_uuid: str
    errors: ErrorPublisher | None = None

    state: DeviceState = field(default_factory=DeviceState, init=False)
    context: SessionContext = field(default_factory=SessionContext, init=False)
    _resolver: TopologyResolver = field(init=False, repr=False)
    _tasks: set[asyncio.Task[None]] = field(
        default_factory=set,
        init=False,
        repr=False,
    )

    def __post_init__(self) -> None:
        self._resolver = TopologyResolver(
            self.bus,
            self.context,
            write_uuid=self.write_uuid,
            notify_uuid=self.notify_uuid,
            on_notify_changed=self.on_notify_changed,
        )

    # -- State transitions --------------------------------------------------

    async def update_state(
        self,
        state: LifecycleState | int,
        *,
        program: Program | int | None = None,
        temperature: int | None = None,
        hours: int | None = None,
        minutes: int | None = None,
        reset: bool = False,
        reset_readings: bool = False,
    ) -> None:
        """Apply one transition and republish.

        Args:
            state: New lifecycle or device-reported state.
            program: New program, if reported.
            temperature: New temperature, if reported.
            hours: New remaining hours, if reported.
            minutes: New remaining minutes, if reported.
            reset: Start from defaults, counter included.
            reset_readings: Start from defaults but keep the counter.
        """
        if reset:
            base = DeviceState()
        elif reset_readings:
            base = DeviceState(counter=self.state.counter)
        else:
            base = self.state

        changes: dict[str, Any] = {"state": state}
        if program is not None:
            changes["program"] = program
        if temperature is not None:
            changes["temperature"] = temperature
        if hours is not None:
            changes["hours"] = hours
        if minutes is not None:
            changes["minutes"] = minutes

        self.state = replace(base, **changes)
        logger.info("State is now %s", friendly_name(self.state.state))
        await self.publisher.publish(self.state)

    # -- Polling cycle ------------------------------------------------------

    async def run_cycle(self) -> CycleOutcome:
        """Run one polling cycle up to issuing the next command.

        Never raises for failures at the protocol boundary; they are
        logged and the next cycle starts over.
        """
        logger.info("Updating M223S state")
        try:
            device_path = await self._find_device()
            await self._ensure_connected(device_path)
            await self._ensure_resolved(device_path)
        except DeviceNotFound as exc:
            logger.warning("%s", exc)
            return CycleOutcome.NOT_FOUND
        except ConnectFailed as exc:
            await self._report(exc)
            return CycleOutcome.CONNECT_FAILED
        except ResolveFailed as exc:
            await self._report(exc)
            return CycleOutcome.RESOLVE_FAILED

        self._spawn(self._authorize_and_query())
        return CycleOutcome.ISSUED

    async def turn_off(self) -> None:
        """Send an off command right away, outside the polling cycle."""
        if self.context.write_path is None:
            logger.warning("Can't send turnoff, write characteristic unknown")
            return
        logger.info("Sending turnoff")
        try:
            await self._write(encode_off(self.state.take_counter()))
        except M223sError as exc:
            await self._report(exc)
            return
        logger.info("Sent turnoff")

    async def disconnect(self) -> None:
        """Stop notifications and drop the BLE connection.

        Failures are logged only; the next cycle reconnects from scratch.
        """
        ctx = self.context
        if ctx.notify_path is not None:
            logger.info("Stopping notify", extra={"path": ctx.notify_path})
            try:
                await self.bus.call(
                    ctx.notify_path,
                    CHARACTERISTIC_INTERFACE,
                    "StopNotify",
                )
            except BusCallError as exc:
                logger.warning("Can't stop notify: %s", exc)
        ctx.notifying = False

        if ctx.device_path is not None:
            logger.info("Disconnecting...")
            try:
                await self.bus.call(ctx.device_path, DEVICE_INTERFACE, "Disconnect")
            except BusCallError as exc:
                logger.warning("Can't disconnect: %s", exc)
            else:
                logger.info("Disconnected")

        await self.update_state(LifecycleState.DISCONNECTED, reset=True)

    async def drain(self) -> None:
        """Wait for all spawned command tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel spawned command tasks."""
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # -- Notifications ------------------------------------------------------

    async def on_notify_changed(self, interface: str, changed: dict[str, Any]) -> None:
        """``PropertiesChanged`` callback for the notify characteristic."""
        if "Value" not in changed or self.context.notify_path is None:
            return
        try:
            value = await self.bus.get_property(
                self.context.notify_path,
                CHARACTERISTIC_INTERFACE,
                "Value",
            )
        except BusCallError as exc:
            logger.error("Can't process new notify value: %s", exc)
            return
        try:
            data = _payload_bytes(value)
        except MalformedNotification as exc:
            logger.warning("%s", exc)
            return
        await self.handle_notification(data)

    async def handle_notification(self, data: bytes) -> None:
        """Decode one notification payload and apply it."""
        logger.info("New value", extra={"frame": format_frame(data)})
        match decode(data):
            case Invalid(reason=InvalidReason.TOO_SHORT):
                logger.warning("Value too short, dropped")
            case Invalid():
                logger.debug("Ignoring notification with unknown command code")
            case AuthResult(granted=True):
                await self.update_state(LifecycleState.AUTHORIZED)
            case AuthResult(granted=False):
                logger.warning("Authorization refused")
                await self.update_state(LifecycleState.CONNECTED, reset_readings=True)
            case QueryResult() as reply:
                await self.update_state(
                    to_state(reply.state),
                    program=to_program(reply.program),
                    temperature=reply.temperature,
                    hours=reply.hours,
                    minutes=reply.minutes,
                )

    # -- Internal -----------------------------------------------------------

    async def _find_device(self) -> str:
        device_path = await self.locator.locate()
        if device_path is None:
            msg = "Device not found"
            raise DeviceNotFound(msg)
        self.context.device_path = device_path
        return device_path

    async def _ensure_connected(self, device_path: str) -> None:
        if await self._is_connected(device_path):
            return

        self.context.notifying = False
        await self.update_state(LifecycleState.DISCONNECTED, reset=True)
        logger.info("Connecting...")
        try:
            await self.bus.call(device_path, DEVICE_INTERFACE, "Connect")
        except BusCallError as exc:
            msg = f"Can't connect to {device_path}: {exc}"
            raise ConnectFailed(msg) from exc
        logger.info("Connected")
        await self.update_state(LifecycleState.CONNECTED)

    async def _is_connected(self, device_path: str) -> bool:
        try:
            value = await self.bus.get_property(
                device_path,
                DEVICE_INTERFACE,
                "Connected",
            )
        except BusCallError:
            return False
        return bool(value)

    async def _ensure_resolved(self, device_path: str) -> None:
        if not await self._resolver.resolve(device_path):
            msg = f"Services of {device_path} not discovered yet"
            raise ResolveFailed(msg)

    async def _authorize_and_query(self) -> None:
        try:
            if not self.state.authorized:
                await self._start_notify()
                logger.info("Writing authorization request...")
                frame = encode_auth(self.state.take_counter(), self.auth_key)
                await self._write(frame)
                logger.info("Authorization request sent")
            logger.info("Sending query")
            await self._write(encode_query(self.state.take_counter()))
            logger.info("Sent query")
        except M223sError as exc:
            await self._report(exc)

    async def _start_notify(self) -> None:
        ctx = self.context
        if ctx.notifying or ctx.notify_path is None:
            return
        logger.info("Starting notify", extra={"path": ctx.notify_path})
        try:
            await self.bus.call(
                ctx.notify_path,
                CHARACTERISTIC_INTERFACE,
                "StartNotify",
            )
        except BusCallError as exc:
            logger.warning("Starting notify failed: %s", exc)
            return
        ctx.notifying = True

    async def _write(self, data: bytes) -> None:
        path = self.context.write_path
        if path is None:
            msg = "write characteristic is not resolved"
            raise ResolveFailed(msg)
        await self.writer.write_command(path, data)

    async def _report(self, error: M223sError) -> None:
        if self.errors is not None:
            await self.errors.publish(error)
        else:
            logger.warning("%s", error)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def _payload_bytes(value: Any) -> bytes:
    """Coerce a ``Value`` property (``ay``) to bytes."""
    if not isinstance(value, (bytes, bytearray, list, tuple)):
        msg = f"Notify value is not a byte array: {value!r}"
        raise MalformedNotification(msg)
    try:
        return bytes(value)
    except (TypeError, ValueError) as exc:
        msg = f"Notify value is not a byte array: {value!r}"
        raise MalformedNotification(msg) from exc
