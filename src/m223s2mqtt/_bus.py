"""D-Bus port and the dbus-fast adapter talking to BlueZ.

The session never touches a D-Bus library directly.  It depends on
:class:`BusPort`, which offers exactly the primitives the BlueZ object
model needs:

* method calls addressed by (object path, interface, member),
* property reads,
* introspection of one node (child names + interface names),
* ``PropertiesChanged`` subscriptions scoped to one object path.

The destination (``org.bluez``) is fixed per adapter instance.
Introspection XML parsing is done by dbus-fast.

Error replies surface as :class:`~m223s2mqtt._errors.BusCallError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from m223s2mqtt._errors import BusCallError, BusUnavailable

logger = logging.getLogger(__name__)

PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

PropertiesChangedCallback = Callable[[str, dict[str, Any]], Awaitable[None]]
"""Async callback receiving (interface, changed properties)."""


@dataclass(frozen=True, slots=True)
class NodeInfo:
    """Result of introspecting one object path."""

    children: tuple[str, ...] = ()
    interfaces: tuple[str, ...] = ()

    def match_interface(self, prefix: str) -> str | None:
        """Return the last interface whose name starts with *prefix*.

        BlueZ objects expose a single ``org.bluez.*`` interface next to
        the standard freedesktop ones, so the prefix picks it out.
        """
        found: str | None = None
        for name in self.interfaces:
            if name.startswith(prefix):
                found = name
        return found


@runtime_checkable
class BusPort(Protocol):
    """Remote procedure bus as seen by the session."""

    async def call(
        self,
        path: str,
        interface: str,
        member: str,
        *,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> list[Any]:
        """Invoke a method and return the reply body.

        Raises:
            BusCallError: If the peer answered with an error.
        """
        ...

    async def get_property(self, path: str, interface: str, member: str) -> Any:
        """Read one property, unwrapped from its variant."""
        ...

    async def introspect(self, path: str) -> NodeInfo:
        """Return the child node names and interfaces of *path*."""
        ...

    async def subscribe_properties_changed(
        self,
        path: str,
        callback: PropertiesChangedCallback,
    ) -> None:
        """Invoke *callback* whenever properties of *path* change."""
        ...


class DbusFastBus:
    """:class:`BusPort` over the system bus using *dbus-fast*.

    Args:
        service: Destination for every call, ``org.bluez`` by default.
    """

    def __init__(self, service: str = "org.bluez") -> None:
        self._service = service
        self._bus: Any = None
        self._watchers: dict[str, PropertiesChangedCallback] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def service(self) -> str:
        return self._service

    async def connect(self) -> None:
        """Open the system bus.

        Raises:
            BusUnavailable: If the bus cannot be opened.
        """
        from dbus_fast import BusType
        from dbus_fast.aio import MessageBus

        try:
            self._bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        except Exception as exc:
            msg = f"Can't open system bus: {exc}"
            raise BusUnavailable(msg) from exc
        self._bus.add_message_handler(self._on_message)
        logger.info("D-Bus system bus connected")

    def disconnect(self) -> None:
        """Close the bus connection.  Idempotent."""
        if self._bus is not None:
            self._bus.remove_message_handler(self._on_message)
            self._bus.disconnect()
            self._bus = None

    async def call(
        self,
        path: str,
        interface: str,
        member: str,
        *,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> list[Any]:
        return await self._call(
            self._service, path, interface, member, signature, list(body)
        )

    async def get_property(self, path: str, interface: str, member: str) -> Any:
        reply = await self.call(
            path,
            PROPERTIES_INTERFACE,
            "Get",
            signature="ss",
            body=[interface, member],
        )
        return _unwrap(reply[0]) if reply else None

    async def introspect(self, path: str) -> NodeInfo:
        from dbus_fast.errors import DBusError

        try:
            node = await self._connected().introspect(self._service, path)
        except DBusError as exc:
            raise BusCallError(exc.type, exc.text) from exc
        return NodeInfo(
            children=tuple(child.name for child in node.nodes if child.name),
            interfaces=tuple(iface.name for iface in node.interfaces),
        )

    async def subscribe_properties_changed(
        self,
        path: str,
        callback: PropertiesChangedCallback,
    ) -> None:
        rule = (
            f"type='signal',sender='{self._service}',path='{path}',"
            f"interface='{PROPERTIES_INTERFACE}',member='PropertiesChanged'"
        )
        await self._call(
            "org.freedesktop.DBus",
            "/org/freedesktop/DBus",
            "org.freedesktop.DBus",
            "AddMatch",
            "s",
            [rule],
        )
        self._watchers[path] = callback

    # -- Internal -----------------------------------------------------------

    def _connected(self) -> Any:
        if self._bus is None:
            msg = "DbusFastBus is not connected"
            raise RuntimeError(msg)
        return self._bus

    async def _call(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str,
        body: list[Any],
    ) -> list[Any]:
        from dbus_fast import Message, MessageType

        reply = await self._connected().call(
            Message(
                destination=destination,
                path=path,
                interface=interface,
                member=member,
                signature=signature,
                body=body,
            )
        )
        if reply is None:
            return []
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body else ""
            raise BusCallError(reply.error_name or "unknown", str(text))
        return list(reply.body)

    def _on_message(self, msg: Any) -> None:
        from dbus_fast import MessageType

        if msg.message_type != MessageType.SIGNAL:
            return
        if msg.member != "PropertiesChanged" or msg.path not in self._watchers:
            return
        if len(msg.body) < 2:
            return
        interface = msg.body[0]
        changed = {name: _unwrap(value) for name, value in msg.body[1].items()}
        task = asyncio.create_task(self._watchers[msg.path](interface, changed))
        self._tasks.add(task)
        task.add_done_callback(self._watcher_done)

    def _watcher_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "PropertiesChanged handler crashed",
                exc_info=(type(exc), exc, exc.__traceback__),
            )


def _unwrap(value: Any) -> Any:
    """Strip a dbus-fast ``Variant`` down to its Python value."""
    return getattr(value, "value", value)
