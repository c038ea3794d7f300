"""GATT attribute-path resolution.

BlueZ exposes every service, characteristic and descriptor of a
connected device as a child object of the device path::

    /org/bluez/hci0/dev_F9_DA_73_71_23_4A
    /org/bluez/hci0/dev_F9_DA_73_71_23_4A/service000c
    /org/bluez/hci0/dev_F9_DA_73_71_23_4A/service000c/char000d
    ...

:class:`TopologyResolver` walks that subtree depth-first (the node
itself, then its children in introspection order), reads the ``UUID``
property of each node and remembers the first object carrying the
write UUID and the first carrying the notify UUID.  The walk always
runs to completion; earlier matches in traversal order win.

Resolved paths live on the shared :class:`~m223s2mqtt.session.SessionContext`
and are never re-resolved for the lifetime of the process.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from m223s2mqtt._bus import BusPort, PropertiesChangedCallback
from m223s2mqtt._errors import BusCallError

if TYPE_CHECKING:
    from m223s2mqtt.session import SessionContext

logger = logging.getLogger(__name__)


class TopologyResolver:
    """Maps the write/notify characteristic UUIDs to object paths.

    Args:
        bus: D-Bus port.
        context: Session context receiving the resolved paths.
        write_uuid: UUID of the command characteristic.
        notify_uuid: UUID of the reply characteristic.
        on_notify_changed: Callback subscribed to ``PropertiesChanged``
            on the notify path, exactly once per process.
        interface_prefix: Prefix selecting the BlueZ interface of a node.
    """

    def __init__(
        self,
        bus: BusPort,
        context: SessionContext,
        *,
        write_uuid: str,
        notify_uuid: str,
        on_notify_changed: PropertiesChangedCallback,
        interface_prefix: str = "org.bluez",
    ) -> None:
        self._bus = bus
        self._context = context
        self._write_uuid = write_uuid.lower()
        self._notify_uuid = notify_uuid.lower()
        self._on_notify_changed = on_notify_changed
        self._interface_prefix = interface_prefix

    async def resolve(self, device_path: str) -> bool:
        """Resolve both characteristic paths below *device_path*.

        Returns:
            True when both the write and the notify path are known.
        """
        ctx = self._context
        if ctx.resolved:
            return True

        write_path, notify_path = await self._walk(device_path)
        if ctx.write_path is None:
            ctx.write_path = write_path
        if ctx.notify_path is None:
            ctx.notify_path = notify_path
        logger.info(
            "Resolved characteristics: write=%s notify=%s",
            ctx.write_path,
            ctx.notify_path,
        )

        if ctx.notify_path is not None and not ctx.subscribed:
            await self._subscribe(ctx.notify_path)

        return ctx.resolved

    async def _walk(self, root: str) -> tuple[str | None, str | None]:
        write_path: str | None = None
        notify_path: str | None = None
        stack = [root]
        while stack:
            path = stack.pop()
            try:
                info = await self._bus.introspect(path)
            except BusCallError as exc:
                logger.warning("Can't enumerate nodes of %s: %s", path, exc)
                continue

            interface = info.match_interface(self._interface_prefix)
            uuid = await self._read_uuid(path, interface)
            if uuid == self._write_uuid and write_path is None:
                write_path = path
            elif uuid == self._notify_uuid and notify_path is None:
                notify_path = path

            # Reversed so the first child is popped (visited) first.
            stack.extend(f"{path}/{child}" for child in reversed(info.children))
        return write_path, notify_path

    async def _read_uuid(self, path: str, interface: str | None) -> str | None:
        if interface is None:
            return None
        try:
            value = await self._bus.get_property(path, interface, "UUID")
        except BusCallError:
            return None
        return str(value).lower() if value else None

    async def _subscribe(self, path: str) -> None:
        try:
            await self._bus.subscribe_properties_changed(
                path,
                self._on_notify_changed,
            )
        except BusCallError as exc:
            logger.error("Failed to subscribe to %s: %s", path, exc)
            return
        self._context.subscribed = True
        logger.info("Initialized notify subscription", extra={"path": path})
