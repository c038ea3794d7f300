"""Error taxonomy and structured error publication.

Every failure at the protocol boundary is a subclass of
:class:`M223sError`.  Only :class:`BusUnavailable` is fatal (raised at
startup when the system bus cannot be reached); everything else aborts
the current polling cycle and is retried by the next one.

Recoverable failures are logged and also published so they can be
observed remotely::

    {prefix}/error      ← not retained, QoS 1

Payload schema::

    {
        "error_type": "connect_failed",
        "message": "Can't connect to /org/bluez/hci0/dev_F9_DA_73_71_23_4A",
        "device": "F9:DA:73:71:23:4A",
        "timestamp": "2026-10-19T12:34:56+00:00",
        "details": {}
    }

Publication is fire-and-forget: failures are logged, never propagated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from m223s2mqtt._mqtt import MqttPort

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class M223sError(Exception):
    """Base class for all bridge errors."""


class BusUnavailable(M223sError):
    """The D-Bus system bus could not be opened.  Fatal at startup."""


class DeviceNotFound(M223sError):
    """The appliance was not among the known peers after all lookup rounds."""


class ConnectFailed(M223sError):
    """``Device1.Connect`` returned an error."""


class ResolveFailed(M223sError):
    """The write or notify characteristic could not be located."""


class WriteError(M223sError):
    """A command write did not complete."""


class WriteTimeout(WriteError):
    """No acknowledgment arrived within the write timeout."""


class WriteFailed(WriteError):
    """The Bluetooth daemon rejected the write."""


class MalformedNotification(M223sError):
    """A notification payload could not be decoded."""


class PublishFailed(M223sError):
    """A state message could not be handed to the broker."""


class BusCallError(M223sError):
    """A D-Bus method call returned an error reply.

    Attributes:
        name: The D-Bus error name, e.g. ``org.bluez.Error.Failed``.
    """

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(f"{name}: {message}" if message else name)
        self.name = name


ERROR_TYPES: dict[type[Exception], str] = {
    BusUnavailable: "bus_unavailable",
    DeviceNotFound: "device_not_found",
    ConnectFailed: "connect_failed",
    ResolveFailed: "resolve_failed",
    WriteTimeout: "write_timeout",
    WriteFailed: "write_failed",
    MalformedNotification: "malformed_notification",
    PublishFailed: "publish_failed",
    BusCallError: "bus_call_failed",
}

# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error event."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


def build_error_payload(
    error: Exception,
    *,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into an :class:`ErrorPayload`.

    The exact exception class is looked up in :data:`ERROR_TYPES`;
    anything else is reported as ``"error"``.
    """
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=ERROR_TYPES.get(type(error), "error"),
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=details or {},
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorPublisher:
    """Logs a failure and publishes it to ``{topic_prefix}/error``.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Base prefix, e.g. ``"home/m223s"``.
        device: Appliance address included in every payload.
        clock: Optional wall-clock callable for deterministic tests.
    """

    mqtt: MqttPort
    topic_prefix: str
    device: str | None = None
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    @property
    def topic(self) -> str:
        return f"{self.topic_prefix}/error"

    async def publish(
        self,
        error: Exception,
        *,
        details: dict[str, object] | None = None,
    ) -> None:
        """Build, log and publish an error payload.  Never raises."""
        try:
            payload = build_error_payload(
                error,
                device=self.device,
                details=details,
                clock=self.clock,
            )
            payload_json = payload.to_json()
        except Exception:
            logger.exception("Failed to build error payload for %r", error)
            return

        logger.warning(
            "%s (type=%s)",
            payload.message,
            payload.error_type,
        )
        try:
            await self.mqtt.publish(self.topic, payload_json, retain=False, qos=1)
        except Exception:
            logger.exception("Failed to publish error to %s", self.topic)
