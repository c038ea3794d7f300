"""Retained JSON publication of the appliance state.

Every state transition is republished unconditionally to
``{prefix}/state`` with the retain flag set, so a subscriber that
connects later immediately receives the last known state::

    {"state": "keep warm", "program": "milk porridge",
     "temperature": 40, "hours": 0, "minutes": 25}

Publication is fire-and-forget: a failure is logged and the in-memory
state stays authoritative for the next transition.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from m223s2mqtt._errors import PublishFailed
from m223s2mqtt._mqtt import MqttPort
from m223s2mqtt.protocol import friendly_name

if TYPE_CHECKING:
    from m223s2mqtt.session import DeviceState

logger = logging.getLogger(__name__)


def render_state(state: DeviceState) -> dict[str, object]:
    """Build the JSON-ready payload for *state*."""
    return {
        "state": friendly_name(state.state),
        "program": friendly_name(state.program),
        "temperature": state.temperature,
        "hours": state.hours,
        "minutes": state.minutes,
    }


@dataclass
class StatePublisher:
    """Publishes :class:`~m223s2mqtt.session.DeviceState` snapshots.

    Args:
        mqtt: MQTT port.
        topic: Full state topic, e.g. ``"home/m223s/state"``.
        qos: Delivery QoS.
    """

    mqtt: MqttPort
    topic: str
    qos: int = 1

    async def publish(self, state: DeviceState) -> None:
        """Publish *state*.  Never raises."""
        try:
            await self._send(state)
        except PublishFailed as exc:
            logger.error("%s", exc)

    async def _send(self, state: DeviceState) -> None:
        payload = json.dumps(render_state(state))
        try:
            await self.mqtt.publish(self.topic, payload, retain=True, qos=self.qos)
        except Exception as exc:
            msg = f"Failed to publish state to {self.topic}: {exc}"
            raise PublishFailed(msg) from exc
        logger.debug("Published state %s", payload)
