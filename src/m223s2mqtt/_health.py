"""Bridge availability over MQTT.

Topic layout::

    {prefix}/status   ← "online" / "offline" (retained)

LWT integration:

- The broker publishes ``"offline"`` to ``{prefix}/status`` if the
  bridge disconnects unexpectedly.  :func:`build_will_config` creates
  the matching :class:`WillConfig`.
- At startup the bridge publishes ``"online"``, overwriting a retained
  ``"offline"`` left by a previous crash.
- During graceful shutdown it publishes ``"offline"`` explicitly.

All publication is retained, QoS 1 and fire-and-forget.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from m223s2mqtt._mqtt import MqttPort, WillConfig

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


def build_will_config(topic_prefix: str) -> WillConfig:
    """Create the LWT for ``{topic_prefix}/status``.

    Pass the result to :class:`~m223s2mqtt._mqtt.MqttClient` so the
    broker publishes ``"offline"`` on unexpected disconnection.
    """
    return WillConfig(
        topic=f"{topic_prefix}/status",
        payload=OFFLINE,
        qos=1,
        retain=True,
    )


@dataclass
class HealthReporter:
    """Publishes the bridge's own availability.

    Parameters
    ----------
    mqtt:
        MQTT port used for publishing.
    topic_prefix:
        Base prefix for the status topic (e.g. ``"home/m223s"``).
    """

    mqtt: MqttPort
    topic_prefix: str

    @property
    def topic(self) -> str:
        return f"{self.topic_prefix}/status"

    async def publish_online(self) -> None:
        """Publish ``"online"`` to the status topic."""
        await self._safe_publish(ONLINE)

    async def shutdown(self) -> None:
        """Publish ``"offline"`` to the status topic."""
        logger.info("Health reporter shutting down, publishing offline")
        await self._safe_publish(OFFLINE)

    async def _safe_publish(self, payload: str) -> None:
        try:
            await self.mqtt.publish(self.topic, payload, retain=True, qos=1)
        except Exception:
            logger.exception("Failed to publish health to %s", self.topic)
