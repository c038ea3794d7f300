"""Inbound MQTT topic routing.

The bridge listens on a handful of fixed topics below its prefix::

    {prefix}/off     → turn the appliance off (any payload)
    {prefix}/state   → published, not routed
    {prefix}/status  → published, not routed

:class:`TopicRouter` maps exact topic names to async handlers and
tells the app which topics to subscribe to.
"""

from __future__ import annotations

import logging

from m223s2mqtt._mqtt import MessageCallback

logger = logging.getLogger(__name__)


class TopicRouter:
    """Routes inbound messages to per-topic handlers."""

    def __init__(self, *, topic_prefix: str) -> None:
        self._topic_prefix = topic_prefix
        self._handlers: dict[str, MessageCallback] = {}

    def topic(self, name: str) -> str:
        """Full topic for *name* below the prefix."""
        return f"{self._topic_prefix}/{name}"

    def register(self, name: str, handler: MessageCallback) -> None:
        """Register *handler* for ``{prefix}/{name}``.

        Raises:
            ValueError: If a handler is already registered for *name*.
        """
        topic = self.topic(name)
        if topic in self._handlers:
            msg = f"Handler already registered for topic '{topic}'"
            raise ValueError(msg)
        self._handlers[topic] = handler

    async def route(self, topic: str, payload: str) -> None:
        """Dispatch one inbound message.  Unknown topics are ignored."""
        handler = self._handlers.get(topic)
        if handler is None:
            logger.debug("No handler for topic %s", topic)
            return
        await handler(topic, payload)

    @property
    def subscriptions(self) -> list[str]:
        """Topics that have a registered handler."""
        return list(self._handlers)
