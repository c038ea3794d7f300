"""MQTT client port and adapters.

Provides :class:`MqttPort` (Protocol) and two implementations:

- :class:`MqttClient`: aiomqtt-based client with reconnection
- :class:`MockMqttClient`: test double that records calls

The bridge talks to exactly two topics of its own (``{prefix}/state``
out, ``{prefix}/off`` in) plus the status and error topics, so the
port is deliberately small: publish, subscribe, and an inbound message
callback.

aiomqtt runs on the same event loop as the BLE session.  Inbound
messages are handed to callbacks on that loop; callbacks are expected
to do nothing heavier than waking another task.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from m223s2mqtt._settings import MqttSettings

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""


@dataclass(frozen=True)
class WillConfig:
    """Last-Will-and-Testament configuration.

    Translated into ``aiomqtt.Will`` inside the connection loop so
    callers never import aiomqtt directly.
    """

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Publish/subscribe contract used by the publisher and services."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that can deliver inbound messages."""

    def on_message(self, callback: MessageCallback) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters with a background connection to start and stop."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Set ``publish_error`` to make every ``publish()`` raise it, which
    is how tests exercise the fire-and-forget paths.
    """

    published: list[tuple[str, str, bool, int]] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    publish_error: Exception | None = None
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call, or raise ``publish_error``."""
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        """Record a subscribe call."""
        self.subscriptions.append(topic)

    def on_message(self, callback: MessageCallback) -> None:
        """Register an inbound-message callback."""
        self._callbacks.append(callback)

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        for cb in self._callbacks:
            await cb(topic, payload)

    @property
    def publish_count(self) -> int:
        return len(self.published)

    def get_messages_for(self, topic: str) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]

    def reset(self) -> None:
        """Clear all recorded data and callbacks."""
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    A background task keeps a persistent connection, restores
    subscriptions after every reconnect and fans inbound messages out
    to the registered callbacks.

    The last retained payload of every topic is kept and replayed on
    each (re)connect.  The bridge publishes its state and availability
    retained, so a broker restart or a late first connection never
    leaves stale values (or the LWT ``offline``) behind.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _subscriptions: set[str] = field(default_factory=set, init=False, repr=False)
    _retained: dict[str, tuple[str, int]] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message to the broker.

        Retained messages are remembered for replay; while disconnected
        they are only remembered.

        Raises:
            RuntimeError: If the client is not connected and the message
                is not retained.
        """
        if retain:
            self._retained[topic] = (payload, qos)
        if self._client is None:
            if retain:
                logger.debug("Not connected, %s deferred until connect", topic)
                return
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Subscribe to *topic*, now if connected and on every reconnect."""
        self._subscriptions.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    def on_message(self, callback: MessageCallback) -> None:
        """Register a callback for inbound messages."""
        self._callbacks.append(callback)

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._listen_task is not None and not self._listen_task.done():
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(self._connection_loop())

    async def stop(self) -> None:
        """Stop the connection loop.  Idempotent."""
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def _connection_loop(self) -> None:
        """Maintain a persistent connection with auto-reconnect."""
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        while not self._stopping:
            try:
                password: str | None = None
                if self.settings.password is not None:
                    password = self.settings.password.get_secret_value()

                will = None
                if self.will is not None:
                    will = aiomqtt.Will(
                        topic=self.will.topic,
                        payload=self.will.payload,
                        qos=self.will.qos,
                        retain=self.will.retain,
                    )

                async with aiomqtt.Client(
                    hostname=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.username,
                    password=password,
                    identifier=self.settings.client_id or None,
                    will=will,
                ) as client:
                    self._client = client
                    try:
                        for topic in list(self._subscriptions):
                            await client.subscribe(topic, qos=self.settings.qos)
                        await self._replay_retained(client)
                        self._connected.set()
                        logger.info(
                            "MQTT connected to %s:%d",
                            self.settings.host,
                            self.settings.port,
                        )
                        async for message in client.messages:
                            await self._dispatch(message)
                    finally:
                        self._connected.clear()
                        self._client = None
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    self.settings.reconnect_interval,
                    exc_info=True,
                )
                await asyncio.sleep(self.settings.reconnect_interval)

    async def _replay_retained(self, client: Any) -> None:
        for topic, (payload, qos) in list(self._retained.items()):
            await client.publish(topic, payload, retain=True, qos=qos)
        if self._retained:
            logger.debug("Replayed %d retained messages", len(self._retained))

    async def _dispatch(self, message: Any) -> None:
        """Decode and fan out an inbound message to callbacks."""
        topic = str(message.topic)
        raw = message.payload
        if isinstance(raw, (bytes, bytearray)):
            payload = raw.decode("utf-8", errors="replace")
        elif raw is None:
            payload = ""
        else:
            payload = str(raw)
        logger.info("MQTT message received on %s", topic)

        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception("Error in message callback for %s", topic)
