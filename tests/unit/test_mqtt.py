"""Tests for m223s2mqtt._mqtt: MQTT port, mock and aiomqtt adapter.

Test Techniques Used:
    - Protocol Conformance: isinstance checks against MqttPort
    - State-based Testing: MockMqttClient records calls
    - Mock-based Isolation: aiomqtt patched via sys.modules for MqttClient
    - State Transition Testing: start/stop lifecycle
"""

from __future__ import annotations

import asyncio
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import SecretStr

from m223s2mqtt._mqtt import (
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    WillConfig,
)
from m223s2mqtt._settings import MqttSettings

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mqtt_settings() -> MqttSettings:
    return MqttSettings()


@pytest.fixture
def mock_aiomqtt():
    """Mock aiomqtt module for testing MqttClient internals.

    Patches ``sys.modules`` so the lazy ``import aiomqtt`` inside
    ``_connection_loop()`` resolves to a controllable mock whose
    ``messages`` block until the task is cancelled.
    """
    mock_module = MagicMock()

    mock_client_instance = AsyncMock()
    mock_client_instance.__aenter__ = AsyncMock(
        return_value=mock_client_instance,
    )
    mock_client_instance.__aexit__ = AsyncMock(return_value=False)

    async def _blocking_messages():
        await asyncio.Event().wait()
        yield  # pragma: no cover

    type(mock_client_instance).messages = property(
        lambda self: _blocking_messages(),
    )
    mock_client_instance.subscribe = AsyncMock()
    mock_client_instance.publish = AsyncMock()

    mock_module.Client.return_value = mock_client_instance
    mock_module.Will = MagicMock()

    with patch.dict(sys.modules, {"aiomqtt": mock_module}):
        yield mock_module, mock_client_instance


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


class TestPorts:
    """Technique: Protocol Conformance."""

    def test_mock_client_satisfies_ports(self) -> None:
        client = MockMqttClient()
        assert isinstance(client, MqttPort)
        assert isinstance(client, MqttMessageHandler)
        assert not isinstance(client, MqttLifecycle)

    def test_real_client_satisfies_ports(self, mqtt_settings: MqttSettings) -> None:
        client = MqttClient(settings=mqtt_settings)
        assert isinstance(client, MqttPort)
        assert isinstance(client, MqttMessageHandler)
        assert isinstance(client, MqttLifecycle)

    def test_will_defaults(self) -> None:
        will = WillConfig(topic="home/m223s/status")
        assert will.payload == "offline"
        assert will.qos == 1
        assert will.retain is True


# ---------------------------------------------------------------------------
# MockMqttClient
# ---------------------------------------------------------------------------


class TestMockMqttClient:
    """Technique: State-based Testing."""

    async def test_records_publish(self) -> None:
        client = MockMqttClient()
        await client.publish("home/m223s/state", "{}", retain=True, qos=1)
        assert client.published == [("home/m223s/state", "{}", True, 1)]
        assert client.publish_count == 1

    async def test_get_messages_for_filters_by_topic(self) -> None:
        client = MockMqttClient()
        await client.publish("a", "1")
        await client.publish("b", "2")
        assert client.get_messages_for("b") == [("2", False, 1)]

    async def test_publish_error_raises(self) -> None:
        client = MockMqttClient(publish_error=OSError("down"))
        with pytest.raises(OSError, match="down"):
            await client.publish("a", "1")

    async def test_deliver_invokes_callbacks(self) -> None:
        client = MockMqttClient()
        cb = AsyncMock()
        client.on_message(cb)
        await client.deliver("home/m223s/off", "1")
        cb.assert_awaited_once_with("home/m223s/off", "1")

    async def test_reset(self) -> None:
        client = MockMqttClient()
        await client.publish("a", "1")
        await client.subscribe("b")
        client.on_message(AsyncMock())
        client.reset()
        assert client.published == []
        assert client.subscriptions == []


# ---------------------------------------------------------------------------
# MqttClient
# ---------------------------------------------------------------------------


class TestMqttClientLifecycle:
    """Technique: State Transition Testing."""

    async def test_start_and_stop(
        self,
        mqtt_settings: MqttSettings,
        mock_aiomqtt: tuple[MagicMock, AsyncMock],
    ) -> None:
        client = MqttClient(settings=mqtt_settings)
        await client.start()
        await asyncio.sleep(0.05)
        assert client.is_connected
        await client.stop()
        assert client._listen_task is None  # noqa: SLF001
        assert not client.is_connected

    async def test_stop_is_idempotent(self, mqtt_settings: MqttSettings) -> None:
        client = MqttClient(settings=mqtt_settings)
        await client.stop()
        await client.stop()

    async def test_publish_requires_connection(
        self,
        mqtt_settings: MqttSettings,
    ) -> None:
        client = MqttClient(settings=mqtt_settings)
        with pytest.raises(RuntimeError, match="not connected"):
            await client.publish("t", "p")

    async def test_retained_publish_deferred(
        self,
        mqtt_settings: MqttSettings,
    ) -> None:
        client = MqttClient(settings=mqtt_settings)
        await client.publish("home/m223s/status", "online", retain=True)


class TestMqttClientReplay:
    """Technique: State-based Testing."""

    async def test_retained_replayed_on_connect(
        self,
        mqtt_settings: MqttSettings,
        mock_aiomqtt: tuple[MagicMock, AsyncMock],
    ) -> None:
        _module, inner = mock_aiomqtt
        client = MqttClient(settings=mqtt_settings)
        await client.publish("home/m223s/state", '{"state": "off"}', retain=True)
        await client.publish("home/m223s/state", '{"state": "on"}', retain=True)
        await client.start()
        await asyncio.sleep(0.05)

        inner.publish.assert_awaited_once_with(
            "home/m223s/state",
            '{"state": "on"}',
            retain=True,
            qos=1,
        )
        await client.stop()

    async def test_non_retained_not_replayed(
        self,
        mqtt_settings: MqttSettings,
        mock_aiomqtt: tuple[MagicMock, AsyncMock],
    ) -> None:
        _module, inner = mock_aiomqtt
        client = MqttClient(settings=mqtt_settings)
        await client.start()
        await asyncio.sleep(0.05)
        await client.publish("home/m223s/error", "{}")
        await client.stop()
        await client.start()
        await asyncio.sleep(0.05)

        assert inner.publish.await_count == 1
        await client.stop()


class TestMqttClientConnect:
    """Technique: Specification-based Testing."""

    async def test_credentials_and_identifier(
        self,
        mock_aiomqtt: tuple[MagicMock, AsyncMock],
    ) -> None:
        settings = MqttSettings(
            username="user",
            password=SecretStr("s3cret"),
            client_id="m223s2mqtt-1234",
        )
        mock_module, _client = mock_aiomqtt
        client = MqttClient(settings=settings)
        await client.start()
        await asyncio.sleep(0.05)

        kwargs = mock_module.Client.call_args.kwargs
        assert kwargs["username"] == "user"
        assert kwargs["password"] == "s3cret"
        assert kwargs["identifier"] == "m223s2mqtt-1234"
        await client.stop()

    async def test_will_translated(
        self,
        mqtt_settings: MqttSettings,
        mock_aiomqtt: tuple[MagicMock, AsyncMock],
    ) -> None:
        mock_module, _client = mock_aiomqtt
        will = WillConfig(topic="home/m223s/status")
        client = MqttClient(settings=mqtt_settings, will=will)
        await client.start()
        await asyncio.sleep(0.05)

        mock_module.Will.assert_called_once_with(
            topic="home/m223s/status",
            payload="offline",
            qos=1,
            retain=True,
        )
        await client.stop()

    async def test_subscriptions_sent_on_connect(
        self,
        mqtt_settings: MqttSettings,
        mock_aiomqtt: tuple[MagicMock, AsyncMock],
    ) -> None:
        _module, inner = mock_aiomqtt
        client = MqttClient(settings=mqtt_settings)
        await client.subscribe("home/m223s/off")
        await client.start()
        await asyncio.sleep(0.05)

        inner.subscribe.assert_awaited_with("home/m223s/off", qos=1)
        await client.stop()


class TestMqttClientDispatch:
    """Technique: Specification-based Testing."""

    async def test_bytes_payload_decoded(self, mqtt_settings: MqttSettings) -> None:
        client = MqttClient(settings=mqtt_settings)
        cb = AsyncMock()
        client.on_message(cb)
        message = SimpleNamespace(topic="home/m223s/off", payload=b"1")
        await client._dispatch(message)  # noqa: SLF001
        cb.assert_awaited_once_with("home/m223s/off", "1")

    async def test_empty_payload_still_dispatched(
        self,
        mqtt_settings: MqttSettings,
    ) -> None:
        """An off request may carry no payload at all."""
        client = MqttClient(settings=mqtt_settings)
        cb = AsyncMock()
        client.on_message(cb)
        message = SimpleNamespace(topic="home/m223s/off", payload=None)
        await client._dispatch(message)  # noqa: SLF001
        cb.assert_awaited_once_with("home/m223s/off", "")

    async def test_callback_error_is_contained(
        self,
        mqtt_settings: MqttSettings,
    ) -> None:
        client = MqttClient(settings=mqtt_settings)
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        after = AsyncMock()
        client.on_message(failing)
        client.on_message(after)
        await client._dispatch(SimpleNamespace(topic="t", payload=b""))  # noqa: SLF001
        after.assert_awaited_once_with("t", "")
