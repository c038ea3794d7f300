"""Unit tests for m223s2mqtt._settings: configuration models.

Test Techniques Used:
    - Specification-based Testing: Default values
    - Validation Error: pydantic constraint violations
    - Environment Override: monkeypatch for env var injection
    - Normalisation: address upper-cased, UUIDs lower-cased
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from m223s2mqtt._settings import (
    DeviceSettings,
    LoggingSettings,
    MqttSettings,
    Settings,
    TimingSettings,
)
from m223s2mqtt.testing import make_settings


class TestDefaults:
    """Verify defaults match the appliance and the polling policy.

    Technique: Specification-based Testing.
    """

    def test_mqtt_defaults(self) -> None:
        s = MqttSettings()
        assert s.host == "localhost"
        assert s.port == 1883
        assert s.username is None
        assert s.password is None
        assert s.client_id == ""
        assert s.qos == 1
        assert s.topic_prefix == "home/m223s"

    def test_logging_defaults(self) -> None:
        s = LoggingSettings()
        assert s.level == "INFO"
        assert s.format == "json"
        assert s.file is None

    def test_device_defaults(self) -> None:
        s = DeviceSettings()
        assert s.address == "F9:DA:73:71:23:4A"
        assert s.auth_key_bytes == bytes.fromhex("a43b64b0a3fbaecb")
        assert s.write_uuid == "6e400002-b5a3-f393-e0a9-e50e24dcca9e"
        assert s.notify_uuid == "6e400003-b5a3-f393-e0a9-e50e24dcca9e"
        assert s.bluez_service == "org.bluez"

    def test_timing_defaults(self) -> None:
        s = TimingSettings()
        assert s.polling_interval == 7.5
        assert s.idle_disconnect_after == 600.0
        assert s.discovery_rounds == 5
        assert s.discovery_round_delay == 1.0
        assert s.discovery_min_interval == 60.0
        assert s.write_timeout == 10.0
        assert s.settle_delay == 0.1


class TestDeviceValidation:
    """Device identity validation.

    Technique: Validation Error + Normalisation.
    """

    def test_address_is_upper_cased(self) -> None:
        assert DeviceSettings(address="f9:da:73:71:23:4a").address == (
            "F9:DA:73:71:23:4A"
        )

    @pytest.mark.parametrize("address", ["F9:DA:73:71:23", "not-an-address", ""])
    def test_bad_address_rejected(self, address: str) -> None:
        with pytest.raises(ValidationError):
            DeviceSettings(address=address)

    def test_uuid_is_lower_cased(self) -> None:
        s = DeviceSettings(write_uuid="6E400002-B5A3-F393-E0A9-E50E24DCCA9E")
        assert s.write_uuid == "6e400002-b5a3-f393-e0a9-e50e24dcca9e"

    def test_auth_key_must_be_hex(self) -> None:
        with pytest.raises(ValidationError, match="hex"):
            DeviceSettings(auth_key="zz3b64b0a3fbaecb")

    def test_auth_key_must_be_eight_bytes(self) -> None:
        with pytest.raises(ValidationError, match="8 bytes"):
            DeviceSettings(auth_key="a43b64b0")


class TestTimingValidation:
    """Technique: Boundary Value Analysis."""

    def test_polling_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            TimingSettings(polling_interval=0)

    def test_at_least_one_discovery_round(self) -> None:
        with pytest.raises(ValidationError):
            TimingSettings(discovery_rounds=0)

    def test_zero_settle_delay_allowed(self) -> None:
        assert TimingSettings(settle_delay=0).settle_delay == 0


class TestEnvironment:
    """Technique: Environment Override."""

    def test_nested_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("M223S_MQTT__HOST", "broker.test")
        monkeypatch.setenv("M223S_TIMING__POLLING_INTERVAL", "10")
        monkeypatch.setenv("M223S_DEVICE__ADDRESS", "aa:bb:cc:dd:ee:ff")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.mqtt.host == "broker.test"
        assert s.timing.polling_interval == 10.0
        assert s.device.address == "AA:BB:CC:DD:EE:FF"

    def test_invalid_env_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("M223S_DEVICE__AUTH_KEY", "00")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)  # type: ignore[call-arg]

    def test_make_settings_ignores_environment(
        self,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("M223S_MQTT__HOST", "broker.test")
        assert make_settings().mqtt.host == "localhost"

    def test_make_settings_overrides(self) -> None:
        s = make_settings(timing=TimingSettings(polling_interval=1.0))
        assert s.timing.polling_interval == 1.0
