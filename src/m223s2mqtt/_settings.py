"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables (prefixed
``M223S_``) and/or a ``.env`` file.  Nested models use ``__`` as the
delimiter, e.g. ``M223S_MQTT__HOST=broker.local``.

The schema covers four concerns:

* **MQTT**: broker connection and topic layout.
* **Logging**: level, format, optional file sink, rotation.
* **Device**: BLE address, authorization key and GATT UUIDs of the
  multicooker.
* **Timing**: polling cadence, discovery and write timings.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from m223s2mqtt.protocol import AUTH_KEY_LENGTH

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings; nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables::

        M223S_MQTT__HOST=broker.local
        M223S_MQTT__PORT=1883
        M223S_MQTT__USERNAME=user
        M223S_MQTT__PASSWORD=secret
        M223S_MQTT__TOPIC_PREFIX=home/m223s
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the app generates "
            "'m223s2mqtt-{hex8}' at startup."
        ),
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds to wait before reconnecting after connection loss.",
    )
    qos: Literal[0, 1, 2] = Field(
        default=1,
        description="MQTT Quality of Service level for subscriptions.",
    )
    topic_prefix: str = Field(
        default="home/m223s",
        description=(
            "Root prefix for all MQTT topics: ``{prefix}/state``, "
            "``{prefix}/off``, ``{prefix}/status``, ``{prefix}/error``."
        ),
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    ``format="json"`` (default) emits one JSON object per line for
    journald / container log collectors; ``"text"`` is meant for a
    terminal.  When ``file`` is set, logs are also written to a
    size-rotated file.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format: 'json' or 'text'.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


class DeviceSettings(BaseModel):
    """Identity of the multicooker and its vendor GATT profile.

    Environment variables::

        M223S_DEVICE__ADDRESS=F9:DA:73:71:23:4A
        M223S_DEVICE__AUTH_KEY=a43b64b0a3fbaecb
    """

    address: str = Field(
        default="F9:DA:73:71:23:4A",
        pattern=r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$",
        description="Bluetooth address of the appliance.",
    )
    auth_key: str = Field(
        default="a43b64b0a3fbaecb",
        description="8-byte authorization key as a hex string.",
    )
    write_uuid: str = Field(
        default="6e400002-b5a3-f393-e0a9-e50e24dcca9e",
        description="UUID of the characteristic commands are written to.",
    )
    notify_uuid: str = Field(
        default="6e400003-b5a3-f393-e0a9-e50e24dcca9e",
        description="UUID of the characteristic replies are notified on.",
    )
    bluez_service: str = Field(
        default="org.bluez",
        description="D-Bus well-known name of the Bluetooth daemon.",
    )

    @field_validator("address")
    @classmethod
    def _normalise_address(cls, value: str) -> str:
        return value.upper()

    @field_validator("write_uuid", "notify_uuid")
    @classmethod
    def _normalise_uuid(cls, value: str) -> str:
        return value.lower()

    @field_validator("auth_key")
    @classmethod
    def _check_auth_key(cls, value: str) -> str:
        try:
            raw = bytes.fromhex(value)
        except ValueError as exc:
            msg = f"auth_key must be a hex string, got {value!r}"
            raise ValueError(msg) from exc
        if len(raw) != AUTH_KEY_LENGTH:
            msg = f"auth_key must be {AUTH_KEY_LENGTH} bytes, got {len(raw)}"
            raise ValueError(msg)
        return value.lower()

    @property
    def auth_key_bytes(self) -> bytes:
        """The authorization key decoded from hex."""
        return bytes.fromhex(self.auth_key)


class TimingSettings(BaseModel):
    """Polling cadence and protocol timings."""

    polling_interval: Annotated[float, Field(gt=0)] = Field(
        default=7.5,
        description="Seconds between two polling cycles.",
    )
    idle_disconnect_after: Annotated[float, Field(gt=0)] = Field(
        default=600.0,
        description=(
            "Disconnect before the next cycle once the command counter "
            "times the polling interval reaches this many seconds."
        ),
    )
    discovery_rounds: Annotated[int, Field(ge=1)] = Field(
        default=5,
        description="Lookup rounds before the device is reported missing.",
    )
    discovery_round_delay: Annotated[float, Field(ge=0)] = Field(
        default=1.0,
        description="Pause between two lookup rounds.",
    )
    discovery_min_interval: Annotated[float, Field(ge=0)] = Field(
        default=60.0,
        description="Minimum time between two active BLE scans.",
    )
    write_timeout: Annotated[float, Field(gt=0)] = Field(
        default=10.0,
        description="Upper bound for a command write acknowledgment.",
    )
    settle_delay: Annotated[float, Field(ge=0)] = Field(
        default=0.1,
        description="Pause after an acknowledged write.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for m223s2mqtt.

    Example ``.env``::

        M223S_MQTT__HOST=broker.local
        M223S_MQTT__USERNAME=user
        M223S_MQTT__PASSWORD=secret
        M223S_LOGGING__FORMAT=text
        M223S_DEVICE__ADDRESS=F9:DA:73:71:23:4A
        M223S_TIMING__POLLING_INTERVAL=10
    """

    model_config = SettingsConfigDict(
        env_prefix="M223S_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    device: DeviceSettings = Field(
        default_factory=DeviceSettings,
        description="Appliance identity.",
    )
    timing: TimingSettings = Field(
        default_factory=TimingSettings,
        description="Polling and protocol timings.",
    )
