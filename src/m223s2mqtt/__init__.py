"""m223s2mqtt.

Bridge a Redmond M223S BLE multicooker to MQTT through BlueZ.
"""

from importlib.metadata import PackageNotFoundError, version

from m223s2mqtt._app import App
from m223s2mqtt._bus import BusPort, DbusFastBus, NodeInfo
from m223s2mqtt._clock import ClockPort, SystemClock
from m223s2mqtt._errors import (
    BusCallError,
    BusUnavailable,
    ConnectFailed,
    DeviceNotFound,
    ErrorPayload,
    ErrorPublisher,
    M223sError,
    MalformedNotification,
    PublishFailed,
    ResolveFailed,
    WriteError,
    WriteFailed,
    WriteTimeout,
    build_error_payload,
)
from m223s2mqtt._health import HealthReporter, build_will_config
from m223s2mqtt._logging import JsonFormatter, configure_logging
from m223s2mqtt._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    WillConfig,
)
from m223s2mqtt._settings import (
    DeviceSettings,
    LoggingSettings,
    MqttSettings,
    Settings,
    TimingSettings,
)
from m223s2mqtt.locator import DeviceLocator, DiscoveryThrottle
from m223s2mqtt.publisher import StatePublisher
from m223s2mqtt.scheduler import PollingScheduler
from m223s2mqtt.session import CycleOutcome, DeviceState, Session, SessionContext
from m223s2mqtt.topology import TopologyResolver
from m223s2mqtt.writer import WritePipeline

try:
    __version__ = version("m223s2mqtt")
except PackageNotFoundError:
    # Running from a source tree without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # App
    "App",
    # Bus
    "BusPort",
    "DbusFastBus",
    "NodeInfo",
    # Clock
    "ClockPort",
    "SystemClock",
    # Errors
    "BusCallError",
    "BusUnavailable",
    "ConnectFailed",
    "DeviceNotFound",
    "ErrorPayload",
    "ErrorPublisher",
    "M223sError",
    "MalformedNotification",
    "PublishFailed",
    "ResolveFailed",
    "WriteError",
    "WriteFailed",
    "WriteTimeout",
    "build_error_payload",
    # Health
    "HealthReporter",
    "build_will_config",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "WillConfig",
    # Settings
    "DeviceSettings",
    "LoggingSettings",
    "MqttSettings",
    "Settings",
    "TimingSettings",
    # Bridge
    "CycleOutcome",
    "DeviceLocator",
    "DeviceState",
    "DiscoveryThrottle",
    "PollingScheduler",
    "Session",
    "SessionContext",
    "StatePublisher",
    "TopologyResolver",
    "WritePipeline",
]
