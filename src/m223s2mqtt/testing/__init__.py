"""Public test-support utilities for m223s2mqtt.

Re-exports test doubles and factories so that test suites can import
everything from a single ``m223s2mqtt.testing`` namespace.

Provided symbols:

- :class:`MockMqttClient`: in-memory MQTT double that records calls.
- :class:`FakeBus`: in-memory BlueZ object tree with scripted replies.
- :class:`FakeMulticooker`: plays the appliance's side of the protocol.
- :class:`FakeClock`: deterministic clock with instantaneous ``sleep()``.
- :func:`make_settings`: ``Settings`` without ``.env`` files.
- :func:`query_reply`: builds query notification payloads.
"""

from m223s2mqtt._mqtt import MockMqttClient
from m223s2mqtt.testing._bus import (
    BusCall,
    FakeBus,
    FakeMulticooker,
    MulticookerPaths,
    query_reply,
)
from m223s2mqtt.testing._clock import FakeClock
from m223s2mqtt.testing._settings import make_settings

__all__ = [
    "BusCall",
    "FakeBus",
    "FakeClock",
    "FakeMulticooker",
    "MockMqttClient",
    "MulticookerPaths",
    "make_settings",
    "query_reply",
]
