"""Composition root: wires the bridge together and runs it.

Startup order:

1. Settings, logging.
2. System bus (fatal if unavailable), MQTT client with LWT.
3. Health ``online``, adapter enumeration, off-topic subscription.
4. Polling scheduler until SIGTERM/SIGINT.

Teardown runs in reverse: scheduler stopped, in-flight commands
cancelled, appliance disconnected, ``offline`` published, MQTT
stopped, bus closed.

Usage::

    from m223s2mqtt import App

    App().run()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid

from m223s2mqtt._bus import BusPort, DbusFastBus
from m223s2mqtt._clock import ClockPort, SystemClock
from m223s2mqtt._errors import ErrorPublisher
from m223s2mqtt._health import HealthReporter, build_will_config
from m223s2mqtt._logging import configure_logging
from m223s2mqtt._mqtt import MqttClient, MqttLifecycle, MqttMessageHandler, MqttPort
from m223s2mqtt._router import TopicRouter
from m223s2mqtt._settings import Settings
from m223s2mqtt.locator import DeviceLocator, DiscoveryThrottle
from m223s2mqtt.publisher import StatePublisher
from m223s2mqtt.scheduler import PollingScheduler
from m223s2mqtt.session import Session
from m223s2mqtt.writer import WritePipeline

logger = logging.getLogger(__name__)

OFF_TOPIC = "off"
STATE_TOPIC = "state"


class App:
    """The m223s2mqtt bridge application.

    Args:
        name: Service name used in logs and the generated client id.
        version: Version string used in logs.
        description: One-line description shown by ``--help``.
        settings_class: Settings model instantiated when none is given.
    """

    def __init__(
        self,
        name: str = "m223s2mqtt",
        version: str = "0.0.0",
        *,
        description: str = "M223S multicooker to MQTT bridge",
        settings_class: type[Settings] = Settings,
    ) -> None:
        self._name = name
        self._version = version
        self._description = description
        self._settings_class = settings_class

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def description(self) -> str:
        return self._description

    @property
    def settings_class(self) -> type[Settings]:
        return self._settings_class

    # --- Lifecycle ---------------------------------------------------------

    def run(
        self,
        *,
        settings: Settings | None = None,
        mqtt: MqttPort | None = None,
        bus: BusPort | None = None,
        clock: ClockPort | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        """Start the bridge (blocking).

        All parameters are optional and meant for programmatic or test
        use.  Production callers use :meth:`cli` or ``run()`` without
        arguments.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self._run_async(
                    settings=settings,
                    mqtt=mqtt,
                    bus=bus,
                    clock=clock,
                    shutdown_event=shutdown_event,
                ),
            )

    def cli(self) -> None:
        """Start the bridge with command-line parsing."""
        from m223s2mqtt._cli import build_cli

        cli = build_cli(self)
        cli(standalone_mode=True)

    async def _run_async(
        self,
        *,
        settings: Settings | None = None,
        mqtt: MqttPort | None = None,
        bus: BusPort | None = None,
        clock: ClockPort | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        """Run until shutdown.

        Args:
            settings: Override settings (skip env loading).
            mqtt: Override the MQTT client (e.g. ``MockMqttClient``).
            bus: Override the D-Bus port (e.g. ``FakeBus``).  When
                omitted, the system bus is opened and closed here.
            clock: Override the clock (e.g. ``FakeClock``).
            shutdown_event: Override the shutdown event (skip signal
                handlers).

        Raises:
            BusUnavailable: If the system bus cannot be opened.
        """
        # --- Bootstrap ---
        resolved_settings = settings if settings is not None else self._settings_class()
        prefix = resolved_settings.mqtt.topic_prefix
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )
        resolved_clock = clock if clock is not None else SystemClock()

        owned_bus: DbusFastBus | None = None
        if bus is None:
            owned_bus = DbusFastBus(resolved_settings.device.bluez_service)
            await owned_bus.connect()
            bus = owned_bus

        try:
            await self._run_bridge(
                resolved_settings,
                prefix,
                self._create_mqtt(mqtt, resolved_settings, prefix),
                bus,
                resolved_clock,
                self._install_signal_handlers(shutdown_event),
            )
        finally:
            if owned_bus is not None:
                owned_bus.disconnect()

        logger.info("Shutdown complete")

    async def _run_bridge(
        self,
        settings: Settings,
        prefix: str,
        mqtt: MqttPort,
        bus: BusPort,
        clock: ClockPort,
        shutdown_event: asyncio.Event,
    ) -> None:
        health = HealthReporter(mqtt=mqtt, topic_prefix=prefix)
        errors = ErrorPublisher(
            mqtt=mqtt,
            topic_prefix=prefix,
            device=settings.device.address,
        )
        session = self._build_session(settings, prefix, mqtt, bus, clock, errors)
        scheduler = PollingScheduler(
            session,
            clock,
            shutdown_event,
            interval=settings.timing.polling_interval,
            idle_disconnect_after=settings.timing.idle_disconnect_after,
        )

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()

        await health.publish_online()
        await session.locator.enumerate_adapters()

        router = TopicRouter(topic_prefix=prefix)
        router.register(OFF_TOPIC, scheduler.on_off_message)
        await self._subscribe_and_connect(mqtt, router)

        scheduler_task = asyncio.create_task(scheduler.run())
        try:
            await shutdown_event.wait()
        finally:
            # --- Tear down ---
            shutdown_event.set()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler_task
            await session.close()
            await session.disconnect()
            await health.shutdown()
            if isinstance(mqtt, MqttLifecycle):
                await mqtt.stop()

    # --- _run_async helpers ------------------------------------------------

    def _create_mqtt(
        self,
        mqtt: MqttPort | None,
        settings: Settings,
        prefix: str,
    ) -> MqttPort:
        """Create the MQTT client, or return the injected one.

        Without a configured ``client_id`` one is generated from the
        service name and a short random suffix.
        """
        if mqtt is not None:
            return mqtt
        mqtt_settings = settings.mqtt
        if not mqtt_settings.client_id:
            generated_id = f"{self._name}-{uuid.uuid4().hex[:8]}"
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": generated_id},
            )
        return MqttClient(settings=mqtt_settings, will=build_will_config(prefix))

    @staticmethod
    def _build_session(
        settings: Settings,
        prefix: str,
        mqtt: MqttPort,
        bus: BusPort,
        clock: ClockPort,
        errors: ErrorPublisher,
    ) -> Session:
        device = settings.device
        timing = settings.timing
        locator = DeviceLocator(
            bus,
            address=device.address,
            throttle=DiscoveryThrottle(clock, timing.discovery_min_interval),
            clock=clock,
            rounds=timing.discovery_rounds,
            round_delay=timing.discovery_round_delay,
        )
        writer = WritePipeline(
            bus,
            clock,
            timeout=timing.write_timeout,
            settle_delay=timing.settle_delay,
        )
        publisher = StatePublisher(
            mqtt,
            f"{prefix}/{STATE_TOPIC}",
            qos=settings.mqtt.qos,
        )
        return Session(
            bus=bus,
            locator=locator,
            writer=writer,
            publisher=publisher,
            auth_key=device.auth_key_bytes,
            write_uuid=device.write_uuid,
            notify_uuid=device.notify_uuid,
            errors=errors,
        )

    @staticmethod
    def _install_signal_handlers(
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers.  Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    @staticmethod
    async def _subscribe_and_connect(mqtt: MqttPort, router: TopicRouter) -> None:
        """Subscribe to routed topics and wire the message handler."""
        for topic in router.subscriptions:
            await mqtt.subscribe(topic)
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(router.route)
