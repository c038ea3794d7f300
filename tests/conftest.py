"""Pytest configuration and shared fixtures."""

import pytest

# The testing plugin is registered via a ``pytest11`` entry point for
# downstream suites.  Here it is disabled (``-p no:m223s2mqtt``) and
# loaded through conftest instead, so that the package is first
# imported after ``pytest-cov`` has started tracing.
pytest_plugins = ["m223s2mqtt.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (in-memory doubles, full wiring)"
    )


@pytest.fixture
def session(mock_mqtt, fake_bus, fake_clock):
    """Session wired to the in-memory doubles with default settings."""
    from m223s2mqtt._app import App
    from m223s2mqtt._errors import ErrorPublisher
    from m223s2mqtt._settings import TimingSettings
    from m223s2mqtt.testing import make_settings

    settings = make_settings(timing=TimingSettings(write_timeout=0.05))
    errors = ErrorPublisher(
        mqtt=mock_mqtt,
        topic_prefix=settings.mqtt.topic_prefix,
        device=settings.device.address,
    )
    return App._build_session(  # noqa: SLF001
        settings,
        settings.mqtt.topic_prefix,
        mock_mqtt,
        fake_bus,
        fake_clock,
        errors,
    )
