"""Structured JSON log formatter and logging configuration.

The bridge is meant to run unattended under systemd or in a container,
so by default every record is emitted as one JSON object per line
(NDJSON) on stderr.  ``format="text"`` switches to a plain
timestamped layout for interactive use.

Besides the fixed fields, a small set of *context keys* passed via
``extra=`` is lifted into the JSON object, so protocol traces stay
machine-readable::

    logger.debug("New value", extra={"frame": "55 01 06 ..."})

    {"timestamp": "...", "level": "DEBUG", "logger": "m223s2mqtt.session",
     "message": "New value", "service": "m223s2mqtt", "frame": "55 01 06 ..."}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from m223s2mqtt._settings import LoggingSettings

_MEGABYTE = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CONTEXT_KEYS: tuple[str, ...] = ("frame", "path", "adapter", "state")
"""Record attributes copied into the JSON output when present."""


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Fields: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``,
    ``message``, ``service``, ``version`` (omitted when empty), any
    :data:`CONTEXT_KEYS` set on the record, and ``exception`` /
    ``stack_info`` when present.

    Args:
        service: Application name included in every log line.
        version: Application version string.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }
        if self._version:
            entry["version"] = self._version

        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Install fresh root handlers according to *settings*.

    A stderr stream handler is always installed.  When
    ``settings.file`` is set, a :class:`RotatingFileHandler` limited to
    ``settings.max_file_size_mb`` is added as well.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.format == "json":
        formatter: logging.Formatter = JsonFormatter(service=service, version=version)
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.file is not None:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * _MEGABYTE,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(settings.level)
