"""Interfaces to the host environment, plus headless default implementations.

Notification display, persistence and process keep-alive belong to the host
platform. The pipeline only talks to the protocols below; the defaults make
the relay usable as a plain CLI process.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

LAST_DEVICE_KEY = "last_connected_device"


class NotificationSink(Protocol):
    def show_reconnection(self, title: str, message: str, attempt_count: int) -> None: ...

    def show_heart_rate(
        self,
        current: int,
        average: float,
        minimum: int,
        maximum: int,
        duration: timedelta,
    ) -> None: ...

    def cancel(self) -> None: ...


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class KeepAlive(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


def format_duration(duration: timedelta) -> str:
    """Format a duration as H:MM:SS."""
    total = int(duration.total_seconds())
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


class LoggingNotificationSink:
    """Notification sink that writes notifications to the log."""

    def show_reconnection(self, title: str, message: str, attempt_count: int) -> None:
        logger.warning("%s: %s (attempt %d)", title, message, attempt_count)

    def show_heart_rate(
        self,
        current: int,
        average: float,
        minimum: int,
        maximum: int,
        duration: timedelta,
    ) -> None:
        logger.info(
            "HR %d bpm (avg %.0f, min %d, max %d) for %s",
            current,
            average,
            minimum,
            maximum,
            format_duration(duration),
        )

    def cancel(self) -> None:
        logger.debug("Status notification cancelled")


class JsonFileStore:
    """Key-value store persisted as a flat JSON object."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read state file '%s': %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to write state file '%s': %s", self.path, e)


class MemoryStore:
    """In-process key-value store."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class NullKeepAlive:
    """Keep-alive for hosts where the process already stays runnable."""

    def __init__(self):
        self.active = False

    def start(self) -> None:
        self.active = True
        logger.debug("Keep-alive requested")

    def stop(self) -> None:
        self.active = False
        logger.debug("Keep-alive released")


@dataclass
class TelemetryEvents:
    """Callbacks exposed to UI and notification code.

    Each callback is optional. A failing listener is logged and ignored so it
    cannot break the pipeline that raised the event.
    """

    status_changed: Callable[[str], None] | None = None
    sample_received: Callable[[int], None] | None = None
    device_discovered: Callable[[Any], None] | None = None
    snapshot_changed: Callable[[Any], None] | None = None

    def emit(self, name: str, *args: Any) -> None:
        callback = getattr(self, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Listener for '%s' failed", name)
