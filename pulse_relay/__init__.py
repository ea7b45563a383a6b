"""BLE heart rate ingestion and WebSocket uplink relay."""

from .ble import ConnectorState, DeviceHandle, HeartRateConnector
from .collaborators import JsonFileStore, LoggingNotificationSink, TelemetryEvents
from .config import Config, load_config
from .log import setup_logging
from .orchestrator import RelayStatus, TelemetryOrchestrator
from .parser import is_heart_rate_capable, parse_bpm
from .session import Sample, SessionAggregator, SessionSnapshot
from .uplink import StreamUplink, UplinkState

__all__ = [
    "parse_bpm",
    "is_heart_rate_capable",
    "Sample",
    "SessionAggregator",
    "SessionSnapshot",
    "HeartRateConnector",
    "ConnectorState",
    "DeviceHandle",
    "StreamUplink",
    "UplinkState",
    "TelemetryOrchestrator",
    "RelayStatus",
    "TelemetryEvents",
    "JsonFileStore",
    "LoggingNotificationSink",
    "Config",
    "load_config",
    "setup_logging",
]
