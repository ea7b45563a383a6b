"""Shared test fixtures for pulse_relay tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pulse_relay.collaborators import MemoryStore, TelemetryEvents
from tests.helpers import make_adv, make_bleak_client, make_device, make_hr_packet


@pytest.fixture
def hr_packet_full() -> bytes:
    """Packet with all fields populated."""
    return make_hr_packet(
        150,
        is_16bit=True,
        sensor_contact=True,
        energy=1500,
        rr_intervals=[800, 850],
    )


# BLE mocks
@pytest.fixture
def mock_bleak_client():
    """Mock BleakClient exposing the HR service and characteristic."""
    return make_bleak_client()


@pytest.fixture
def mock_ble_device():
    """Mock BLEDevice."""
    return make_device()


@pytest.fixture
def hr_advertisement():
    """Mock AdvertisementData listing the HR service UUID."""
    from bleak.uuids import normalize_uuid_str

    return make_adv([normalize_uuid_str("180D")])


# Collaborators
@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier() -> MagicMock:
    """Mock notification sink."""
    return MagicMock()


@pytest.fixture
def events() -> TelemetryEvents:
    """Events whose callbacks are all mocks."""
    return TelemetryEvents(
        status_changed=MagicMock(),
        sample_received=MagicMock(),
        device_discovered=MagicMock(),
        snapshot_changed=MagicMock(),
    )


# Config fixtures
@pytest.fixture
def sample_config_dict() -> dict:
    """Sample config dict as would be parsed from TOML."""
    return {
        "app": {
            "log_level": "DEBUG",
            "tick_interval": 0.5,
            "session_capacity": 50,
            "state_file": "/tmp/pulse-relay-state.json",
        },
        "uplink": {
            "url": "wss://telemetry.example.com/ws",
            "token": "secret",
            "send_timeout": 3.0,
            "reconnect_initial": 2.0,
            "reconnect_max": 30.0,
        },
        "ble": {
            "connect_timeout": 20.0,
            "scan_settle": 0.5,
        },
        "device": {
            "address": "11:22:33:44:55:66",
        },
    }


@pytest.fixture
def partial_config_dict() -> dict:
    """Partial config dict with some values missing."""
    return {
        "uplink": {"url": "ws://10.0.0.2:9000"},
        "ble": {"connect_timeout": 5.0},
    }
