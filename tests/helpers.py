"""Shared test helper functions for pulse_relay tests."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock


def make_hr_packet(
    bpm: int,
    *,
    is_16bit: bool = False,
    sensor_contact: bool | None = None,
    energy: int | None = None,
    rr_intervals: list[int] | None = None,
) -> bytes:
    """Build a BLE HR measurement packet.

    Args:
        bpm: Heart rate in BPM
        is_16bit: If True, use 16-bit BPM format
        sensor_contact: None=not supported, True=detected, False=not detected
        energy: Energy expended in joules (if supported)
        rr_intervals: RR intervals in 1/1024 second units
    """
    flags = 0
    if is_16bit:
        flags |= 0b1
    if sensor_contact is not None:
        flags |= 0b100
        if sensor_contact:
            flags |= 0b10
    if energy is not None:
        flags |= 0b1000
    if rr_intervals:
        flags |= 0b10000

    data = bytearray([flags])
    data.extend(bpm.to_bytes(2 if is_16bit else 1, "little"))
    if energy is not None:
        data.extend(energy.to_bytes(2, "little"))
    for rr in rr_intervals or []:
        data.extend(rr.to_bytes(2, "little"))
    return bytes(data)


def make_device(address: str = "AA:BB:CC:DD:EE:FF", name: str | None = "HR Monitor") -> MagicMock:
    """Mock BLEDevice."""
    device = MagicMock()
    device.address = address
    device.name = name
    return device


def make_adv(service_uuids: list[str] | None = None, local_name: str | None = None) -> MagicMock:
    """Mock AdvertisementData."""
    adv = MagicMock()
    adv.service_uuids = service_uuids or []
    adv.local_name = local_name
    return adv


def make_bleak_client(*, has_service: bool = True, has_characteristic: bool = True) -> AsyncMock:
    """Mock BleakClient whose GATT table optionally contains the HR service."""
    client = AsyncMock()
    client.is_connected = True

    characteristic = MagicMock(name="hr_characteristic")
    service = MagicMock(name="hr_service")
    service.get_characteristic.return_value = characteristic if has_characteristic else None
    services = MagicMock()
    services.get_service.return_value = service if has_service else None
    client.services = services
    return client


class FakeConnection:
    """Stand-in for a websockets ClientConnection.

    Iterating it blocks until the connection is closed locally or dropped by
    the fake server.
    """

    def __init__(self) -> None:
        self.sent: list[str] = []
        self._closed = asyncio.Event()
        self.send = AsyncMock(side_effect=self._send)
        self.close = AsyncMock(side_effect=self._close)

    async def _send(self, data: str) -> None:
        self.sent.append(data)

    async def _close(self) -> None:
        self._closed.set()

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._closed.set()

    def __aiter__(self) -> FakeConnection:
        return self

    async def __anext__(self) -> str:
        await self._closed.wait()
        raise StopAsyncIteration
