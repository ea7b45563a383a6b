"""BLE heart rate peripheral discovery, connection and subscription."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.uuids import normalize_uuid_str

from .collaborators import LAST_DEVICE_KEY, KeyValueStore, TelemetryEvents
from .errors import (
    CharacteristicNotFound,
    ConnectError,
    ConnectFailed,
    ConnectTimeout,
    MalformedPayload,
    ScanError,
    ServiceNotFound,
)
from .parser import is_heart_rate_capable, parse_bpm, records_from_service_uuids

logger = logging.getLogger(__name__)

HR_SERVICE_UUID = normalize_uuid_str("180D")
HR_CHAR_UUID = normalize_uuid_str("2A37")

UNKNOWN_DEVICE = "Unknown device"

SampleCallback = Callable[[int], None]
ConnectedCallback = Callable[["DeviceHandle"], None]


class ConnectorState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPING = "stopping"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class DeviceHandle:
    """Identity of the connected peripheral."""

    address: str
    name: str


def _device_name(device: BLEDevice) -> str:
    return device.name or UNKNOWN_DEVICE


class HeartRateConnector:
    """Finds a heart rate peripheral, connects and streams its samples.

    Scanning stops at the first advertiser that passes
    is_heart_rate_capable, and a connection attempt to it starts right away.
    Every failure is reported through status text; nothing is raised to the
    caller, who decides whether to scan or connect again.
    """

    def __init__(
        self,
        on_sample: SampleCallback,
        on_connected: ConnectedCallback | None = None,
        events: TelemetryEvents | None = None,
        store: KeyValueStore | None = None,
        connect_timeout: float = 15.0,
        scan_settle: float = 0.2,
    ):
        self.on_sample = on_sample
        self.on_connected = on_connected
        self.events = events or TelemetryEvents()
        self._store = store
        self._connect_timeout = connect_timeout
        self._scan_settle = scan_settle
        self.state = ConnectorState.IDLE
        self.device: DeviceHandle | None = None
        self.last_error: Exception | None = None
        self._scanner: BleakScanner | None = None
        self._client: BleakClient | None = None
        self._connecting = False
        self._match_claimed = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_scanning(self) -> bool:
        return self.state is ConnectorState.SCANNING

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _report(self, status: str) -> None:
        """Publish status text for UI consumers."""
        self.events.emit("status_changed", status)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start_scan(self) -> bool:
        """Start scanning for heart rate peripherals.

        Returns:
            True if a scan is running when the call returns
        """
        if self.state is ConnectorState.SCANNING:
            logger.debug("Scan already running")
            return True

        self.state = ConnectorState.SCANNING
        self._report("Scanning...")

        if self._scanner is not None:
            await self._stop_scanner()
            # Give the adapter time to settle before scanning again
            await asyncio.sleep(self._scan_settle)

        self._match_claimed = False
        try:
            self._scanner = BleakScanner(detection_callback=self._detection_callback)
            await self._scanner.start()
        except Exception as e:
            self._scanner = None
            self.state = ConnectorState.IDLE
            self.last_error = ScanError(str(e))
            logger.warning("Scan failed: %s", e)
            self._report(f"Scan error: {e}")
            return False

        logger.info("Scanning for HR devices...")
        return True

    async def stop_scan(self) -> None:
        """Stop scanning if a scan is running."""
        if self.state is ConnectorState.SCANNING:
            self.state = ConnectorState.STOPPING
        await self._stop_scanner()
        if self.state is ConnectorState.STOPPING:
            self.state = ConnectorState.IDLE

    async def _stop_scanner(self) -> None:
        scanner = self._scanner
        self._scanner = None
        if scanner is None:
            return
        try:
            await scanner.stop()
            logger.debug("Scan stopped")
        except Exception as e:
            self.last_error = ScanError(str(e))
            logger.warning("Failed to stop scan: %s", e)
            self._report(f"Scan error: {e}")

    def _detection_callback(self, device: BLEDevice, adv: AdvertisementData) -> None:
        """Claim the first heart rate capable advertiser of this scan cycle."""
        if self._match_claimed or self.state is not ConnectorState.SCANNING:
            return

        name = adv.local_name or device.name
        records = records_from_service_uuids(adv.service_uuids or [])
        if not is_heart_rate_capable(records, name):
            return

        self._match_claimed = True
        handle = DeviceHandle(device.address, name or UNKNOWN_DEVICE)
        logger.info("Discovered HR device: %s (%s)", handle.name, handle.address)
        self._report(f"Found heart rate device: {handle.name}")
        self.events.emit("device_discovered", handle)
        self._spawn(self._connect_discovered(device))

    async def _connect_discovered(self, device: BLEDevice) -> None:
        await self.stop_scan()
        await self.connect_and_subscribe(device)

    async def connect_and_subscribe(self, device: BLEDevice) -> bool:
        """Connect to a peripheral and subscribe to HR notifications.

        Calls made while another connection is in flight are dropped.

        Returns:
            True once subscribed; on failure last_error holds the ConnectError
        """
        if self._connecting:
            logger.debug("Connection already in progress, ignoring %s", device.address)
            return False
        self._connecting = True

        try:
            if self._scanner is not None:
                await self.stop_scan()
                await asyncio.sleep(self._scan_settle)
            await self._cleanup_client()

            self.state = ConnectorState.CONNECTING
            name = _device_name(device)
            self._report(f"Connecting to {name}...")
            try:
                await self._connect(device, name)
            except ConnectError as e:
                self.last_error = e
                logger.warning("Connection failed: %s", e)
                self._report(str(e))
                await self._cleanup_client()
                self.state = ConnectorState.DISCONNECTED
                return False

            self.device = DeviceHandle(device.address, name)
            self.state = ConnectorState.SUBSCRIBED
            self.last_error = None
        finally:
            self._connecting = False

        logger.info("Connected to %s", name)
        self._remember_device(device.address)
        self._report("Monitoring heart rate...")
        return True

    async def _connect(self, device: BLEDevice, name: str) -> None:
        client = BleakClient(
            device,
            disconnected_callback=self._on_disconnected,
            timeout=self._connect_timeout,
        )
        self._client = client
        try:
            await asyncio.wait_for(client.connect(), timeout=self._connect_timeout)
        except TimeoutError as e:
            raise ConnectTimeout(f"Timed out connecting to {name}") from e
        except Exception as e:
            raise ConnectFailed(f"Failed to connect to {name}: {e}") from e

        service = client.services.get_service(HR_SERVICE_UUID)
        if service is None:
            raise ServiceNotFound(f"Heart rate service not found on {name}")
        characteristic = service.get_characteristic(HR_CHAR_UUID)
        if characteristic is None:
            raise CharacteristicNotFound(f"Heart rate characteristic not found on {name}")

        # Announce before subscribing: notifications may arrive inside start_notify
        if self.on_connected:
            self.on_connected(DeviceHandle(device.address, name))

        try:
            await client.start_notify(characteristic, self._notify_handler)
        except Exception as e:
            raise ConnectFailed(f"Failed to subscribe to {name}: {e}") from e
        logger.debug("Connected and subscribed to HR notifications")

    def _notify_handler(self, _: object, data: bytearray) -> None:
        """Handle incoming HR notifications."""
        try:
            bpm = parse_bpm(bytes(data))
        except MalformedPayload as e:
            logger.warning("Malformed HR packet: %s", e)
            return
        logger.debug("HR: %d bpm", bpm)
        self.on_sample(bpm)

    def _on_disconnected(self, client: BleakClient) -> None:
        """Handle a link drop reported by the BLE backend."""
        if client is not self._client:
            return
        logger.info("Device disconnected")
        self._client = None
        self.device = None
        self.state = ConnectorState.DISCONNECTED
        self._report("Device disconnected")

    def _remember_device(self, address: str) -> None:
        if self._store is None:
            return
        try:
            self._store.set(LAST_DEVICE_KEY, address)
            logger.debug("Saved device address: %s", address)
        except Exception as e:
            logger.warning("Failed to save device address: %s", e)

    @property
    def last_device_address(self) -> str | None:
        if self._store is None:
            return None
        try:
            return self._store.get(LAST_DEVICE_KEY)
        except Exception as e:
            logger.warning("Failed to read saved device address: %s", e)
            return None

    async def connect_address(self, address: str, timeout: float = 10.0) -> bool:
        """Find a peripheral by address and connect to it."""
        self._report(f"Looking for {address}...")
        try:
            device = await BleakScanner.find_device_by_address(address, timeout=timeout)
        except Exception as e:
            self.last_error = ScanError(str(e))
            logger.warning("Scan for %s failed: %s", address, e)
            self._report(f"Scan error: {e}")
            return False

        if device is None:
            self.last_error = ConnectFailed(f"Device {address} not found")
            logger.warning("Device %s not found", address)
            self._report(f"Device {address} not found")
            return False

        return await self.connect_and_subscribe(device)

    async def connect_last_device(self, timeout: float = 10.0) -> bool:
        """Reconnect to the most recently connected peripheral, if any."""
        address = self.last_device_address
        if not address:
            return False
        return await self.connect_address(address, timeout=timeout)

    async def _cleanup_client(self) -> None:
        """Clean up client resources."""
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            if client.is_connected:
                await client.stop_notify(HR_CHAR_UUID)
                await client.disconnect()
        except Exception as e:
            logger.debug("Error while releasing client: %s", e)

    async def disconnect(self) -> None:
        """Tear down the subscription and connection, cancelling a pending connect."""
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        was_connected = self.device is not None
        await self._cleanup_client()
        self.device = None
        if self.state in (ConnectorState.CONNECTING, ConnectorState.SUBSCRIBED):
            self.state = ConnectorState.DISCONNECTED
        if was_connected:
            logger.info("Disconnected from device")
            self._report("Device disconnected")

    async def close(self) -> None:
        """Stop scanning, cancel background work and disconnect."""
        logger.debug("Closing connector...")
        await self.stop_scan()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.disconnect()
        self.state = ConnectorState.IDLE
