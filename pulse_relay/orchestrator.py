"""Wires BLE ingestion, the session and the uplink together."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from .ble import UNKNOWN_DEVICE, ConnectorState, DeviceHandle, HeartRateConnector
from .collaborators import (
    KeepAlive,
    KeyValueStore,
    LoggingNotificationSink,
    NotificationSink,
    NullKeepAlive,
    TelemetryEvents,
)
from .config import Config
from .session import SessionAggregator
from .uplink import StreamUplink, UplinkState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayStatus:
    """Point-in-time view of the relay for polling UIs."""

    running: bool
    connector_state: ConnectorState
    device: DeviceHandle | None
    uplink_state: UplinkState
    uplink_url: str
    reconnect_attempts: int
    last_update: datetime | None


class TelemetryOrchestrator:
    """Owns the pipeline components and drives the fixed-period tick.

    All shared state lives in the components passed in here; there is no
    module level state, so several orchestrators can coexist (e.g. in tests).
    """

    def __init__(
        self,
        aggregator: SessionAggregator,
        uplink: StreamUplink,
        connector: HeartRateConnector | None = None,
        notifier: NotificationSink | None = None,
        keep_alive: KeepAlive | None = None,
        events: TelemetryEvents | None = None,
        store: KeyValueStore | None = None,
        tick_interval: float = 1.0,
        connect_timeout: float = 15.0,
        scan_settle: float = 0.2,
    ):
        self.aggregator = aggregator
        self.uplink = uplink
        self.events = events or TelemetryEvents()
        self.notifier = notifier or LoggingNotificationSink()
        self.keep_alive = keep_alive or NullKeepAlive()
        self.tick_interval = tick_interval
        self.connector = connector or HeartRateConnector(
            on_sample=self.handle_sample,
            on_connected=self.handle_connected,
            events=self.events,
            store=store,
            connect_timeout=connect_timeout,
            scan_settle=scan_settle,
        )
        self.in_background = False
        self._send_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: KeyValueStore,
        token: str = "",
        notifier: NotificationSink | None = None,
        keep_alive: KeepAlive | None = None,
        events: TelemetryEvents | None = None,
    ) -> "TelemetryOrchestrator":
        """Build a fully wired orchestrator from configuration."""
        events = events or TelemetryEvents()
        notifier = notifier or LoggingNotificationSink()
        uplink = StreamUplink(
            url=config.uplink.url,
            token=token,
            notifier=notifier,
            events=events,
            open_timeout=config.uplink.open_timeout,
            send_timeout=config.uplink.send_timeout,
            close_timeout=config.uplink.close_timeout,
            reconnect_initial=config.uplink.reconnect_initial,
            reconnect_max=config.uplink.reconnect_max,
        )
        return cls(
            aggregator=SessionAggregator(capacity=config.app.session_capacity),
            uplink=uplink,
            notifier=notifier,
            keep_alive=keep_alive,
            events=events,
            store=store,
            tick_interval=config.app.tick_interval,
            connect_timeout=config.ble.connect_timeout,
            scan_settle=config.ble.scan_settle,
        )

    @property
    def device_name(self) -> str:
        device = self.connector.device
        return device.name if device else UNKNOWN_DEVICE

    def status(self) -> RelayStatus:
        latest = self.aggregator.latest_sample()
        return RelayStatus(
            running=self._tick_task is not None and not self._tick_task.done(),
            connector_state=self.connector.state,
            device=self.connector.device,
            uplink_state=self.uplink.state,
            uplink_url=self.uplink.url,
            reconnect_attempts=self.uplink.reconnect_attempts,
            last_update=latest.timestamp if latest else None,
        )

    def handle_sample(self, bpm: int) -> None:
        """Sample sink for the connector."""
        self.aggregator.add_sample(bpm)
        self.events.emit("sample_received", bpm)

    def handle_connected(self, device: DeviceHandle) -> None:
        """A new device starts a new session."""
        logger.debug("New device %s, resetting session", device.address)
        self.aggregator.reset()

    async def tick(self) -> None:
        """Push the latest sample upstream and publish session changes."""
        sample = self.aggregator.latest_sample()
        if sample is not None:
            if self._send_task is None or self._send_task.done():
                self._send_task = asyncio.create_task(self.uplink.send(sample, self.device_name))
            else:
                logger.debug("Previous send still in flight, skipping tick")

        if self.aggregator.consume_dirty_flag():
            snapshot = self.aggregator.snapshot()
            self.events.emit("snapshot_changed", snapshot)
            if self.in_background and snapshot.count:
                self._show_status(snapshot)

    def _show_status(self, snapshot) -> None:
        try:
            self.notifier.show_heart_rate(
                snapshot.latest,
                snapshot.average,
                snapshot.minimum,
                snapshot.maximum,
                snapshot.duration,
            )
        except Exception as e:
            logger.warning("Failed to show status notification: %s", e)

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stop_event.is_set():
            await self.tick()
            next_tick += self.tick_interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    def enter_background(self) -> None:
        """Keep the process runnable and start periodic status notifications."""
        if self.in_background:
            return
        self.in_background = True
        try:
            self.keep_alive.start()
        except Exception as e:
            logger.warning("Failed to start keep-alive: %s", e)
        self._show_status(self.aggregator.snapshot())
        logger.info("Running in background")

    def leave_background(self) -> None:
        if not self.in_background:
            return
        self.in_background = False
        try:
            self.keep_alive.stop()
        except Exception as e:
            logger.warning("Failed to stop keep-alive: %s", e)
        try:
            self.notifier.cancel()
        except Exception as e:
            logger.warning("Failed to cancel status notification: %s", e)
        logger.info("Left background mode")

    async def start_device(self, address: str | None = None) -> None:
        """Connect to address, else to the last known device, else scan."""
        if address:
            if await self.connector.connect_address(address):
                return
        elif await self.connector.connect_last_device():
            return
        await self.connector.start_scan()

    async def run(self, address: str | None = None) -> None:
        """Run until stop() is called."""
        self._stop_event.clear()
        await self.uplink.connect()
        self._tick_task = asyncio.create_task(self._tick_loop())
        device_task = asyncio.create_task(self.start_device(address))
        try:
            await self._stop_event.wait()
        finally:
            for task in (device_task, self._tick_task):
                task.cancel()
            await asyncio.gather(device_task, self._tick_task, return_exceptions=True)
            await self.shutdown()

    def stop(self) -> None:
        """Request run() to return."""
        self._stop_event.set()

    async def shutdown(self) -> None:
        """Cancel in-flight work and release the connector and uplink."""
        send_task = self._send_task
        if send_task is not None and not send_task.done():
            send_task.cancel()
            await asyncio.gather(send_task, return_exceptions=True)
        self.leave_background()
        await self.connector.close()
        await self.uplink.close()
        logger.info("Shutdown complete")
