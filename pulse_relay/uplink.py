"""WebSocket uplink that relays heart rate samples to a telemetry endpoint."""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from .collaborators import NotificationSink, TelemetryEvents
from .errors import DisposalError, SendTimeout, TransportError, UplinkError
from .session import Sample

logger = logging.getLogger(__name__)

DEFAULT_URL = "ws://127.0.0.1:8765"
VALID_SCHEMES = ("ws://", "wss://")

RECONNECT_TITLE = "Connection lost"


class UplinkState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


@dataclass(frozen=True)
class HeartRateFrame:
    """Wire format of one uplink message."""

    heart_rate: int
    timestamp: datetime
    device_name: str
    token: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "HeartRate": self.heart_rate,
                "Timestamp": self.timestamp.isoformat(),
                "DeviceName": self.device_name,
                "Token": self.token,
            },
            ensure_ascii=False,
        )


def resolve_endpoint(url: str | None, fallback: str = DEFAULT_URL) -> str:
    """Return url if it uses a WebSocket scheme, otherwise fallback."""
    candidate = (url or "").strip()
    if candidate.lower().startswith(VALID_SCHEMES):
        return candidate
    if candidate:
        logger.warning("Unsupported uplink URL '%s', using %s", candidate, fallback)
    return fallback


def should_alert(attempt: int) -> bool:
    """Reconnect attempts that raise a degraded-connectivity alert."""
    return attempt in (3, 5) or attempt % 10 == 0


class StreamUplink:
    """Persistent WebSocket connection with automatic reconnection.

    Delivery is best effort: a sample that cannot be sent right away is
    dropped, never queued. Transport failures start a single background
    reconnection loop with exponential backoff that runs until it succeeds or
    the uplink is closed. Only that loop touches reconnect_attempts and
    current_backoff.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        token: str = "",
        notifier: NotificationSink | None = None,
        events: TelemetryEvents | None = None,
        open_timeout: float = 10.0,
        send_timeout: float = 5.0,
        close_timeout: float = 2.0,
        reconnect_initial: float = 5.0,
        reconnect_max: float = 60.0,
        ping_interval: float | None = 20.0,
    ):
        self.url = resolve_endpoint(url)
        self.token = token
        self.notifier = notifier
        self.events = events or TelemetryEvents()
        self._open_timeout = open_timeout
        self._send_timeout = send_timeout
        self._close_timeout = close_timeout
        self._reconnect_initial = reconnect_initial
        self._reconnect_max = reconnect_max
        self._ping_interval = ping_interval
        self.state = UplinkState.DISCONNECTED
        self.reconnect_attempts = 0
        self.current_backoff = reconnect_initial
        self.last_error: UplinkError | None = None
        self._ws: ClientConnection | None = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self.state is UplinkState.OPEN

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    async def connect(self) -> bool:
        """Make one attempt to open the connection.

        Returns:
            True if the connection is open
        """
        if self._closed:
            return False
        async with self._connect_lock:
            if self.state is UplinkState.OPEN:
                return True
            return await self._open()

    async def _open(self) -> bool:
        self.state = UplinkState.CONNECTING
        logger.info("Connecting to %s...", self.url)
        try:
            ws = await connect(
                self.url,
                open_timeout=self._open_timeout,
                close_timeout=self._close_timeout,
                ping_interval=self._ping_interval,
            )
        except Exception as e:
            self.state = UplinkState.DISCONNECTED
            self.last_error = TransportError(str(e))
            logger.warning("Uplink connection to %s failed: %s", self.url, e)
            return False

        if self._closed:
            # close() ran while the handshake was in flight
            logger.debug("Uplink closed during handshake, discarding connection")
            try:
                await asyncio.wait_for(ws.close(), timeout=self._close_timeout)
            except Exception as e:
                logger.warning("%s", DisposalError(f"Error while closing uplink: {e}"))
            self.state = UplinkState.DISCONNECTED
            return False

        self._ws = ws
        self.state = UplinkState.OPEN
        self._reader_task = asyncio.create_task(self._read(ws))
        logger.info("Uplink connected to %s", self.url)
        self.events.emit("status_changed", "Uplink connected")
        return True

    async def _read(self, ws: ClientConnection) -> None:
        """Drain server messages so a server-side close is noticed promptly."""
        try:
            async for message in ws:
                logger.debug("Server message: %s", message)
        except ConnectionClosed as e:
            logger.debug("Uplink connection closed: %s", e)

        if self._ws is ws and not self._closed:
            logger.warning("Uplink closed by server")
            self._fail(TransportError("Connection closed by server"))

    def _fail(self, error: UplinkError) -> None:
        self.last_error = error
        self.state = UplinkState.DISCONNECTED
        self.events.emit("status_changed", "Uplink disconnected")
        self._trigger_reconnect()

    async def send(self, sample: Sample, device_name: str) -> bool:
        """Send one sample as a JSON text frame.

        Returns:
            True if the frame was handed to the transport, False if dropped
        """
        if self._closed:
            return False

        if self.state is not UplinkState.OPEN:
            if not self.is_reconnecting:
                await self.connect()
            if self.state is not UplinkState.OPEN:
                logger.debug("Uplink not open, dropping %d bpm", sample.heart_rate)
                self._trigger_reconnect()
                return False

        frame = HeartRateFrame(
            heart_rate=sample.heart_rate,
            timestamp=sample.timestamp,
            device_name=device_name,
            token=self.token,
        )
        try:
            await asyncio.wait_for(self._ws.send(frame.to_json()), timeout=self._send_timeout)
        except TimeoutError:
            logger.warning("Send timed out after %.0fs", self._send_timeout)
            self._fail(SendTimeout(f"Send timed out after {self._send_timeout}s"))
            return False
        except Exception as e:
            logger.warning("Send failed: %s", e)
            self._fail(TransportError(str(e)))
            return False

        logger.debug("Sent %d bpm", sample.heart_rate)
        return True

    def _trigger_reconnect(self) -> None:
        """Start the reconnection loop unless one is already running."""
        if self._closed:
            return
        if self.is_reconnecting:
            logger.debug("Reconnect already in progress")
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _next_delay(self) -> float:
        """Return the delay for this attempt and double it for the next one."""
        delay = self.current_backoff
        self.current_backoff = min(self.current_backoff * 2, self._reconnect_max)
        return delay

    async def _reconnect_loop(self) -> None:
        while not self._closed:
            self.reconnect_attempts += 1
            delay = self._next_delay()
            logger.info("Reconnect attempt %d in %.0fs...", self.reconnect_attempts, delay)

            if should_alert(self.reconnect_attempts):
                self._alert(self.reconnect_attempts)

            await asyncio.sleep(delay)
            await self._discard_connection()

            async with self._connect_lock:
                if await self._open():
                    break

        if self.state is UplinkState.OPEN:
            logger.info("Reconnected after %d attempt(s)", self.reconnect_attempts)
            self.reconnect_attempts = 0
            self.current_backoff = self._reconnect_initial

    def _alert(self, attempt: int) -> None:
        if self.notifier is None:
            return
        message = f"Server connection lost, reconnect attempt {attempt}."
        try:
            self.notifier.show_reconnection(RECONNECT_TITLE, message, attempt)
        except Exception as e:
            logger.warning("Failed to show reconnection notification: %s", e)

    async def _discard_connection(self) -> None:
        """Drop the current connection object so a fresh one can be opened."""
        ws = self._ws
        self._ws = None
        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=self._close_timeout)
        except Exception as e:
            logger.debug("Error discarding stale connection: %s", e)

    async def close(self) -> None:
        """Shut the uplink down permanently. Never raises."""
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing uplink...")

        task = self._reconnect_task
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        ws = self._ws
        self._ws = None
        if ws is not None:
            self.state = UplinkState.CLOSING
            try:
                await asyncio.wait_for(ws.close(), timeout=self._close_timeout)
            except Exception as e:
                logger.warning("%s", DisposalError(f"Error while closing uplink: {e}"))

        reader = self._reader_task
        self._reader_task = None
        if reader is not None:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        self.state = UplinkState.DISCONNECTED
        logger.debug("Uplink closed")
