"""Rolling heart rate session with running statistics."""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


@dataclass(frozen=True)
class Sample:
    """A single heart rate reading."""

    timestamp: datetime
    heart_rate: int


@dataclass(frozen=True)
class SessionSnapshot:
    """Consistent, read-only copy of a session."""

    samples: tuple[Sample, ...] = ()
    latest: int = 0
    minimum: int = 0
    maximum: int = 0
    average: float = 0.0
    started_at: datetime | None = None
    duration: timedelta = timedelta(0)

    @property
    def count(self) -> int:
        return len(self.samples)

    @property
    def latest_sample(self) -> Sample | None:
        return self.samples[-1] if self.samples else None


def _now() -> datetime:
    return datetime.now().astimezone()


class SessionAggregator:
    """Bounded FIFO of samples plus latest/min/max/average.

    Samples may be added from a BLE backend thread while the event loop reads
    snapshots, so every access goes through one lock. Statistics are
    recomputed inside the same critical section as the window mutation, which
    keeps readers from ever seeing a window and stats that disagree.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, clock=_now):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._clock = clock
        self._lock = threading.Lock()
        self._samples: deque[Sample] = deque(maxlen=capacity)
        self._latest = 0
        self._min = 0
        self._max = 0
        self._average = 0.0
        self._started_at: datetime | None = None
        self._dirty = False

    def add_sample(self, bpm: int) -> Sample:
        """Append a reading, evicting the oldest once the window is full."""
        with self._lock:
            sample = Sample(timestamp=self._clock(), heart_rate=bpm)
            if not self._samples:
                self._started_at = sample.timestamp
            self._samples.append(sample)

            values = [s.heart_rate for s in self._samples]
            self._latest = bpm
            self._min = min(values)
            self._max = max(values)
            self._average = sum(values) / len(values)
            self._dirty = True
        return sample

    def snapshot(self) -> SessionSnapshot:
        """Return a copy of the current window and its statistics."""
        with self._lock:
            if not self._samples:
                return SessionSnapshot()
            return SessionSnapshot(
                samples=tuple(self._samples),
                latest=self._latest,
                minimum=self._min,
                maximum=self._max,
                average=self._average,
                started_at=self._started_at,
                duration=self._clock() - self._started_at,
            )

    def reset(self) -> None:
        """Drop all samples and statistics."""
        with self._lock:
            self._samples.clear()
            self._latest = 0
            self._min = 0
            self._max = 0
            self._average = 0.0
            self._started_at = None
            self._dirty = False
        logger.debug("Session reset")

    def consume_dirty_flag(self) -> bool:
        """Return whether samples arrived since the last call, and clear it."""
        with self._lock:
            dirty = self._dirty
            self._dirty = False
            return dirty

    @property
    def has_unflushed_update(self) -> bool:
        with self._lock:
            return self._dirty

    @property
    def latest(self) -> int:
        with self._lock:
            return self._latest

    def latest_sample(self) -> Sample | None:
        with self._lock:
            return self._samples[-1] if self._samples else None

    def duration(self) -> timedelta:
        """Time elapsed since the first sample of this session."""
        with self._lock:
            if self._started_at is None:
                return timedelta(0)
            return self._clock() - self._started_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
