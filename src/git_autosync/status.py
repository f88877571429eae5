"""Status aggregation and the event stream published to observers.

The ``StatusBoard`` folds the registry, the scheduler's batch state and the
network monitor's reachability flag into one snapshot. Every change to the
board is published on the ``EventBus`` as a ``StatusEvent``; log records from
the application logger reach the same bus through ``EventLogHandler``.
"""

import asyncio
import datetime
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from .constants import APP_NAME

if TYPE_CHECKING:
    from .network import NetworkStatus
    from .registry import Registry

logger = logging.getLogger(APP_NAME)

EVENT_LEVELS = ("info", "warning", "error", "success")


@dataclass
class LogEvent:
    level: str
    message: str
    timestamp: str = field(
        default_factory=lambda: datetime.datetime.now().isoformat(timespec="seconds")
    )
    kind: str = "log"


@dataclass
class StatusEvent:
    snapshot: dict[str, Any]
    kind: str = "status"


@dataclass
class NotificationEvent:
    title: str
    body: str
    kind: str = "notification"


Event = LogEvent | StatusEvent | NotificationEvent


class EventBus:
    """Fan-out of events to any number of subscriber queues.

    Queues are bounded; when a slow subscriber's queue is full its oldest
    event is dropped so publishing never blocks the agent.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._maxsize = maxsize
        self._subscribers: list[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: Event) -> None:
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)

    def __len__(self) -> int:
        return len(self._subscribers)


class EventLogHandler(logging.Handler):
    """Forwards application log records to the event bus as ``LogEvent``s.

    Records logged with ``extra={"event_type": "success"}`` are published with
    the ``success`` level; everything else maps from the logging level.
    """

    def __init__(self, bus: EventBus, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.bus = bus

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = getattr(record, "event_type", None)
            if level not in EVENT_LEVELS:
                if record.levelno >= logging.ERROR:
                    level = "error"
                elif record.levelno >= logging.WARNING:
                    level = "warning"
                else:
                    level = "info"
            timestamp = datetime.datetime.fromtimestamp(record.created).isoformat(
                timespec="seconds"
            )
            self.bus.publish(LogEvent(level, record.getMessage(), timestamp))
        except Exception:
            self.handleError(record)


SUCCESS = {"event_type": "success"}
"""dict: ``extra`` marker for log records that report a success."""


@dataclass
class RunStats:
    """Statistics of the current (or last) sync batch."""

    total_projects: int = 0
    completed_projects: int = 0
    failed_projects: int = 0
    start_time: float | None = None
    current_project: str | None = None
    current_path: Path | None = None

    @property
    def throughput(self) -> float:
        """Completed projects per elapsed second of the batch."""
        if not self.start_time or not self.completed_projects:
            return 0.0
        elapsed = time.time() - self.start_time
        return self.completed_projects / elapsed if elapsed > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_projects": self.total_projects,
            "completed_projects": self.completed_projects,
            "failed_projects": self.failed_projects,
            "start_time": self.start_time,
            "current_project": self.current_project,
            "current_path": str(self.current_path) if self.current_path else None,
            "throughput": round(self.throughput, 3),
        }


@dataclass
class TransferStats:
    """Upload counters of the current sync batch."""

    total_files: int = 0
    upload_speed: float = 0.0
    current_file: str = ""
    uploaded_files: int = 0

    def reset(self) -> None:
        self.total_files = 0
        self.upload_speed = 0.0
        self.current_file = ""
        self.uploaded_files = 0


class SyncState(Protocol):
    is_syncing: bool
    stats: RunStats
    transfer: TransferStats


class StatusBoard:
    """The externally observable status of the agent.

    Attributes:
        phase (str): idle, initializing, scanning, ready, monitoring or syncing.
        message (str): Human-readable status line.
        progress (float): Overall progress, 0-100.
        is_running (bool): Whether automatic monitoring is active.
        username (str | None): The configured account, if any.
    """

    def __init__(
        self, registry: "Registry", network: "NetworkStatus", bus: EventBus
    ) -> None:
        self.registry = registry
        self.network = network
        self.bus = bus
        self.phase = "idle"
        self.message = "Ready"
        self.progress = 0.0
        self.current_path: Path | None = None
        self.is_running = False
        self.username: str | None = None
        self._sync_state: SyncState | None = None
        self._started = time.monotonic()

    def attach(self, sync_state: SyncState) -> None:
        """Connects the scheduler whose batch state the snapshot reports."""
        self._sync_state = sync_state

    @property
    def is_syncing(self) -> bool:
        return bool(self._sync_state and self._sync_state.is_syncing)

    def update(
        self,
        phase: str,
        message: str,
        progress: float = 0.0,
        current_path: Path | None = None,
    ) -> None:
        """Records a new phase/message/progress and publishes the snapshot."""
        self.phase = phase
        self.message = message
        self.progress = min(100.0, max(0.0, progress))
        self.current_path = current_path
        self.publish()

    def publish(self) -> None:
        self.bus.publish(StatusEvent(self.snapshot()))

    def snapshot(self) -> dict[str, Any]:
        """Returns the full status as plain data. Performs no I/O."""
        state = self._sync_state
        stats = state.stats if state else RunStats()
        transfer = state.transfer if state else TransferStats()
        return {
            "phase": self.phase,
            "message": self.message,
            "progress": self.progress,
            "is_running": self.is_running,
            "is_syncing": self.is_syncing,
            "current_path": str(self.current_path) if self.current_path else None,
            "network_status": {
                "is_online": self.network.is_online,
                "last_check": self.network.last_check,
            },
            "transfer_stats": asdict(transfer),
            "projects": [p.to_dict() for p in self.registry],
            "stats": stats.to_dict(),
            "config": {"username": self.username} if self.username else None,
            "uptime": round(time.monotonic() - self._started, 1),
        }
