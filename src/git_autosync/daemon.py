import asyncio
import atexit
import contextlib
import json
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

from .config import Config
from .constants import APP_NAME, LOG_FILE, PID_FILE, STATUS_FILE, STATUS_INTERVAL
from .github import GitHubClient
from .monitor import ChangeDetector, Debouncer
from .network import NetworkMonitor, NetworkStatus
from .registry import Registry
from .scanner import DiscoveryScanner
from .scheduler import Scheduler, SyncQueue
from .status import SUCCESS, EventBus, EventLogHandler, StatusBoard, TransferStats
from .system import Notifier, SystemStrategy
from .workflow import ProjectSyncWorkflow

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


def write_status_file(snapshot: dict[str, Any], path: Path) -> None:
    """Atomically replaces the status file with a new snapshot.

    Args:
        snapshot (dict[str, Any]): The output of ``StatusBoard.snapshot``.
        path (Path): The destination file.
    """
    tmp_file = path.with_suffix(".tmp")
    with open(tmp_file, "w", encoding="utf-8") as f:
        json.dump(snapshot, f, indent=2, default=str)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_file, path)


class AutoSync:
    """The background agent.

    Owns every component and drives their periodic work from one event loop:
    change detection, rescans of the watch roots, sync-queue ticks,
    connectivity probes and status publishing each run as a separate interval
    task.

    Attributes:
        config (Config): The active configuration.
        events (EventBus): Log, status and notification events for observers.
        registry (Registry): Known projects.
        queue (SyncQueue): Projects waiting to be synced.
        board (StatusBoard): The observable status.
        status_file (Path | None): Where snapshots are persisted, if anywhere.
    """

    def __init__(
        self,
        config: Config,
        config_path: Path | None = None,
        status_file: Path | None = STATUS_FILE,
        system: SystemStrategy | None = None,
        api_transport: httpx.AsyncBaseTransport | None = None,
        probe_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.config_path = config_path
        self.status_file = status_file
        self._system = system
        self._api_transport = api_transport
        self._probe_transport = probe_transport

        self.events = EventBus()
        self.registry = Registry()
        self.queue = SyncQueue()
        self.network_status = NetworkStatus()
        self.board = StatusBoard(self.registry, self.network_status, self.events)
        self._log_handler = EventLogHandler(self.events)
        self._tasks: list[asyncio.Task] = []
        self._build()

    def _build(self) -> None:
        """(Re)creates the components that depend on the configuration."""
        config = self.config
        intervals = config.intervals

        self.notifier = Notifier(self.events, config.tray_enabled, self._system)
        self.github = GitHubClient(
            config.username, config.token, transport=self._api_transport
        )
        self.network = NetworkMonitor(
            self.network_status, intervals.network, transport=self._probe_transport
        )
        self.workflow = ProjectSyncWorkflow(
            config, self.github, self.network_status, TransferStats()
        )
        self.scheduler = Scheduler(
            self.registry, self.queue, self.workflow, self.board, self.notifier
        )
        self.debouncer = Debouncer(
            self.registry, self.queue, self.board, intervals.debounce
        )
        self.scanner = DiscoveryScanner(
            self.registry, self.queue, self.board, self.notifier, config.watch_paths
        )
        self.detector = ChangeDetector(self.registry, self.debouncer, self.board)
        self.board.username = config.username or None

    @property
    def is_running(self) -> bool:
        return self.board.is_running

    async def start(self) -> bool:
        """Scans the watch roots and starts automatic monitoring.

        Returns:
            bool: False if the configuration is incomplete or startup failed.
        """
        if self.is_running:
            logger.warning("SKIPPED: Auto sync is already running.")
            return True

        if not self.config.is_complete:
            logger.error(
                "SETUP REQUIRED: Configure a GitHub username, token and at least "
                "one watch folder."
            )
            self.board.update("idle", "Configuration required")
            return False

        if self._log_handler not in logger.handlers:
            logger.addHandler(self._log_handler)

        try:
            self.board.update("initializing", "Starting auto sync...")
            logger.info("START: Starting auto sync...")

            await self.network.probe()
            await self.scanner.scan(full=True)
            count = len(self.registry)

            self.board.is_running = True
            self._start_loops()

            if count == 0:
                logger.warning(
                    "NO PROJECTS: No project folders found. "
                    "New folders will be picked up by the next rescan."
                )
            self.board.update(
                "monitoring", f"Monitoring {count} projects for changes", 0
            )
            logger.info(
                f"MONITORING: Auto sync started ({count} projects).", extra=SUCCESS
            )
            self.notifier.notify(
                "GitHubAutoSync", f"{count} projects added to monitoring"
            )
            return True
        except Exception as e:
            logger.exception(f"START ERROR: {e}")
            await self.stop()
            return False

    def _start_loops(self) -> None:
        intervals = self.config.intervals
        loops: list[tuple[str, float, Callable[[], Awaitable[Any]]]] = [
            ("check", intervals.check, self.detector.check),
            ("scan", intervals.scan, self.scanner.scan),
            ("process", intervals.process, self.scheduler.tick),
            ("network", self.network.interval, self.network.probe),
            ("status", STATUS_INTERVAL, self.publish_status),
        ]
        self._tasks = [
            asyncio.create_task(self._repeat(name, interval, fn), name=name)
            for name, interval, fn in loops
        ]

    async def _repeat(
        self, name: str, interval: float, fn: Callable[[], Awaitable[Any]]
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await fn()
            except Exception:
                logger.exception(f"LOOP ERROR {name}")

    async def stop(self) -> None:
        """Stops monitoring and forgets every project.

        A batch that is syncing is abandoned after its current project.
        """
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self.debouncer.cancel_all()
        self.scheduler.abandon()
        self.queue.clear()
        self.registry.clear()

        was_running = self.board.is_running
        self.board.is_running = False
        self.board.update("idle", "Stopped")
        if was_running:
            logger.info("STOP: Auto sync stopped.")

    async def close(self) -> None:
        """Releases the HTTP client and detaches from the application logger."""
        await self.github.aclose()
        logger.removeHandler(self._log_handler)

    async def manual_sync(self) -> bool:
        """Syncs every known project now.

        Returns:
            bool: False if setup is incomplete or a batch is already running.
        """
        if not self.config.is_complete:
            logger.warning("SKIPPED: Complete the setup before syncing.")
            return False
        return await self.scheduler.manual_sync()

    async def apply_config(self, config: Config) -> bool:
        """Saves a new configuration and restarts the agent with it.

        Args:
            config (Config): The configuration to apply.

        Returns:
            bool: The result of the restart.
        """
        await asyncio.to_thread(config.save, self.config_path)
        await self.stop()
        await self.scheduler.wait()
        await self.github.aclose()
        self.config = config
        self._build()
        return await self.start()

    def get_status(self) -> dict[str, Any]:
        return self.board.snapshot()

    async def publish_status(self) -> None:
        """Publishes the current snapshot and mirrors it to the status file."""
        self.board.publish()
        if self.status_file is None:
            return
        try:
            await asyncio.to_thread(
                write_status_file, self.board.snapshot(), self.status_file
            )
        except OSError as e:
            logger.warning(f"Could not write status file: {e}")


async def run_once(
    config: Config, status_file: Path | None = None
) -> dict[str, Any]:
    """Scans every watch root and syncs all projects once (CLI ``now``).

    Args:
        config (Config): The configuration to use.
        status_file (Path | None): Where to write the final snapshot, if anywhere.

    Returns:
        dict[str, Any]: The status snapshot after the batch.
    """
    agent = AutoSync(config, status_file=status_file)
    try:
        if not config.is_complete:
            logger.error(
                "SETUP REQUIRED: Configure a GitHub username, token and at least "
                "one watch folder."
            )
            return agent.get_status()

        logger.addHandler(agent._log_handler)
        await agent.network.probe()
        await agent.scanner.scan(full=True)
        await agent.manual_sync()
        await agent.publish_status()
        return agent.get_status()
    finally:
        await agent.close()


def setup_logging(interactive: bool, max_log_size: int) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr
                            and to the rotating log file.
        max_log_size (int): Max bytes of the log file before rotation.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Always log to a stream (stderr is captured by systemd/launchd).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def _handle_loop_exception(
    loop: asyncio.AbstractEventLoop, context: dict[str, Any]
) -> None:
    exc = context.get("exception")
    message = context.get("message", "Unhandled error")
    logger.error(f"UNHANDLED: {message}", exc_info=exc)


async def serve(agent: AutoSync) -> None:
    """Runs the agent until SIGINT or SIGTERM is received."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        if not await agent.start():
            return
        await stop_event.wait()
        logger.info("SHUTDOWN: Signal received, stopping...")
    finally:
        await agent.stop()
        await agent.scheduler.wait()
        await agent.close()


def main(interactive: bool = False) -> None:
    """The daemon entry point.

    Args:
        interactive (bool, optional): Log to stdout instead of the log file
                                      (CLI 'run' command). Defaults to False.
    """
    config = Config.load()
    setup_logging(interactive, config.limits.max_log_size)

    # PID File Management.
    if not interactive:
        try:
            with open(PID_FILE, "w") as f:
                f.write(str(os.getpid()))

            atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
        except OSError as e:
            logger.warning(f"Could not write PID file: {e}")

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve(AutoSync(config)))


if __name__ == "__main__":
    main()
