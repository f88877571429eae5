import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from .constants import APP_NAME
from .registry import ProjectStatus, Registry, now_iso
from .status import SUCCESS, RunStats, StatusBoard, TransferStats

if TYPE_CHECKING:
    from .system import Notifier
    from .workflow import ProgressEvent, ProjectSyncWorkflow

logger = logging.getLogger(APP_NAME)


class SyncQueue:
    """An insertion-ordered set of project paths waiting to be synced."""

    def __init__(self) -> None:
        self._paths: dict[Path, None] = {}

    def add(self, path: Path) -> bool:
        """Queues a path.

        Returns:
            bool: False if the path was already queued.
        """
        if path in self._paths:
            return False
        self._paths[path] = None
        return True

    def drain(self) -> list[Path]:
        """Returns every queued path in order and empties the queue."""
        paths = list(self._paths)
        self._paths.clear()
        return paths

    def clear(self) -> None:
        self._paths.clear()

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self) -> Iterator[Path]:
        return iter(list(self._paths))


class Scheduler:
    """Drains the sync queue in serial batches.

    One project is synced at a time, in queue order; a failed project never
    stops the rest of the batch. ``is_syncing`` is the agent's single busy
    flag: change detection and periodic rescans stay idle while it is set.

    Attributes:
        is_syncing (bool): True while a batch is running.
        stats (RunStats): Counters of the current or last batch.
        transfer (TransferStats): Upload counters shared with the workflow.
        pause (float): Delay between two projects of a batch.
    """

    def __init__(
        self,
        registry: Registry,
        queue: SyncQueue,
        workflow: "ProjectSyncWorkflow",
        board: StatusBoard,
        notifier: "Notifier",
        pause: float = 0.5,
    ):
        self.registry = registry
        self.queue = queue
        self.workflow = workflow
        self.board = board
        self.notifier = notifier
        self.pause = pause
        self.is_syncing = False
        self.stats = RunStats()
        self.transfer: TransferStats = workflow.transfer
        self._abandoned = False
        self._batch_task: asyncio.Task | None = None
        self._index = 0
        self._count = 0
        board.attach(self)

    async def tick(self) -> None:
        """Starts a batch when work is queued and none is running.

        The batch runs in its own task and is awaited through a shield, so
        cancelling the caller (agent shutdown) lets the current project
        finish instead of killing git or HTTP calls half-way.
        """
        if not self.queue or self.is_syncing:
            return
        self._batch_task = asyncio.create_task(self.run_batch())
        await asyncio.shield(self._batch_task)

    async def manual_sync(self) -> bool:
        """Queues every known project and runs a batch immediately.

        Returns:
            bool: False if a batch was already running.
        """
        if self.is_syncing:
            logger.warning("SKIPPED: Sync already in progress.")
            return False

        logger.info("MANUAL: Manual sync started...")
        for path in self.registry.paths():
            self.queue.add(path)

        self._batch_task = asyncio.create_task(self.run_batch())
        return await asyncio.shield(self._batch_task)

    def abandon(self) -> None:
        """Stops the running batch after its current project.

        The in-flight workflow is not interrupted; its result is discarded.
        """
        self.queue.clear()
        if self.is_syncing:
            self._abandoned = True

    async def wait(self) -> None:
        """Waits for the running batch (if any) to finish."""
        if self._batch_task and not self._batch_task.done():
            await asyncio.shield(self._batch_task)

    async def run_batch(self) -> bool:
        """Syncs a snapshot of the queue, one project at a time.

        Returns:
            bool: False if nothing ran (queue empty or a batch in progress).
        """
        if self.is_syncing or not self.queue:
            return False

        self.is_syncing = True
        self._abandoned = False
        paths = self.queue.drain()
        self.stats = RunStats(total_projects=len(paths), start_time=time.time())
        self.transfer.reset()
        self._count = len(paths)

        self.board.update("syncing", "Starting sync...", 0)
        logger.info(f"SYNC: Syncing {len(paths)} projects...")

        try:
            for i, path in enumerate(paths):
                if self._abandoned:
                    break
                await self._sync_one(i, path)
                if self.pause and i < len(paths) - 1:
                    await asyncio.sleep(self.pause)
        finally:
            self.is_syncing = False
            self.stats.current_project = None
            self.stats.current_path = None

        if self._abandoned:
            self._abandoned = False
            logger.info("SYNC: Batch abandoned; agent stopped.")
            return True

        duration = round(time.time() - (self.stats.start_time or time.time()))
        completed, total = self.stats.completed_projects, self.stats.total_projects
        logger.info(
            f"SYNC COMPLETE: {completed}/{total} projects succeeded ({duration}s)",
            extra=SUCCESS,
        )
        self.notifier.notify(
            "GitHubAutoSync", f"{completed} projects synced successfully! ({duration}s)"
        )
        self.board.update("monitoring", "Sync complete", 100)
        return True

    async def _sync_one(self, index: int, path: Path) -> None:
        total = self._count
        self._index = index
        self.stats.current_project = path.name
        self.stats.current_path = path

        project = self.registry.get(path)
        if project:
            project.status = ProjectStatus.SYNCING
            project.error = None
            project.set_progress("Starting...", 0)

        self.board.update(
            "syncing",
            f"Syncing: {path.name} ({index + 1}/{total})",
            index / total * 100,
            path,
        )

        success = await self.workflow.run(path, self)

        if self._abandoned:
            return

        if success:
            self.stats.completed_projects += 1
            self.transfer.uploaded_files += 1
            self.transfer.upload_speed = self.stats.throughput
            if project:
                project.status = ProjectStatus.SYNCED
                project.has_git_repo = True
                project.last_check = now_iso()
                project.message = "Synced successfully"
                project.set_progress("Done", 100)
            self.board.update(
                "syncing",
                f"Completed: {path.name} ({index + 1}/{total})",
                (index + 1) / total * 100,
                path,
            )
        else:
            self.stats.failed_projects += 1
            if project:
                project.status = ProjectStatus.ERROR
                project.message = "Sync error"
                project.set_progress("Failed", 0)
            self.board.publish()

    def on_progress(self, event: "ProgressEvent") -> None:
        """Folds one workflow step into the project record and overall progress."""
        if self._abandoned:
            return

        if project := self.registry.get(event.path):
            project.set_progress(event.operation, event.percent)

        total = self._count or 1
        overall = (self._index / total) * 100 + (event.percent / 100) * (100 / total)
        self.transfer.upload_speed = self.stats.throughput
        speed = self.transfer.upload_speed
        speed_text = f" ({speed:.1f} projects/s)" if speed > 0 else ""
        self.board.update(
            "syncing",
            f"{event.operation} - {event.path.name}{speed_text}",
            round(overall, 1),
            event.path,
        )

    def on_error(self, path: Path, message: str) -> None:
        if project := self.registry.get(path):
            project.error = message
