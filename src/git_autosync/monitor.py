import asyncio
import logging
from pathlib import Path

from .constants import APP_NAME, DEBOUNCE_WINDOW
from .registry import ProjectStatus, Registry, now_iso
from .scanner import probe_folder
from .scheduler import SyncQueue
from .status import StatusBoard

logger = logging.getLogger(APP_NAME)


class Debouncer:
    """Delays enqueueing a changed project until its folder has been quiet.

    Each path has at most one pending timer. Re-requesting a path cancels its
    timer and starts a new one, so a burst of changes produces a single
    enqueue ``window`` seconds after the last of them.

    Attributes:
        window (float): The quiet period in seconds.
    """

    def __init__(
        self,
        registry: Registry,
        queue: SyncQueue,
        board: StatusBoard,
        window: float = DEBOUNCE_WINDOW,
    ):
        self.registry = registry
        self.queue = queue
        self.board = board
        self.window = window
        self._timers: dict[Path, asyncio.TimerHandle] = {}

    def request_enqueue(self, path: Path) -> None:
        """(Re)arms the timer for ``path``. Must be called from the event loop."""
        if timer := self._timers.pop(path, None):
            timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[path] = loop.call_later(self.window, self._fire, path)

    def _fire(self, path: Path) -> None:
        self._timers.pop(path, None)
        self.queue.add(path)

        if project := self.registry.get(path):
            project.status = ProjectStatus.QUEUED
        logger.warning(f"CHANGE DETECTED {path.name}: Queued for sync.")
        self.board.publish()

    def pending(self, path: Path) -> bool:
        return path in self._timers

    def cancel(self, path: Path) -> None:
        if timer := self._timers.pop(path, None):
            timer.cancel()

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def __len__(self) -> int:
        return len(self._timers)


class ChangeDetector:
    """Samples folder modification times to spot edited or deleted projects.

    Attributes:
        pause (float): Cooperative delay between projects in one pass.
    """

    def __init__(
        self,
        registry: Registry,
        debouncer: Debouncer,
        board: StatusBoard,
        pause: float = 0.05,
    ):
        self.registry = registry
        self.debouncer = debouncer
        self.board = board
        self.pause = pause

    async def check(self) -> None:
        """Runs one detection pass over every registered project.

        The pass is skipped while a sync batch is running, and ends early if
        a batch starts part-way through it.
        """
        if self.board.is_syncing:
            return

        paths = self.registry.paths()
        total = len(paths)

        for checked, path in enumerate(paths, start=1):
            if self.board.is_syncing:
                logger.debug("CHECK: Pass interrupted by a sync batch.")
                return
            try:
                await self._check_one(path, checked, total)
            except OSError as e:
                logger.error(f"CHECK ERROR {path.name}: {e}")
            if self.pause:
                await asyncio.sleep(self.pause)

        if not self.board.is_syncing:
            self.board.update("monitoring", "Watching folders for changes...", 0)

    async def _check_one(self, path: Path, checked: int, total: int) -> None:
        info = await asyncio.to_thread(probe_folder, path)
        if self.board.is_syncing:
            return
        if info is None or not info.is_dir:
            self.debouncer.cancel(path)
            self.registry.remove(path)
            logger.warning(f"REMOVED {path.name}: Project folder no longer exists.")
            return

        project = self.registry.get(path)
        if project is None:
            return

        pct = round(checked / total * 100)
        self.board.update(
            "monitoring", f"Checking changes: {project.name} ({pct}%)", pct, path
        )

        project.has_git_repo = info.has_git_repo
        project.last_check = now_iso()
        modified = info.mtime > project.last_modified
        if modified:
            project.last_modified = info.mtime

        if not info.has_git_repo:
            project.status = ProjectStatus.NEEDS_REPO
            project.message = "Git repository required"
            self.debouncer.request_enqueue(path)
        elif modified:
            project.status = ProjectStatus.CHANGED
            project.message = "Changes detected"
            self.debouncer.request_enqueue(path)
        elif not (self.debouncer.pending(path) or path in self.debouncer.queue):
            project.status = ProjectStatus.READY
            project.message = "Up to date"
