import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME
from .registry import Project, ProjectStatus, Registry
from .scheduler import SyncQueue
from .status import SUCCESS, StatusBoard
from .system import Notifier

logger = logging.getLogger(APP_NAME)


@dataclass
class FolderInfo:
    """What a single ``stat`` pass learns about a project folder."""

    mtime: float
    is_dir: bool
    has_git_repo: bool


def probe_folder(path: Path) -> FolderInfo | None:
    """Stats a folder and checks for a ``.git`` directory.

    Blocking; callers on the event loop run it through ``asyncio.to_thread``.

    Args:
        path (Path): The folder to inspect.

    Returns:
        FolderInfo | None: The folder's details, or None if it does not exist.

    Raises:
        OSError: If the folder exists but cannot be inspected.
    """
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    is_dir = path.is_dir()
    has_git = is_dir and (path / ".git").exists()
    return FolderInfo(mtime=st.st_mtime, is_dir=is_dir, has_git_repo=has_git)


def list_entries(root: Path) -> list[Path]:
    """Lists the immediate entries of a watch root, sorted by name."""
    with os.scandir(root) as it:
        return sorted(Path(entry.path) for entry in it)


class DiscoveryScanner:
    """Finds project folders under the configured watch roots.

    Attributes:
        registry (Registry): Where new projects are recorded.
        queue (SyncQueue): Receives projects that still need a repository.
        board (StatusBoard): Progress and busy-flag access.
        notifier (Notifier): Announces newly discovered projects.
        watch_paths (list[str]): The watch roots.
    """

    def __init__(
        self,
        registry: Registry,
        queue: SyncQueue,
        board: StatusBoard,
        notifier: Notifier,
        watch_paths: list[str],
    ):
        self.registry = registry
        self.queue = queue
        self.board = board
        self.notifier = notifier
        self.watch_paths = watch_paths

    async def scan(self, full: bool = False) -> int:
        """Registers every project folder not yet in the registry.

        Args:
            full (bool, optional): The startup scan. Reports progress for each
                                   entry and warns about missing roots. The
                                   periodic rescan (False) is quiet and is
                                   skipped while a batch is syncing.

        Returns:
            int: The number of newly registered projects.
        """
        if not full and self.board.is_syncing:
            return 0

        if full:
            self.board.update("scanning", "Scanning projects...", 0)
            logger.info("SCAN: Project scan started...")

        roots: list[tuple[Path, list[Path]]] = []
        for root_str in self.watch_paths:
            root = Path(root_str).expanduser()
            if not await asyncio.to_thread(root.is_dir):
                if full:
                    logger.warning(f"MISSING ROOT: Watch folder not found: {root}")
                else:
                    logger.debug(f"MISSING ROOT: Watch folder not found: {root}")
                continue
            try:
                roots.append((root, await asyncio.to_thread(list_entries, root)))
            except OSError as e:
                logger.error(f"SCAN ERROR {root}: Could not read folder. {e}")

        total = sum(len(entries) for _, entries in roots)
        seen = 0
        found = 0

        for _root, entries in roots:
            for entry in entries:
                seen += 1
                if full:
                    pct = round(seen / total * 100)
                    self.board.update(
                        "scanning", f"Scanning: {entry.name} ({pct}%)", pct, entry
                    )

                if entry in self.registry:
                    continue

                try:
                    info = await asyncio.to_thread(probe_folder, entry)
                except OSError as e:
                    logger.error(f"SCAN ERROR {entry.name}: {e}")
                    continue

                if info is None or not info.is_dir:
                    continue

                self._register(entry, info, announce=not full)
                found += 1

        if full:
            self.board.update("ready", f"{len(self.registry)} projects scanned", 100)
            logger.info(
                f"SCAN: {len(self.registry)} projects scanned successfully.",
                extra=SUCCESS,
            )
        elif found:
            logger.info(
                f"DISCOVERED: {found} new projects detected and added to monitoring!",
                extra=SUCCESS,
            )
            self.notifier.notify(
                "GitHubAutoSync",
                f"{found} new projects detected and added to monitoring!",
            )

        return found

    def _register(self, path: Path, info: FolderInfo, announce: bool) -> None:
        if info.has_git_repo:
            status = ProjectStatus.READY
            message = "New project detected" if announce else "Ready"
        else:
            status = ProjectStatus.NEEDS_REPO
            message = "Git repository required"

        self.registry.add(
            Project(
                path=path,
                name=path.name,
                last_modified=info.mtime,
                has_git_repo=info.has_git_repo,
                status=status,
                message=message,
            )
        )

        if info.has_git_repo:
            logger.info(f"ADDED {path.name}: Git project registered.")
        else:
            logger.warning(
                f"ADDED {path.name}: Project registered (repository required)."
            )
            # Repository creation does not wait for a change.
            self.queue.add(path)
