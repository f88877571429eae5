"""The in-memory registry of tracked projects."""

import datetime
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator


class ProjectStatus(str, Enum):
    """Lifecycle state of a tracked project."""

    READY = "ready"
    CHANGED = "changed"
    QUEUED = "queued"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    NEEDS_REPO = "needs-repo"


def now_iso() -> str:
    return datetime.datetime.now().isoformat(timespec="seconds")


@dataclass
class Project:
    """A project folder tracked by the agent.

    Attributes:
        path (Path): Absolute folder path; the registry key.
        name (str): Folder name shown to the user.
        last_modified (float): Folder mtime seen at the last detected change.
        last_check (str): ISO timestamp of the last inspection.
        has_git_repo (bool): Whether the folder contains a ``.git`` directory.
        status (ProjectStatus): Current lifecycle state.
        message (str): Human-readable status message.
        progress (float): Sync progress, 0-100 with one decimal.
        current_operation (str): Label of the workflow step in progress.
        error (str | None): Text of the last unexpected failure.
    """

    path: Path
    name: str
    last_modified: float
    has_git_repo: bool
    status: ProjectStatus = ProjectStatus.READY
    message: str = ""
    last_check: str = ""
    progress: float = 0.0
    current_operation: str = ""
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.last_check:
            self.last_check = now_iso()

    def set_progress(self, operation: str, percent: float) -> None:
        self.current_operation = operation
        self.progress = round(min(100.0, max(0.0, percent)), 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "status": self.status.value,
            "message": self.message,
            "last_check": self.last_check,
            "last_modified": self.last_modified,
            "has_git_repo": self.has_git_repo,
            "progress": self.progress,
            "current_operation": self.current_operation,
            "error": self.error,
        }


class Registry:
    """The single source of truth for which projects exist and their status.

    Only discovery and change detection add or remove records; everything
    else mutates the records it gets from ``get``.
    """

    def __init__(self) -> None:
        self._projects: dict[Path, Project] = {}

    def add(self, project: Project) -> None:
        """Inserts a new record.

        Raises:
            ValueError: If the path is already registered.
        """
        if project.path in self._projects:
            raise ValueError(f"Project already registered: {project.path}")
        self._projects[project.path] = project

    def get(self, path: Path) -> Project | None:
        return self._projects.get(path)

    def remove(self, path: Path) -> Project | None:
        return self._projects.pop(path, None)

    def paths(self) -> list[Path]:
        """Returns a snapshot of registered paths in insertion order."""
        return list(self._projects)

    def projects(self) -> list[Project]:
        return list(self._projects.values())

    def clear(self) -> None:
        self._projects.clear()

    def __contains__(self, path: object) -> bool:
        return path in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    def __iter__(self) -> Iterator[Project]:
        return iter(self.projects())
