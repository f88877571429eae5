"""Shared fixtures for the agent's component tests."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_autosync.network import NetworkStatus
from git_autosync.registry import Project, ProjectStatus, Registry
from git_autosync.scheduler import SyncQueue
from git_autosync.status import EventBus, StatusBoard
from git_autosync.system import Notifier, SystemStrategy


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def queue() -> SyncQueue:
    return SyncQueue()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def network_status() -> NetworkStatus:
    return NetworkStatus()


@pytest.fixture
def board(registry: Registry, network_status: NetworkStatus, bus: EventBus) -> StatusBoard:
    return StatusBoard(registry, network_status, bus)


@pytest.fixture
def system() -> MagicMock:
    """A desktop integration that records notifications instead of showing them."""
    return MagicMock(spec=SystemStrategy)


@pytest.fixture
def notifier(bus: EventBus, system: MagicMock) -> Notifier:
    return Notifier(bus, enabled=True, system=system)


def _build_project(path: Path, **overrides) -> Project:
    fields = {
        "path": path,
        "name": path.name,
        "last_modified": path.stat().st_mtime if path.exists() else 0.0,
        "has_git_repo": (path / ".git").exists(),
        "status": ProjectStatus.READY,
    }
    fields.update(overrides)
    return Project(**fields)


@pytest.fixture
def make_project() -> Callable[..., Project]:
    """Returns a builder of registry records for existing folders."""
    return _build_project
