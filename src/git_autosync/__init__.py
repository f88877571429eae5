"""Git AutoSync: Keep local project folders backed up to GitHub.

This package provides the command-line interface and the background agent
that discovers project folders under configured watch roots, detects changes,
and commits and pushes each project to its own private GitHub repository.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    git_wrapper,
    github,
    monitor,
    network,
    registry,
    scanner,
    scheduler,
    service,
    status,
    system,
    workflow,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "git_wrapper",
    "github",
    "monitor",
    "network",
    "registry",
    "scanner",
    "scheduler",
    "service",
    "status",
    "system",
    "workflow",
]
