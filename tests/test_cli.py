"""Tests for the Command Line Interface (CLI) module."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_autosync import cli
from git_autosync.config import Config


def snapshot(projects: list[dict]) -> dict:
    return {
        "phase": "monitoring",
        "message": "Watching folders for changes...",
        "progress": 0,
        "is_syncing": False,
        "network_status": {"is_online": True, "last_check": 0},
        "projects": projects,
        "config": {"username": "octocat"},
        "stats": {"completed_projects": 1, "total_projects": 2, "failed_projects": 1},
    }


def project(name: str, status: str, **fields) -> dict:
    return {"name": name, "path": f"/w/{name}", "status": status, "message": "", "error": None, **fields}


def test_show_status_renders_snapshot(
    tmp_path: Path, capsys: pytest.CaptureFixture, mocker: MagicMock
) -> None:
    """Verifies that `show_status` shows daemon state and the project table.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        capsys (pytest.CaptureFixture): Pytest fixture for capturing stdout.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    status_file = tmp_path / "status.json"
    status_file.write_text(
        json.dumps(snapshot([project("alpha", "synced"), project("beta", "error", error="denied")]))
    )
    mocker.patch("git_autosync.cli.daemon_pid", return_value=4242)

    cli.show_status(status_file)

    out = capsys.readouterr().out
    assert "Active (PID 4242)" in out
    assert "Online" in out
    assert "alpha" in out
    assert "synced" in out
    assert "denied" in out


def test_show_status_without_snapshot(
    tmp_path: Path, capsys: pytest.CaptureFixture, mocker: MagicMock
) -> None:
    mocker.patch("git_autosync.cli.daemon_pid", return_value=None)
    mocker.patch("git_autosync.cli.service.is_service_enabled", return_value=False)

    cli.show_status(tmp_path / "missing.json")

    out = capsys.readouterr().out
    assert "Stopped" in out
    assert "No status published yet." in out


def test_daemon_pid_ignores_stale_file(mocker: MagicMock, tmp_path: Path) -> None:
    pid_file = tmp_path / "daemon.pid"
    pid_file.write_text("999999")
    mocker.patch("git_autosync.cli.PID_FILE", pid_file)
    mocker.patch("os.kill", side_effect=ProcessLookupError)

    assert cli.daemon_pid() is None


def test_read_status_tolerates_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "status.json"
    path.write_text("{not json")
    assert cli.read_status(path) is None


def test_watch_add_and_remove(tmp_path: Path) -> None:
    """Verifies that watch folders are persisted to the config file."""
    config_path = tmp_path / "config.json"
    projects = tmp_path / "Projects"
    projects.mkdir()

    cli.watch_add(str(projects), config_path)
    cli.watch_add(str(projects), config_path)
    assert Config.load(config_path).watch_paths == [str(projects.resolve())]

    cli.watch_remove(str(projects), config_path)
    assert Config.load(config_path).watch_paths == []


def test_watch_add_rejects_missing_folder(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        cli.watch_add(str(tmp_path / "nope"), tmp_path / "config.json")


def test_watch_list_counts_projects(
    tmp_path: Path, capsys: pytest.CaptureFixture
) -> None:
    config_path = tmp_path / "config.json"
    root = tmp_path / "Projects"
    (root / "a").mkdir(parents=True)
    (root / "b").mkdir()
    Config(watch_paths=[str(root)]).save(config_path)

    cli.watch_list(config_path)

    out = capsys.readouterr().out
    assert "Projects" in out
    assert "2" in out


def test_add_ignore_appends_once(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"

    cli.add_ignore("*.sqlite", config_path)
    cli.add_ignore("*.sqlite", config_path)

    patterns = Config.load(config_path).ignored_patterns
    assert patterns.count("*.sqlite") == 1
    assert "**/node_modules/**" in patterns


def test_config_command_opens_editor(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that the `config` command creates a template and opens the editor.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
        tmp_path (Path): Pytest fixture for a temporary directory.
    """
    mocker.patch.dict("os.environ", {"EDITOR": "nano"})
    mock_run = mocker.patch("subprocess.run")
    config_path = tmp_path / "config.json"

    cli.open_config(config_path)

    assert config_path.exists()
    args = mock_run.call_args[0][0]
    assert args == ["nano", str(config_path)]


def test_run_now_requires_setup(mocker: MagicMock, tmp_path: Path) -> None:
    mocker.patch("git_autosync.cli.Config.load", return_value=Config())
    with pytest.raises(SystemExit):
        cli.run_now()


def test_run_now_prints_results(
    mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    config = Config(username="octocat", token="t", watch_paths=["/w"])
    mocker.patch("git_autosync.cli.Config.load", return_value=config)

    async def fake_run_once(conf: Config) -> dict:
        return snapshot([project("alpha", "synced"), project("beta", "error")])

    mocker.patch("git_autosync.cli.daemon.run_once", side_effect=fake_run_once)

    cli.run_now()

    out = capsys.readouterr().out
    assert "alpha" in out
    assert "1/2 projects synced." in out


def test_main_defaults_to_run(mocker: MagicMock) -> None:
    """Verifies that no subcommand runs the agent in the foreground."""
    mock_daemon = mocker.patch("git_autosync.daemon.main")

    cli.main([])

    mock_daemon.assert_called_with(interactive=True)


def test_main_dispatches_watch_add(mocker: MagicMock) -> None:
    mock_add = mocker.patch("git_autosync.cli.watch_add")
    cli.main(["watch", "add", "~/Projects"])
    mock_add.assert_called_once_with("~/Projects")


def test_main_dispatches_service_install(mocker: MagicMock) -> None:
    mock_install = mocker.patch("git_autosync.cli.service.install")
    cli.main(["install-service"])
    mock_install.assert_called_once()
