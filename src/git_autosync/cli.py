import argparse
import asyncio
import json
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import daemon, service
from .config import CONFIG_FILE, Config
from .constants import APP_NAME, LOG_FILE, PID_FILE, STATUS_FILE
from .github import repo_web_url

logger = logging.getLogger(APP_NAME)
console = Console()

STATUS_STYLES = {
    "ready": "green",
    "changed": "yellow",
    "queued": "cyan",
    "syncing": "bold blue",
    "synced": "bold green",
    "error": "bold red",
    "needs-repo": "magenta",
}


def daemon_pid() -> int | None:
    """Returns the PID of the running daemon, or None if it is not running."""
    if not PID_FILE.exists():
        return None
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
    except (ValueError, OSError):
        return None
    return pid


def read_status(path: Path = STATUS_FILE) -> dict[str, Any] | None:
    """Loads the last snapshot written by the daemon.

    Returns:
        dict[str, Any] | None: The snapshot, or None if missing or unreadable.
    """
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.debug(f"Failed to read status file {path}: {e}")
        return None


def render_projects(projects: list[dict[str, Any]], username: str | None) -> Table:
    """Builds the project table shown by 'status' and 'now'.

    Args:
        projects (list[dict[str, Any]]): Project records from a snapshot.
        username (str | None): The account used to build repository links.
    """
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Project", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    table.add_column("Repository", style="dim")

    for project in projects:
        status = project.get("status", "")
        style = STATUS_STYLES.get(status, "white")
        detail = project.get("error") or project.get("message") or ""
        link = repo_web_url(username, project["name"]) if username else "-"
        table.add_row(
            project["name"], f"[{style}]{status}[/{style}]", detail, link
        )
    return table


def show_status(status_file: Path = STATUS_FILE) -> None:
    """Displays whether the daemon runs and the last status it published."""
    pid = daemon_pid()
    if pid:
        status_text, status_style = f"Active (PID {pid})", "bold green"
    elif service.is_service_enabled():
        status_text, status_style = "Enabled (Not Running)", "yellow"
    else:
        status_text, status_style = "Stopped", "bold red"

    content = Text()
    content.append("Daemon:  ", style="bold")
    content.append(status_text + "\n", style=status_style)

    snapshot = read_status(status_file)
    if snapshot is None:
        content.append("No status published yet.", style="dim")
        console.print(Panel(content, title="System Status", expand=False))
        return

    online = snapshot.get("network_status", {}).get("is_online", False)
    content.append("Network: ", style="bold")
    content.append(
        "Online\n" if online else "Offline\n", style="green" if online else "red"
    )
    content.append("Phase:   ", style="bold")
    content.append(f"{snapshot.get('phase')} ({snapshot.get('message')})")
    if snapshot.get("is_syncing"):
        content.append(f"\nProgress: {snapshot.get('progress', 0):.0f}%", style="blue")
    if not pid:
        content.append("\n(last known state)", style="dim")

    console.print(Panel(content, title="System Status", expand=False))

    projects = snapshot.get("projects") or []
    if projects:
        username = (snapshot.get("config") or {}).get("username")
        console.print(render_projects(projects, username))
    else:
        console.print("[dim]No projects are being monitored.[/dim]")


def run_now(config_path: Path | None = None) -> None:
    """Scans the watch folders and syncs every project once."""
    config = Config.load(config_path)
    if not config.is_complete:
        console.print(
            "[bold red]Setup required.[/bold red] Run [cyan]git-autosync config[/cyan] "
            "to set your GitHub username, token and watch folders."
        )
        sys.exit(1)

    with console.status("[bold blue]Syncing projects...[/bold blue]", spinner="dots"):
        snapshot = asyncio.run(daemon.run_once(config))

    projects = snapshot["projects"]
    if not projects:
        console.print("[yellow]No projects found in the watch folders.[/yellow]")
        return

    console.print(render_projects(projects, config.username))
    stats = snapshot["stats"]
    style = "bold green" if not stats["failed_projects"] else "bold yellow"
    console.print(
        f"[{style}]{stats['completed_projects']}/{stats['total_projects']} "
        f"projects synced.[/{style}]"
    )


def watch_add(path_str: str, config_path: Path | None = None) -> None:
    """Adds a folder to the watch roots.

    Args:
        path_str (str): The folder whose subdirectories should be synced.
        config_path (Path | None): The config file. Defaults to ``CONFIG_FILE``.
    """
    path = Path(path_str).expanduser().resolve()
    if not path.is_dir():
        console.print(f"[bold red]Not a folder:[/bold red] {path}")
        sys.exit(1)

    config = Config.load(config_path)
    if str(path) in config.watch_paths:
        console.print(f"Already watching [cyan]{path}[/cyan]", style="yellow")
        return

    config.watch_paths.append(str(path))
    config.save(config_path)
    console.print(f"✔ Watching: [cyan]{path}[/cyan]", style="green")
    console.print("[dim]Restart the agent to apply changes.[/dim]")


def watch_remove(path_str: str, config_path: Path | None = None) -> None:
    """Removes a folder from the watch roots."""
    config = Config.load(config_path)
    path = str(Path(path_str).expanduser().resolve())
    candidates = [p for p in config.watch_paths if p in (path_str, path)]
    if not candidates:
        console.print(f"Not watched: [cyan]{path_str}[/cyan]", style="yellow")
        return

    config.watch_paths = [p for p in config.watch_paths if p not in candidates]
    config.save(config_path)
    console.print(f"✔ Removed: [cyan]{path}[/cyan]", style="green")
    console.print("[dim]Restart the agent to apply changes.[/dim]")


def watch_list(config_path: Path | None = None) -> None:
    """Lists the watch roots and the project folders each one contains."""
    config = Config.load(config_path)
    if not config.watch_paths:
        console.print("[yellow]No watch folders configured.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Watch Folder", style="cyan")
    table.add_column("Projects", justify="right")

    for root_str in config.watch_paths:
        root = Path(root_str).expanduser()
        display_path = str(root).replace(str(Path.home()), "~")
        if not root.is_dir():
            table.add_row(display_path, "[red]Missing[/red]")
            continue
        count = sum(1 for entry in root.iterdir() if entry.is_dir())
        table.add_row(display_path, str(count))

    console.print(table)


def add_ignore(pattern: str, config_path: Path | None = None) -> None:
    """Adds a pattern to the ignore list written into new repositories.

    Args:
        pattern (str): The glob to ignore (e.g., '*.log').
    """
    config = Config.load(config_path)
    if pattern in config.ignored_patterns:
        console.print(f"Pattern already ignored: [cyan]{pattern}[/cyan]", style="yellow")
        return
    config.ignored_patterns.append(pattern)
    config.save(config_path)
    console.print(f"✔ Ignoring: [cyan]{pattern}[/cyan]", style="green")


def open_config(config_path: Path | None = None) -> None:
    """Opens the configuration file in the user's editor, creating it if needed."""
    path = config_path or CONFIG_FILE
    if not path.exists():
        Config().save(path)

    editor = os.environ.get("EDITOR")
    if not editor:
        if sys.platform == "darwin":
            editor = "open"
        else:
            editor = "nano"

    console.print(f"Opening [cyan]{path}[/cyan]...")

    try:
        subprocess.run([editor, str(path)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-autosync",
        description="Watch project folders and keep them synced to GitHub.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run the agent in the foreground (default)")
    subparsers.add_parser("now", help="Scan and sync every project once")
    subparsers.add_parser("status", help="Show daemon and project status")

    watch_parser = subparsers.add_parser("watch", help="Manage watch folders")
    watch_sub = watch_parser.add_subparsers(dest="watch_command", required=True)
    watch_add_parser = watch_sub.add_parser("add", help="Watch a folder")
    watch_add_parser.add_argument("path", help="Folder containing projects")
    watch_remove_parser = watch_sub.add_parser("remove", help="Stop watching a folder")
    watch_remove_parser.add_argument("path", help="Watched folder")
    watch_sub.add_parser("list", help="List watch folders")

    ignore_parser = subparsers.add_parser(
        "ignore", help="Add a pattern to the default .gitignore"
    )
    ignore_parser.add_argument("pattern", help="File pattern (e.g. '*.log')")

    subparsers.add_parser("config", help="Open the config file in $EDITOR")
    subparsers.add_parser("log", help="Tail the daemon log file")
    subparsers.add_parser("install-service", help="Install the background service")
    subparsers.add_parser("uninstall-service", help="Remove the background service")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the git-autosync CLI."""
    args = build_parser().parse_args(argv)

    if args.command == "now":
        run_now()
    elif args.command == "status":
        show_status()
    elif args.command == "watch":
        if args.watch_command == "add":
            watch_add(args.path)
        elif args.watch_command == "remove":
            watch_remove(args.path)
        else:
            watch_list()
    elif args.command == "ignore":
        add_ignore(args.pattern)
    elif args.command == "config":
        open_config()
    elif args.command == "log":
        tail_log()
    elif args.command == "install-service":
        service.install()
    elif args.command == "uninstall-service":
        with console.status("Uninstalling service...", spinner="dots"):
            service.uninstall()
    else:
        daemon.main(interactive=True)


if __name__ == "__main__":
    main()
