import shutil
import subprocess
import sys
from pathlib import Path

from rich.console import Console

from .constants import APP_LABEL

console = Console()

UNIT_NAME = f"{APP_LABEL}.service"


def get_executable() -> str:
    """Locates the installed daemon executable in the system path.

    Returns:
        str: The absolute path to the 'git-autosync-daemon' executable.

    Raises:
        SystemExit: If the executable is not found in the PATH.
    """
    exe = shutil.which("git-autosync-daemon")
    if not exe:
        console.print(
            "[bold red]ERROR:[/bold red] Could not find 'git-autosync-daemon'. "
            "Ensure the package is installed."
        )
        sys.exit(1)
    return exe


def get_unit_path() -> Path:
    """Resolves the systemd user unit path.

    Raises:
        NotImplementedError: If called on a platform without systemd user units.
    """
    if sys.platform.startswith("linux"):
        return Path.home() / ".config/systemd/user" / UNIT_NAME

    raise NotImplementedError("Service installation is only automated on Linux.")


def render_unit(executable: str) -> str:
    """Returns the systemd unit for the long-running agent."""
    return f"""[Unit]
Description=Git AutoSync Agent
After=network-online.target

[Service]
ExecStart={executable}
Restart=on-failure
RestartSec=30

[Install]
WantedBy=default.target
"""


def install_linux(unit_path: Path, executable: str) -> None:
    """Writes, enables and starts the systemd user service.

    Args:
        unit_path (Path): The target path for the .service file.
        executable (str): The path to the daemon executable.
    """
    unit_path.parent.mkdir(parents=True, exist_ok=True)
    with open(unit_path, "w") as f:
        f.write(render_unit(executable))

    subprocess.run(["systemctl", "--user", "daemon-reload"], check=True)
    subprocess.run(["systemctl", "--user", "enable", "--now", UNIT_NAME], check=True)
    console.print(
        "[bold green]SUCCESS:[/bold green] AutoSync systemd service active (Linux).\n"
        f"Check status: systemctl --user status {UNIT_NAME}"
    )


def is_service_enabled() -> bool:
    """Checks whether the systemd user service is enabled."""
    if not sys.platform.startswith("linux"):
        return False
    try:
        result = subprocess.run(
            ["systemctl", "--user", "is-enabled", UNIT_NAME],
            capture_output=True,
            text=True,
        )
    except OSError:
        return False
    return result.returncode == 0


def install() -> None:
    """Installs the background agent as a user service.

    On Linux, this writes a systemd user unit. On macOS, it prints how to run
    the agent at login instead.
    """
    if sys.platform == "darwin":
        console.print(
            "\n[bold yellow]NOTE:[/bold yellow] Automatic service installation "
            "is not supported on macOS."
        )
        console.print("Add the agent to your login items, or run it with:")
        console.print("   [green]git-autosync run[/green]\n")
        return

    exe = get_executable()
    console.print("Installing background service...")
    install_linux(get_unit_path(), exe)


def uninstall() -> None:
    """Stops and removes the background agent service."""
    if sys.platform == "darwin":
        console.print(
            "\n[bold yellow]NOTE:[/bold yellow] No service is installed on macOS."
        )
        return

    path = get_unit_path()
    subprocess.run(
        ["systemctl", "--user", "disable", "--now", UNIT_NAME],
        stderr=subprocess.DEVNULL,
    )
    if path.exists():
        path.unlink()
    subprocess.run(["systemctl", "--user", "daemon-reload"])

    console.print("[bold green]SUCCESS:[/bold green] Service uninstalled.")
