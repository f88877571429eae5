import asyncio
import logging
import subprocess
import sys

from .constants import APP_NAME
from .status import EventBus, NotificationEvent

logger = logging.getLogger(APP_NAME)


class SystemStrategy:
    """Base class defining the interface for desktop integration."""

    def notify(self, title: str, message: str) -> None:
        """Sends a desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        pass


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        clean_title = title.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{clean_title}"'
        try:
            subprocess.run(
                ["osascript", "-e", script], stderr=subprocess.DEVNULL, timeout=5
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Notification failed: {e}")


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`."""
        try:
            subprocess.run(
                ["notify-send", title, message], stderr=subprocess.DEVNULL, timeout=5
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Notification failed: {e}")


def get_system() -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Returns:
        SystemStrategy: An instance of MacOSStrategy, LinuxStrategy, or the base
        SystemStrategy depending on the operating system.
    """
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    else:
        return SystemStrategy()


class Notifier:
    """Delivers user-facing notifications to the desktop and the event bus.

    Attributes:
        enabled (bool): Whether desktop notifications are shown. Subscribers
                        of the bus receive every notification regardless.
    """

    def __init__(
        self,
        bus: EventBus,
        enabled: bool = True,
        system: SystemStrategy | None = None,
    ):
        self.bus = bus
        self.enabled = enabled
        self.system = system or get_system()

    def notify(self, title: str, body: str) -> None:
        self.bus.publish(NotificationEvent(title, body))
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.system.notify(title, body)
        else:
            # Notification helpers are subprocesses; keep them off the loop.
            loop.run_in_executor(None, self.system.notify, title, body)
        logger.debug(f"Notification shown: {title} - {body}")
