import contextlib
import json
import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CHECK_INTERVAL,
    CONFIG_FILE,
    CONFIG_VERSION,
    DEBOUNCE_WINDOW,
    DEFAULT_IGNORES,
    NETWORK_INTERVAL,
    PROCESS_INTERVAL,
    SCAN_INTERVAL,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '30s', '5 min') to seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class IntervalsConfig:
    """Timing settings for the agent's periodic work.

    Attributes:
        scan (float): Seconds between rescans of the watch roots.
        check (float): Seconds between change-detection passes.
        debounce (float): Quiet period before a changed project is queued.
        process (float): Seconds between sync-queue ticks.
        network (float): Seconds between connectivity probes.
    """

    scan: float = SCAN_INTERVAL
    check: float = CHECK_INTERVAL
    debounce: float = DEBOUNCE_WINDOW
    process: float = PROCESS_INTERVAL
    network: float = NETWORK_INTERVAL


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """The persisted agent configuration.

    Attributes:
        username (str): GitHub account that owns the synced repositories.
        token (str): Personal access token with the ``repo`` scope.
        watch_paths (list[str]): Watch roots whose subdirectories are projects.
        ignored_patterns (list[str]): Globs written to new ``.gitignore`` files.
        tray_enabled (bool): Whether desktop notifications are shown.
        version (int): Configuration schema version.
        intervals (IntervalsConfig): Timing settings.
        limits (LimitsConfig): Resource limits.
        loaded (bool): True when the values came from an existing file.
    """

    username: str = ""
    token: str = ""
    watch_paths: list[str] = field(default_factory=list)
    ignored_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORES))
    tray_enabled: bool = True
    version: int = CONFIG_VERSION
    intervals: IntervalsConfig = field(default_factory=IntervalsConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    loaded: bool = field(default=False, compare=False)

    @property
    def is_complete(self) -> bool:
        """True when the agent has everything it needs to sync."""
        return bool(self.username and self.token and self.watch_paths)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads the configuration file, applying defaults where necessary.

        Args:
            path (Path | None): The file to read. Defaults to ``CONFIG_FILE``.

        Returns:
            Config: The populated configuration object.
        """
        path = path or CONFIG_FILE
        instance = cls()
        if not path.exists():
            return instance

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top-level JSON value must be an object")
            instance._merge(data)
            instance.loaded = True
            logger.info(f"Config loaded from {path}")
        except json.JSONDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

        return instance

    def save(self, path: Path | None = None) -> None:
        """Persists the configuration to disk atomically.

        Args:
            path (Path | None): The file to write. Defaults to ``CONFIG_FILE``.

        Raises:
            OSError: If the file cannot be written.
        """
        path = path or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        if not self.ignored_patterns:
            self.ignored_patterns = list(DEFAULT_IGNORES)

        tmp_file = path.with_suffix(".tmp")
        try:
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_file, path)
        except OSError:
            if tmp_file.exists():
                with contextlib.suppress(OSError):
                    tmp_file.unlink()
            raise
        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict[str, Any]:
        """Returns the JSON-serializable form written by ``save``."""
        return {
            "username": self.username,
            "token": self.token,
            "watch_paths": list(self.watch_paths),
            "ignored_patterns": list(self.ignored_patterns),
            "tray_enabled": self.tray_enabled,
            "version": self.version,
            "intervals": {
                f.name: getattr(self.intervals, f.name) for f in fields(self.intervals)
            },
            "limits": {"max_log_size": self.limits.max_log_size},
        }

    def _merge(self, data: dict[str, Any]) -> None:
        """Merges a decoded JSON document into this instance."""
        top_level = {
            "username",
            "token",
            "watch_paths",
            "ignored_patterns",
            "tray_enabled",
            "version",
        }
        known = top_level | {"intervals", "limits"}

        unknown = set(data) - known
        if unknown:
            logger.warning(
                f"Unknown config keys: {', '.join(sorted(unknown))}. Ignoring."
            )

        if isinstance(data.get("username"), str):
            self.username = data["username"].strip()
        if isinstance(data.get("token"), str):
            self.token = data["token"].strip()
        if isinstance(data.get("watch_paths"), list):
            self.watch_paths = [str(p) for p in data["watch_paths"] if str(p).strip()]
        if "tray_enabled" in data:
            self.tray_enabled = bool(data["tray_enabled"])
        if isinstance(data.get("version"), int):
            self.version = data["version"]

        patterns = data.get("ignored_patterns")
        if isinstance(patterns, list) and patterns:
            self.ignored_patterns = list(dict.fromkeys(str(p) for p in patterns))
        else:
            self.ignored_patterns = list(DEFAULT_IGNORES)

        if isinstance(data.get("intervals"), dict):
            self.intervals = self._update_dataclass(
                "intervals", self.intervals, data["intervals"]
            )
        if isinstance(data.get("limits"), dict):
            self.limits = self._update_dataclass("limits", self.limits, data["limits"])

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                else:
                    seconds = parse_time(v)
                    if seconds <= 0:
                        raise ValueError(f"Interval must be positive, got '{v}'")
                    filtered_updates[k] = seconds
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
