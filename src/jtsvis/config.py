"""Configuration parsing for jtsvis.

Parses .jtsvis/config.toml files for polling defaults, viewer settings,
logging and predefined poll targets.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jtsvis.poller import PollTarget

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _number(section: str, data: dict[str, Any], key: str, default: float) -> float:
    """Read a numeric setting, rejecting non-numeric TOML values."""
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"[{section}] {key} must be a number, got {value!r}")
    return float(value)


@dataclass
class TargetConfig:
    """A poll target defined in the config file."""

    name: str
    probe_path: str
    probe_args: list[str] = field(default_factory=list)
    enabled: bool = True

    def to_target(self) -> PollTarget:
        return PollTarget(
            name=self.name,
            probe_path=Path(self.probe_path),
            probe_args=tuple(self.probe_args),
        )

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> TargetConfig:
        """Create a TargetConfig from a dictionary.

        Args:
            name: The target name (from config section).
            data: Dictionary of target configuration values.

        Returns:
            A configured TargetConfig instance.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        if "probe_path" not in data:
            raise ValueError(f"Target '{name}' missing required field 'probe_path'")

        probe_args = data.get("probe_args", [])
        if isinstance(probe_args, str):
            probe_args = [probe_args]
        elif not isinstance(probe_args, list):
            raise ValueError(
                f"Target '{name}' has invalid 'probe_args' field: expected string or list"
            )

        return cls(
            name=name,
            probe_path=str(data["probe_path"]),
            probe_args=[str(arg) for arg in probe_args],
            enabled=data.get("enabled", True),
        )


@dataclass
class PollConfig:
    """Configuration for the poll command."""

    interval: float = 1.0  # seconds between polls
    duration: float = 3600.0  # total seconds to poll
    probe_timeout: float = 0.0  # seconds, 0 disables the timeout


@dataclass
class ViewConfig:
    """Configuration for the view command."""

    segment_duration: int = 1  # seconds per segment
    tail_interval: float = 0.5  # seconds between reads in realtime mode


@dataclass
class LoggingConfig:
    """Configuration for diagnostics logging."""

    level: str = "INFO"
    file: str = ""  # empty logs to stderr


@dataclass
class Config:
    """Main configuration container."""

    version: str = "1"
    poll: PollConfig = field(default_factory=PollConfig)
    view: ViewConfig = field(default_factory=ViewConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    targets: dict[str, TargetConfig] = field(default_factory=dict)
    config_path: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> Config:
        """Load configuration from a file.

        Args:
            path: Path to config file. If None, searches for .jtsvis/config.toml
                  in current directory and parents.

        Returns:
            Loaded configuration.

        Raises:
            FileNotFoundError: If no config file found.
            ValueError: If config file is invalid.
        """
        if path is None:
            path = cls._find_config()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid TOML in {path}: {e}") from e

        return cls._from_dict(data, path)

    @classmethod
    def load_or_default(cls, path: Path | None = None) -> Config:
        """Load configuration or return default if not found."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            return cls()

    @classmethod
    def _find_config(cls) -> Path:
        """Find config file by searching current directory and parents."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_path = parent / ".jtsvis" / "config.toml"
            if config_path.exists():
                return config_path

        # Return expected path even if it doesn't exist
        return cwd / ".jtsvis" / "config.toml"

    @classmethod
    def _from_dict(cls, data: dict[str, Any], path: Path) -> Config:
        """Create a Config from a dictionary."""
        version = str(data.get("jtsvis", {}).get("version", "1"))

        poll_data = data.get("poll", {})
        poll = PollConfig(
            interval=_number("poll", poll_data, "interval", 1.0),
            duration=_number("poll", poll_data, "duration", 3600.0),
            probe_timeout=_number("poll", poll_data, "probe_timeout", 0.0),
        )
        if poll.interval <= 0:
            raise ValueError(f"[poll] interval must be positive, got {poll.interval}")
        if poll.duration <= 0:
            raise ValueError(f"[poll] duration must be positive, got {poll.duration}")
        if poll.probe_timeout < 0:
            raise ValueError(f"[poll] probe_timeout must not be negative, got {poll.probe_timeout}")

        view_data = data.get("view", {})
        segment_duration = view_data.get("segment_duration", 1)
        if (
            isinstance(segment_duration, bool)
            or not isinstance(segment_duration, int)
            or segment_duration <= 0
        ):
            raise ValueError(
                f"[view] segment_duration must be a positive integer, got {segment_duration!r}"
            )
        view = ViewConfig(
            segment_duration=segment_duration,
            tail_interval=_number("view", view_data, "tail_interval", 0.5),
        )

        logging_data = data.get("logging", {})
        level = str(logging_data.get("level", "INFO")).upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"[logging] invalid level '{level}'. "
                f"Valid levels are: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        logging_config = LoggingConfig(level=level, file=str(logging_data.get("file", "")))

        targets: dict[str, TargetConfig] = {}
        for name, target_data in data.get("targets", {}).items():
            targets[name] = TargetConfig.from_dict(name, target_data)

        return cls(
            version=version,
            poll=poll,
            view=view,
            logging=logging_config,
            targets=targets,
            config_path=path,
        )

    def get_enabled_targets(self) -> list[PollTarget]:
        """Get all enabled config targets, in file order."""
        return [t.to_target() for t in self.targets.values() if t.enabled]

    def get_value(self, key_path: str) -> Any:
        """Get a configuration value by dot-separated path.

        Args:
            key_path: Dot-separated path to value (e.g. "poll.interval").

        Returns:
            The configuration value.

        Raises:
            KeyError: If path is invalid.
        """
        parts = key_path.split(".")
        current: Any = self
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            elif not isinstance(current, dict) and hasattr(current, part):
                current = getattr(current, part)
            else:
                raise KeyError(f"Invalid config path: {key_path}")
        return current
