"""Configuration management for the image player."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_EXTENSIONS = ["*.jpg", "*.gif", "*.svg", "*.png"]

_TRUE_STRINGS = {"true", "yes", "on", "1"}


def parse_bool(value: Any, default: bool) -> bool:
    """Parse a YAML value as a boolean.

    Args:
        value: Raw value (bool, int, str or None).
        default: Value returned when ``value`` is None.

    Returns:
        Parsed boolean.

    """
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


@dataclass
class PlayerConfig:
    """Configuration for the image player."""

    # Root of the watched image tree
    image_root: Path = field(default_factory=lambda: Path("Images"))

    # Filename filters, fnmatch style
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    # Prefix for published URIs ("" keeps them relative)
    base_url: str = ""

    # Group shown when a group path has no files of its own
    default_group: str = "default"

    # Display time for files without a "-<N>sec" marker (seconds)
    default_interval: float = 10.0

    # Groups followed by the "run" command
    groups: list[str] = field(default_factory=list)

    # Follow filesystem changes after the initial scan
    watch: bool = True

    # Logging
    log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/state/image-player/image-player.log"
    )
    log_level: str = "INFO"

    @classmethod
    def get_config_path(cls) -> Path:
        """Get the default configuration file path."""
        return Path.home() / ".config/image-player/config.yaml"

    @classmethod
    def load(cls, config_path: Path | None = None) -> PlayerConfig:
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Uses default if None.

        Returns:
            Loaded configuration.

        Raises:
            ValueError: If the file is not valid YAML or holds invalid values.

        """
        if config_path is None:
            config_path = cls.get_config_path()

        if not config_path.exists():
            return cls()

        with config_path.open(encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config in {config_path}: expected a mapping")

        try:
            return cls._from_dict(data)
        except TypeError as e:
            raise ValueError(f"Invalid config in {config_path}: {e}") from e

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> PlayerConfig:
        """Create config from dictionary."""
        config = cls()

        if "image_root" in data:
            config.image_root = Path(os.path.expanduser(data["image_root"]))

        if "extensions" in data:
            extensions = data["extensions"]
            if not isinstance(extensions, list) or not extensions:
                raise ValueError("extensions must be a non-empty list of filename filters")
            config.extensions = [str(e) for e in extensions]

        if "base_url" in data:
            config.base_url = str(data["base_url"] or "")

        if "default_group" in data:
            default_group = str(data["default_group"] or "")
            if not default_group:
                raise ValueError("default_group must not be empty")
            config.default_group = default_group

        if "default_interval" in data:
            default_interval = float(data["default_interval"])
            if default_interval <= 0:
                raise ValueError(f"default_interval must be positive, got {default_interval}")
            config.default_interval = default_interval

        if "groups" in data:
            config.groups = [str(g) for g in data["groups"] or []]

        if "watch" in data:
            config.watch = parse_bool(data["watch"], True)

        # Logging
        if "logging" in data:
            logging_cfg = data["logging"] or {}
            if not isinstance(logging_cfg, dict):
                raise ValueError("logging must be a mapping with file and level keys")
            if "file" in logging_cfg:
                config.log_file = Path(os.path.expanduser(logging_cfg["file"]))
            if "level" in logging_cfg:
                config.log_level = str(logging_cfg["level"]).upper()

        return config

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path to save config. Uses default if None.

        """
        if config_path is None:
            config_path = self.get_config_path()

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "image_root": str(self.image_root),
            "extensions": list(self.extensions),
            "base_url": self.base_url,
            "default_group": self.default_group,
            "default_interval": self.default_interval,
            "groups": list(self.groups),
            "watch": self.watch,
            "logging": {
                "file": str(self.log_file),
                "level": self.log_level,
            },
        }

        with config_path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
