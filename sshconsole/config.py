"""
Persistent settings for sshconsole.
Stored in ~/.sshconsole/config.yaml
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

import yaml

from .keys import HostKey
from .listener import DEFAULT_HOST, DEFAULT_PORT

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".sshconsole"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"


@dataclass
class ConsoleSettings:
    """
    Console settings that persist across runs.
    """
    # Listener
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    workers: int = 1

    # Identity
    host_key_path: str = str(DEFAULT_CONFIG_DIR / "host_key")
    authorized_keys_path: str = "~/.ssh/authorized_keys"

    log_level: str = "INFO"

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ConsoleSettings:
        """Deserialize from dict, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)


class SettingsManager:
    """
    Manages loading and saving console settings.

    Usage:
        manager = SettingsManager()
        settings = manager.settings
        settings.port = 2022
        manager.save()
    """

    def __init__(self, config_path: Path = None):
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_FILE
        self._settings: Optional[ConsoleSettings] = None

    @property
    def settings(self) -> ConsoleSettings:
        """Get current settings, loading from disk if needed."""
        if self._settings is None:
            self._settings = self.load()
        return self._settings

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> ConsoleSettings:
        """Load settings from disk, or return defaults."""
        if not self._config_path.exists():
            logger.debug("No settings file found, using defaults")
            return ConsoleSettings()

        try:
            with open(self._config_path) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise TypeError(f"expected a mapping, got {type(data).__name__}")
            logger.debug(f"Loaded settings from {self._config_path}")
            return ConsoleSettings.from_dict(data)
        except (yaml.YAMLError, TypeError) as e:
            logger.warning(f"Failed to load settings: {e}, using defaults")
            return ConsoleSettings()

    def save(self) -> None:
        """Save current settings to disk."""
        if self._settings is None:
            return

        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._config_path, "w") as f:
                yaml.dump(self._settings.to_dict(), f, default_flow_style=False, sort_keys=False)
            logger.debug(f"Saved settings to {self._config_path}")
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")


def load_or_create_host_key(path, comment: Optional[str] = None) -> HostKey:
    """
    Load the host key stored at path, creating it on first use.

    A new key file is written owner read/write only. A key file that
    exists but doesn't parse raises KeyFormatError rather than being
    silently replaced.
    """
    path = Path(path).expanduser()
    if path.exists():
        key = HostKey.parse(path.read_text())
        logger.debug(f"Loaded host key {key.public_key.fingerprint} from {path}")
        return key

    key = HostKey.generate()
    save_host_key(key, path, comment)
    logger.info(f"Generated host key {key.public_key.fingerprint} at {path}")
    return key


def save_host_key(key: HostKey, path, comment: Optional[str] = None) -> None:
    """
    Write a host key to a new file, owner read/write only.

    Raises:
        FileExistsError: If path already exists; keys are never overwritten.
    """
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(key.serialize(comment) + "\n")
