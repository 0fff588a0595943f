"""Configuration management for the MineChat client."""

import copy
import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigCorrupt, PersistError

APP_NAME = "minechat"


@dataclass(frozen=True)
class ReconnectPolicy:
    max_attempts: int = 5
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 16.0

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (1-based)."""
        delay = self.initial_delay * self.multiplier ** (attempt - 1)
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class ClientSettings:
    connect_timeout: float = 5.0
    link_timeout: float = 10.0
    handshake_timeout: float = 10.0
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    log_file: Optional[Path] = None


def default_config_dir() -> Path:
    """Directory holding settings.json and servers.json."""
    override = os.environ.get("MINECHAT_CONFIG_DIR")
    if override:
        return Path(override)
    if platform.system() == "Windows" and os.environ.get("APPDATA"):
        return Path(os.environ["APPDATA"]) / APP_NAME
    base = os.environ.get("XDG_CONFIG_HOME")
    if base:
        return Path(base) / APP_NAME
    return Path.home() / ".config" / APP_NAME


class Config:
    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.config_file = self.config_dir / "settings.json"
        self.registry_file = self.config_dir / "servers.json"
        self.default_config = {
            "connect_timeout": 5.0,
            "link_timeout": 10.0,
            "handshake_timeout": 10.0,
            "reconnect": {
                "max_attempts": 5,
                "initial_delay": 1.0,  # seconds before the first retry
                "multiplier": 2.0,
                "max_delay": 16.0,
            },
            "log_file": None,
        }
        self.current_config: Dict[str, Any] = {}

    def load(self) -> ClientSettings:
        """Load configuration from file or create default."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    stored = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ConfigCorrupt(str(self.config_file), f"invalid JSON ({e})") from e
            except OSError as e:
                raise ConfigCorrupt(str(self.config_file), str(e)) from e
            if not isinstance(stored, dict):
                raise ConfigCorrupt(str(self.config_file), "top level must be an object")
            self.current_config = _merge(self.default_config, stored)
        else:
            self.current_config = copy.deepcopy(self.default_config)
            self.save()
        return self.settings()

    def save(self):
        """Save current configuration to file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(self.current_config, f, indent=4)
        except OSError as e:
            raise PersistError(str(self.config_file), str(e)) from e

    def settings(self) -> ClientSettings:
        """Build typed settings from the current configuration."""
        cfg = self.current_config or self.default_config
        reconnect = cfg.get("reconnect") or {}
        try:
            policy = ReconnectPolicy(
                max_attempts=int(reconnect["max_attempts"]),
                initial_delay=float(reconnect["initial_delay"]),
                multiplier=float(reconnect["multiplier"]),
                max_delay=float(reconnect["max_delay"]),
            )
            log_file = cfg.get("log_file")
            return ClientSettings(
                connect_timeout=float(cfg["connect_timeout"]),
                link_timeout=float(cfg["link_timeout"]),
                handshake_timeout=float(cfg["handshake_timeout"]),
                reconnect=policy,
                log_file=Path(log_file).expanduser() if log_file else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigCorrupt(str(self.config_file), f"bad setting value ({e})") from e


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged
