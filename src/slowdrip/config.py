"""
SlowDrip Configuration

Miner configuration lives in a JSON file (path from the --config option or
the SLOWDRIP_CONFIG environment variable). String values may reference the
environment as ${VAR} or ${VAR:default}. Missing values get defaults, and
the result is validated before use.
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .logging import LogFormat, LogLevel
from .qos import DEFAULT_FLUSH_INTERVAL, DEFAULT_MAX_RECENT

CONFIG_ENV = "SLOWDRIP_CONFIG"
LOG_LEVEL_ENV = "SLOWDRIP_LOG_LEVEL"
LOG_FORMAT_ENV = "SLOWDRIP_LOG_FORMAT"
LOG_FILE_ENV = "SLOWDRIP_LOG_FILE"

MIN_FLUSH_INTERVAL = 0.2  # seconds

_ENV_RE = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


class ConfigError(Exception):
    """Raised when configuration cannot be read or is invalid"""
    pass


def expand_env(value: str) -> str:
    """Replace ${VAR} and ${VAR:default} with environment values"""
    if not value:
        return value

    def _sub(match: "re.Match") -> str:
        name, default = match.group(1), match.group(2)
        return os.environ.get(name, default if default is not None else "")

    return _ENV_RE.sub(_sub, value)


@dataclass
class ServiceSettings:
    """QoS aggregation settings"""
    enable: bool = True
    flush_interval: float = DEFAULT_FLUSH_INTERVAL  # Seconds between QoS flushes
    max_recent: int = DEFAULT_MAX_RECENT            # Recent commits kept per path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enable": self.enable,
            "flush_interval": self.flush_interval,
            "max_recent": self.max_recent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceSettings":
        return cls(
            enable=bool(data.get("enable", True)),
            flush_interval=float(data.get("flush_interval", DEFAULT_FLUSH_INTERVAL)),
            max_recent=int(data.get("max_recent", DEFAULT_MAX_RECENT)),
        )


@dataclass
class MinerConfig:
    """Configuration for a SlowDrip edge miner"""
    miner_id: str = ""
    region: str = ""
    log_level: str = "info"
    log_format: str = "console"
    log_file: str = ""                # JSON log file, empty for none
    service: ServiceSettings = field(default_factory=ServiceSettings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "miner_id": self.miner_id,
            "region": self.region,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "log_file": self.log_file,
            "service": self.service.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MinerConfig":
        service_data = data.get("service") or {}
        if not isinstance(service_data, dict):
            raise TypeError(f"service must be a JSON object, got {type(service_data).__name__}")
        return cls(
            miner_id=expand_env(data.get("miner_id", "")),
            region=expand_env(data.get("region", "")),
            log_level=expand_env(data.get("log_level", "")) or "info",
            log_format=expand_env(data.get("log_format", "")) or "console",
            log_file=expand_env(data.get("log_file", "")),
            service=ServiceSettings.from_dict(service_data),
        )

    def apply_env_overrides(self) -> None:
        """Environment wins over the file for logging knobs"""
        if os.environ.get(LOG_LEVEL_ENV):
            self.log_level = os.environ[LOG_LEVEL_ENV]
        if os.environ.get(LOG_FORMAT_ENV):
            self.log_format = os.environ[LOG_FORMAT_ENV]
        if os.environ.get(LOG_FILE_ENV):
            self.log_file = os.environ[LOG_FILE_ENV]

    def validate(self) -> None:
        """
        Check the configuration.

        Raises:
            ConfigError: On the first invalid value
        """
        if self.log_level.upper() not in LogLevel.__members__:
            raise ConfigError(f"unknown log_level: {self.log_level}")
        if self.log_format.lower() not in {f.value for f in LogFormat}:
            raise ConfigError(f"unknown log_format: {self.log_format}")
        if self.service.flush_interval < MIN_FLUSH_INTERVAL:
            raise ConfigError(
                f"service.flush_interval too small: {self.service.flush_interval}s"
            )
        if self.service.max_recent < 1:
            raise ConfigError("service.max_recent must be at least 1")


def load_config(path: Optional[Union[str, Path]] = None) -> MinerConfig:
    """
    Read, expand, default and validate the miner configuration.

    With no path and no SLOWDRIP_CONFIG set, the defaults are used.

    Raises:
        ConfigError: If the file cannot be read or parsed, or fails validation
    """
    path = path or os.environ.get(CONFIG_ENV)

    if path:
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigError(f"read config {path}: {e}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"parse config {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must contain a JSON object")
        try:
            config = MinerConfig.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid config {path}: {e}")
    else:
        config = MinerConfig()

    config.apply_env_overrides()
    config.validate()
    return config
