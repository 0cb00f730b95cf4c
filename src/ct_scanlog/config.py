"""YAML scan configuration."""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "simple.yaml"


def _to_int(data: Dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if value is None:
        value = default
    # YAML gives bools for yes/no; never accept them as counts
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from None
    if number < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {number}")
    return number


def _to_float(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}") from None
    if number < 0:
        raise ConfigError(f"{key} must be >= 0, got {number}")
    return number


@dataclass
class ScanConfig:
    """
    Settings for one scan lineage.

    end=0 means "scan up to the tree size read from the log".
    """

    log_uri: str
    save_data: str
    batch_size: int = 1000
    concurrency: int = 1
    start: int = 0
    end: int = 0
    precerts_only: bool = False
    dump_dir: str = "."
    save_artifacts: bool = True
    timeout: float = 10.0
    user_agent: Optional[str] = None
    max_connections: int = 100
    max_keepalive_connections: int = 10
    fetch_retries: int = 0
    retry_delay: float = 10.0

    @property
    def end_index(self) -> Optional[int]:
        return self.end or None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)} | {"uri"}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")

        log_uri = data.get("log_uri") or data.get("uri")
        if not log_uri or not isinstance(log_uri, str):
            raise ConfigError("log_uri is required")
        save_data = data.get("save_data")
        if not save_data or not isinstance(save_data, str):
            raise ConfigError("save_data is required")

        config = cls(
            log_uri=log_uri,
            save_data=save_data,
            batch_size=_to_int(data, "batch_size", 1000, 1),
            concurrency=_to_int(data, "concurrency", 1, 1),
            start=_to_int(data, "start", 0, 0),
            end=_to_int(data, "end", 0, 0),
            precerts_only=bool(data.get("precerts_only", False)),
            dump_dir=str(data.get("dump_dir", ".")),
            save_artifacts=bool(data.get("save_artifacts", True)),
            timeout=_to_float(data, "timeout", 10.0),
            user_agent=data.get("user_agent"),
            max_connections=_to_int(data, "max_connections", 100, 1),
            max_keepalive_connections=_to_int(data, "max_keepalive_connections", 10, 0),
            fetch_retries=_to_int(data, "fetch_retries", 0, 0),
            retry_delay=_to_float(data, "retry_delay", 10.0),
        )
        if config.end and config.start > config.end:
            raise ConfigError(f"start ({config.start}) is after end ({config.end})")
        return config


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> ScanConfig:
    """
    Load a scan configuration from a YAML file.

    Raises:
        ConfigError: if the file cannot be read, parsed or validated
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse configuration {path}: {e}") from e

    return ScanConfig.from_dict(data)
