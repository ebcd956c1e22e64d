"""Configuration loading from a YAML file, env vars, and CLI args."""

import logging
import os
from dataclasses import dataclass, field

import yaml

from taildir.errors import ConfigError
from taildir.models import DEFAULT_FILENAME_HEADER_KEY

logger = logging.getLogger(__name__)

DEFAULT_POSITION_FILE = "~/.taildir/taildir_position.json"


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class FileGroup:
    name: str
    pattern: str   # literal directory + file name regex
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Config:
    file_groups: dict[str, str] = field(default_factory=dict)
    headers: dict[str, dict[str, str]] = field(default_factory=dict)
    position_file: str = DEFAULT_POSITION_FILE
    skip_to_end: bool = False
    byte_offset_header: bool = False
    cache_pattern_matching: bool = True
    file_header: bool = False
    file_header_key: str = DEFAULT_FILENAME_HEADER_KEY
    batch_size: int = 100
    max_batch_count: int = 0          # 0 = unlimited batches per file per pass
    backoff_without_nl: bool = False
    idle_timeout: float = 120.0
    write_pos_interval: float = 3.0
    poll_interval: float = 1.0
    retry_interval: float = 1.0
    max_retry_interval: float = 5.0
    output_dir: str = "collected/"
    metrics_file: str | None = None
    watch: bool = True

    def groups(self) -> list[FileGroup]:
        return [
            FileGroup(name=name, pattern=pattern, headers=dict(self.headers.get(name, {})))
            for name, pattern in self.file_groups.items()
        ]

    def validate(self) -> None:
        if not self.file_groups:
            raise ConfigError("No file groups configured")
        if not self.position_file:
            raise ConfigError("Position file path is required")
        unknown = set(self.headers) - set(self.file_groups)
        if unknown:
            raise ConfigError(f"Headers configured for unknown file group(s): {sorted(unknown)}")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")


def load_yaml_config(path: str | None) -> dict:
    """Load the YAML config file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file {path} not found")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(cli_args=None, yaml_data: dict | None = None) -> Config:
    """Build Config from defaults <- YAML <- env vars <- CLI args (highest priority)."""
    data = dict(yaml_data or {})
    headers = {
        str(group): {str(k): str(v) for k, v in (pairs or {}).items()}
        for group, pairs in (data.get("headers") or {}).items()
    }
    kwargs: dict = {
        "file_groups": {str(k): str(v) for k, v in (data.get("file_groups") or {}).items()},
        "headers": headers,
        "position_file": str(data.get("position_file", DEFAULT_POSITION_FILE)),
        "skip_to_end": _parse_bool(data.get("skip_to_end", Config.skip_to_end)),
        "byte_offset_header": _parse_bool(data.get("byte_offset_header", Config.byte_offset_header)),
        "cache_pattern_matching": _parse_bool(
            data.get("cache_pattern_matching", Config.cache_pattern_matching)
        ),
        "file_header": _parse_bool(data.get("file_header", Config.file_header)),
        "file_header_key": str(data.get("file_header_key", Config.file_header_key)),
        "batch_size": int(data.get("batch_size", Config.batch_size)),
        "max_batch_count": int(data.get("max_batch_count", Config.max_batch_count)),
        "backoff_without_nl": _parse_bool(data.get("backoff_without_nl", Config.backoff_without_nl)),
        "idle_timeout": float(data.get("idle_timeout", Config.idle_timeout)),
        "write_pos_interval": float(data.get("write_pos_interval", Config.write_pos_interval)),
        "poll_interval": float(data.get("poll_interval", Config.poll_interval)),
        "retry_interval": float(data.get("retry_interval", Config.retry_interval)),
        "max_retry_interval": float(data.get("max_retry_interval", Config.max_retry_interval)),
        "output_dir": str(data.get("output_dir", Config.output_dir)),
        "metrics_file": data.get("metrics_file"),
        "watch": _parse_bool(data.get("watch", Config.watch)),
    }

    if "POSITION_FILE" in os.environ:
        kwargs["position_file"] = os.environ["POSITION_FILE"]
    if "BATCH_SIZE" in os.environ:
        kwargs["batch_size"] = int(os.environ["BATCH_SIZE"])
    if "SKIP_TO_END" in os.environ:
        kwargs["skip_to_end"] = _parse_bool(os.environ["SKIP_TO_END"])
    if "POLL_INTERVAL" in os.environ:
        kwargs["poll_interval"] = float(os.environ["POLL_INTERVAL"])
    if "OUTPUT_DIR" in os.environ:
        kwargs["output_dir"] = os.environ["OUTPUT_DIR"]

    if cli_args is not None:
        if getattr(cli_args, "position_file", None):
            kwargs["position_file"] = cli_args.position_file
        if getattr(cli_args, "output_dir", None):
            kwargs["output_dir"] = cli_args.output_dir
        if getattr(cli_args, "skip_to_end", False):
            kwargs["skip_to_end"] = True

    kwargs["position_file"] = os.path.expanduser(kwargs["position_file"])
    config = Config(**kwargs)
    config.validate()
    return config
