"""
Configuration Management for slpkit

Provides configuration loading from multiple sources:
- Default values
- Configuration files (YAML, TOML, JSON)
- Environment variables
- Command line arguments

Configuration precedence (highest to lowest):
1. Command line arguments
2. Environment variables (SLPKIT_*)
3. Configuration file
4. Default values

Nothing here is cached at module level: callers load a config and pass the
pieces they need (ParserConfig, DetectionThresholds, ...) explicitly.
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration Dataclasses
# ============================================================================


@dataclass
class ParserConfig:
    """Selective parsing switches and frame finalisation."""

    # Skip frame reconciliation output when only settings/metadata are needed
    decode_frames: bool = True
    compute_statistics: bool = True

    # Ticks a frame may trail the newest frame before it is finalised
    rollback_window: int = 7


@dataclass
class DetectionThresholds:
    """Tick windows and cutoffs used by the statistics detectors."""

    # Wavedash / waveland
    wavedash_landing_window: int = 10
    wavedash_min_speed: float = 0.5
    jumpsquat_lookback: int = 10

    # Two facing reversals within this many ticks count as a dash dance
    dash_dance_window: int = 30

    # L-cancel input buffer (ticks before landing) and analog trigger cutoff
    l_cancel_window: int = 7
    l_cancel_trigger_threshold: float = 0.3

    # Two openings this close together are a trade
    trade_tolerance: int = 8

    # A string ends when the attacker has not hit the victim for this long
    punish_reset_ticks: int = 45


@dataclass
class BatchConfig:
    """Configuration for decoding many replays."""

    workers: int | None = None  # None = CPU count
    use_processes: bool = True
    timeout_per_replay: float = 120.0
    file_pattern: str = "*.slp"
    recursive: bool = False


@dataclass
class ExportConfig:
    """Configuration for data export."""

    default_format: str = "json"
    json_indent: int = 2
    csv_delimiter: str = ","
    include_frames: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


@dataclass
class SlpkitConfig:
    """Main configuration container."""

    parser: ParserConfig = field(default_factory=ParserConfig)
    thresholds: DetectionThresholds = field(default_factory=DetectionThresholds)
    batch: BatchConfig = field(default_factory=BatchConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Version of the config format
    config_version: str = "1.0"


# ============================================================================
# Configuration Loading
# ============================================================================


def get_default_config_paths() -> list[Path]:
    """Get the default paths to search for configuration files."""
    paths = []

    # Current directory
    paths.append(Path.cwd() / "slpkit.yaml")
    paths.append(Path.cwd() / "slpkit.toml")
    paths.append(Path.cwd() / "slpkit.json")
    paths.append(Path.cwd() / ".slpkit.yaml")

    # User config directory
    home = Path.home()
    xdg_config = os.environ.get("XDG_CONFIG_HOME", str(home / ".config"))
    paths.append(Path(xdg_config) / "slpkit" / "config.yaml")
    paths.append(Path(xdg_config) / "slpkit" / "config.toml")

    return paths


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from a JSON file."""
    with open(path) as f:
        return json.load(f)


def load_config_file(path: Path) -> dict[str, Any]:
    """Load configuration from a file, detecting format from extension."""
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return load_yaml_config(path)
    elif suffix == ".toml":
        return load_toml_config(path)
    elif suffix == ".json":
        return load_json_config(path)
    else:
        logger.warning(f"Unknown config file format: {suffix}")
        return {}


_ENV_MAPPINGS = {
    "SLPKIT_LOG_LEVEL": ("logging", "level"),
    "SLPKIT_LOG_FILE": ("logging", "file"),
    "SLPKIT_DECODE_FRAMES": ("parser", "decode_frames"),
    "SLPKIT_COMPUTE_STATISTICS": ("parser", "compute_statistics"),
    "SLPKIT_ROLLBACK_WINDOW": ("parser", "rollback_window"),
    "SLPKIT_WORKERS": ("batch", "workers"),
    "SLPKIT_USE_PROCESSES": ("batch", "use_processes"),
    "SLPKIT_TIMEOUT": ("batch", "timeout_per_replay"),
    "SLPKIT_EXPORT_FORMAT": ("export", "default_format"),
    "SLPKIT_TRADE_TOLERANCE": ("thresholds", "trade_tolerance"),
    "SLPKIT_L_CANCEL_WINDOW": ("thresholds", "l_cancel_window"),
}


def _convert_env_value(value: str) -> Any:
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def load_env_config(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Load configuration from environment variables."""
    environ = os.environ if environ is None else environ
    config: dict[str, Any] = {}

    for env_var, (section, key) in _ENV_MAPPINGS.items():
        value = environ.get(env_var)
        if value is not None:
            config.setdefault(section, {})[key] = _convert_env_value(value)

    return config


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def dict_to_config(data: dict[str, Any]) -> SlpkitConfig:
    """Convert a dictionary to SlpkitConfig, ignoring unknown keys."""
    config = SlpkitConfig()

    for section in fields(config):
        values = data.get(section.name)
        if not isinstance(values, dict):
            continue
        target = getattr(config, section.name)
        for key, value in values.items():
            if hasattr(target, key):
                setattr(target, key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {section.name}.{key}")

    if "config_version" in data:
        config.config_version = str(data["config_version"])

    return config


def load_config(config_file: Path | None = None, include_env: bool = True) -> SlpkitConfig:
    """
    Load configuration from all sources.

    Args:
        config_file: Explicit path to a config file (optional)
        include_env: Whether to include environment variables

    Returns:
        Merged SlpkitConfig
    """
    config_data: dict[str, Any] = {}

    if config_file:
        config_data = load_config_file(config_file)
        logger.info(f"Loaded config from: {config_file}")
    else:
        for path in get_default_config_paths():
            if path.exists():
                config_data = load_config_file(path)
                logger.info(f"Loaded config from: {path}")
                break

    if include_env:
        config_data = merge_configs(config_data, load_env_config())

    return dict_to_config(config_data)


# ============================================================================
# Configuration Saving
# ============================================================================


def config_to_dict(config: SlpkitConfig) -> dict[str, Any]:
    """Convert SlpkitConfig to a dictionary."""
    return asdict(config)


def save_config(config: SlpkitConfig, path: Path) -> None:
    """
    Save configuration to a file.

    Args:
        config: Configuration to save
        path: Path to save to (.yaml, .yml or .json)
    """
    data = config_to_dict(config)
    suffix = path.suffix.lower()

    if suffix in (".yaml", ".yml"):
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    elif suffix == ".json":
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    else:
        raise ValueError(f"Unknown config format: {suffix}")

    logger.info(f"Saved config to: {path}")


# ============================================================================
# Logging Setup
# ============================================================================


def configure_logging(config: LoggingConfig, level: str | None = None) -> None:
    """
    Install handlers on the root logger.

    Args:
        config: Logging configuration
        level: Override for config.level (e.g. DEBUG from --verbose)
    """
    root = logging.getLogger()
    root.setLevel((level or config.level).upper())
    formatter = logging.Formatter(config.format)

    for handler in list(root.handlers):
        if getattr(handler, "_slpkit", False):
            root.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.file:
        handlers.append(
            RotatingFileHandler(
                config.file,
                maxBytes=config.file_max_bytes,
                backupCount=config.file_backup_count,
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._slpkit = True  # type: ignore[attr-defined]
        root.addHandler(handler)
