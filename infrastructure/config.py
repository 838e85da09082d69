"""
NERON CONFIG - Typed configuration from neron.toml

Configuration is read once from config/neron.toml (or the file named by
NERON_CONFIG) and converted into typed msgspec sections. A missing or
broken file is not an error: a warning is emitted and defaults are used.

Usage:
    from infrastructure.config import get_config

    delay = get_config().interaction.center_delay_seconds
"""
import os
import tomllib
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import msgspec

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "neron.toml"
CONFIG_ENV_VAR = "NERON_CONFIG"


# =============================================================================
# SECTIONS
# =============================================================================

class CacheConfig(msgspec.Struct, kw_only=True):
    ttl_seconds: float = 0.0            # 0 = entries never expire


class InteractionConfig(msgspec.Struct, kw_only=True):
    selection_offset_px: float = 20.0   # Card offset from the click point
    center_delay_seconds: float = 0.1   # Let the renderer settle before centering
    hover_mode_default: bool = True


class ExportConfig(msgspec.Struct, kw_only=True):
    filename: str = "neron-graph-export.json"
    indent: int = 2


class ApiConfig(msgspec.Struct, kw_only=True):
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = msgspec.field(default_factory=lambda: ["*"])


class LoggingConfig(msgspec.Struct, kw_only=True):
    level: str = "INFO"
    notification_buffer_size: int = 200


class NeronConfig(msgspec.Struct, kw_only=True):
    cache: CacheConfig = msgspec.field(default_factory=CacheConfig)
    interaction: InteractionConfig = msgspec.field(default_factory=InteractionConfig)
    export: ExportConfig = msgspec.field(default_factory=ExportConfig)
    api: ApiConfig = msgspec.field(default_factory=ApiConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load raw configuration sections from TOML.

    Args:
        path: Explicit file. Defaults to $NERON_CONFIG, then config/neron.toml.

    Returns:
        Dict with all configuration sections (empty on failure)
    """
    config_path = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        warnings.warn(f"Failed to load config from {config_path}: {e}")
        return {}


def build_config(raw: Dict[str, Any]) -> NeronConfig:
    """Convert raw sections to a NeronConfig, falling back to defaults."""
    try:
        return msgspec.convert(raw, NeronConfig)
    except msgspec.ValidationError as e:
        warnings.warn(f"Invalid configuration, using defaults: {e}")
        return NeronConfig()


def load_config(path: Optional[Union[str, Path]] = None) -> NeronConfig:
    return build_config(load_toml_config(path))


_config: Optional[NeronConfig] = None


def get_config() -> NeronConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: NeronConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Forget the loaded configuration (tests)."""
    global _config
    _config = None
