"""
KVL Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (KVL_*)
3. Project config (./kvl.toml)
4. User config (~/.kvl/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    KVL_STORE_PATH → store.path
    KVL_STORE_TIMEOUT → store.timeout
    KVL_EXPIRE_TIME_MS → store.expire_time_ms
    KVL_SWEEP_INTERVAL → sweeper.interval
    KVL_COMPACT_INTERVAL → sweeper.compact_interval
    KVL_WAL_CHECK → sweeper.wal_check
    KVL_LOG_LEVEL → logging.level
    KVL_LOG_DIR → logging.log_dir
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from kvl.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StoreConfig(BaseModel):
    """Database file and engine configuration."""

    path: str = "~/.kvl/kvl.db"
    timeout: float = 5.0  # seconds to wait on a locked database
    expire_time_ms: int | None = None  # None disables expiry


class SweeperConfig(BaseModel):
    """Background expiry / compaction configuration."""

    interval: float = 1.0  # seconds between sweeps
    compact_interval: float = 60.0  # minimum seconds between VACUUMs
    wal_check: bool = False
    wal_limit_mb: int = 32


class LoggingConfig(BaseModel):
    """Logging configuration (used by the CLI)."""

    level: str = "WARNING"
    log_dir: str | None = None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class KvlConfig(BaseModel):
    """Root configuration for KVL."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> KvlConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.kvl/config.toml)
        user_config_path = user_path or Path.home() / ".kvl" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./kvl.toml)
        project_config_path = project_path or Path.cwd() / "kvl.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return KvlConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_db_path(self) -> Path:
        """Resolved database file path."""
        return Path(self.store.path).expanduser()

    def get_log_dir(self) -> Path | None:
        if self.logging.log_dir is None:
            return None
        return Path(self.logging.log_dir).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from KVL_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "KVL_STORE_PATH": ("store", "path"),
        "KVL_STORE_TIMEOUT": ("store", "timeout"),
        "KVL_EXPIRE_TIME_MS": ("store", "expire_time_ms"),
        "KVL_SWEEP_INTERVAL": ("sweeper", "interval"),
        "KVL_COMPACT_INTERVAL": ("sweeper", "compact_interval"),
        "KVL_WAL_CHECK": ("sweeper", "wal_check"),
        "KVL_LOG_LEVEL": ("logging", "level"),
        "KVL_LOG_DIR": ("logging", "log_dir"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            for var_name in pattern.findall(value):
                value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
            data[key] = value
