"""
pkgrecovery configuration

Settings are read from ``~/.config/pkgrecovery/config.yaml`` and can be
overridden per run with environment variables:

    PKGRECOVERY_AUTO_FIX       "0"/"false"/"no"/"off" disables auto-fix
    PKGRECOVERY_PLATFORM       platform hint, e.g. "ubuntu"
    PKGRECOVERY_STATE_DIR      directory holding last_error.json
    PKGRECOVERY_PATTERNS_DIR   directory of extra *.yaml rule files
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "pkgrecovery"
DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_STATE_DIR = "~/.pkgrecovery"

_FALSE_VALUES = {"0", "false", "no", "off"}
_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """Invalid configuration file or value."""


@dataclass
class RecoveryConfig:
    """Settings for the recovery engine."""

    auto_fix: bool = True
    auto_confidence_threshold: float = 0.9
    auto_min_success: float = 0.8
    use_sudo: bool = True
    platform: str | None = None
    state_dir: str = DEFAULT_STATE_DIR
    extra_patterns_dir: str | None = None

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def last_error_path(self) -> Path:
        return self.state_path / "last_error.json"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecoveryConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    def validate(self) -> list[str]:
        """Return a list of problems (empty if valid)."""
        errors = []
        for name in ("auto_fix", "use_sudo"):
            if not isinstance(getattr(self, name), bool):
                errors.append(f"{name} must be true or false")
        for name in ("auto_confidence_threshold", "auto_min_success"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"{name} must be a number")
            elif not 0.0 <= value <= 1.0:
                errors.append(f"{name} must be between 0 and 1, got {value}")
        if not self.state_dir:
            errors.append("state_dir must not be empty")
        return errors


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _FALSE_VALUES:
        return False
    if lowered in _TRUE_VALUES:
        return True
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def apply_env_overrides(config: RecoveryConfig) -> RecoveryConfig:
    """Apply PKGRECOVERY_* environment variables on top of ``config``."""
    if os.getenv("PKGRECOVERY_AUTO_FIX"):
        config.auto_fix = _parse_bool("PKGRECOVERY_AUTO_FIX", os.environ["PKGRECOVERY_AUTO_FIX"])
    if os.getenv("PKGRECOVERY_PLATFORM"):
        config.platform = os.environ["PKGRECOVERY_PLATFORM"].strip().lower()
    if os.getenv("PKGRECOVERY_STATE_DIR"):
        config.state_dir = os.environ["PKGRECOVERY_STATE_DIR"]
    if os.getenv("PKGRECOVERY_PATTERNS_DIR"):
        config.extra_patterns_dir = os.environ["PKGRECOVERY_PATTERNS_DIR"]
    return config


class ConfigManager:
    """Loads and saves RecoveryConfig as YAML."""

    def __init__(self, config_path: Path | None = None):
        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE
        self._config: RecoveryConfig | None = None

    @property
    def config(self) -> RecoveryConfig:
        if self._config is None:
            return self.load()
        return self._config

    def load(self, use_env: bool = True) -> RecoveryConfig:
        """
        Load the configuration file.

        A missing file yields the defaults. Environment overrides are applied
        after the file unless ``use_env`` is False.

        Raises:
            ConfigError: If the file is not valid YAML or a value is out of range.
        """
        data: dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in config file: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError("Config file must contain a mapping")
        else:
            logger.debug("No config file at %s, using defaults", self.config_path)

        config = RecoveryConfig.from_dict(data)
        if use_env:
            config = apply_env_overrides(config)

        errors = config.validate()
        if errors:
            raise ConfigError(f"Invalid configuration: {'; '.join(errors)}")

        self._config = config
        return config

    def save(self, config: RecoveryConfig | None = None) -> Path:
        config = config or self.config
        errors = config.validate()
        if errors:
            raise ConfigError(f"Invalid configuration: {'; '.join(errors)}")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False, indent=2)
        self._config = config
        logger.info("Saved configuration to %s", self.config_path)
        return self.config_path
