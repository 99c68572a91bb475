# config/settings.py
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.runtime_env import (
    ENV_PREFIX,
    env_flag,
    env_float,
    env_int,
    env_text,
)
from config.settings_utils import _dataclass_to_dict, _safe_dataclass_from_dict
from core.types import FailurePolicy

# Minimal logger that doesn't depend on our logger module
# (avoids circular import: settings -> logger -> settings)
_log = logging.getLogger("config.settings")

_VALID_BACKENDS = ("memory", "redis")
_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EngineConfig:
    """Bar window evaluator defaults."""
    repeat_last_value: bool = False
    failure_policy: FailurePolicy = FailurePolicy.SWALLOW
    print_in_main_log: bool = True
    max_recent_log_records: int = 200
    heartbeat_delay_ms: int = 30000


@dataclass
class SharedStoreConfig:
    """Shared (cross-chain) series store configuration."""
    backend: str = "memory"
    save_period: int = 2
    allow_write: bool = False
    key_prefix: str = "barcache:"

    # Redis backend
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    ssl: bool = False
    socket_timeout: float = 5.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = ""


class Config:
    """
    Engine configuration manager.

    Usage:
        from config.settings import CONFIG
        print(CONFIG.shared.save_period)

    Values come from defaults, then ``config.json`` (or the file named by
    ``BARCACHE_CONFIG_FILE``), then ``BARCACHE_*`` environment variables.
    """

    _instance: Optional[Config] = None
    _instance_lock = threading.RLock()

    def __new__(cls) -> Config:
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    inst = super().__new__(cls)
                    inst._initialized = False
                    cls._instance = inst
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Destroy singleton for testing."""
        with cls._instance_lock:
            cls._instance = None

    def __init__(self) -> None:
        if self._initialized:
            return

        self._initialized = True
        self._lock = threading.RLock()
        self._base_dir = Path(__file__).parent.parent
        self._validation_warnings: List[str] = []

        self.engine = EngineConfig()
        self.shared = SharedStoreConfig()
        self.logging = LoggingConfig()

        # _load() runs under _instance_lock from __new__/__init__ only
        self._load()
        self._validate()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def config_file(self) -> Path:
        override = env_text(f"{ENV_PREFIX}CONFIG_FILE", "").strip()
        if override:
            return Path(override)
        return self._base_dir / "config.json"

    @property
    def log_dir(self) -> Optional[Path]:
        text = str(self.logging.log_dir or "").strip()
        return Path(text) if text else None

    # ==================== LOADING ====================

    def _load(self) -> None:
        """Load configuration from file and environment."""
        path = self.config_file
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._apply_dict(data)
            except (OSError, ValueError) as e:
                _log.warning("Failed to load config file %s: %s", path, e)

        self._load_from_env()

    def _load_from_env(self) -> None:
        """Load from environment variables."""
        env_mappings = {
            "REPEAT_LAST_VALUE": ("engine.repeat_last_value", env_flag),
            "FAILURE_POLICY": (
                "engine.failure_policy",
                lambda k: FailurePolicy(env_text(k).strip().lower()),
            ),
            "PRINT_IN_MAIN_LOG": ("engine.print_in_main_log", env_flag),
            "HEARTBEAT_DELAY_MS": (
                "engine.heartbeat_delay_ms",
                lambda k: env_int(k, self.engine.heartbeat_delay_ms, minimum=1),
            ),
            "SHARED_BACKEND": (
                "shared.backend",
                lambda k: env_text(k).strip().lower(),
            ),
            "SAVE_PERIOD": (
                "shared.save_period",
                lambda k: env_int(k, self.shared.save_period, minimum=1),
            ),
            "ALLOW_SHARED_WRITE": ("shared.allow_write", env_flag),
            "REDIS_HOST": ("shared.host", env_text),
            "REDIS_PORT": (
                "shared.port",
                lambda k: env_int(k, self.shared.port),
            ),
            "REDIS_DB": ("shared.db", lambda k: env_int(k, self.shared.db)),
            "REDIS_PASSWORD": ("shared.password", lambda k: env_text(k) or None),
            "REDIS_SSL": ("shared.ssl", env_flag),
            "REDIS_SOCKET_TIMEOUT": (
                "shared.socket_timeout",
                lambda k: env_float(k, self.shared.socket_timeout),
            ),
            "LOG_LEVEL": ("logging.level", lambda k: env_text(k).strip().upper()),
            "LOG_DIR": ("logging.log_dir", env_text),
        }

        for env_key, (attr_path, reader) in env_mappings.items():
            full_key = f"{ENV_PREFIX}{env_key}"
            raw = os.environ.get(full_key)
            if raw is None or not raw.strip():
                continue
            try:
                self._set_nested(attr_path, reader(full_key))
            except (TypeError, ValueError) as e:
                _log.warning(
                    "Failed to apply env %s=%r: %s", full_key, raw, e
                )

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        sub_configs = {
            "engine": self.engine,
            "shared": self.shared,
            "logging": self.logging,
        }

        if not isinstance(data, dict):
            _log.warning(
                "Expected dict for config, got %s - ignored",
                type(data).__name__,
            )
            return

        for key, value in data.items():
            target = sub_configs.get(key)
            if target is None:
                _log.debug("Unknown config key '%s' - ignored", key)
                continue
            if not isinstance(value, dict):
                _log.warning(
                    "Expected dict for '%s', got %s - ignored",
                    key,
                    type(value).__name__,
                )
                continue
            for w in _safe_dataclass_from_dict(target, value):
                _log.warning("Config %s: %s", key, w)

    def _set_nested(self, path: str, value: Any) -> None:
        """Set nested attribute like 'shared.save_period'."""
        parts = path.split(".")
        obj = self
        for part in parts[:-1]:
            obj = getattr(obj, part)
        setattr(obj, parts[-1], value)

    # ==================== VALIDATION ====================

    def _validate(self) -> None:
        """
        Validate configuration without raising.
        Out-of-range values are corrected and reported as warnings.
        """
        self._validation_warnings.clear()

        if self.shared.save_period < 1:
            self._validation_warnings.append(
                f"save_period must be >= 1, got {self.shared.save_period} - using 1"
            )
            self.shared.save_period = 1

        if self.shared.backend not in _VALID_BACKENDS:
            self._validation_warnings.append(
                f"Unknown shared backend {self.shared.backend!r} - using 'memory'"
            )
            self.shared.backend = "memory"

        if self.engine.heartbeat_delay_ms < 1:
            self._validation_warnings.append(
                "heartbeat_delay_ms must be positive - using 30000"
            )
            self.engine.heartbeat_delay_ms = 30000

        if self.engine.max_recent_log_records < 0:
            self._validation_warnings.append(
                "max_recent_log_records must be >= 0 - using 0"
            )
            self.engine.max_recent_log_records = 0

        if self.shared.socket_timeout <= 0:
            self._validation_warnings.append(
                f"socket_timeout must be positive, got {self.shared.socket_timeout} - using 5.0"
            )
            self.shared.socket_timeout = 5.0

        level = str(self.logging.level or "").upper()
        if level not in _VALID_LEVELS:
            self._validation_warnings.append(
                f"Unknown log level {self.logging.level!r} - using INFO"
            )
            level = "INFO"
        self.logging.level = level

        for w in self._validation_warnings:
            _log.warning("Config validation: %s", w)

    @property
    def validation_warnings(self) -> List[str]:
        """Access validation warnings without re-validating."""
        return list(self._validation_warnings)

    # ==================== SAVE / RELOAD ====================

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "engine": _dataclass_to_dict(self.engine),
                "shared": _dataclass_to_dict(self.shared),
                "logging": _dataclass_to_dict(self.logging),
            }

    def save(self) -> None:
        """Write the current configuration to the config file."""
        data = self.to_dict()
        path = self.config_file
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(path)
        except OSError as e:
            _log.error("Failed to save config: %s", e)

    def reload(self) -> None:
        """Hot-reload: reset sub-configs to defaults, then re-apply."""
        with self._lock:
            self.engine = EngineConfig()
            self.shared = SharedStoreConfig()
            self.logging = LoggingConfig()
            self._load()
            self._validate()

    def __repr__(self) -> str:
        return (
            f"Config(backend={self.shared.backend}, "
            f"save_period={self.shared.save_period}, "
            f"allow_write={self.shared.allow_write}, "
            f"failure_policy={self.engine.failure_policy.value})"
        )


# Global config instance
CONFIG = Config()
