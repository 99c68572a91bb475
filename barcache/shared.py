# barcache/shared.py
"""
Shared key-value store backends.

The engine only needs ``get(key) -> bytes | None`` and ``put(key, blob)``.
Reads never raise: an unreachable store looks like a missing key. Writes
raise ``SharedStoreUnavailableError`` so the caller decides what a lost
snapshot means.
"""
from __future__ import annotations

import threading
from typing import Optional, Protocol, runtime_checkable

import redis
from redis.exceptions import RedisError

from config.settings import SharedStoreConfig
from core.exceptions import ConfigurationError, SharedStoreUnavailableError
from utils.logger import get_logger

log = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def put(self, key: str, blob: bytes) -> None:
        ...


class InMemoryKeyValueStore:
    """Process-local store. Share one instance between sessions to share series."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, blob: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(blob)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisKeyValueStore:
    """Redis-backed store; keys are namespaced with ``config.key_prefix``."""

    def __init__(
        self,
        config: Optional[SharedStoreConfig] = None,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self._config = config or SharedStoreConfig(backend="redis")
        self._client = client
        self._lock = threading.Lock()

    @property
    def client(self) -> redis.Redis:
        with self._lock:
            if self._client is None:
                cfg = self._config
                log.info(f"Connecting to Redis at {cfg.host}:{cfg.port}")
                pool = redis.ConnectionPool(
                    host=cfg.host,
                    port=cfg.port,
                    db=cfg.db,
                    password=cfg.password,
                    socket_timeout=cfg.socket_timeout,
                    socket_connect_timeout=cfg.socket_timeout,
                    connection_class=(
                        redis.SSLConnection if cfg.ssl else redis.Connection
                    ),
                )
                self._client = redis.Redis(connection_pool=pool)
            return self._client

    def _full_key(self, key: str) -> str:
        return f"{self._config.key_prefix}{key}"

    def get(self, key: str) -> Optional[bytes]:
        try:
            value = self.client.get(self._full_key(key))
        except RedisError as e:
            log.error(f"Shared store get error for {key}: {e}")
            return None
        if value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)

    def put(self, key: str, blob: bytes) -> None:
        try:
            self.client.set(self._full_key(key), blob)
        except RedisError as e:
            log.error(f"Shared store put error for {key}: {e}")
            raise SharedStoreUnavailableError(
                f"Could not write shared series {key}",
                details={"key": key, "error": str(e)},
            ) from e

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None


def create_key_value_store(config: SharedStoreConfig) -> KeyValueStore:
    """Backend named by ``config.backend``."""
    backend = str(config.backend or "memory").strip().lower()
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "redis":
        return RedisKeyValueStore(config)
    raise ConfigurationError(
        f"Unknown shared store backend: {config.backend!r}",
        details={"backend": config.backend},
    )
