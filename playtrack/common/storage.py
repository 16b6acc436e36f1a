"""
Local durable key/value store.

Three logical namespaces share one store: the preferred quality, per-video
resume points and the pending-event outbox (plus the device fingerprint).
The store may be unavailable at any time, so the public accessors never
raise: a failed read is reported as ``None`` and a failed write as
``False``. Callers treat absence as "use the default".
"""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import redis

from playtrack.common.config import StorageSettings, get_settings
from playtrack.common.exceptions import StorageError
from playtrack.common.logger import get_logger
from playtrack.common.utils import (
    current_timestamp_ms,
    generate_fingerprint,
    json_dumps,
    json_loads,
    random_suffix,
)

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """
    Abstract string key/value store.

    Subclasses implement the raw ``_get``/``_set``/``_remove`` operations
    and may raise freely; the public methods absorb every failure.
    """

    def get(self, key: str) -> str | None:
        """Get a string value, or None if absent or unreadable."""
        try:
            return self._get(key)
        except Exception as e:
            logger.warning("Store read failed", key=key, error=str(e))
            return None

    def set(self, key: str, value: str) -> bool:
        """Set a string value. Returns False if the store rejected it."""
        try:
            self._set(key, value)
            return True
        except Exception as e:
            logger.warning("Store write failed", key=key, error=str(e))
            return False

    def remove(self, key: str) -> bool:
        """Remove a key. Returns False if the store rejected it."""
        try:
            self._remove(key)
            return True
        except Exception as e:
            logger.warning("Store remove failed", key=key, error=str(e))
            return False

    def close(self) -> None:
        """Release backend resources. Most backends hold none."""

    @abstractmethod
    def _get(self, key: str) -> str | None:
        pass

    @abstractmethod
    def _set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def _remove(self, key: str) -> None:
        pass


class MemoryStore(KeyValueStore):
    """In-process store. Nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def _get(self, key: str) -> str | None:
        return self._data.get(key)

    def _set(self, key: str, value: str) -> None:
        self._data[key] = value

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class UnavailableStore(KeyValueStore):
    """Store that is never available (blocked storage, privacy mode)."""

    def _get(self, key: str) -> str | None:
        raise StorageError("Storage unavailable")

    def _set(self, key: str, value: str) -> None:
        raise StorageError("Storage unavailable")

    def _remove(self, key: str) -> None:
        raise StorageError("Storage unavailable")


class FileStore(KeyValueStore):
    """
    Single JSON document on disk.

    The document is loaded lazily and cached; every write replaces the
    file atomically.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data

        document = json_loads(self.path.read_bytes())
        if not isinstance(document, dict):
            raise StorageError(
                "Store document is not an object",
                details={"path": str(self.path)},
            )
        self._data = {str(k): str(v) for k, v in document.items()}
        return self._data

    def _persist(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json_dumps(data))
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _get(self, key: str) -> str | None:
        return self._load().get(key)

    def _set(self, key: str, value: str) -> None:
        data = dict(self._load())
        data[key] = value
        self._persist(data)
        self._data = data

    def _remove(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        data = {k: v for k, v in data.items() if k != key}
        self._persist(data)
        self._data = data


class RedisStore(KeyValueStore):
    """Keys under a prefix in a Redis database."""

    def __init__(
        self,
        url: str,
        key_prefix: str = "playtrack:",
        socket_timeout: float = 2.0,
    ) -> None:
        self.url = url
        self.key_prefix = key_prefix
        self.socket_timeout = socket_timeout
        self._client: redis.Redis | None = None

    @property
    def client(self) -> redis.Redis:
        """Get the Redis client, creating it on first use."""
        if self._client is None:
            self._client = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _get(self, key: str) -> str | None:
        return self.client.get(self._key(key))

    def _set(self, key: str, value: str) -> None:
        self.client.set(self._key(key), value)

    def _remove(self, key: str) -> None:
        self.client.delete(self._key(key))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def create_store(settings: StorageSettings | None = None) -> KeyValueStore:
    """Build the store backend named in settings."""
    settings = settings or get_settings().storage

    if settings.backend == "memory":
        return MemoryStore()
    if settings.backend == "redis":
        return RedisStore(settings.redis_url, key_prefix=settings.key_prefix)
    return FileStore(settings.file_path)


# ==================== Key Builders ====================


class StoreKeys:
    """Store key builders for the telemetry namespaces."""

    PREFERRED_QUALITY = "preferred_quality"
    PENDING_EVENTS = "pending_analytics_events"
    FINGERPRINT = "device_fingerprint"

    @staticmethod
    def resume_point(video_id: str) -> str:
        return f"resume_point_{video_id}"


def load_or_create_fingerprint(store: KeyValueStore, platform: str = "py") -> str:
    """
    Return the installation fingerprint, creating it once if absent.

    When the store cannot persist a new fingerprint, a session-scoped one
    is returned instead.
    """
    fingerprint = store.get(StoreKeys.FINGERPRINT)
    if fingerprint:
        return fingerprint

    fingerprint = generate_fingerprint(platform)
    if store.set(StoreKeys.FINGERPRINT, fingerprint):
        logger.info("Generated device fingerprint", fingerprint=fingerprint)
        return fingerprint

    return f"fp_session_{current_timestamp_ms()}_{random_suffix(7)}"
