"""
Two-tier schema cache.

The in-process tier lives as long as the SchemaCache instance. The optional
persistent tier is any CacheBackend shared across instances. Both tiers drop
an entry once its TTL has passed, so an edited schema file is picked up on
the next lookup after expiry.
"""
import copy
import logging
import time
from typing import Any, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def delete(self, key: str) -> None: ...


class TTLMemoryBackend:
    """Process-wide key/value store with per-entry expiry."""

    def __init__(self):
        self._store: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.time() >= expires_at:
            self._store.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        self._store[key] = (time.time() + ttl, value)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()


class SchemaCache:
    """Cache of normalized schemas keyed by (model, connection)."""

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        ttl: int = 3600,
        persistent_enabled: bool = False,
        prefix: str = "crud6_schema_",
    ):
        self.backend = backend
        self.ttl = ttl
        self.persistent_enabled = persistent_enabled
        self.prefix = prefix
        self._memory: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        # key -> generation of the entry currently published under it
        self._versions: Dict[str, int] = {}
        self._generation = 0

    @staticmethod
    def cache_key(model: str, connection: Optional[str] = None) -> str:
        return f"{model}:{connection or 'default'}"

    def get(self, model: str, connection: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Return a copy of the cached schema, or None on a miss."""
        key = self.cache_key(model, connection)

        entry = self._memory.get(key)
        if entry is not None:
            expires_at, schema = entry
            if time.time() < expires_at:
                logger.debug("Schema cache hit (memory) for %s", key)
                return copy.deepcopy(schema)
            logger.debug("Schema cache entry expired for %s", key)
            del self._memory[key]

        if self._persistent_active():
            try:
                cached = self.backend.get(self.prefix + key)
            except Exception as e:
                logger.warning("Persistent schema cache read failed for %s: %s", key, e)
                cached = None
            if cached is not None:
                logger.debug("Schema cache hit (persistent) for %s", key)
                self._remember(key, copy.deepcopy(cached))
                return copy.deepcopy(cached)

        return None

    def set(self, schema: Dict[str, Any], model: str, connection: Optional[str] = None) -> None:
        """Publish a fully normalized schema."""
        key = self.cache_key(model, connection)
        frozen = copy.deepcopy(schema)
        self._remember(key, frozen)

        if self._persistent_active():
            try:
                self.backend.set(self.prefix + key, copy.deepcopy(frozen), self.ttl)
            except Exception as e:
                logger.warning("Persistent schema cache write failed for %s: %s", key, e)

        logger.debug("Schema cached for %s", key)

    def version(self, model: str, connection: Optional[str] = None) -> int:
        """
        Get the generation of the entry cached for (model, connection).

        The value changes whenever the entry is republished or cleared, so
        anything derived from a schema can tell when it has gone stale.
        """
        return self._versions.get(self.cache_key(model, connection), 0)

    def clear(self, model: str, connection: Optional[str] = None) -> None:
        key = self.cache_key(model, connection)
        self._memory.pop(key, None)
        self._bump(key)

        if self.backend is not None:
            try:
                self.backend.delete(self.prefix + key)
            except Exception as e:
                logger.warning("Persistent schema cache delete failed for %s: %s", key, e)

        logger.debug("Schema cache cleared for %s", key)

    def clear_all(self) -> None:
        count = len(self._memory)
        for key in list(self._versions):
            self._bump(key)
        self._memory = {}
        clear = getattr(self.backend, "clear", None)
        if callable(clear):
            clear()
        logger.debug("Schema cache cleared (%d in-memory entries)", count)

    def __len__(self) -> int:
        return len(self._memory)

    def _remember(self, key: str, schema: Dict[str, Any]) -> None:
        self._memory[key] = (time.time() + self.ttl, schema)
        self._bump(key)

    def _bump(self, key: str) -> None:
        self._generation += 1
        self._versions[key] = self._generation

    def _persistent_active(self) -> bool:
        return self.backend is not None and self.persistent_enabled
