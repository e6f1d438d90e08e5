"""
Size-bounded in-memory key/value store with per-entry TTL.

Expiry happens two ways: lazily, when ``get``/``has`` meets an expired
entry, and actively, from a background sweep thread that runs every
``cleanup_interval`` seconds. Capacity eviction removes the entry with the
oldest insertion time. Reads never refresh an entry's age, so this is not
an LRU cache: a frequently read old entry is still evicted before a newly
written one.
"""
import threading
import time
import logging
from typing import Any, Callable, Dict, List, Optional

from .core import CacheEntry, TierStats, TTLStoreConfig

logger = logging.getLogger("cache.store")


class TTLStore:
    """
    Generic bounded TTL cache, independent of any request semantics.

    Thread-safe: every operation holds the store lock, so operations are
    atomic relative to each other and to the sweep thread.

    Usage:
        store = TTLStore(TTLStoreConfig(default_ttl=300, max_size=100))
        store.set("GET:/api/companies", companies)
        store.get("GET:/api/companies")
        store.destroy()
    """

    def __init__(
        self,
        config: TTLStoreConfig,
        name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        start_sweep: bool = True,
    ):
        """
        Initialize the store.

        Args:
            config: TTL, capacity and sweep interval
            name: Label used in log messages
            clock: Source of monotonic seconds (injectable for tests)
            start_sweep: Start the background sweep thread immediately

        Raises:
            CacheConfigError: If the configuration is unusable
        """
        config.validate()
        self._config = config
        self._name = name or "store"
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

        self._stop_event = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None
        if start_sweep:
            self.start_sweep()

    @property
    def config(self) -> TTLStoreConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._name

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store ``value`` under ``key`` with a fresh creation time.

        When the store is full one entry is evicted first, even if ``key``
        is already present.
        """
        ttl_seconds = self._config.default_ttl if ttl is None else ttl
        with self._lock:
            if len(self._entries) >= self._config.max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(
                key=key,
                data=value,
                created_at=self._clock(),
                ttl_seconds=ttl_seconds,
            )

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or ``default`` if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return default
            return entry.data

    def has(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        """
        Remove an entry.

        Returns:
            True if the entry existed
        """
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def stats(self) -> TierStats:
        """Count valid and expired entries without removing anything."""
        with self._lock:
            now = self._clock()
            valid = sum(1 for entry in self._entries.values() if entry.is_valid(now))
            total = len(self._entries)
            return TierStats(
                total=total,
                valid=valid,
                expired=total - valid,
                max_size=self._config.max_size,
            )

    def purge_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._entries.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._entries[key]

        if expired_keys:
            logger.info(f"[{self._name}] Cleaned up {len(expired_keys)} expired entries")
        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Drop the entry with the smallest creation time. Caller holds the lock."""
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].created_at)
        del self._entries[oldest_key]
        logger.debug(f"[{self._name}] Evicted oldest entry: {oldest_key}")

    # -------------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------------

    def start_sweep(self) -> None:
        """Start the background sweep thread if it is not already running."""
        if self._sweep_thread is not None and self._sweep_thread.is_alive():
            return
        self._stop_event.clear()
        self._sweep_thread = threading.Thread(
            target=self._sweep_loop,
            daemon=True,
            name=f"cache-sweep-{self._name}",
        )
        self._sweep_thread.start()

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._config.cleanup_interval):
            try:
                self.purge_expired()
            except Exception as e:
                logger.warning(f"[{self._name}] Sweep failed: {e}")

    @property
    def sweeping(self) -> bool:
        return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def destroy(self) -> None:
        """Stop the sweep thread and drop all entries."""
        self._stop_event.set()
        thread = self._sweep_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._sweep_thread = None
        self.clear()
