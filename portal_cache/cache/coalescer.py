"""
Single-flight reads for the cached API service.

Concurrent cold reads of one cache key share a single upstream call, and a
reader that shows up after that call has already filled the tier is answered
from the tier instead of starting another one.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")

# Returned by a tier lookup when the key is absent or expired
MISS = object()


@dataclass
class _Flight:
    """One upstream call and the readers attached to it."""
    done: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Optional[BaseException] = None
    followers: int = 0

    def outcome(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


class RequestCoalescer:
    """
    Keyed single-flight over a cache tier.

    A reader calling ``get_or_fetch`` ends up in exactly one of three roles,
    decided under the coalescer lock:

    - answered from the tier, when ``lookup`` finds a valid entry and no call
      is in flight
    - follower of the call already in flight for the key
    - leader of a new call, running ``fetch_fn``

    ``fetch_fn`` is expected to write the tier before it returns. The flight
    is only retired after that write, so every reader either sees the flight
    or sees the warm tier.
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a follower blocks on the leader's call
        """
        self._flights: Dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._fetches = 0
        self._coalesced = 0
        self._late_hits = 0

    def get_or_fetch(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Any],
        lookup: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """
        Return the value for ``cache_key``, calling upstream at most once per flight.

        Args:
            cache_key: Key shared by every reader of the same resource
            fetch_fn: Upstream call; writes the tier and returns the data
            lookup: Tier read returning the cached value or ``MISS``

        Raises:
            TimeoutError: A follower waited longer than the timeout
            Exception: The leader's error, re-raised to the leader and every follower
        """
        with self._lock:
            flight = self._flights.get(cache_key)
            if flight is None and lookup is not None:
                cached = lookup()
                if cached is not MISS:
                    self._late_hits += 1
                    logger.debug(f"Late reader for {cache_key} served from cache")
                    return cached

            if flight is None:
                flight = _Flight()
                self._flights[cache_key] = flight
                self._fetches += 1
                leading = True
            else:
                flight.followers += 1
                self._coalesced += 1
                leading = False

        if leading:
            return self._lead(cache_key, flight, fetch_fn)
        return self._follow(cache_key, flight)

    def _lead(self, cache_key: str, flight: _Flight, fetch_fn: Callable[[], Any]) -> Any:
        logger.debug(f"Fetching {cache_key} for single-flight readers")
        try:
            flight.value = fetch_fn()
        except Exception as e:
            flight.error = e
            logger.warning(f"Fetch failed for {cache_key}: {e}")
        finally:
            with self._lock:
                self._flights.pop(cache_key, None)
            flight.done.set()
        return flight.outcome()

    def _follow(self, cache_key: str, flight: _Flight) -> Any:
        logger.debug(f"Joined in-flight fetch of {cache_key} (followers: {flight.followers})")
        if not flight.done.wait(timeout=self._timeout):
            logger.error(f"Timeout waiting for in-flight fetch: {cache_key}")
            raise TimeoutError(f"Fetch of {cache_key} timed out after {self._timeout}s")
        return flight.outcome()

    def waiters(self, cache_key: str) -> int:
        """Number of followers attached to the flight for ``cache_key``."""
        with self._lock:
            flight = self._flights.get(cache_key)
            return flight.followers if flight else 0

    @property
    def active_requests(self) -> int:
        with self._lock:
            return len(self._flights)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_requests": len(self._flights),
                "active_keys": list(self._flights),
                "fetches": self._fetches,
                "coalesced": self._coalesced,
                "late_hits": self._late_hits,
            }
