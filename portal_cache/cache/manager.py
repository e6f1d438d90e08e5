"""
Cache-aware façade over the portal API client.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

from .core import TierStats
from .coalescer import MISS, RequestCoalescer
from .registry import TierRegistry
from .ttl_policies import (
    PRELOAD_URLS,
    StrategyResolver,
    generate_cache_key,
    get_invalidation_rules,
)

logger = logging.getLogger("cache.manager")


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole > 0 else 0


class HttpClient(Protocol):
    """The underlying client. Failures are raised, never returned."""

    def get(self, url: str, config: Optional[Dict[str, Any]] = None) -> Any: ...

    def post(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any: ...

    def put(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any: ...

    def patch(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any: ...

    def delete(self, url: str, config: Optional[Dict[str, Any]] = None) -> Any: ...

    def upload(
        self,
        url: str,
        files: Any,
        data: Optional[Dict[str, Any]] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Any: ...


class CachedApiService:
    """
    Single entry point for API calls, with:
    - Read-through caching of GETs into the tier chosen by the policy table
    - Call-through mutations followed by a coarse invalidation pass
    - Optional request coalescing for concurrent cold reads

    Without a coalescer, concurrent reads of the same cold key each call the
    API and each write the cache (last write wins).
    """

    def __init__(
        self,
        client: HttpClient,
        registry: TierRegistry,
        resolver: Optional[StrategyResolver] = None,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        """
        Args:
            client: Underlying HTTP client
            registry: Cache tiers owned by this service
            resolver: URL policy resolver (defaults to the portal policy table)
            coalescer: Share one upstream call between concurrent cold reads
        """
        self._client = client
        self._registry = registry
        self._resolver = resolver or StrategyResolver()
        self._coalescer = coalescer

    @property
    def registry(self) -> TierRegistry:
        return self._registry

    @property
    def resolver(self) -> StrategyResolver:
        return self._resolver

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, url: str, config: Optional[Dict[str, Any]] = None) -> Any:
        """
        Get data from cache or fetch from the API.

        Args:
            url: Request URL, matched against the policy table
            config: Extra request options passed to the client

        Returns:
            Cached or freshly fetched response data
        """
        cache_key = generate_cache_key("GET", url)
        strategy = self._resolver.resolve(url)
        store = self._registry.tier(strategy.tier) if strategy.cacheable else None

        if store is not None:
            cached = store.get(cache_key, MISS)
            if cached is not MISS:
                logger.debug(f"CACHE HIT ({strategy.tier.value}): {url}")
                return cached

        logger.info(f"CACHE MISS: {url}")

        def fetch():
            data = self._client.get(url, config)
            if store is not None:
                store.set(cache_key, data, strategy.ttl_seconds)
            return data

        if self._coalescer is None:
            return fetch()

        # The tier is re-read under the coalescer lock; a fetch that finished
        # after the check above is served from the tier.
        lookup = (lambda: store.get(cache_key, MISS)) if store is not None else None
        return self._coalescer.get_or_fetch(cache_key, fetch, lookup)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def post(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
        result = self._client.post(url, body, config)
        self.invalidate_related_caches(url, body)
        return result

    def put(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
        result = self._client.put(url, body, config)
        self.invalidate_related_caches(url, body)
        return result

    def patch(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
        result = self._client.patch(url, body, config)
        self.invalidate_related_caches(url, body)
        return result

    def delete(self, url: str, config: Optional[Dict[str, Any]] = None) -> Any:
        result = self._client.delete(url, config)
        self.invalidate_related_caches(url)
        return result

    def upload(
        self,
        url: str,
        files: Any,
        data: Optional[Dict[str, Any]] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Multipart upload; invalidates like any other mutation."""
        result = self._client.upload(url, files, data, config)
        self.invalidate_related_caches(url)
        return result

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate_related_caches(self, url: str, body: Any = None) -> List[str]:
        """
        Delete the aggregate list key of every domain area the URL touches.

        Only one well-known key per area is removed; detail entries such as a
        single company by id stay cached until they expire. ``body`` is
        accepted for symmetry with the mutation calls and not inspected.

        Returns:
            Keys that were present and removed
        """
        removed = []
        for rule in get_invalidation_rules(url):
            if self._registry.tier(rule.tier).delete(rule.key):
                removed.append(rule.key)
            logger.info(f"Invalidated {rule.label} cache")
        return removed

    def invalidate_cache(self, pattern: str) -> int:
        """
        Manual invalidation hook. Logs the request and deletes nothing.

        Returns:
            Number of entries invalidated (always 0)
        """
        for name, _store in self._registry:
            logger.info(f"Invalidating cache pattern: {pattern} ({name.value})")
        return 0

    def clear_all_caches(self) -> None:
        self._registry.clear_all()
        logger.info("All caches cleared")

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def get_cache_stats(self) -> Dict[str, TierStats]:
        return self._registry.stats()

    def get_cache_summary(self) -> Dict[str, Any]:
        """Per-tier stats plus totals and the share of entries still valid, per tier and overall."""
        stats = self.get_cache_stats()
        total = sum(tier.total for tier in stats.values())
        valid = sum(tier.valid for tier in stats.values())

        tiers = {}
        for name, tier in stats.items():
            record = tier.to_dict()
            record["validPercent"] = _percent(tier.valid, tier.total)
            tiers[name] = record

        return {
            "tiers": tiers,
            "total": total,
            "valid": valid,
            "valid_percent": _percent(valid, total),
            "coalescer": self._coalescer.get_stats() if self._coalescer else None,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def preload_data(self) -> bool:
        """
        Warm the long tier with rarely changing data. Best-effort: failures
        are logged and swallowed.

        Returns:
            True if every preload request succeeded
        """
        try:
            logger.info("Preloading important data...")
            for url in PRELOAD_URLS:
                self.get(url)
            logger.info("Data preloading completed")
            return True
        except Exception as e:
            logger.warning(f"Data preloading failed: {e}")
            return False

    def shutdown(self) -> None:
        """Tear down the tiers and close the client. The service is unusable afterwards."""
        self._registry.destroy()
        close = getattr(self._client, "close", None)
        if callable(close):
            close()


def build_cached_api_service(settings=None) -> CachedApiService:
    """Construct the process-wide service from application settings."""
    from config.settings import settings as default_settings
    from portal_cache.api_client import ApiClient

    settings = settings or default_settings

    client = ApiClient(
        base_url=settings.api_base_url,
        token=settings.api_token,
        timeout=settings.request_timeout_seconds,
        retry_attempts=settings.request_retry_attempts,
        retry_delay=settings.request_retry_delay_seconds,
    )
    registry = TierRegistry(cleanup_interval=settings.cache_cleanup_interval_seconds)
    coalescer = RequestCoalescer() if settings.coalesce_reads else None

    return CachedApiService(client, registry, coalescer=coalescer)
