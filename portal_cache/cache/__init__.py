"""
Tiered in-memory response cache for the portal API client.
"""
from .core import (
    CacheConfigError,
    CacheEntry,
    CacheStrategy,
    NO_CACHE,
    TierName,
    TierStats,
    TTLStoreConfig,
)
from .store import TTLStore
from .registry import TIER_CONFIGS, TierRegistry
from .ttl_policies import (
    CACHE_KEYS,
    INVALIDATION_RULES,
    POLICY_TABLE,
    PolicyEntry,
    StrategyResolver,
    generate_cache_key,
)
from .coalescer import RequestCoalescer
from .manager import CachedApiService, build_cached_api_service

__all__ = [
    # Core types
    "CacheConfigError",
    "CacheEntry",
    "CacheStrategy",
    "NO_CACHE",
    "TierName",
    "TierStats",
    "TTLStoreConfig",
    # Stores
    "TTLStore",
    "TIER_CONFIGS",
    "TierRegistry",
    # Policies
    "CACHE_KEYS",
    "INVALIDATION_RULES",
    "POLICY_TABLE",
    "PolicyEntry",
    "StrategyResolver",
    "generate_cache_key",
    # Coalescing
    "RequestCoalescer",
    # Façade
    "CachedApiService",
    "build_cached_api_service",
]
