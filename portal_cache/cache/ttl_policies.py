"""
URL-to-tier policy table, cache key generation and post-mutation invalidation rules.
"""
import json
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from .core import CacheStrategy, NO_CACHE, TierName, TTLStoreConfig
from .registry import TIER_CONFIGS


@dataclass(frozen=True)
class PolicyEntry:
    """Maps URLs containing ``url_substring`` to a tier (``None`` disables caching)."""
    url_substring: str
    tier: Optional[TierName]
    ttl_override: Optional[float] = None  # seconds


# Ordered; the first entry whose substring is contained in the URL wins.
# Overlapping entries shadow each other by position, e.g.
# "/api/super-admin/companies/archived" resolves through the companies entry.
POLICY_TABLE: Tuple[PolicyEntry, ...] = (
    # Auth - short cache for security
    PolicyEntry("/api/auth/validate", TierName.SHORT, 30),
    PolicyEntry("/api/auth/login", None),

    # Companies
    PolicyEntry("/api/super-admin/companies", TierName.MEDIUM, 2 * 60),
    PolicyEntry("/api/companies", TierName.MEDIUM, 2 * 60),

    # Subscription plans rarely change
    PolicyEntry("/api/super-admin/subscription-plans", TierName.LONG, 15 * 60),

    # Dashboard stats are updated frequently
    PolicyEntry("/api/super-admin/dashboard/stats", TierName.SHORT, 60),

    PolicyEntry("/api/super-admin/analytics", TierName.MEDIUM, 5 * 60),
    PolicyEntry("/api/super-admin/users", TierName.MEDIUM, 2 * 60),

    # Settings
    PolicyEntry("/api/super-admin/settings", TierName.LONG, 10 * 60),
    PolicyEntry("/api/admin/settings", TierName.LONG, 10 * 60),

    PolicyEntry("/api/super-admin/notifications", TierName.SHORT, 30),

    # Monitoring
    PolicyEntry("/api/monitoring/health", TierName.SHORT, 30),
    PolicyEntry("/api/monitoring/errors", TierName.SHORT, 30),
    PolicyEntry("/api/monitoring/performance", TierName.SHORT, 30),
)


class StrategyResolver:
    """
    Resolves a request URL to a cache tier and effective TTL.

    Matching is plain substring containment scanned top to bottom, so the
    table order is part of the behavior. A more specific entry placed after
    a generic one is never reached.
    """

    def __init__(
        self,
        policies: Sequence[PolicyEntry] = POLICY_TABLE,
        tier_configs: Mapping[TierName, TTLStoreConfig] = TIER_CONFIGS,
    ):
        self._policies = tuple(policies)
        self._tier_configs = tier_configs

    @property
    def policies(self) -> Tuple[PolicyEntry, ...]:
        return self._policies

    def match(self, url: str) -> Optional[PolicyEntry]:
        """Return the first policy entry matching ``url``, if any."""
        for policy in self._policies:
            if policy.url_substring in url:
                return policy
        return None

    def resolve(self, url: str) -> CacheStrategy:
        """
        Determine the cache tier and TTL for a URL.

        Returns:
            The strategy; ``NO_CACHE`` when nothing matches or the matching
            entry disables caching
        """
        policy = self.match(url)
        if policy is None or policy.tier is None:
            return NO_CACHE

        if policy.ttl_override is not None:
            ttl = policy.ttl_override
        else:
            ttl = self._tier_configs[policy.tier].default_ttl
        return CacheStrategy(tier=policy.tier, ttl_seconds=ttl)


# Body serializations longer than this are truncated in cache keys
BODY_KEY_LIMIT = 100

MUTATING_METHODS = ("POST", "PUT", "PATCH")


def generate_cache_key(method: str, url: str, body: Any = None) -> str:
    """
    Build a cache key of the form ``METHOD:url``.

    Mutating requests with a body get the first 100 characters of the
    body's compact JSON serialization appended.
    """
    method = method.upper()
    base_key = f"{method}:{url}"

    if body and method in MUTATING_METHODS:
        serialized = json.dumps(body, separators=(",", ":"), default=str)
        return f"{base_key}:{serialized[:BODY_KEY_LIMIT]}"

    return base_key


# Well-known aggregate keys, each the GET key of a list endpoint
CACHE_KEYS = {
    "COMPANIES_LIST": generate_cache_key("GET", "/api/super-admin/companies"),
    "USERS_LIST": generate_cache_key("GET", "/api/super-admin/users"),
    "SYSTEM_SETTINGS": generate_cache_key("GET", "/api/super-admin/settings"),
    "SUBSCRIPTION_PLANS": generate_cache_key("GET", "/api/super-admin/subscription-plans"),
    "DASHBOARD_STATS": generate_cache_key("GET", "/api/super-admin/dashboard/stats"),
}


def analytics_key(time_range: str) -> str:
    return generate_cache_key("GET", f"/api/super-admin/analytics?timeRange={time_range}")


@dataclass(frozen=True)
class InvalidationRule:
    """After a mutation whose URL contains ``url_substring``, delete ``key`` from ``tier``."""
    url_substring: str
    tier: TierName
    key: str
    label: str


# One aggregate key per domain area.
# Detail keys (e.g. a single company by id) are left to expire on their own.
INVALIDATION_RULES: Tuple[InvalidationRule, ...] = (
    InvalidationRule("/companies", TierName.MEDIUM, CACHE_KEYS["COMPANIES_LIST"], "companies"),
    InvalidationRule("/users", TierName.MEDIUM, CACHE_KEYS["USERS_LIST"], "users"),
    InvalidationRule("/settings", TierName.LONG, CACHE_KEYS["SYSTEM_SETTINGS"], "settings"),
    InvalidationRule("/analytics", TierName.MEDIUM, analytics_key("30d"), "analytics"),
    InvalidationRule("/dashboard", TierName.SHORT, CACHE_KEYS["DASHBOARD_STATS"], "dashboard"),
)


def get_invalidation_rules(url: str) -> List[InvalidationRule]:
    """All invalidation rules whose substring is contained in ``url``."""
    return [rule for rule in INVALIDATION_RULES if rule.url_substring in url]


# GETs issued by preload, in order
PRELOAD_URLS: Tuple[str, ...] = (
    "/api/super-admin/subscription-plans",
    "/api/super-admin/settings",
)
