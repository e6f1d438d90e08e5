"""
Core cache data structures.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class CacheConfigError(ValueError):
    """Raised when a store is constructed with an unusable configuration."""


class TierName(Enum):
    """Volatility classes of cached data, one TTL store each."""
    SHORT = "short"     # 30 seconds, fast-changing data
    MEDIUM = "medium"   # 5 minutes
    LONG = "long"       # 30 minutes, rarely changing data
    STATIC = "static"   # 24 hours, near-static data


@dataclass(frozen=True)
class TTLStoreConfig:
    """Immutable configuration of a single TTL store."""
    default_ttl: float       # seconds
    max_size: int
    cleanup_interval: float = 60.0  # seconds between active sweeps

    def validate(self) -> None:
        if self.max_size <= 0:
            raise CacheConfigError(f"max_size must be positive, got {self.max_size}")
        if self.default_ttl <= 0:
            raise CacheConfigError(f"default_ttl must be positive, got {self.default_ttl}")
        if self.cleanup_interval <= 0:
            raise CacheConfigError(
                f"cleanup_interval must be positive, got {self.cleanup_interval}"
            )


@dataclass
class CacheEntry:
    """
    Represents a cached item with the bookkeeping needed for TTL checks.

    Entries are never extended in place: a new ``set`` on the same key
    replaces the entry wholesale with a fresh ``created_at``.
    """
    key: str
    data: Any
    created_at: float   # store clock reading at insertion
    ttl_seconds: float

    def age_seconds(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return now - self.created_at

    def is_valid(self, now: float) -> bool:
        """An entry stays valid up to and including its TTL."""
        return self.age_seconds(now) <= self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return not self.is_valid(now)


@dataclass
class TierStats:
    """
    Snapshot of a store's contents. ``total`` includes expired entries
    that have not been swept yet.
    """
    total: int
    valid: int
    expired: int
    max_size: int

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary for JSON response."""
        return {
            "total": self.total,
            "valid": self.valid,
            "expired": self.expired,
            "maxSize": self.max_size,
        }


@dataclass(frozen=True)
class CacheStrategy:
    """Outcome of resolving a URL against the policy table."""
    tier: Optional[TierName]
    ttl_seconds: float = 0

    @property
    def cacheable(self) -> bool:
        return self.tier is not None


NO_CACHE = CacheStrategy(tier=None, ttl_seconds=0)
