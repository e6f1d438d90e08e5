"""
The four cache tiers and their fixed configuration.
"""
import time
import logging
from typing import Callable, Dict, Iterator, Mapping, Optional, Tuple

from .core import TierName, TierStats, TTLStoreConfig
from .store import TTLStore

logger = logging.getLogger("cache.registry")


# Tier configuration (TTL in seconds)
TIER_CONFIGS: Dict[TierName, TTLStoreConfig] = {
    TierName.SHORT: TTLStoreConfig(
        default_ttl=30,           # 30 seconds
        max_size=50,
    ),
    TierName.MEDIUM: TTLStoreConfig(
        default_ttl=5 * 60,       # 5 minutes
        max_size=100,
    ),
    TierName.LONG: TTLStoreConfig(
        default_ttl=30 * 60,      # 30 minutes
        max_size=50,
    ),
    TierName.STATIC: TTLStoreConfig(
        default_ttl=24 * 60 * 60, # 24 hours
        max_size=20,
    ),
}


class TierRegistry:
    """
    Owns one TTLStore per tier. Tiers are independent address spaces: a
    key stored in one tier is invisible to the others.
    """

    def __init__(
        self,
        configs: Mapping[TierName, TTLStoreConfig] = TIER_CONFIGS,
        clock: Callable[[], float] = time.monotonic,
        start_sweep: bool = True,
        cleanup_interval: Optional[float] = None,
    ):
        """
        Args:
            configs: Configuration for every tier
            clock: Clock shared by all tiers
            start_sweep: Start each tier's background sweep
            cleanup_interval: Override the sweep interval of every tier
        """
        self._tiers: Dict[TierName, TTLStore] = {}
        for tier_name in TierName:
            config = configs[tier_name]
            if cleanup_interval is not None:
                config = TTLStoreConfig(
                    default_ttl=config.default_ttl,
                    max_size=config.max_size,
                    cleanup_interval=cleanup_interval,
                )
            self._tiers[tier_name] = TTLStore(
                config,
                name=tier_name.value,
                clock=clock,
                start_sweep=start_sweep,
            )

    def tier(self, name: TierName) -> TTLStore:
        return self._tiers[name]

    def __getitem__(self, name: TierName) -> TTLStore:
        return self._tiers[name]

    def __iter__(self) -> Iterator[Tuple[TierName, TTLStore]]:
        return iter(self._tiers.items())

    @property
    def short(self) -> TTLStore:
        return self._tiers[TierName.SHORT]

    @property
    def medium(self) -> TTLStore:
        return self._tiers[TierName.MEDIUM]

    @property
    def long(self) -> TTLStore:
        return self._tiers[TierName.LONG]

    @property
    def static(self) -> TTLStore:
        return self._tiers[TierName.STATIC]

    def stats(self) -> Dict[str, TierStats]:
        """One stats record per tier, keyed by tier name."""
        return {name.value: store.stats() for name, store in self._tiers.items()}

    def clear_all(self) -> None:
        for store in self._tiers.values():
            store.clear()

    def destroy(self) -> None:
        """Stop every sweep thread and drop all entries."""
        for store in self._tiers.values():
            store.destroy()
        logger.info("Cache tiers destroyed")
