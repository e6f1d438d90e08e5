"""
Pydantic schemas for the cache administration endpoints
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TierStatsSchema(BaseModel):
    """Entry counts of one cache tier"""
    total: int
    valid: int
    expired: int
    max_size: int = Field(alias="maxSize")
    valid_percent: int = Field(alias="validPercent")

    class Config:
        populate_by_name = True


class CoalescerStats(BaseModel):
    active_requests: int
    active_keys: List[str]
    fetches: int
    coalesced: int
    late_hits: int


class CacheStatsResponse(BaseModel):
    """Stats of every tier plus totals across tiers"""
    tiers: Dict[str, TierStatsSchema]
    total: int
    valid: int
    valid_percent: int
    coalescer: Optional[CoalescerStats] = None

    @classmethod
    def from_summary(cls, summary: Dict[str, Any]) -> "CacheStatsResponse":
        return cls(
            tiers={name: TierStatsSchema(**stats) for name, stats in summary["tiers"].items()},
            total=summary["total"],
            valid=summary["valid"],
            valid_percent=summary["valid_percent"],
            coalescer=summary.get("coalescer"),
        )


class InvalidateResponse(BaseModel):
    pattern: str
    invalidated: int


class PreloadResponse(BaseModel):
    completed: bool
