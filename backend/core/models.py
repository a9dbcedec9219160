"""
Portfolio Models
The snapshot shape the evaluator consumes from the metrics provider.

Metrics are computed elsewhere (chain/custody ingestion). This module only
fixes the contract so every provider hands the evaluator the same type.
"""

import math
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# AssetAllocation
# =============================================================================

class AssetAllocation(BaseModel):
    """One asset's share of a portfolio"""
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., min_length=1)
    usd_value: float = Field(default=0.0, ge=0)
    allocation_pct: float = Field(default=0.0, ge=0)

    @field_validator('symbol', mode='before')
    @classmethod
    def uppercase_symbol(cls, v):
        return v.upper() if isinstance(v, str) else v


# =============================================================================
# PortfolioMetrics: The Evaluation Input
# =============================================================================

class PortfolioMetrics(BaseModel):
    """
    Point-in-time portfolio snapshot.

    Value type with no identity. A fresh one is fetched every tick and
    never cached across ticks.

    Fields:
        total_usd_value: Sum of all priced holdings
        daily_pnl_pct: Percent change against the value ~24h ago
        stablecoin_allocation_pct: Share of value held in stablecoins
        largest_position_pct: Share of the single biggest asset
        asset_allocations: Per-asset breakdown, largest first
    """
    model_config = ConfigDict(frozen=True)

    total_usd_value: float = 0.0
    daily_pnl_pct: float = 0.0
    stablecoin_allocation_pct: float = 0.0
    largest_position_pct: float = 0.0
    asset_allocations: List[AssetAllocation] = Field(default_factory=list)

    @field_validator(
        'total_usd_value', 'daily_pnl_pct',
        'stablecoin_allocation_pct', 'largest_position_pct',
    )
    @classmethod
    def finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("metric values must be finite")
        return v

    @field_validator('asset_allocations')
    @classmethod
    def rank_allocations(cls, v: List[AssetAllocation]) -> List[AssetAllocation]:
        return sorted(v, key=lambda a: a.usd_value, reverse=True)
