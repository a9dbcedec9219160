"""
Metrics Providers
Where the evaluator gets its PortfolioMetrics snapshots.

Providers:
    HttpMetricsProvider     → portfolio service over HTTP (production)
    HoldingsMetricsProvider → derives metrics from already-priced holdings
                              (HttpHoldingsSource fetches them)
    StaticMetricsProvider   → fixed snapshots (tests, local runs)

Every provider raises MetricsUnavailable on failure; the evaluator treats
that as a per-rule failure, never as "did not fire".
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, runtime_checkable

import pandas as pd
import requests
from pydantic import ValidationError as PydanticValidationError

from core.errors import MetricsUnavailable
from core.models import AssetAllocation, PortfolioMetrics
from rules.models import Scope

logger = logging.getLogger(__name__)

STABLECOINS = {"USDC", "USDT", "DAI", "BUSD", "FRAX"}


@runtime_checkable
class MetricsProvider(Protocol):
    def get_metrics(self, user_id: str, scope: Optional[Scope] = None) -> PortfolioMetrics:
        """Fresh snapshot for a user; raise MetricsUnavailable on failure"""
        ...


# =============================================================================
# HTTP
# =============================================================================

class HttpMetricsProvider:
    """
    Client for the portfolio metrics service.

    GET {base_url}/portfolio/{user_id}/metrics[?wallet_ids=..&chains=..]
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_metrics(self, user_id: str, scope: Optional[Scope] = None) -> PortfolioMetrics:
        params = {}
        if scope is not None:
            if scope.wallet_ids:
                params["wallet_ids"] = ",".join(scope.wallet_ids)
            if scope.chains:
                params["chains"] = ",".join(scope.chains)

        try:
            resp = self.session.get(
                f"{self.base_url}/portfolio/{user_id}/metrics",
                params=params or None,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return PortfolioMetrics.model_validate(resp.json())
        except requests.exceptions.Timeout as e:
            raise MetricsUnavailable(f"Metrics request timed out for user {user_id}") from e
        except requests.exceptions.RequestException as e:
            raise MetricsUnavailable(f"Metrics request failed for user {user_id}: {e}") from e
        except (ValueError, PydanticValidationError) as e:
            raise MetricsUnavailable(f"Malformed metrics for user {user_id}: {e}") from e


# =============================================================================
# Holdings → Metrics
# =============================================================================

@dataclass
class HoldingsSnapshot:
    """
    Priced holdings now and roughly a day ago.

    Each holding: {"symbol": str, "usd_value": float,
                   "wallet_id": str (optional), "chain": str (optional)}
    """
    current: List[Dict[str, Any]]
    previous: List[Dict[str, Any]] = field(default_factory=list)


def _holdings_frame(holdings: List[Dict[str, Any]], scope: Optional[Scope]) -> pd.DataFrame:
    df = pd.DataFrame(holdings, columns=["symbol", "usd_value", "wallet_id", "chain"])
    if df.empty:
        return df

    df["symbol"] = df["symbol"].astype(str).str.upper()
    df["usd_value"] = pd.to_numeric(df["usd_value"], errors="coerce").fillna(0.0)

    if scope is not None:
        if scope.wallet_ids:
            df = df[df["wallet_id"].isin(scope.wallet_ids)]
        if scope.chains:
            chains = {c.lower() for c in scope.chains}
            df = df[df["chain"].astype(str).str.lower().isin(chains)]
    return df


def compute_metrics(snapshot: HoldingsSnapshot, scope: Optional[Scope] = None) -> PortfolioMetrics:
    """
    Derive the four rule metrics and the ranked allocation list.

    daily_pnl_pct is 0 when there is no previous value to compare against.
    """
    current = _holdings_frame(snapshot.current, scope)
    previous = _holdings_frame(snapshot.previous, scope)

    total = float(current["usd_value"].sum()) if not current.empty else 0.0
    previous_total = float(previous["usd_value"].sum()) if not previous.empty else 0.0

    if total <= 0:
        return PortfolioMetrics(
            total_usd_value=max(total, 0.0),
            daily_pnl_pct=-100.0 if previous_total > 0 else 0.0,
        )

    by_symbol = current.groupby("symbol")["usd_value"].sum().sort_values(ascending=False)
    pct = by_symbol / total * 100
    stable_value = float(by_symbol[by_symbol.index.isin(STABLECOINS)].sum())

    return PortfolioMetrics(
        total_usd_value=total,
        daily_pnl_pct=(total - previous_total) / previous_total * 100 if previous_total > 0 else 0.0,
        stablecoin_allocation_pct=stable_value / total * 100,
        largest_position_pct=float(pct.iloc[0]),
        asset_allocations=[
            AssetAllocation(symbol=sym, usd_value=float(val), allocation_pct=float(pct[sym]))
            for sym, val in by_symbol.items()
        ],
    )


class HttpHoldingsSource:
    """
    Priced holdings from the portfolio service.

    GET {base_url}/portfolio/{user_id}/holdings → {"current": [...], "previous": [...]}
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def __call__(self, user_id: str) -> HoldingsSnapshot:
        try:
            resp = self.session.get(f"{self.base_url}/portfolio/{user_id}/holdings", timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as e:
            raise MetricsUnavailable(f"Holdings request failed for user {user_id}: {e}") from e
        except ValueError as e:
            raise MetricsUnavailable(f"Malformed holdings for user {user_id}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("current"), list):
            raise MetricsUnavailable(f"Malformed holdings for user {user_id}")
        return HoldingsSnapshot(current=data["current"], previous=data.get("previous") or [])


class HoldingsMetricsProvider:
    """Computes metrics from a holdings source (balances are priced upstream)"""

    def __init__(self, source: Callable[[str], HoldingsSnapshot]):
        self._source = source

    def get_metrics(self, user_id: str, scope: Optional[Scope] = None) -> PortfolioMetrics:
        try:
            snapshot = self._source(user_id)
        except MetricsUnavailable:
            raise
        except Exception as e:
            raise MetricsUnavailable(f"Holdings unavailable for user {user_id}: {e}") from e
        return compute_metrics(snapshot, scope)


# =============================================================================
# Static
# =============================================================================

class StaticMetricsProvider:
    """In-memory snapshots keyed by user id"""

    def __init__(self, metrics: Optional[Dict[str, PortfolioMetrics]] = None):
        self._metrics: Dict[str, PortfolioMetrics] = dict(metrics or {})
        self._failing: Set[str] = set()
        self.calls: List[str] = []

    def set_metrics(self, user_id: str, metrics: PortfolioMetrics) -> None:
        self._metrics[user_id] = metrics
        self._failing.discard(user_id)

    def fail_for(self, user_id: str) -> None:
        self._failing.add(user_id)

    def get_metrics(self, user_id: str, scope: Optional[Scope] = None) -> PortfolioMetrics:
        self.calls.append(user_id)
        if user_id in self._failing:
            raise MetricsUnavailable(f"Metrics unavailable for user {user_id}")
        if user_id not in self._metrics:
            raise MetricsUnavailable(f"No metrics for user {user_id}")
        return self._metrics[user_id]
