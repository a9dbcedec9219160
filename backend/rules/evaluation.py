"""
Trigger Evaluation
Pure functions: snapshot + definition → per-trigger results → fired or not.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List

from core.models import PortfolioMetrics
from .models import Logic, Metric, Operator, RuleDefinition


# One resolver per Metric member
METRIC_RESOLVERS: Dict[Metric, Callable[[PortfolioMetrics], float]] = {
    Metric.TOTAL_USD_VALUE: lambda m: m.total_usd_value,
    Metric.DAILY_PNL_PCT: lambda m: m.daily_pnl_pct,
    Metric.STABLECOIN_ALLOCATION_PCT: lambda m: m.stablecoin_allocation_pct,
    Metric.LARGEST_POSITION_PCT: lambda m: m.largest_position_pct,
}


def resolve_metric(metrics: PortfolioMetrics, metric: Metric) -> float:
    return float(METRIC_RESOLVERS[Metric(metric)](metrics))


def evaluate_trigger(value: float, operator: Operator, target: float) -> bool:
    """
    Compare a metric value against a trigger's literal.

    Plain float semantics: `=` and `!=` are exact, no epsilon.
    """
    operator = Operator(operator)
    if operator == Operator.LT:
        return value < target
    elif operator == Operator.GT:
        return value > target
    elif operator == Operator.EQ:
        return value == target
    elif operator == Operator.LTE:
        return value <= target
    elif operator == Operator.GTE:
        return value >= target
    elif operator == Operator.NE:
        return value != target
    raise ValueError(f"Unsupported operator: {operator}")


def combine(results: List[bool], logic: Logic) -> bool:
    if Logic(logic) == Logic.ALL:
        return all(results)
    return any(results)


@dataclass
class DefinitionOutcome:
    triggered: bool
    trigger_results: List[bool]
    values: List[float]


def evaluate_definition(definition: RuleDefinition, metrics: PortfolioMetrics) -> DefinitionOutcome:
    """Evaluate every trigger independently, then combine by the rule's logic"""
    values = [resolve_metric(metrics, t.metric) for t in definition.triggers]
    results = [
        evaluate_trigger(v, t.operator, t.value)
        for v, t in zip(values, definition.triggers)
    ]
    return DefinitionOutcome(
        triggered=combine(results, definition.logic),
        trigger_results=results,
        values=values,
    )
