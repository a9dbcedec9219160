"""
Services
Background evaluation and the external collaborators it talks to.
"""

from .metrics import (
    MetricsProvider,
    HttpMetricsProvider,
    HoldingsMetricsProvider,
    HoldingsSnapshot,
    HttpHoldingsSource,
    StaticMetricsProvider,
    compute_metrics,
)
from .oracle import TextOracle, AnthropicOracle
from .scheduler import (
    RuleEvaluator,
    EvaluationScheduler,
    TickReport,
    build_metrics_provider,
    start_if_configured,
    get_scheduler,
)

__all__ = [
    "MetricsProvider",
    "HttpMetricsProvider",
    "HoldingsMetricsProvider",
    "HoldingsSnapshot",
    "HttpHoldingsSource",
    "StaticMetricsProvider",
    "compute_metrics",
    "TextOracle",
    "AnthropicOracle",
    "RuleEvaluator",
    "EvaluationScheduler",
    "TickReport",
    "build_metrics_provider",
    "start_if_configured",
    "get_scheduler",
]
