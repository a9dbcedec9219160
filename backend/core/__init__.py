"""
Core Module
Shared contracts for the rule monitor.

Exports:
    Models: PortfolioMetrics, AssetAllocation
    Errors: MonitorError, ValidationError, CompilationError, NotFound,
            DependencyUnavailable, OracleUnavailable, MetricsUnavailable
    Config: Settings, get_settings
    Logging: setup_logging
"""

from .models import PortfolioMetrics, AssetAllocation

from .errors import (
    MonitorError,
    ValidationError,
    CompilationError,
    DependencyUnavailable,
    OracleUnavailable,
    MetricsUnavailable,
    NotFound,
)

from .config import Settings, get_settings
from .log import setup_logging

__all__ = [
    # Models
    "PortfolioMetrics",
    "AssetAllocation",
    # Errors
    "MonitorError",
    "ValidationError",
    "CompilationError",
    "DependencyUnavailable",
    "OracleUnavailable",
    "MetricsUnavailable",
    "NotFound",
    # Config
    "Settings",
    "get_settings",
    "setup_logging",
]
