"""
Alert System
Turns firing rules into durable, acknowledgeable alerts.

Structure:
    alerts/
    ├── models.py    → Alert, AlertStats
    └── manager.py   → AlertManager (edge-triggered firing + acknowledgment)

Usage:
    from alerts import get_alert_manager

    manager = get_alert_manager()

    # Called by the scheduler when a rule's triggers hold
    created = manager.fire(rule, metrics)

    # Lifecycle
    manager.acknowledge(alert_id)
    manager.acknowledge_all(user_id)
    manager.stats(user_id)
"""

from .models import Alert, AlertStats
from .manager import AlertManager, get_alert_manager

__all__ = [
    # Models
    "Alert",
    "AlertStats",
    # Manager
    "AlertManager",
    "get_alert_manager",
]
