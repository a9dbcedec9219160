import logging
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, List, Optional

from core.models import PortfolioMetrics
from rules.models import Rule
from .models import Alert, AlertStats

if TYPE_CHECKING:
    from db.sqlite import SQLiteStorage

logger = logging.getLogger(__name__)

OnAlertCallback = Callable[[Alert], None]
Clock = Callable[[], datetime]


class AlertManager:
    """
    Owns alert creation and the acknowledgment lifecycle.

    Firing is edge-triggered: a rule alerts when its condition starts to
    hold. While it keeps holding and the alert is still unacknowledged,
    later ticks create nothing. Acknowledging re-arms the rule, and so
    does the condition clearing (`clear`).

    `cooldown_seconds` adds a minimum spacing between two alerts of the
    same rule, even across clear/hold transitions. `0` (the default)
    means no spacing.
    """

    def __init__(
        self,
        storage: "SQLiteStorage",
        cooldown_seconds: float = 0.0,
        clock: Clock = datetime.now,
    ):
        self._storage = storage
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock
        self._callbacks: List[OnAlertCallback] = []
        self._lock = threading.Lock()
        self._stats = {
            "fired": 0,
            "alerts_created": 0,
            "suppressed": 0,
            "cleared": 0,
        }

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown.total_seconds()

    def fire(self, rule: Rule, metrics: PortfolioMetrics) -> List[Alert]:
        """
        Materialize a firing rule as alerts, one per ALERT action.

        Returns:
            The new alerts, or [] when the rule was already firing with an
            open alert (or is inside its cooldown)
        """
        now = self._clock()
        alerts = [Alert.from_action(rule, action, now) for action in rule.definition.actions]
        recent_since = now - self._cooldown if self._cooldown > timedelta(0) else None

        created = self._storage.create_alerts(rule.id, alerts, fired_at=now, recent_since=recent_since)
        if not created:
            with self._lock:
                self._stats["suppressed"] += 1
            logger.info("Rule %s is still firing with an open alert; suppressed", rule.id)
            return []

        with self._lock:
            self._stats["fired"] += 1
            self._stats["alerts_created"] += len(alerts)
        for alert in alerts:
            logger.info(
                "Alert %s for rule %s (%s): %s [total_usd_value=%.2f]",
                alert.id, rule.id, alert.severity.value, alert.message, metrics.total_usd_value,
            )
            for callback in self._callbacks:
                try:
                    callback(alert)
                except Exception:
                    logger.exception("on_alert callback failed for alert %s", alert.id)
        return alerts

    def clear(self, rule: Rule) -> None:
        """The rule's condition stopped holding; its next hold alerts again"""
        self._storage.clear_firing(rule.id)
        with self._lock:
            self._stats["cleared"] += 1
        logger.info("Rule %s condition cleared", rule.id)

    def on_alert(self, callback: OnAlertCallback) -> None:
        """Subscribe to newly created alerts (delivery channels hook in here)"""
        self._callbacks.append(callback)

    def list_alerts(self, user_id: str, acknowledged: Optional[bool] = None) -> List[Alert]:
        return self._storage.list_alerts(user_id, acknowledged)

    def acknowledge(self, alert_id: str, user_id: Optional[str] = None) -> Alert:
        """Idempotent: acknowledging twice is a no-op success"""
        return self._storage.acknowledge_alert(alert_id, self._clock(), user_id=user_id)

    def acknowledge_all(self, user_id: str) -> int:
        count = self._storage.acknowledge_all_alerts(user_id, self._clock())
        if count:
            logger.info("Acknowledged %d alerts for user %s", count, user_id)
        return count

    def delete(self, alert_id: str, user_id: Optional[str] = None) -> None:
        self._storage.delete_alert(alert_id, user_id=user_id)

    def stats(self, user_id: str) -> AlertStats:
        return self._storage.alert_stats(user_id, since=self._clock() - timedelta(hours=24))

    def engine_stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        return {**stats, "cooldown_seconds": self.cooldown_seconds}


_alert_manager: Optional[AlertManager] = None


def get_alert_manager() -> AlertManager:
    global _alert_manager
    if _alert_manager is None:
        from core.config import get_settings
        from db import get_storage
        _alert_manager = AlertManager(
            get_storage(),
            cooldown_seconds=get_settings().alert_cooldown_seconds,
        )
    return _alert_manager
