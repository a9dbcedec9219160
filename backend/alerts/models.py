"""
Alert Models
Data structures for materialized alerts and their aggregate counts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from rules.models import DEFAULT_SEVERITY, Action, Rule, Severity


@dataclass
class Alert:
    """
    A fired rule, durable until deleted.

    Starts unacknowledged. Acknowledgment is one-way: an acknowledged alert
    is never re-opened.
    """
    id: str
    rule_id: str
    user_id: str
    message: str
    severity: Severity = DEFAULT_SEVERITY
    acknowledged: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    acknowledged_at: Optional[datetime] = None
    rule_name: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"alert_{uuid.uuid4().hex[:12]}"
        self.severity = Severity(self.severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "user_id": self.user_id,
            "message": self.message,
            "severity": self.severity.value,
            "acknowledged": self.acknowledged,
            "created_at": self.created_at.isoformat(),
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
        }

    @classmethod
    def from_action(cls, rule: Rule, action: Action, created_at: datetime) -> "Alert":
        """Create alert from a firing rule's ALERT action"""
        return cls(
            id="",
            rule_id=rule.id,
            user_id=rule.user_id,
            message=action.message,
            severity=action.severity or DEFAULT_SEVERITY,
            created_at=created_at,
            rule_name=rule.name,
        )


@dataclass
class AlertStats:
    total: int = 0
    unacknowledged: int = 0
    high_severity: int = 0
    last_24h: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "unacknowledged": self.unacknowledged,
            "high_severity": self.high_severity,
            "last_24h": self.last_24h,
        }
