"""
Rule Models
Rule definitions, persisted rules and their evaluation records.

A RuleDefinition is what the user (or the compiler) authors:

    {
      "triggers": [{"metric": "daily_pnl_pct", "operator": "<", "value": -5}],
      "logic": "ANY",
      "actions": [{"type": "ALERT", "message": "Daily PnL below -5%", "severity": "high"}]
    }

It is frozen once built; a rule changes only by full replacement.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError


# =============================================================================
# Enums
# =============================================================================

class Metric(str, Enum):
    """Portfolio metrics a trigger can watch"""
    TOTAL_USD_VALUE = "total_usd_value"
    DAILY_PNL_PCT = "daily_pnl_pct"
    STABLECOIN_ALLOCATION_PCT = "stablecoin_allocation_pct"
    LARGEST_POSITION_PCT = "largest_position_pct"


class Operator(str, Enum):
    """Trigger comparison operators"""
    LT = "<"
    GT = ">"
    EQ = "="
    LTE = "<="
    GTE = ">="
    NE = "!="


class Logic(str, Enum):
    """How trigger results combine"""
    ALL = "ALL"  # every trigger true
    ANY = "ANY"  # at least one trigger true


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


DEFAULT_SEVERITY = Severity.MEDIUM


# =============================================================================
# RuleDefinition
# =============================================================================

class Trigger(BaseModel):
    """Single comparison of one metric against a literal value"""
    model_config = ConfigDict(frozen=True)

    metric: Metric
    operator: Operator
    value: float
    timeframe: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def accept_op_shorthand(cls, data):
        # Oracle output often uses the short "op" key
        if isinstance(data, dict) and "op" in data and "operator" not in data:
            data = {("operator" if k == "op" else k): v for k, v in data.items()}
        return data

    @field_validator('value', mode='before')
    @classmethod
    def numeric_only(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("value must be a number")
        try:
            v = float(v)
        except OverflowError:
            raise ValueError("value must be finite")
        if not math.isfinite(v):
            raise ValueError("value must be finite")
        return v


class Action(BaseModel):
    """What happens when a rule fires; only ALERT exists"""
    model_config = ConfigDict(frozen=True)

    type: Literal["ALERT"]
    message: str = Field(..., min_length=1)
    severity: Optional[Severity] = None


class Scope(BaseModel):
    """Restricts evaluation to some wallets and/or chains"""
    model_config = ConfigDict(frozen=True)

    wallet_ids: Optional[List[str]] = None
    chains: Optional[List[str]] = None

    def key(self) -> tuple:
        """Hashable identity, used to share snapshots between rules"""
        return (
            tuple(sorted(self.wallet_ids or [])),
            tuple(sorted(c.lower() for c in self.chains or [])),
        )


class RuleDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    triggers: List[Trigger] = Field(..., min_length=1)
    logic: Logic
    scope: Optional[Scope] = None
    actions: List[Action] = Field(..., min_length=1)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def validate_rule_definition(candidate: Any) -> RuleDefinition:
    """
    Validate a candidate structure into a RuleDefinition.

    Raises:
        ValidationError: naming the first offending field, e.g.
            "triggers.0.metric". Nothing is coerced into a default.
    """
    if isinstance(candidate, RuleDefinition):
        return candidate
    if not isinstance(candidate, dict):
        raise ValidationError("rule", "rule definition must be a JSON object")

    try:
        return RuleDefinition.model_validate(candidate)
    except PydanticValidationError as e:
        first = e.errors()[0]
        path = ".".join(str(p) for p in first["loc"]) or "rule"
        raise ValidationError(path, first["msg"]) from e


# =============================================================================
# Rule
# =============================================================================

def new_rule_id() -> str:
    return f"rule_{uuid.uuid4().hex[:12]}"


@dataclass
class Rule:
    """A RuleDefinition plus identity, ownership and status"""
    id: str
    user_id: str
    name: str
    definition: RuleDefinition
    description: str = ""
    natural_language: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    last_fired_at: Optional[datetime] = None
    is_firing: bool = False

    def __post_init__(self):
        if not self.id:
            self.id = new_rule_id()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "natural_language": self.natural_language,
            "rule": self.definition.to_dict(),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_fired_at": self.last_fired_at.isoformat() if self.last_fired_at else None,
            "is_firing": self.is_firing,
        }


# =============================================================================
# RuleEvaluation
# =============================================================================

@dataclass
class RuleEvaluation:
    """
    Append-only audit record of one rule on one tick.

    Written for firing and non-firing outcomes alike. A failed evaluation
    carries `error` and an empty snapshot.
    """
    rule_id: str
    triggered: bool
    trigger_results: List[bool] = field(default_factory=list)
    metrics: Optional[Dict[str, Any]] = None
    logic: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "triggered": self.triggered,
            "trigger_results": self.trigger_results,
            "metrics": self.metrics,
            "logic": self.logic,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
