"""Shared fixtures: temp storage, a controllable clock, canned oracles"""

from datetime import datetime, timedelta
from typing import List, Optional, Union

import pytest

from alerts import AlertManager
from core.errors import OracleUnavailable
from core.models import PortfolioMetrics
from db import SQLiteStorage
from rules import RuleCompiler, RuleService
from services import RuleEvaluator, StaticMetricsProvider


class FakeClock:
    """Manually advanced clock; each read moves forward 1ms to keep ordering stable"""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubOracle:
    """Returns canned responses in order; an Exception entry is raised instead"""

    def __init__(self, *responses: Union[str, Exception]):
        self.responses: List[Union[str, Exception]] = list(responses)
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise OracleUnavailable("no canned response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


PNL_RULE_JSON = """{
  "triggers": [{"metric": "daily_pnl_pct", "operator": "<", "value": -5}],
  "logic": "ANY",
  "actions": [{"type": "ALERT", "message": "Daily PnL below -5%", "severity": "high"}]
}"""

STABLECOIN_RULE = {
    "triggers": [{"metric": "stablecoin_allocation_pct", "operator": "<", "value": 30}],
    "logic": "ANY",
    "actions": [{"type": "ALERT", "message": "Stablecoin allocation below 30%", "severity": "medium"}],
}


def make_metrics(
    total: float = 10000.0,
    pnl: float = 0.0,
    stable: float = 20.0,
    largest: float = 40.0,
) -> PortfolioMetrics:
    return PortfolioMetrics(
        total_usd_value=total,
        daily_pnl_pct=pnl,
        stablecoin_allocation_pct=stable,
        largest_position_pct=largest,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    return SQLiteStorage(str(tmp_path / "monitor.db"))


@pytest.fixture
def oracle():
    return StubOracle(PNL_RULE_JSON)


@pytest.fixture
def rule_service(storage, oracle, clock):
    return RuleService(storage, RuleCompiler(oracle), clock=clock)


@pytest.fixture
def alert_manager(storage, clock):
    return AlertManager(storage, clock=clock)


@pytest.fixture
def metrics_provider():
    return StaticMetricsProvider({
        "user-1": make_metrics(),
        "user-2": make_metrics(total=500.0, pnl=-8.0, stable=5.0, largest=90.0),
    })


@pytest.fixture
def evaluator(storage, metrics_provider, alert_manager, clock):
    return RuleEvaluator(storage, metrics_provider, alert_manager, max_workers=2, clock=clock)


@pytest.fixture
def make_rule(rule_service):
    def _make(user_id: str = "user-1", definition: Optional[dict] = None, name: str = "Test rule"):
        return rule_service.create_rule(user_id, name, "", definition or STABLECOIN_RULE)
    return _make
