"""Tests for the HTTP surface"""

import pytest
from fastapi.testclient import TestClient

from alerts import get_alert_manager
from core.errors import OracleUnavailable
from db import get_storage
from main import app
from rules import get_rule_service
from services import EvaluationScheduler, get_scheduler

from conftest import STABLECOIN_RULE


USER = {"X-User-Id": "user-1"}
OTHER = {"X-User-Id": "user-2"}


@pytest.fixture
def client(storage, rule_service, alert_manager, evaluator):
    scheduler = EvaluationScheduler(evaluator, interval_seconds=30)
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_rule_service] = lambda: rule_service
    app.dependency_overrides[get_alert_manager] = lambda: alert_manager
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestRulesApi:

    def test_requires_user(self, client):
        assert client.get("/api/rules").status_code == 401

    def test_compile(self, client, storage):
        resp = client.post("/api/rules/compile", json={"text": "Alert me if my daily PnL is less than -5%"}, headers=USER)

        assert resp.status_code == 201
        body = resp.json()
        assert body["name"] == "Auto-generated rule"
        assert body["natural_language"] == "Alert me if my daily PnL is less than -5%"
        assert body["rule"]["triggers"] == [{"metric": "daily_pnl_pct", "operator": "<", "value": -5.0}]
        assert body["is_active"] is True
        assert storage.get_rule(body["id"]).user_id == "user-1"

    def test_compile_unusable_answer_stores_nothing(self, client, storage, oracle):
        oracle.responses = ["I'm not sure what you mean."]
        resp = client.post("/api/rules/compile", json={"text": "make me rich"}, headers=USER)

        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "compilation_failed"
        assert storage.list_rules("user-1") == []

    def test_compile_oracle_down(self, client, storage, oracle):
        oracle.responses = [OracleUnavailable("timeout")]
        resp = client.post("/api/rules/compile", json={"text": "Alert me if PnL < -5%"}, headers=USER)

        assert resp.status_code == 503
        assert storage.list_rules("user-1") == []

    def test_create_and_list(self, client):
        resp = client.post("/api/rules", json={"name": "Stables", "rule": STABLECOIN_RULE}, headers=USER)
        assert resp.status_code == 201

        listed = client.get("/api/rules", headers=USER).json()
        assert listed["count"] == 1
        assert listed["rules"][0]["name"] == "Stables"
        assert client.get("/api/rules", headers=OTHER).json()["count"] == 0

    def test_create_invalid_names_field(self, client, storage):
        bad = dict(STABLECOIN_RULE, triggers=[{"metric": "volatility", "operator": "<", "value": 1}])
        resp = client.post("/api/rules", json={"name": "Bad", "rule": bad}, headers=USER)

        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "triggers.0.metric"
        assert storage.list_rules("user-1") == []

    def test_create_value_beyond_float_range(self, client, storage):
        bad = dict(STABLECOIN_RULE, triggers=[{"metric": "total_usd_value", "operator": ">", "value": 10 ** 400}])
        resp = client.post("/api/rules", json={"name": "Huge", "rule": bad}, headers=USER)

        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "triggers.0.value"
        assert storage.list_rules("user-1") == []

    def test_status_and_delete(self, client):
        rule_id = client.post("/api/rules", json={"name": "S", "rule": STABLECOIN_RULE}, headers=USER).json()["id"]

        resp = client.patch(f"/api/rules/{rule_id}/status", json={"is_active": False}, headers=USER)
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        assert client.patch(f"/api/rules/{rule_id}/status", json={"is_active": True}, headers=OTHER).status_code == 404
        assert client.delete(f"/api/rules/{rule_id}", headers=OTHER).status_code == 404
        assert client.delete(f"/api/rules/{rule_id}", headers=USER).status_code == 200
        assert client.delete(f"/api/rules/{rule_id}", headers=USER).status_code == 404

    def test_evaluations_after_tick(self, client, evaluator):
        rule_id = client.post("/api/rules", json={"name": "S", "rule": STABLECOIN_RULE}, headers=USER).json()["id"]
        evaluator.run_tick()

        resp = client.get(f"/api/rules/{rule_id}/evaluations", headers=USER)
        assert resp.status_code == 200
        assert resp.json()["count"] == 1
        assert resp.json()["evaluations"][0]["triggered"] is True

        assert client.get(f"/api/rules/{rule_id}/evaluations", headers=OTHER).status_code == 404

    def test_explain_falls_back(self, client, oracle):
        rule_id = client.post("/api/rules", json={"name": "S", "rule": STABLECOIN_RULE}, headers=USER).json()["id"]
        oracle.responses = [OracleUnavailable("down")]

        resp = client.post(f"/api/rules/{rule_id}/explain", headers=USER)
        assert resp.status_code == 200
        assert resp.json()["explanation"] == "This rule alerts you when stablecoin_allocation_pct < 30."


class TestAlertsApi:

    def _fired(self, client, evaluator):
        client.post("/api/rules", json={"name": "S", "rule": STABLECOIN_RULE}, headers=USER)
        evaluator.run_tick()
        return client.get("/api/alerts", headers=USER).json()["alerts"]

    def test_list_and_acknowledge(self, client, evaluator):
        alerts = self._fired(client, evaluator)
        assert len(alerts) == 1
        assert alerts[0]["rule_name"] == "S"

        alert_id = alerts[0]["id"]
        first = client.patch(f"/api/alerts/{alert_id}/acknowledge", headers=USER)
        second = client.patch(f"/api/alerts/{alert_id}/acknowledge", headers=USER)
        assert first.status_code == second.status_code == 200
        assert second.json()["acknowledged_at"] == first.json()["acknowledged_at"]

        assert client.get("/api/alerts?acknowledged=false", headers=USER).json()["count"] == 0
        assert client.patch(f"/api/alerts/{alert_id}/acknowledge", headers=OTHER).status_code == 404

    def test_acknowledge_all_and_stats(self, client, evaluator):
        self._fired(client, evaluator)

        stats = client.get("/api/alerts/stats", headers=USER).json()
        assert stats["total"] == 1
        assert stats["unacknowledged"] == 1

        assert client.patch("/api/alerts/acknowledge-all", headers=USER).json() == {"count": 1}
        assert client.patch("/api/alerts/acknowledge-all", headers=USER).json() == {"count": 0}

    def test_delete(self, client, evaluator):
        alert_id = self._fired(client, evaluator)[0]["id"]
        assert client.delete(f"/api/alerts/{alert_id}", headers=OTHER).status_code == 404
        assert client.delete(f"/api/alerts/{alert_id}", headers=USER).status_code == 200
        assert client.get("/api/alerts", headers=USER).json()["count"] == 0


class TestHealth:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["scheduler"]["is_running"] is False
        assert body["storage"]["rule_count"] == 0

    def test_request_examples_in_openapi(self, client):
        schemas = client.get("/openapi.json").json()["components"]["schemas"]
        assert schemas["CompileRuleRequest"]["example"]["name"] == "PnL guard"
        assert schemas["CreateRuleRequest"]["example"]["name"] == "Stablecoin floor"
