"""Tests for SQLite persistence of rules, evaluations and alerts"""

import json
import sqlite3
from datetime import datetime, timedelta

import pytest

from alerts.models import Alert
from core.errors import NotFound
from db import SQLiteStorage
from rules.models import RuleEvaluation

from conftest import STABLECOIN_RULE


class TestRules:

    def test_create_and_get(self, storage, make_rule):
        rule = make_rule()
        loaded = storage.get_rule(rule.id)
        assert loaded.id == rule.id
        assert loaded.definition == rule.definition
        assert loaded.created_at == rule.created_at
        assert loaded.is_active is True

    def test_list_newest_first(self, storage, make_rule):
        first = make_rule(name="first")
        second = make_rule(name="second")
        make_rule(user_id="user-2", name="other")

        assert [r.id for r in storage.list_rules("user-1")] == [second.id, first.id]

    def test_ownership_is_not_found(self, storage, make_rule):
        rule = make_rule(user_id="user-1")
        with pytest.raises(NotFound):
            storage.get_rule(rule.id, user_id="user-2")
        with pytest.raises(NotFound):
            storage.delete_rule(rule.id, user_id="user-2")
        assert storage.get_rule(rule.id).id == rule.id

    def test_set_active(self, storage, make_rule, clock):
        rule = make_rule()
        updated = storage.set_rule_active(rule.id, False, clock())
        assert updated.is_active is False
        assert updated.updated_at > rule.updated_at
        assert storage.list_active_rules() == []

    def test_unknown_rule(self, storage, clock):
        with pytest.raises(NotFound):
            storage.set_rule_active("rule_missing", True, clock())
        with pytest.raises(NotFound):
            storage.delete_rule("rule_missing")

    def test_delete_cascades(self, storage, make_rule, clock):
        rule = make_rule()
        storage.save_evaluation(RuleEvaluation(rule_id=rule.id, triggered=True, timestamp=clock()))
        alert = Alert(id="", rule_id=rule.id, user_id=rule.user_id, message="m", created_at=clock())
        storage.create_alerts(rule.id, [alert], fired_at=clock())

        storage.delete_rule(rule.id)

        assert storage.list_evaluations(rule.id) == []
        assert storage.list_alerts(rule.user_id) == []


class TestSchema:

    def test_adds_firing_column_to_existing_database(self, tmp_path):
        db_path = str(tmp_path / "old.db")
        conn = sqlite3.connect(db_path)
        conn.execute("""
            CREATE TABLE rules (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT DEFAULT '',
                natural_language TEXT,
                rule_json TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                last_fired_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "INSERT INTO rules (id, user_id, name, rule_json, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            ["rule_old", "user-1", "Old", json.dumps(STABLECOIN_RULE),
             "2025-01-01T00:00:00.000000", "2025-01-01T00:00:00.000000"]
        )
        conn.commit()
        conn.close()

        rule = SQLiteStorage(db_path).get_rule("rule_old")
        assert rule.is_firing is False


class TestEvaluations:

    def test_newest_first_with_limit(self, storage, make_rule, clock):
        rule = make_rule()
        for i in range(5):
            storage.save_evaluation(RuleEvaluation(
                rule_id=rule.id,
                triggered=i % 2 == 0,
                trigger_results=[i % 2 == 0],
                metrics={"total_usd_value": float(i)},
                logic="ANY",
                timestamp=clock(),
            ))

        evaluations = storage.list_evaluations(rule.id, limit=3)
        assert [e.metrics["total_usd_value"] for e in evaluations] == [4.0, 3.0, 2.0]
        assert evaluations[0].triggered is True
        assert evaluations[0].trigger_results == [True]

    def test_failed_evaluation_keeps_error(self, storage, make_rule, clock):
        rule = make_rule()
        storage.save_evaluation(RuleEvaluation(
            rule_id=rule.id, triggered=False, error="MetricsUnavailable: down", timestamp=clock(),
        ))
        evaluation = storage.list_evaluations(rule.id)[0]
        assert evaluation.failed
        assert evaluation.metrics is None

    def test_prune(self, storage, make_rule):
        rule = make_rule()
        old = datetime(2024, 1, 1)
        storage.save_evaluation(RuleEvaluation(rule_id=rule.id, triggered=False, timestamp=old))
        storage.save_evaluation(RuleEvaluation(rule_id=rule.id, triggered=False, timestamp=old + timedelta(days=10)))

        assert storage.prune_evaluations(old + timedelta(days=1)) == 1
        assert len(storage.list_evaluations(rule.id)) == 1


class TestAlerts:

    def _alert(self, rule, created_at, severity="medium"):
        return Alert(id="", rule_id=rule.id, user_id=rule.user_id, message="m",
                     severity=severity, created_at=created_at)

    def test_create_updates_last_fired(self, storage, make_rule, clock):
        rule = make_rule()
        fired_at = clock()
        assert storage.create_alerts(rule.id, [self._alert(rule, fired_at)], fired_at=fired_at)
        assert storage.get_rule(rule.id).last_fired_at == fired_at

        alerts = storage.list_alerts(rule.user_id)
        assert len(alerts) == 1
        assert alerts[0].rule_name == rule.name
        assert alerts[0].acknowledged is False

    def test_firing_rule_with_open_alert_blocks_insert(self, storage, make_rule, clock):
        rule = make_rule()
        first = clock()
        assert storage.create_alerts(rule.id, [self._alert(rule, first)], fired_at=first)
        assert storage.get_rule(rule.id).is_firing is True

        second = clock()
        assert not storage.create_alerts(rule.id, [self._alert(rule, second)], fired_at=second)
        assert len(storage.list_alerts(rule.user_id)) == 1

        storage.clear_firing(rule.id)
        assert storage.get_rule(rule.id).is_firing is False
        third = clock()
        assert storage.create_alerts(rule.id, [self._alert(rule, third)], fired_at=third)
        assert len(storage.list_alerts(rule.user_id)) == 2

    def test_recent_alert_blocks_insert(self, storage, make_rule, clock):
        rule = make_rule()
        first = clock()
        storage.create_alerts(rule.id, [self._alert(rule, first)], fired_at=first)
        storage.acknowledge_alert(storage.list_alerts(rule.user_id)[0].id, clock())
        storage.clear_firing(rule.id)

        second = clock()
        assert not storage.create_alerts(
            rule.id, [self._alert(rule, second)], fired_at=second, recent_since=first
        )
        assert storage.get_rule(rule.id).is_firing is True

    def test_alerts_for_unknown_rule(self, storage, clock):
        now = clock()
        alert = Alert(id="", rule_id="rule_missing", user_id="u", message="m", created_at=now)
        with pytest.raises(NotFound):
            storage.create_alerts("rule_missing", [alert], fired_at=now)

    def test_acknowledge_keeps_first_timestamp(self, storage, make_rule, clock):
        rule = make_rule()
        now = clock()
        alert = self._alert(rule, now)
        storage.create_alerts(rule.id, [alert], fired_at=now)

        first_ack = clock()
        storage.acknowledge_alert(alert.id, first_ack)
        again = storage.acknowledge_alert(alert.id, clock())
        assert again.acknowledged is True
        assert again.acknowledged_at == first_ack

    def test_acknowledge_other_users_alert(self, storage, make_rule, clock):
        rule = make_rule(user_id="user-1")
        now = clock()
        alert = self._alert(rule, now)
        storage.create_alerts(rule.id, [alert], fired_at=now)
        with pytest.raises(NotFound):
            storage.acknowledge_alert(alert.id, clock(), user_id="user-2")

    def test_filter_and_stats(self, storage, make_rule, clock):
        rule = make_rule()
        old = clock() - timedelta(days=2)
        storage.create_alerts(rule.id, [self._alert(rule, old, "high")], fired_at=old)
        storage.clear_firing(rule.id)
        now = clock()
        recent = self._alert(rule, now)
        storage.create_alerts(rule.id, [recent], fired_at=now)
        storage.acknowledge_alert(recent.id, clock())

        assert len(storage.list_alerts(rule.user_id, acknowledged=False)) == 1
        assert len(storage.list_alerts(rule.user_id, acknowledged=True)) == 1

        stats = storage.alert_stats(rule.user_id, since=now - timedelta(hours=24))
        assert stats.to_dict() == {"total": 2, "unacknowledged": 1, "high_severity": 1, "last_24h": 1}

    def test_get_stats(self, storage, make_rule):
        make_rule()
        stats = storage.get_stats()
        assert stats["rule_count"] == 1
        assert stats["active_rule_count"] == 1
        assert stats["alert_count"] == 0
