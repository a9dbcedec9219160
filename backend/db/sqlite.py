"""
SQLite Storage
Durable store for rules, rule evaluations and alerts.

Responsibilities:
- Own the schema
- CRUD for rules, append-only evaluation log, alert lifecycle writes
- Enforce ownership when a user id is supplied
- Apply alert writes atomically (BEGIN IMMEDIATE)

NOT responsible for:
- Validation (done upstream by rules.models)
- Deciding when a rule fires (rules.evaluation, services.scheduler)
- Scheduling (services.scheduler)
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from alerts.models import Alert, AlertStats
from core.errors import NotFound
from rules.models import Rule, RuleEvaluation, RuleDefinition, Severity


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage:
    """
    SQLite persistence for the rule monitor.

    Tables:
        - rules: Rule definitions and active flag
        - rule_evaluations: One row per rule per tick (audit trail)
        - alerts: Materialized alerts

    A connection is opened per operation, so one instance is safe to share
    between the API and scheduler worker threads.
    """

    def __init__(self, db_path: str = "data/monitor.db", timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self):
        """Create data directory"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; takes the write lock up front"""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _init_schema(self):
        """Initialize database schema"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS rules (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    natural_language TEXT,
                    rule_json TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    last_fired_at TEXT,
                    is_firing INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_rules_user_id ON rules(user_id);
                CREATE INDEX IF NOT EXISTS idx_rules_active ON rules(is_active);

                CREATE TABLE IF NOT EXISTS rule_evaluations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id TEXT NOT NULL REFERENCES rules(id) ON DELETE CASCADE,
                    triggered INTEGER NOT NULL,
                    evaluation_data TEXT,
                    error TEXT,
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_rule_evaluations_rule_ts
                ON rule_evaluations(rule_id, timestamp);

                CREATE TABLE IF NOT EXISTS alerts (
                    id TEXT PRIMARY KEY,
                    rule_id TEXT NOT NULL REFERENCES rules(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    severity TEXT NOT NULL DEFAULT 'medium',
                    acknowledged INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    acknowledged_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_alerts_user_id ON alerts(user_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_alerts_rule_open ON alerts(rule_id, acknowledged);
            """)

            columns = {r["name"] for r in conn.execute("PRAGMA table_info(rules)")}
            if "is_firing" not in columns:
                conn.execute("ALTER TABLE rules ADD COLUMN is_firing INTEGER NOT NULL DEFAULT 0")

    # =========================================================================
    # Rules
    # =========================================================================

    def _row_to_rule(self, row: sqlite3.Row) -> Rule:
        return Rule(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"] or "",
            natural_language=row["natural_language"],
            definition=RuleDefinition.model_validate(json.loads(row["rule_json"])),
            is_active=bool(row["is_active"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            last_fired_at=_parse_ts(row["last_fired_at"]),
            is_firing=bool(row["is_firing"]),
        )

    def create_rule(self, rule: Rule) -> Rule:
        """Insert a rule; the id is generated by the Rule model"""
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO rules
                   (id, user_id, name, description, natural_language, rule_json,
                    is_active, last_fired_at, is_firing, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    rule.id, rule.user_id, rule.name, rule.description,
                    rule.natural_language, json.dumps(rule.definition.to_dict()),
                    int(rule.is_active), _ts(rule.last_fired_at), int(rule.is_firing),
                    _ts(rule.created_at), _ts(rule.updated_at),
                ]
            )
        return rule

    def get_rule(self, rule_id: str, user_id: Optional[str] = None) -> Rule:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM rules WHERE id = ?", [rule_id]).fetchone()

        if row is None or (user_id is not None and row["user_id"] != user_id):
            raise NotFound("Rule", rule_id)
        return self._row_to_rule(row)

    def list_rules(self, user_id: str) -> List[Rule]:
        """All rules of a user, newest first"""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM rules WHERE user_id = ?
                   ORDER BY created_at DESC, rowid DESC""",
                [user_id]
            ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def list_active_rules(self) -> List[Rule]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM rules WHERE is_active = 1 ORDER BY user_id, created_at"
            ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def set_rule_active(
        self,
        rule_id: str,
        active: bool,
        updated_at: datetime,
        user_id: Optional[str] = None
    ) -> Rule:
        with self._transaction() as conn:
            row = conn.execute("SELECT user_id FROM rules WHERE id = ?", [rule_id]).fetchone()
            if row is None or (user_id is not None and row["user_id"] != user_id):
                raise NotFound("Rule", rule_id)
            conn.execute(
                "UPDATE rules SET is_active = ?, updated_at = ? WHERE id = ?",
                [int(active), _ts(updated_at), rule_id]
            )
        return self.get_rule(rule_id)

    def delete_rule(self, rule_id: str, user_id: Optional[str] = None) -> None:
        """Delete a rule; its evaluations and alerts go with it"""
        with self._transaction() as conn:
            if user_id is None:
                cursor = conn.execute("DELETE FROM rules WHERE id = ?", [rule_id])
            else:
                cursor = conn.execute(
                    "DELETE FROM rules WHERE id = ? AND user_id = ?", [rule_id, user_id]
                )
            if cursor.rowcount == 0:
                raise NotFound("Rule", rule_id)

    # =========================================================================
    # Rule Evaluations
    # =========================================================================

    def save_evaluation(self, evaluation: RuleEvaluation) -> RuleEvaluation:
        data = {
            "metrics": evaluation.metrics,
            "trigger_results": evaluation.trigger_results,
            "logic": evaluation.logic,
        }
        with self._connect() as conn:
            cursor = conn.execute(
                """INSERT INTO rule_evaluations
                   (rule_id, triggered, evaluation_data, error, timestamp)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    evaluation.rule_id, int(evaluation.triggered),
                    json.dumps(data), evaluation.error, _ts(evaluation.timestamp),
                ]
            )
            evaluation.id = cursor.lastrowid
        return evaluation

    def list_evaluations(self, rule_id: str, limit: int = 50) -> List[RuleEvaluation]:
        """Most recent evaluations of a rule, newest first"""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM rule_evaluations
                   WHERE rule_id = ?
                   ORDER BY timestamp DESC, id DESC LIMIT ?""",
                [rule_id, limit]
            ).fetchall()

        evaluations = []
        for row in rows:
            data = json.loads(row["evaluation_data"]) if row["evaluation_data"] else {}
            evaluations.append(RuleEvaluation(
                id=row["id"],
                rule_id=row["rule_id"],
                triggered=bool(row["triggered"]),
                trigger_results=data.get("trigger_results") or [],
                metrics=data.get("metrics"),
                logic=data.get("logic"),
                error=row["error"],
                timestamp=_parse_ts(row["timestamp"]),
            ))
        return evaluations

    def prune_evaluations(self, before: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM rule_evaluations WHERE timestamp < ?", [_ts(before)]
            )
            return cursor.rowcount

    # =========================================================================
    # Alerts
    # =========================================================================

    def _row_to_alert(self, row: sqlite3.Row) -> Alert:
        return Alert(
            id=row["id"],
            rule_id=row["rule_id"],
            user_id=row["user_id"],
            message=row["message"],
            severity=Severity(row["severity"]),
            acknowledged=bool(row["acknowledged"]),
            created_at=_parse_ts(row["created_at"]),
            acknowledged_at=_parse_ts(row["acknowledged_at"]),
            rule_name=row["rule_name"],
        )

    _ALERT_SELECT = """
        SELECT a.*, r.name AS rule_name
        FROM alerts a
        LEFT JOIN rules r ON a.rule_id = r.id
    """

    def create_alerts(
        self,
        rule_id: str,
        alerts: List[Alert],
        fired_at: datetime,
        recent_since: Optional[datetime] = None
    ) -> bool:
        """
        Insert alerts for one firing evaluation, unless it is a repeat.

        A rule that is already firing (its last evaluation triggered) and
        still has an unacknowledged alert does not alert again. With
        `recent_since`, any alert of the rule created at or after that
        instant also suppresses the insert. Either way the rule is left
        marked as firing.

        Check and insert share one write transaction, so a concurrent
        acknowledge-all either sees the new rows or happens before the check.

        Returns:
            True if the alerts were written
        """
        with self._transaction() as conn:
            row = conn.execute("SELECT is_firing FROM rules WHERE id = ?", [rule_id]).fetchone()
            if row is None:
                raise NotFound("Rule", rule_id)

            suppressed = False
            if row["is_firing"]:
                suppressed = conn.execute(
                    "SELECT 1 FROM alerts WHERE rule_id = ? AND acknowledged = 0 LIMIT 1",
                    [rule_id]
                ).fetchone() is not None
            if not suppressed and recent_since is not None:
                suppressed = conn.execute(
                    "SELECT 1 FROM alerts WHERE rule_id = ? AND created_at >= ? LIMIT 1",
                    [rule_id, _ts(recent_since)]
                ).fetchone() is not None

            if suppressed:
                conn.execute("UPDATE rules SET is_firing = 1 WHERE id = ?", [rule_id])
                return False

            conn.executemany(
                """INSERT INTO alerts
                   (id, rule_id, user_id, message, severity, acknowledged, created_at)
                   VALUES (?, ?, ?, ?, ?, 0, ?)""",
                [
                    (a.id, a.rule_id, a.user_id, a.message, a.severity.value, _ts(a.created_at))
                    for a in alerts
                ]
            )
            conn.execute(
                "UPDATE rules SET last_fired_at = ?, is_firing = 1 WHERE id = ?",
                [_ts(fired_at), rule_id]
            )
        return True

    def clear_firing(self, rule_id: str) -> None:
        """Mark a rule's condition as no longer holding; the next hold alerts again"""
        with self._connect() as conn:
            conn.execute("UPDATE rules SET is_firing = 0 WHERE id = ? AND is_firing = 1", [rule_id])

    def get_alert(self, alert_id: str, user_id: Optional[str] = None) -> Alert:
        with self._connect() as conn:
            row = conn.execute(self._ALERT_SELECT + " WHERE a.id = ?", [alert_id]).fetchone()

        if row is None or (user_id is not None and row["user_id"] != user_id):
            raise NotFound("Alert", alert_id)
        return self._row_to_alert(row)

    def list_alerts(self, user_id: str, acknowledged: Optional[bool] = None) -> List[Alert]:
        query = self._ALERT_SELECT + " WHERE a.user_id = ?"
        params: list = [user_id]
        if acknowledged is not None:
            query += " AND a.acknowledged = ?"
            params.append(int(acknowledged))
        query += " ORDER BY a.created_at DESC, a.rowid DESC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_alert(r) for r in rows]

    def acknowledge_alert(
        self,
        alert_id: str,
        acknowledged_at: datetime,
        user_id: Optional[str] = None
    ) -> Alert:
        """Idempotent; the first acknowledgment time is kept"""
        with self._transaction() as conn:
            row = conn.execute("SELECT user_id FROM alerts WHERE id = ?", [alert_id]).fetchone()
            if row is None or (user_id is not None and row["user_id"] != user_id):
                raise NotFound("Alert", alert_id)
            conn.execute(
                """UPDATE alerts SET acknowledged = 1, acknowledged_at = ?
                   WHERE id = ? AND acknowledged = 0""",
                [_ts(acknowledged_at), alert_id]
            )
        return self.get_alert(alert_id)

    def acknowledge_all_alerts(self, user_id: str, acknowledged_at: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE alerts SET acknowledged = 1, acknowledged_at = ?
                   WHERE user_id = ? AND acknowledged = 0""",
                [_ts(acknowledged_at), user_id]
            )
            return cursor.rowcount

    def delete_alert(self, alert_id: str, user_id: Optional[str] = None) -> None:
        with self._transaction() as conn:
            if user_id is None:
                cursor = conn.execute("DELETE FROM alerts WHERE id = ?", [alert_id])
            else:
                cursor = conn.execute(
                    "DELETE FROM alerts WHERE id = ? AND user_id = ?", [alert_id, user_id]
                )
            if cursor.rowcount == 0:
                raise NotFound("Alert", alert_id)

    def alert_stats(self, user_id: str, since: datetime) -> AlertStats:
        with self._connect() as conn:
            row = conn.execute(
                """SELECT
                       COUNT(*) AS total,
                       COUNT(CASE WHEN acknowledged = 0 THEN 1 END) AS unacknowledged,
                       COUNT(CASE WHEN severity = 'high' THEN 1 END) AS high_severity,
                       COUNT(CASE WHEN created_at >= ? THEN 1 END) AS last_24h
                   FROM alerts
                   WHERE user_id = ?""",
                [_ts(since), user_id]
            ).fetchone()

        return AlertStats(
            total=row["total"],
            unacknowledged=row["unacknowledged"],
            high_severity=row["high_severity"],
            last_24h=row["last_24h"],
        )

    # =========================================================================
    # Management
    # =========================================================================

    def get_stats(self) -> dict:
        """Get storage statistics"""
        with self._connect() as conn:
            rule_count = conn.execute("SELECT COUNT(*) FROM rules").fetchone()[0]
            active_count = conn.execute("SELECT COUNT(*) FROM rules WHERE is_active = 1").fetchone()[0]
            evaluation_count = conn.execute("SELECT COUNT(*) FROM rule_evaluations").fetchone()[0]
            alert_count = conn.execute("SELECT COUNT(*) FROM alerts").fetchone()[0]

        return {
            "rule_count": rule_count,
            "active_rule_count": active_count,
            "evaluation_count": evaluation_count,
            "alert_count": alert_count,
            "db_path": self.db_path,
        }


# =============================================================================
# Singleton
# =============================================================================

_storage: Optional[SQLiteStorage] = None


def get_storage() -> SQLiteStorage:
    """Get singleton storage instance"""
    global _storage
    if _storage is None:
        from core.config import get_settings
        _storage = SQLiteStorage(get_settings().db_path)
    return _storage
