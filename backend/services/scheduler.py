"""
Evaluation Scheduler
Wakes on a fixed interval and runs every active rule against fresh metrics.

Usage:
    from services import get_scheduler

    scheduler = get_scheduler()
    scheduler.start()           # background thread, one tick per interval
    report = scheduler.evaluator.run_tick()   # or drive ticks by hand (tests)
    scheduler.stop()

Tick:
    1. load active rules
    2. group by (user, scope) → one metrics fetch per group
    3. evaluate triggers, combine by logic
    4. persist a RuleEvaluation (always)
    5. fire through the AlertManager when triggered, clear when it stops holding
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from core.errors import DependencyUnavailable
from core.models import PortfolioMetrics
from rules.evaluation import evaluate_definition
from rules.models import Rule, RuleEvaluation

if TYPE_CHECKING:
    from alerts.manager import AlertManager
    from db.sqlite import SQLiteStorage
    from services.metrics import MetricsProvider

logger = logging.getLogger(__name__)

GroupKey = Tuple[str, tuple]


@dataclass
class TickReport:
    """Outcome of one evaluation tick"""
    started_at: datetime = field(default_factory=datetime.now)
    skipped: bool = False
    rules_evaluated: int = 0
    rules_triggered: int = 0
    alerts_created: int = 0
    alerts_suppressed: int = 0
    failures: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "skipped": self.skipped,
            "rules_evaluated": self.rules_evaluated,
            "rules_triggered": self.rules_triggered,
            "alerts_created": self.alerts_created,
            "alerts_suppressed": self.alerts_suppressed,
            "failures": self.failures,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class _RuleOutcome:
    triggered: bool = False
    alerts_created: int = 0
    suppressed: bool = False
    failed: bool = False


class RuleEvaluator:
    """
    Runs one tick at a time.

    Groups fan out over a bounded thread pool; rules inside a group run in
    order on one worker, so a rule's evaluate→record→fire sequence never
    overlaps with itself. A second concurrent `run_tick` is refused.
    """

    def __init__(
        self,
        storage: "SQLiteStorage",
        metrics_provider: "MetricsProvider",
        alert_manager: "AlertManager",
        max_workers: int = 4,
        retention_days: int = 0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._storage = storage
        self._metrics = metrics_provider
        self._alerts = alert_manager
        self._max_workers = max_workers
        self._retention = timedelta(days=retention_days) if retention_days > 0 else None
        self._clock = clock
        self._tick_lock = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._tick_lock.locked()

    def run_tick(self) -> TickReport:
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Evaluation tick already in flight; skipping")
            return TickReport(started_at=self._clock(), skipped=True)
        try:
            return self._run_tick()
        finally:
            self._tick_lock.release()

    def _run_tick(self) -> TickReport:
        report = TickReport(started_at=self._clock())
        started = time.monotonic()

        rules = self._storage.list_active_rules()
        logger.info("Starting rule evaluation cycle (%d active rules)", len(rules))

        groups: Dict[GroupKey, List[Rule]] = {}
        for rule in rules:
            scope = rule.definition.scope
            key = (rule.user_id, scope.key() if scope else ())
            groups.setdefault(key, []).append(rule)

        if groups:
            workers = min(self._max_workers, len(groups))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rule-eval") as pool:
                futures = [pool.submit(self._evaluate_group, group) for group in groups.values()]
                for future in futures:
                    for outcome in future.result():
                        report.rules_evaluated += 1
                        report.rules_triggered += int(outcome.triggered)
                        report.alerts_created += outcome.alerts_created
                        report.alerts_suppressed += int(outcome.suppressed)
                        report.failures += int(outcome.failed)

        if self._retention is not None:
            pruned = self._storage.prune_evaluations(self._clock() - self._retention)
            if pruned:
                logger.info("Pruned %d old rule evaluations", pruned)

        report.duration_seconds = time.monotonic() - started
        logger.info(
            "Completed evaluation of %d rules: %d triggered, %d alerts, %d suppressed, %d failed",
            report.rules_evaluated, report.rules_triggered, report.alerts_created,
            report.alerts_suppressed, report.failures,
        )
        return report

    def _evaluate_group(self, rules: List[Rule]) -> List[_RuleOutcome]:
        """One metrics fetch, then each rule of the group in order"""
        head = rules[0]
        try:
            metrics = self._metrics.get_metrics(head.user_id, head.definition.scope)
        except DependencyUnavailable as e:
            logger.warning("Metrics unavailable for user %s: %s", head.user_id, e)
            return [self._record_failure(rule, e) for rule in rules]
        except Exception as e:
            logger.exception("Metrics fetch crashed for user %s", head.user_id)
            return [self._record_failure(rule, e) for rule in rules]

        return [self._evaluate_rule(rule, metrics) for rule in rules]

    def _evaluate_rule(self, rule: Rule, metrics: PortfolioMetrics) -> _RuleOutcome:
        try:
            outcome = evaluate_definition(rule.definition, metrics)
            self._storage.save_evaluation(RuleEvaluation(
                rule_id=rule.id,
                triggered=outcome.triggered,
                trigger_results=outcome.trigger_results,
                metrics=metrics.model_dump(mode="json"),
                logic=rule.definition.logic.value,
                timestamp=self._clock(),
            ))
        except Exception as e:
            logger.exception("Error evaluating rule %s", rule.id)
            return self._record_failure(rule, e)

        result = _RuleOutcome(triggered=outcome.triggered)
        try:
            if outcome.triggered:
                created = self._alerts.fire(rule, metrics)
                result.alerts_created = len(created)
                result.suppressed = not created
            elif rule.is_firing:
                self._alerts.clear(rule)
        except Exception:
            # The evaluation is already on record; only the alert state change is lost
            logger.exception("Error updating alert state for rule %s", rule.id)
            result.failed = True
            return result

        logger.debug(
            "Evaluated rule %s (%s): %s %s",
            rule.id, rule.name,
            "TRIGGERED" if outcome.triggered else "NOT_TRIGGERED",
            outcome.trigger_results,
        )
        return result

    def _record_failure(self, rule: Rule, error: Exception) -> _RuleOutcome:
        logger.warning("Rule %s evaluation failed: %s", rule.id, error)
        try:
            self._storage.save_evaluation(RuleEvaluation(
                rule_id=rule.id,
                triggered=False,
                logic=rule.definition.logic.value,
                error=f"{type(error).__name__}: {error}",
                timestamp=self._clock(),
            ))
        except Exception:
            # Rule may have been deleted mid-tick
            logger.exception("Could not record failed evaluation for rule %s", rule.id)
        return _RuleOutcome(failed=True)


@dataclass
class SchedulerStats:
    """Scheduler statistics"""
    is_running: bool = False
    interval_seconds: float = 30.0
    ticks_run: int = 0
    ticks_skipped: int = 0
    last_tick_at: Optional[datetime] = None
    last_report: Optional[TickReport] = None
    started_at: Optional[datetime] = None
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "ticks_run": self.ticks_run,
            "ticks_skipped": self.ticks_skipped,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "uptime_seconds": (datetime.now() - self.started_at).total_seconds() if self.started_at else 0,
            "errors": self.errors,
        }


class EvaluationScheduler:
    """
    Single recurring timer driving the evaluator.

    Fixed-rate: ticks are due every `interval_seconds` from start. A tick
    that overruns makes the scheduler skip the due times it missed instead
    of queueing them.
    """

    def __init__(
        self,
        evaluator: RuleEvaluator,
        interval_seconds: float = 30.0,
        timer: Callable[[], float] = time.monotonic,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.evaluator = evaluator
        self.interval_seconds = interval_seconds
        self._timer = timer
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stats = SchedulerStats(interval_seconds=interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    def start(self) -> Dict[str, Any]:
        """Start the background tick thread"""
        if self._running:
            return {"status": "already_running"}

        self._stop_event.clear()
        self._stats = SchedulerStats(
            is_running=True,
            interval_seconds=self.interval_seconds,
            started_at=datetime.now(),
        )
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, name="rule-scheduler", daemon=True)
        self._thread.start()

        logger.info("Rules engine started - evaluating every %s seconds", self.interval_seconds)
        return {"status": "started", "interval_seconds": self.interval_seconds}

    def stop(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Stop the scheduler; waits for an in-flight tick to finish"""
        if not self._running:
            return {"status": "not_running"}

        self._running = False
        self._stats.is_running = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

        logger.info("Rules engine shutting down...")
        return {"status": "stopped", "ticks_run": self._stats.ticks_run}

    def _run_loop(self):
        next_run = self._timer()
        try:
            while not self._stop_event.is_set():
                self._tick_once()

                next_run += self.interval_seconds
                now = self._timer()
                if now > next_run:
                    missed = int((now - next_run) // self.interval_seconds) + 1
                    self._stats.ticks_skipped += missed
                    logger.warning("Evaluation tick overran; skipping %d tick(s)", missed)
                    next_run += missed * self.interval_seconds

                self._stop_event.wait(next_run - self._timer())
        finally:
            self._running = False
            self._stats.is_running = False

    def _tick_once(self):
        try:
            report = self.evaluator.run_tick()
        except Exception:
            self._stats.errors += 1
            logger.exception("Error in rule evaluation cycle")
            return

        if report.skipped:
            self._stats.ticks_skipped += 1
            return
        self._stats.ticks_run += 1
        self._stats.last_tick_at = report.started_at
        self._stats.last_report = report


# Singleton
_scheduler: Optional[EvaluationScheduler] = None


def build_metrics_provider(settings) -> Optional["MetricsProvider"]:
    """Provider for the configured metrics service; None when there is none"""
    from services.metrics import HoldingsMetricsProvider, HttpHoldingsSource, HttpMetricsProvider

    if not settings.metrics_base_url:
        return None
    if settings.metrics_source == "holdings":
        source = HttpHoldingsSource(settings.metrics_base_url, timeout=settings.metrics_timeout_seconds)
        return HoldingsMetricsProvider(source)
    return HttpMetricsProvider(settings.metrics_base_url, timeout=settings.metrics_timeout_seconds)


def start_if_configured(scheduler: EvaluationScheduler, settings) -> bool:
    """
    Start the scheduler at application startup.

    Without a metrics service every tick could only record failures, so the
    scheduler stays stopped until one is configured.
    """
    if not settings.autostart_scheduler:
        return False
    if not settings.metrics_base_url:
        logger.warning(
            "No metrics service configured (MONITOR_METRICS_BASE_URL); evaluation scheduler not started"
        )
        return False
    scheduler.start()
    return True


def get_scheduler() -> EvaluationScheduler:
    """Get or create scheduler singleton"""
    global _scheduler
    if _scheduler is None:
        from alerts import get_alert_manager
        from core.config import get_settings
        from db import get_storage
        from services.metrics import StaticMetricsProvider

        settings = get_settings()
        evaluator = RuleEvaluator(
            get_storage(),
            build_metrics_provider(settings) or StaticMetricsProvider(),
            get_alert_manager(),
            max_workers=settings.max_workers,
            retention_days=settings.evaluation_retention_days,
        )
        _scheduler = EvaluationScheduler(evaluator, interval_seconds=settings.tick_interval_seconds)
    return _scheduler
