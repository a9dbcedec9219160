"""
Rule Service
The operations the API layer calls for rules.

compile_rule and create_rule are the only ways a rule enters the store,
and both validate before anything is written.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from core.errors import ValidationError
from .compiler import RuleCompiler
from .models import Rule, RuleEvaluation, validate_rule_definition

if TYPE_CHECKING:
    from db.sqlite import SQLiteStorage

logger = logging.getLogger(__name__)

MAX_EVALUATION_LIMIT = 500


class RuleService:
    def __init__(
        self,
        storage: "SQLiteStorage",
        compiler: RuleCompiler,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._storage = storage
        self._compiler = compiler
        self._clock = clock

    def compile_rule(self, user_id: str, text: str, name: Optional[str] = None) -> Rule:
        """
        Compile natural language and persist the result as an active rule.

        Raises:
            CompilationError: text could not become a valid rule (nothing stored)
            OracleUnavailable: text oracle down (nothing stored)
        """
        definition = self._compiler.compile(text)
        now = self._clock()
        rule = Rule(
            id="",
            user_id=user_id,
            name=(name or "").strip() or "Auto-generated rule",
            description=f"Rule created from: {text.strip()}",
            natural_language=text.strip(),
            definition=definition,
            created_at=now,
            updated_at=now,
        )
        self._storage.create_rule(rule)
        logger.info("Compiled rule %s for user %s", rule.id, user_id)
        return rule

    def create_rule(
        self,
        user_id: str,
        name: str,
        description: str,
        definition: Any,
    ) -> Rule:
        """
        Persist a directly-authored rule.

        Raises:
            ValidationError: bad name or rule shape (nothing stored)
        """
        if not name or not name.strip():
            raise ValidationError("name", "name is required")

        validated = validate_rule_definition(definition)
        now = self._clock()
        rule = Rule(
            id="",
            user_id=user_id,
            name=name.strip(),
            description=description or "",
            definition=validated,
            created_at=now,
            updated_at=now,
        )
        self._storage.create_rule(rule)
        logger.info("Created rule %s for user %s", rule.id, user_id)
        return rule

    def get_rule(self, rule_id: str, user_id: Optional[str] = None) -> Rule:
        return self._storage.get_rule(rule_id, user_id=user_id)

    def list_rules(self, user_id: str) -> List[Rule]:
        return self._storage.list_rules(user_id)

    def set_rule_active(self, rule_id: str, active: bool, user_id: Optional[str] = None) -> Rule:
        rule = self._storage.set_rule_active(rule_id, active, self._clock(), user_id=user_id)
        logger.info("Rule %s %s", rule_id, "activated" if active else "deactivated")
        return rule

    def delete_rule(self, rule_id: str, user_id: Optional[str] = None) -> None:
        self._storage.delete_rule(rule_id, user_id=user_id)
        logger.info("Deleted rule %s", rule_id)

    def list_evaluations(
        self,
        rule_id: str,
        limit: int = 50,
        user_id: Optional[str] = None
    ) -> List[RuleEvaluation]:
        if user_id is not None:
            self._storage.get_rule(rule_id, user_id=user_id)
        limit = max(1, min(limit, MAX_EVALUATION_LIMIT))
        return self._storage.list_evaluations(rule_id, limit)

    def explain_rule(self, rule_id: str, user_id: Optional[str] = None) -> str:
        rule = self._storage.get_rule(rule_id, user_id=user_id)
        return self._compiler.explain(rule.definition)


_rule_service: Optional[RuleService] = None


def get_rule_service() -> RuleService:
    global _rule_service
    if _rule_service is None:
        from core.config import get_settings
        from db import get_storage
        from services.oracle import AnthropicOracle

        settings = get_settings()
        oracle = AnthropicOracle(
            api_key=settings.anthropic_api_key,
            model=settings.oracle_model,
            timeout=settings.oracle_timeout_seconds,
            max_tokens=settings.oracle_max_tokens,
        )
        _rule_service = RuleService(get_storage(), RuleCompiler(oracle))
    return _rule_service
