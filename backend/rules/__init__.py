"""
Rules
Rule definitions, the natural-language compiler and trigger evaluation.

Structure:
    rules/
    ├── models.py      → Trigger, Action, Scope, RuleDefinition, Rule, RuleEvaluation
    ├── evaluation.py  → evaluate_trigger, evaluate_definition
    ├── compiler.py    → RuleCompiler (text → RuleDefinition via oracle)
    └── service.py     → RuleService (compile/create/list/toggle/delete)
"""

from .models import (
    Metric,
    Operator,
    Logic,
    Severity,
    Trigger,
    Action,
    Scope,
    RuleDefinition,
    Rule,
    RuleEvaluation,
    validate_rule_definition,
)
from .evaluation import evaluate_trigger, evaluate_definition, resolve_metric
from .compiler import RuleCompiler, extract_json_object
from .service import RuleService, get_rule_service

__all__ = [
    # Models
    "Metric",
    "Operator",
    "Logic",
    "Severity",
    "Trigger",
    "Action",
    "Scope",
    "RuleDefinition",
    "Rule",
    "RuleEvaluation",
    "validate_rule_definition",
    # Evaluation
    "evaluate_trigger",
    "evaluate_definition",
    "resolve_metric",
    # Compiler
    "RuleCompiler",
    "extract_json_object",
    # Service
    "RuleService",
    "get_rule_service",
]
