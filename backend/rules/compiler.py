"""
Natural-Language Compiler
Free text → validated RuleDefinition, via an external text oracle.

The oracle is treated as an untrusted text function. Its answer must contain
a JSON object that passes `validate_rule_definition`; anything else is a
CompilationError and nothing is persisted.
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Dict

from core.errors import CompilationError, OracleUnavailable, ValidationError
from .models import Logic, Metric, Operator, RuleDefinition, Severity, validate_rule_definition

if TYPE_CHECKING:
    from services.oracle import TextOracle

logger = logging.getLogger(__name__)


METRIC_DESCRIPTIONS = {
    Metric.TOTAL_USD_VALUE: "Total portfolio value in USD",
    Metric.DAILY_PNL_PCT: "Daily profit/loss percentage",
    Metric.STABLECOIN_ALLOCATION_PCT: "Percentage of portfolio in stablecoins",
    Metric.LARGEST_POSITION_PCT: "Percentage of largest single token position",
}


def build_compile_prompt(text: str) -> str:
    metrics = "\n".join(f"- {m.value}: {METRIC_DESCRIPTIONS[m]}" for m in Metric)
    operators = ", ".join(o.value for o in Operator)
    severities = ", ".join(s.value for s in Severity)

    return f"""You are a compiler that converts natural language into JSON rule schemas for DeFi portfolio monitoring.

Available metrics:
{metrics}

Available operators: {operators}
Available logic: {Logic.ALL.value} (all triggers must be true), {Logic.ANY.value} (any trigger can be true)
Available actions: ALERT with message and optional severity ({severities})

Examples:
"Alert me if my daily PnL is less than -5%" ->
{{
  "triggers": [{{"metric": "daily_pnl_pct", "operator": "<", "value": -5}}],
  "logic": "ANY",
  "actions": [{{"type": "ALERT", "message": "Daily PnL below -5%", "severity": "high"}}]
}}

"Tell me if stablecoins are less than 30% of my portfolio" ->
{{
  "triggers": [{{"metric": "stablecoin_allocation_pct", "operator": "<", "value": 30}}],
  "logic": "ANY",
  "actions": [{{"type": "ALERT", "message": "Stablecoin allocation below 30%", "severity": "medium"}}]
}}

"Warn me when my portfolio is under $5000 and one token is over 60% of it" ->
{{
  "triggers": [
    {{"metric": "total_usd_value", "operator": "<", "value": 5000}},
    {{"metric": "largest_position_pct", "operator": ">", "value": 60}}
  ],
  "logic": "ALL",
  "actions": [{{"type": "ALERT", "message": "Small, concentrated portfolio", "severity": "high"}}]
}}

Convert the following natural language to JSON rule schema. Return ONLY the JSON, no explanation.

User input: {text}"""


def build_explain_prompt(definition: RuleDefinition) -> str:
    return f"""You are an assistant that explains DeFi portfolio monitoring rules in plain English.

Given a JSON rule schema, explain what it does in simple, clear language.

Example:
Rule: {{"triggers": [{{"metric": "daily_pnl_pct", "operator": "<", "value": -5}}], "logic": "ANY", "actions": [{{"type": "ALERT", "message": "Daily PnL below -5%"}}]}}
Explanation: This rule will alert you when your daily profit/loss drops below -5%.

Explain the following rule in one clear sentence:

Rule: {json.dumps(definition.to_dict())}"""


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Return the first decodable JSON object embedded in `text`.

    Tolerates prose and markdown fences around the object.

    Raises:
        CompilationError: no JSON object found
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    raise CompilationError("No valid JSON rule found in the model response")


def describe_definition(definition: RuleDefinition) -> str:
    """Deterministic one-line summary, used when the oracle can't explain"""
    joiner = " and " if definition.logic == Logic.ALL else " or "
    conditions = joiner.join(
        f"{t.metric.value} {t.operator.value} {t.value:g}" for t in definition.triggers
    )
    return f"This rule alerts you when {conditions}."


class RuleCompiler:
    """
    Stateless compiler. One oracle call per `compile`; no retries.

    Usage:
        compiler = RuleCompiler(oracle)
        definition = compiler.compile("Alert me if daily PnL drops below -5%")
    """

    def __init__(self, oracle: "TextOracle"):
        self._oracle = oracle

    def compile(self, text: str) -> RuleDefinition:
        """
        Raises:
            CompilationError: empty input, no JSON in the answer, or the JSON
                fails validation
            OracleUnavailable: the oracle itself failed
        """
        if not text or not text.strip():
            raise CompilationError("Natural language text is required")

        response = self._oracle.generate(build_compile_prompt(text.strip()))
        candidate = extract_json_object(response)

        try:
            definition = validate_rule_definition(candidate)
        except ValidationError as e:
            logger.info("Compiled rule rejected at %s: %s", e.field, e.message)
            raise CompilationError(
                f"Generated rule is invalid at '{e.field}': {e.message}",
                field=e.field,
            ) from e

        logger.debug("Compiled %r into %s", text, definition.to_dict())
        return definition

    def explain(self, definition: RuleDefinition) -> str:
        try:
            explanation = self._oracle.generate(build_explain_prompt(definition)).strip()
        except OracleUnavailable as e:
            logger.info("Falling back to template explanation: %s", e)
            return describe_definition(definition)
        return explanation or describe_definition(definition)
