"""
Rules API
Endpoints for authoring and managing monitoring rules.

Endpoints:
    POST   /api/rules/compile              → Compile natural language into a rule
    POST   /api/rules                      → Create rule from JSON definition
    GET    /api/rules                      → List the caller's rules
    PATCH  /api/rules/{id}/status          → Activate / deactivate
    DELETE /api/rules/{id}                 → Delete rule
    GET    /api/rules/{id}/evaluations     → Evaluation history
    POST   /api/rules/{id}/explain         → Plain-English explanation
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from core.errors import CompilationError, NotFound, OracleUnavailable, ValidationError
from rules import RuleService, get_rule_service
from .deps import current_user

router = APIRouter(prefix="/rules", tags=["Rules"])


# =============================================================================
# Request Models
# =============================================================================

class CompileRuleRequest(BaseModel):
    """Request body for natural-language rules"""
    text: str = Field(..., min_length=1)
    name: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "text": "Alert me if daily PnL drops below -5%",
            "name": "PnL guard",
        }
    })


class CreateRuleRequest(BaseModel):
    """Request body for directly-authored rules"""
    name: str
    description: str = ""
    rule: Dict[str, Any]

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Stablecoin floor",
            "description": "Keep at least 30% in stables",
            "rule": {
                "triggers": [{"metric": "stablecoin_allocation_pct", "operator": "<", "value": 30}],
                "logic": "ANY",
                "actions": [{"type": "ALERT", "message": "Stablecoin allocation below 30%", "severity": "medium"}],
            },
        }
    })


class RuleStatusRequest(BaseModel):
    is_active: bool


# =============================================================================
# Rule Management
# =============================================================================

@router.post("/compile", status_code=201)
async def compile_rule(
    request: CompileRuleRequest,
    user_id: str = Depends(current_user),
    service: RuleService = Depends(get_rule_service),
):
    """
    Compile natural language into a rule and store it as active.

    Nothing is stored when compilation fails.
    """
    try:
        rule = await run_in_threadpool(service.compile_rule, user_id, request.text, request.name)
    except CompilationError as e:
        raise HTTPException(422, {"error": "compilation_failed", "message": e.message, "field": e.field})
    except OracleUnavailable as e:
        raise HTTPException(503, {"error": "oracle_unavailable", "message": str(e)})

    return rule.to_dict()


@router.post("", status_code=201)
async def create_rule(
    request: CreateRuleRequest,
    user_id: str = Depends(current_user),
    service: RuleService = Depends(get_rule_service),
):
    """Create a rule from a JSON definition"""
    try:
        rule = service.create_rule(user_id, request.name, request.description, request.rule)
    except ValidationError as e:
        raise HTTPException(400, {"error": "validation_failed", "field": e.field, "message": e.message})

    return rule.to_dict()


@router.get("")
async def list_rules(
    user_id: str = Depends(current_user),
    service: RuleService = Depends(get_rule_service),
):
    """Get the caller's rules, newest first"""
    rules = service.list_rules(user_id)
    return {
        "count": len(rules),
        "rules": [r.to_dict() for r in rules]
    }


@router.patch("/{rule_id}/status")
async def set_rule_status(
    rule_id: str,
    request: RuleStatusRequest,
    user_id: str = Depends(current_user),
    service: RuleService = Depends(get_rule_service),
):
    """Activate or deactivate a rule"""
    try:
        rule = service.set_rule_active(rule_id, request.is_active, user_id=user_id)
    except NotFound:
        raise HTTPException(404, f"Rule not found: {rule_id}")

    return rule.to_dict()


@router.delete("/{rule_id}")
async def delete_rule(
    rule_id: str,
    user_id: str = Depends(current_user),
    service: RuleService = Depends(get_rule_service),
):
    """Delete a rule with its evaluations and alerts"""
    try:
        service.delete_rule(rule_id, user_id=user_id)
    except NotFound:
        raise HTTPException(404, f"Rule not found: {rule_id}")

    return {"message": f"Rule {rule_id} deleted"}


@router.get("/{rule_id}/evaluations")
async def list_evaluations(
    rule_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    user_id: str = Depends(current_user),
    service: RuleService = Depends(get_rule_service),
):
    """Get recent evaluations of a rule"""
    try:
        evaluations = service.list_evaluations(rule_id, limit, user_id=user_id)
    except NotFound:
        raise HTTPException(404, f"Rule not found: {rule_id}")

    return {
        "count": len(evaluations),
        "evaluations": [e.to_dict() for e in evaluations]
    }


@router.post("/{rule_id}/explain")
async def explain_rule(
    rule_id: str,
    user_id: str = Depends(current_user),
    service: RuleService = Depends(get_rule_service),
):
    """Explain a rule in one plain-English sentence"""
    try:
        explanation = await run_in_threadpool(service.explain_rule, rule_id, user_id)
    except NotFound:
        raise HTTPException(404, f"Rule not found: {rule_id}")

    return {"rule_id": rule_id, "explanation": explanation}
