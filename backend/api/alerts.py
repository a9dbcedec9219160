"""
Alerts API
Endpoints for reading and acknowledging alerts.

Endpoints:
    GET    /api/alerts                    → List alerts (?acknowledged=true|false)
    GET    /api/alerts/stats              → Totals, unacknowledged, high, last 24h
    PATCH  /api/alerts/acknowledge-all    → Acknowledge every open alert
    PATCH  /api/alerts/{id}/acknowledge   → Acknowledge one alert (idempotent)
    DELETE /api/alerts/{id}               → Delete alert
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from alerts import AlertManager, get_alert_manager
from core.errors import NotFound
from .deps import current_user

router = APIRouter(prefix="/alerts", tags=["Alerts"])


@router.get("")
async def list_alerts(
    acknowledged: Optional[bool] = Query(default=None),
    user_id: str = Depends(current_user),
    manager: AlertManager = Depends(get_alert_manager),
):
    """Get the caller's alerts, newest first"""
    alerts = manager.list_alerts(user_id, acknowledged)
    return {
        "count": len(alerts),
        "alerts": [a.to_dict() for a in alerts]
    }


@router.get("/stats")
async def get_stats(
    user_id: str = Depends(current_user),
    manager: AlertManager = Depends(get_alert_manager),
):
    """Get alert statistics"""
    return manager.stats(user_id).to_dict()


@router.patch("/acknowledge-all")
async def acknowledge_all(
    user_id: str = Depends(current_user),
    manager: AlertManager = Depends(get_alert_manager),
):
    """Acknowledge every unacknowledged alert of the caller"""
    return {"count": manager.acknowledge_all(user_id)}


@router.patch("/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    user_id: str = Depends(current_user),
    manager: AlertManager = Depends(get_alert_manager),
):
    """Acknowledge an alert; repeating is harmless"""
    try:
        alert = manager.acknowledge(alert_id, user_id=user_id)
    except NotFound:
        raise HTTPException(404, f"Alert not found: {alert_id}")

    return alert.to_dict()


@router.delete("/{alert_id}")
async def delete_alert(
    alert_id: str,
    user_id: str = Depends(current_user),
    manager: AlertManager = Depends(get_alert_manager),
):
    """Delete an alert"""
    try:
        manager.delete(alert_id, user_id=user_id)
    except NotFound:
        raise HTTPException(404, f"Alert not found: {alert_id}")

    return {"message": f"Alert {alert_id} deleted"}
