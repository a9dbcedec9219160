"""
API Routers
"""
from .rules import router as rules_router
from .alerts import router as alerts_router

__all__ = ["rules_router", "alerts_router"]
