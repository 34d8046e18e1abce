# Family management module

from fastapi import APIRouter

from .ledger_routes import router as family_ledger_router
from .routes import router as family_router
from .spending_limits import router as spending_limits_router

# Combine all family-related routers
router = APIRouter()
router.include_router(family_router)
router.include_router(family_ledger_router)
router.include_router(spending_limits_router)

__all__ = ["router"]
