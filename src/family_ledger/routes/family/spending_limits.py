"""Spending limit routes. Every endpoint is restricted to family admins."""

from fastapi import APIRouter, Depends, Query, status

from family_ledger.managers.spending_limit_manager import spending_limit_manager
from family_ledger.models.auth_models import Principal
from family_ledger.models.family_models import (
    CreateSpendingLimitRequest,
    SpendingLimitListResponse,
    SpendingLimitResponse,
    SpendingLimitStatusResponse,
)
from family_ledger.models.ledger_models import MessageResponse
from family_ledger.routes.auth.dependencies import get_current_principal
from family_ledger.utils.error_handling import translate_errors

router = APIRouter(prefix="/spending-limits", tags=["Spending Limits"])


@router.get("", response_model=SpendingLimitListResponse)
async def list_limits(
    family_id: str = Query(..., alias="familyId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> SpendingLimitListResponse:
    with translate_errors("list_spending_limits", user_id=principal.id, family_id=family_id):
        limits = await spending_limit_manager.list_limits(principal, family_id)
    return SpendingLimitListResponse(limits=limits)


@router.get("/status", response_model=SpendingLimitStatusResponse)
async def limit_status(
    family_id: str = Query(..., alias="familyId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> SpendingLimitStatusResponse:
    """Spending against each limit in its current week, month or year."""
    with translate_errors("spending_limit_status", user_id=principal.id, family_id=family_id):
        statuses = await spending_limit_manager.limit_statuses(principal, family_id)
    return SpendingLimitStatusResponse(statuses=statuses)


@router.post("", response_model=SpendingLimitResponse, status_code=status.HTTP_201_CREATED)
async def create_limit(
    body: CreateSpendingLimitRequest, principal: Principal = Depends(get_current_principal)
) -> SpendingLimitResponse:
    with translate_errors("create_spending_limit", user_id=principal.id, family_id=body.family_id):
        limit = await spending_limit_manager.create_limit(principal, body)
    return SpendingLimitResponse(limit=limit)


@router.delete("", response_model=MessageResponse)
async def delete_limit(
    limit_id: str = Query(..., alias="id", min_length=1),
    family_id: str = Query(..., alias="familyId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    with translate_errors("delete_spending_limit", user_id=principal.id, family_id=family_id):
        await spending_limit_manager.delete_limit(principal, family_id, limit_id)
    return MessageResponse(message="Spending limit deleted")
