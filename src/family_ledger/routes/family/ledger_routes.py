"""
Shared family ledger routes: family transactions and family categories.

The family is addressed by ``familyId`` (query string for reads and deletes, request body for writes). Members can
read and add entries; a transaction may be changed only by the member who recorded it or by an admin.
"""

from fastapi import APIRouter, Depends, Query, status

from family_ledger.managers.ledger_manager import LedgerScope, ledger_manager
from family_ledger.models.auth_models import Principal
from family_ledger.models.ledger_models import (
    CategoryListResponse,
    CategoryResponse,
    FamilyCategoryCreateRequest,
    FamilyCategoryPatch,
    FamilyTransactionCreateRequest,
    FamilyTransactionPatch,
    MessageResponse,
    TransactionListResponse,
    TransactionResponse,
)
from family_ledger.routes.auth.dependencies import get_current_principal
from family_ledger.utils.error_handling import translate_errors

router = APIRouter(tags=["Family Ledger"])


@router.get("/family-transactions", response_model=TransactionListResponse)
async def list_family_transactions(
    family_id: str = Query(..., alias="familyId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> TransactionListResponse:
    """Family transactions, newest first, with category name, icon and color."""
    with translate_errors("list_family_transactions", user_id=principal.id, family_id=family_id):
        transactions = await ledger_manager.list_transactions(principal, LedgerScope.family(family_id))
    return TransactionListResponse(transactions=transactions)


@router.post("/family-transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_family_transaction(
    body: FamilyTransactionCreateRequest, principal: Principal = Depends(get_current_principal)
) -> TransactionResponse:
    with translate_errors("create_family_transaction", user_id=principal.id, family_id=body.family_id):
        transaction = await ledger_manager.create_transaction(principal, LedgerScope.family(body.family_id), body)
    return TransactionResponse(transaction=transaction)


@router.patch("/family-transactions", response_model=TransactionResponse)
async def update_family_transaction(
    body: FamilyTransactionPatch, principal: Principal = Depends(get_current_principal)
) -> TransactionResponse:
    with translate_errors("update_family_transaction", user_id=principal.id, family_id=body.family_id):
        transaction = await ledger_manager.update_transaction(
            principal, LedgerScope.family(body.family_id), body.id, body
        )
    return TransactionResponse(transaction=transaction)


@router.delete("/family-transactions", response_model=MessageResponse)
async def delete_family_transaction(
    transaction_id: str = Query(..., alias="id", min_length=1),
    family_id: str = Query(..., alias="familyId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    with translate_errors("delete_family_transaction", user_id=principal.id, family_id=family_id):
        await ledger_manager.delete_transaction(principal, LedgerScope.family(family_id), transaction_id)
    return MessageResponse(message="Transaction deleted")


@router.get("/family-categories", response_model=CategoryListResponse)
async def list_family_categories(
    family_id: str = Query(..., alias="familyId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> CategoryListResponse:
    with translate_errors("list_family_categories", user_id=principal.id, family_id=family_id):
        categories = await ledger_manager.list_categories(principal, LedgerScope.family(family_id))
    return CategoryListResponse(categories=categories)


@router.post("/family-categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_family_category(
    body: FamilyCategoryCreateRequest, principal: Principal = Depends(get_current_principal)
) -> CategoryResponse:
    with translate_errors("create_family_category", user_id=principal.id, family_id=body.family_id):
        category = await ledger_manager.create_category(principal, LedgerScope.family(body.family_id), body)
    return CategoryResponse(category=category)


@router.patch("/family-categories", response_model=CategoryResponse)
async def update_family_category(
    body: FamilyCategoryPatch, principal: Principal = Depends(get_current_principal)
) -> CategoryResponse:
    with translate_errors("update_family_category", user_id=principal.id, family_id=body.family_id):
        category = await ledger_manager.update_category(principal, LedgerScope.family(body.family_id), body.id, body)
    return CategoryResponse(category=category)


@router.delete("/family-categories", response_model=MessageResponse)
async def delete_family_category(
    category_id: str = Query(..., alias="id", min_length=1),
    family_id: str = Query(..., alias="familyId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Delete a family category. Refused while transactions still reference it."""
    with translate_errors("delete_family_category", user_id=principal.id, family_id=family_id):
        await ledger_manager.delete_category(principal, LedgerScope.family(family_id), category_id)
    return MessageResponse(message="Category deleted")
