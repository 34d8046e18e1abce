"""
Personal ledger routes: the caller's own transactions and categories, plus dashboard statistics.

The ledger is always the principal's own; ids sent by the client never select another user's data.
``GET /stats`` also serves a family dashboard when ``familyId`` is given.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from family_ledger.managers.ledger_manager import LedgerScope, ledger_manager
from family_ledger.models.auth_models import Principal
from family_ledger.models.ledger_models import (
    CategoryCreateRequest,
    CategoryListResponse,
    CategoryPatch,
    CategoryResponse,
    DashboardStats,
    MessageResponse,
    TransactionCreateRequest,
    TransactionListResponse,
    TransactionPatch,
    TransactionResponse,
)
from family_ledger.routes.auth.dependencies import get_current_principal
from family_ledger.utils.error_handling import translate_errors
from family_ledger.utils.logging_utils import log_performance

router = APIRouter(tags=["Ledger"])


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(principal: Principal = Depends(get_current_principal)) -> TransactionListResponse:
    with translate_errors("list_transactions", user_id=principal.id):
        transactions = await ledger_manager.list_transactions(principal, LedgerScope.personal(principal.id))
    return TransactionListResponse(transactions=transactions)


@router.post("/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    body: TransactionCreateRequest, principal: Principal = Depends(get_current_principal)
) -> TransactionResponse:
    with translate_errors("create_transaction", user_id=principal.id):
        transaction = await ledger_manager.create_transaction(principal, LedgerScope.personal(principal.id), body)
    return TransactionResponse(transaction=transaction)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: str, principal: Principal = Depends(get_current_principal)
) -> TransactionResponse:
    with translate_errors("get_transaction", user_id=principal.id):
        transaction = await ledger_manager.get_transaction(
            principal, LedgerScope.personal(principal.id), transaction_id
        )
    return TransactionResponse(transaction=transaction)


@router.patch("/transactions/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: str, body: TransactionPatch, principal: Principal = Depends(get_current_principal)
) -> TransactionResponse:
    """Apply only the fields present in the body; `null` clears an optional field."""
    with translate_errors("update_transaction", user_id=principal.id):
        transaction = await ledger_manager.update_transaction(
            principal, LedgerScope.personal(principal.id), transaction_id, body
        )
    return TransactionResponse(transaction=transaction)


@router.delete("/transactions/{transaction_id}", response_model=MessageResponse)
async def delete_transaction(transaction_id: str, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    with translate_errors("delete_transaction", user_id=principal.id):
        await ledger_manager.delete_transaction(principal, LedgerScope.personal(principal.id), transaction_id)
    return MessageResponse(message="Transaction deleted")


@router.get("/categories", response_model=CategoryListResponse)
async def list_categories(principal: Principal = Depends(get_current_principal)) -> CategoryListResponse:
    """Categories with `currentSpent` and `warningLevel` for the current month."""
    with translate_errors("list_categories", user_id=principal.id):
        categories = await ledger_manager.list_categories(principal, LedgerScope.personal(principal.id))
    return CategoryListResponse(categories=categories)


@router.post("/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    body: CategoryCreateRequest, principal: Principal = Depends(get_current_principal)
) -> CategoryResponse:
    with translate_errors("create_category", user_id=principal.id):
        category = await ledger_manager.create_category(principal, LedgerScope.personal(principal.id), body)
    return CategoryResponse(category=category)


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str, body: CategoryPatch, principal: Principal = Depends(get_current_principal)
) -> CategoryResponse:
    with translate_errors("update_category", user_id=principal.id):
        category = await ledger_manager.update_category(
            principal, LedgerScope.personal(principal.id), category_id, body
        )
    return CategoryResponse(category=category)


@router.delete("/categories/{category_id}", response_model=MessageResponse)
async def delete_category(category_id: str, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    with translate_errors("delete_category", user_id=principal.id):
        await ledger_manager.delete_category(principal, LedgerScope.personal(principal.id), category_id)
    return MessageResponse(message="Category deleted")


@router.get("/stats", response_model=DashboardStats)
@log_performance("stats_endpoint")
async def get_stats(
    family_id: Optional[str] = Query(None, alias="familyId"),
    principal: Principal = Depends(get_current_principal),
) -> DashboardStats:
    """
    Dashboard totals.

    - `totalIncome`, `totalExpense` and `balance` cover all time
    - `monthlySpent` and the per-category breakdown cover the current calendar month
    - `monthlyBudget` sums the budget limits of expense categories
    """
    scope = LedgerScope.family(family_id) if family_id else LedgerScope.personal(principal.id)
    with translate_errors("stats", user_id=principal.id, family_id=family_id):
        return await ledger_manager.stats(principal, scope)
