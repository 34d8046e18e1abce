"""Family spending limits: admin-managed caps per family, optionally narrowed to a category or a member."""

from datetime import date
from typing import Any, Dict, List, Optional

from family_ledger.database import FAMILY_CATEGORIES, FAMILY_MEMBERS, SPENDING_LIMITS, db_manager
from family_ledger.managers.ledger_manager import LedgerManager, LedgerScope, ledger_manager
from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.membership_guard import MembershipGuard, membership_guard
from family_ledger.models.auth_models import Principal
from family_ledger.models.family_models import CreateSpendingLimitRequest, SpendingLimit, SpendingLimitStatus
from family_ledger.utils.aggregation import limit_usage, period_window
from family_ledger.utils.error_handling import NotFound, ValidationError
from family_ledger.utils.storage import amount_from_storage, amount_to_storage, new_id, utc_now

logger = get_logger(prefix="[SPENDING_LIMITS]")


def limit_from_doc(doc: Dict[str, Any]) -> SpendingLimit:
    return SpendingLimit(
        id=doc["_id"],
        family_id=doc["family_id"],
        category_id=doc.get("category_id"),
        user_id=doc.get("user_id"),
        limit_amount=amount_from_storage(doc["limit_amount"]),
        period=doc["period"],
        alert_threshold=doc["alert_threshold"],
        created_at=doc["created_at"],
    )


class SpendingLimitManager:
    def __init__(self, db_manager=None, guard: Optional[MembershipGuard] = None, ledger: Optional[LedgerManager] = None):
        self.db_manager = db_manager or globals()["db_manager"]
        self.guard = guard or membership_guard
        self.ledger = ledger or ledger_manager
        self.logger = logger

    def _limits(self):
        return self.db_manager.get_collection(SPENDING_LIMITS)

    async def _limit_docs(self, family_id: str) -> List[Dict[str, Any]]:
        return await self._limits().find({"family_id": family_id}).sort("created_at", -1).to_list(length=None)

    async def list_limits(self, principal: Principal, family_id: str) -> List[SpendingLimit]:
        await self.guard.require_admin(principal.id, family_id)
        return [limit_from_doc(doc) for doc in await self._limit_docs(family_id)]

    async def create_limit(self, principal: Principal, request: CreateSpendingLimitRequest) -> SpendingLimit:
        """
        Create a limit for a family (ADMIN only).

        Raises:
            ValidationError: If the category is not a family category or the user is not a family member.
        """
        family_id = request.family_id
        await self.guard.require_admin(principal.id, family_id)

        if request.category_id is not None:
            category = await self.db_manager.get_collection(FAMILY_CATEGORIES).find_one(
                {"_id": request.category_id, "family_id": family_id}
            )
            if category is None:
                raise ValidationError("Category does not belong to this family", "UNKNOWN_CATEGORY")
        if request.user_id is not None:
            member = await self.db_manager.get_collection(FAMILY_MEMBERS).find_one(
                {"family_id": family_id, "user_id": request.user_id}
            )
            if member is None:
                raise ValidationError("User is not a member of this family", "UNKNOWN_MEMBER")

        doc = {
            "_id": new_id(),
            "family_id": family_id,
            "category_id": request.category_id,
            "user_id": request.user_id,
            "limit_amount": amount_to_storage(request.limit_amount),
            "period": request.period.value,
            "alert_threshold": request.alert_threshold,
            "created_at": utc_now(),
        }
        await self._limits().insert_one(doc)
        self.logger.info("Spending limit %s created for family %s by %s", doc["_id"], family_id, principal.id)
        return limit_from_doc(doc)

    async def delete_limit(self, principal: Principal, family_id: str, limit_id: str) -> None:
        await self.guard.require_admin(principal.id, family_id)
        result = await self._limits().delete_one({"_id": limit_id, "family_id": family_id})
        if not result.deleted_count:
            raise NotFound("Spending limit not found", "LIMIT_NOT_FOUND")
        self.logger.info("Spending limit %s deleted from family %s by %s", limit_id, family_id, principal.id)

    async def limit_statuses(
        self, principal: Principal, family_id: str, today: Optional[date] = None
    ) -> List[SpendingLimitStatus]:
        """How much of each limit the family has used in the current period."""
        await self.guard.require_admin(principal.id, family_id)
        today = today or utc_now().date()
        limits = [limit_from_doc(doc) for doc in await self._limit_docs(family_id)]
        if not limits:
            return []
        transactions = await self.ledger.load_transactions(LedgerScope.family(family_id))

        statuses = []
        for limit in limits:
            window = period_window(limit.period, today)
            spent, percent, level = limit_usage(
                transactions,
                limit.limit_amount,
                limit.alert_threshold,
                window,
                category_id=limit.category_id,
                user_id=limit.user_id,
            )
            statuses.append(
                SpendingLimitStatus(
                    limit=limit,
                    period_start=window[0],
                    period_end=window[1],
                    spent=spent,
                    percent_used=percent,
                    level=level,
                )
            )
        return statuses


spending_limit_manager = SpendingLimitManager()
