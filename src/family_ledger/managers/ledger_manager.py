"""
Ledger services: categories, transactions and dashboard statistics for personal and family ledgers.

Every call takes the acting principal and an explicit ``LedgerScope``. The scope selects the collections and the
ownership field; authorization follows one table:

- personal scope: the principal must own the ledger and the entry;
- family scope: reading and creating require membership, changing a transaction requires being its creator or
  an ADMIN, and changing a category requires membership.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from family_ledger.database import (
    CATEGORIES,
    FAMILY_CATEGORIES,
    FAMILY_TRANSACTIONS,
    TRANSACTIONS,
    db_manager,
)
from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.membership_guard import MembershipGuard, membership_guard
from family_ledger.models.auth_models import Principal
from family_ledger.models.family_models import Membership
from family_ledger.models.ledger_models import (
    Category,
    CategoryCreateRequest,
    CategoryPatch,
    DashboardStats,
    Transaction,
    TransactionCreateRequest,
    TransactionPatch,
)
from family_ledger.utils.aggregation import annotate_categories, compute_stats
from family_ledger.utils.error_handling import Conflict, Forbidden, NotFound, ValidationError
from family_ledger.utils.logging_utils import log_performance, log_security_event
from family_ledger.utils.storage import (
    amount_from_storage,
    amount_to_storage,
    date_from_storage,
    date_to_storage,
    new_id,
    utc_now,
)

logger = get_logger(prefix="[LEDGER]")

PERSONAL = "personal"
FAMILY = "family"


@dataclass(frozen=True)
class LedgerScope:
    """Which ledger an operation addresses: a user's personal ledger or a family's shared one."""

    kind: str
    owner_id: str

    @classmethod
    def personal(cls, user_id: str) -> "LedgerScope":
        return cls(PERSONAL, user_id)

    @classmethod
    def family(cls, family_id: str) -> "LedgerScope":
        return cls(FAMILY, family_id)

    @property
    def is_family(self) -> bool:
        return self.kind == FAMILY

    @property
    def owner_field(self) -> str:
        return "family_id" if self.is_family else "owner_id"

    @property
    def categories_collection(self) -> str:
        return FAMILY_CATEGORIES if self.is_family else CATEGORIES

    @property
    def transactions_collection(self) -> str:
        return FAMILY_TRANSACTIONS if self.is_family else TRANSACTIONS


def category_from_doc(doc: Dict[str, Any]) -> Category:
    return Category(
        id=doc["_id"],
        name=doc["name"],
        icon=doc["icon"],
        type=doc["type"],
        budget_limit=amount_from_storage(doc.get("budget_limit")),
        color=doc.get("color"),
        user_id=doc.get("owner_id"),
        family_id=doc.get("family_id"),
        created_at=doc["created_at"],
    )


def transaction_from_doc(doc: Dict[str, Any], category: Optional[Dict[str, Any]] = None) -> Transaction:
    return Transaction(
        id=doc["_id"],
        user_id=doc["user_id"],
        family_id=doc.get("family_id"),
        amount=amount_from_storage(doc["amount"]),
        description=doc["description"],
        date=date_from_storage(doc["date"]),
        category_id=doc["category_id"],
        type=doc["type"],
        notes=doc.get("notes"),
        receipt_image=doc.get("receipt_image"),
        created_at=doc["created_at"],
        category_name=category.get("name") if category else None,
        category_icon=category.get("icon") if category else None,
        category_color=category.get("color") if category else None,
    )


def _to_storage_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Convert patch values to their stored representation."""
    stored = {}
    for field_name, value in changes.items():
        if field_name in ("amount", "budget_limit"):
            stored[field_name] = amount_to_storage(value)
        elif field_name == "date":
            stored[field_name] = date_to_storage(value)
        elif field_name == "type":
            stored[field_name] = value.value
        elif isinstance(value, str) and field_name in ("name", "icon", "description"):
            stored[field_name] = value.strip()
        else:
            stored[field_name] = value
    return stored


class LedgerManager:
    """Single entry point for ledger reads and writes in both scopes."""

    def __init__(self, db_manager=None, guard: Optional[MembershipGuard] = None):
        self.db_manager = db_manager or globals()["db_manager"]
        self.guard = guard or membership_guard
        self.logger = logger

    # Authorization

    async def _authorize_scope(self, principal: Principal, scope: LedgerScope) -> Optional[Membership]:
        """Membership for a family scope; for a personal scope the principal must be the owner."""
        if scope.is_family:
            return await self.guard.require_member(principal.id, scope.owner_id)
        if scope.owner_id != principal.id:
            raise Forbidden("Access denied to this ledger", "ACCESS_DENIED")
        return None

    def _deny_entry(self, principal: Principal, scope: LedgerScope, entry_id: str, kind: str) -> Forbidden:
        log_security_event(
            event_type="ledger_entry_denied",
            user_id=principal.id,
            success=False,
            details={"scope": scope.kind, "entry_id": entry_id, "kind": kind},
        )
        return Forbidden(f"You do not have permission to modify this {kind}", "ACCESS_DENIED")

    async def _find_category_doc(self, scope: LedgerScope, category_id: str) -> Optional[Dict[str, Any]]:
        return await self.db_manager.get_collection(scope.categories_collection).find_one(
            {"_id": category_id, scope.owner_field: scope.owner_id}
        )

    async def _authorized_category(self, principal: Principal, scope: LedgerScope, category_id: str) -> Dict[str, Any]:
        await self._authorize_scope(principal, scope)
        collection = self.db_manager.get_collection(scope.categories_collection)
        if scope.is_family:
            doc = await collection.find_one({"_id": category_id, "family_id": scope.owner_id})
            if doc is None:
                raise NotFound("Category not found", "CATEGORY_NOT_FOUND")
            return doc
        doc = await collection.find_one({"_id": category_id})
        if doc is None:
            raise NotFound("Category not found", "CATEGORY_NOT_FOUND")
        if doc.get("owner_id") != principal.id:
            raise self._deny_entry(principal, scope, category_id, "category")
        return doc

    async def _authorized_transaction(
        self, principal: Principal, scope: LedgerScope, transaction_id: str, for_write: bool
    ) -> Dict[str, Any]:
        membership = await self._authorize_scope(principal, scope)
        collection = self.db_manager.get_collection(scope.transactions_collection)
        if scope.is_family:
            doc = await collection.find_one({"_id": transaction_id, "family_id": scope.owner_id})
            if doc is None:
                raise NotFound("Transaction not found", "TRANSACTION_NOT_FOUND")
            if for_write and not self.guard.can_modify_entry(membership, doc["user_id"]):
                raise self._deny_entry(principal, scope, transaction_id, "transaction")
            return doc
        doc = await collection.find_one({"_id": transaction_id})
        if doc is None:
            raise NotFound("Transaction not found", "TRANSACTION_NOT_FOUND")
        if doc.get("owner_id") != principal.id:
            raise self._deny_entry(principal, scope, transaction_id, "transaction")
        return doc

    async def _require_category_in_scope(self, scope: LedgerScope, category_id: str) -> None:
        if await self._find_category_doc(scope, category_id) is None:
            raise ValidationError("Category does not exist in this ledger", "UNKNOWN_CATEGORY")

    # Loading

    async def _category_docs(self, scope: LedgerScope) -> List[Dict[str, Any]]:
        query = {scope.owner_field: scope.owner_id}
        start_time = self.db_manager.log_query_start(scope.categories_collection, "find", query)
        docs = await self.db_manager.get_collection(scope.categories_collection).find(query).sort(
            "created_at", 1
        ).to_list(length=None)
        self.db_manager.log_query_success(scope.categories_collection, "find", start_time, len(docs))
        return docs

    async def _transaction_docs(self, scope: LedgerScope) -> List[Dict[str, Any]]:
        query = {scope.owner_field: scope.owner_id}
        start_time = self.db_manager.log_query_start(scope.transactions_collection, "find", query)
        docs = await self.db_manager.get_collection(scope.transactions_collection).find(query).sort(
            [("created_at", -1)]
        ).to_list(length=None)
        self.db_manager.log_query_success(scope.transactions_collection, "find", start_time, len(docs))
        return docs

    async def load_transactions(self, scope: LedgerScope) -> List[Transaction]:
        """All transactions of a scope, newest first, without an authorization check."""
        return [transaction_from_doc(doc) for doc in await self._transaction_docs(scope)]

    # Categories

    async def list_categories(
        self, principal: Principal, scope: LedgerScope, today: Optional[date] = None
    ) -> List[Category]:
        """Categories with the current month's spending and budget warning attached."""
        await self._authorize_scope(principal, scope)
        categories = [category_from_doc(doc) for doc in await self._category_docs(scope)]
        transactions = await self.load_transactions(scope)
        return annotate_categories(categories, transactions, today or utc_now().date())

    async def create_category(self, principal: Principal, scope: LedgerScope, request: CategoryCreateRequest) -> Category:
        await self._authorize_scope(principal, scope)
        doc = {
            "_id": new_id(),
            scope.owner_field: scope.owner_id,
            "name": request.name,
            "icon": request.icon.strip(),
            "type": request.type.value,
            "budget_limit": amount_to_storage(request.budget_limit),
            "color": request.color,
            "created_at": utc_now(),
        }
        if scope.is_family:
            doc["created_by"] = principal.id
        await self.db_manager.get_collection(scope.categories_collection).insert_one(doc)
        self.logger.info("Category %s created in %s ledger %s", doc["_id"], scope.kind, scope.owner_id)
        return category_from_doc(doc)

    async def update_category(
        self, principal: Principal, scope: LedgerScope, category_id: str, patch: CategoryPatch
    ) -> Category:
        doc = await self._authorized_category(principal, scope, category_id)
        changes = _to_storage_changes(patch.changes())
        if changes:
            await self.db_manager.get_collection(scope.categories_collection).update_one(
                {"_id": category_id}, {"$set": changes}
            )
            doc.update(changes)
        return category_from_doc(doc)

    async def delete_category(self, principal: Principal, scope: LedgerScope, category_id: str) -> None:
        """
        Delete a category that no transaction references.

        Raises:
            Conflict: If transactions still use the category.
        """
        await self._authorized_category(principal, scope, category_id)
        in_use = await self.db_manager.get_collection(scope.transactions_collection).count_documents(
            {scope.owner_field: scope.owner_id, "category_id": category_id}
        )
        if in_use:
            raise Conflict(
                f"Category is used by {in_use} transaction(s); reassign or delete them first", "CATEGORY_IN_USE"
            )
        await self.db_manager.get_collection(scope.categories_collection).delete_one({"_id": category_id})
        self.logger.info("Category %s deleted from %s ledger %s", category_id, scope.kind, scope.owner_id)

    # Transactions

    async def list_transactions(self, principal: Principal, scope: LedgerScope) -> List[Transaction]:
        """Transactions newest first, each carrying its category's name, icon and color."""
        await self._authorize_scope(principal, scope)
        categories = {doc["_id"]: doc for doc in await self._category_docs(scope)}
        return [
            transaction_from_doc(doc, categories.get(doc["category_id"])) for doc in await self._transaction_docs(scope)
        ]

    async def get_transaction(self, principal: Principal, scope: LedgerScope, transaction_id: str) -> Transaction:
        doc = await self._authorized_transaction(principal, scope, transaction_id, for_write=False)
        return transaction_from_doc(doc, await self._find_category_doc(scope, doc["category_id"]))

    @log_performance("create_transaction")
    async def create_transaction(
        self, principal: Principal, scope: LedgerScope, request: TransactionCreateRequest
    ) -> Transaction:
        """Record a transaction; the creator is always the principal, whatever the client sent."""
        await self._authorize_scope(principal, scope)
        await self._require_category_in_scope(scope, request.category_id)
        doc = {
            "_id": new_id(),
            scope.owner_field: scope.owner_id,
            "user_id": principal.id,
            "amount": amount_to_storage(request.amount),
            "description": request.description,
            "date": date_to_storage(request.date),
            "category_id": request.category_id,
            "type": request.type.value,
            "notes": request.notes,
            "receipt_image": request.receipt_image,
            "created_at": utc_now(),
        }
        start_time = self.db_manager.log_query_start(scope.transactions_collection, "insert_one", {"_id": doc["_id"]})
        await self.db_manager.get_collection(scope.transactions_collection).insert_one(doc)
        self.db_manager.log_query_success(scope.transactions_collection, "insert_one", start_time, 1)
        return transaction_from_doc(doc, await self._find_category_doc(scope, doc["category_id"]))

    async def update_transaction(
        self, principal: Principal, scope: LedgerScope, transaction_id: str, patch: TransactionPatch
    ) -> Transaction:
        doc = await self._authorized_transaction(principal, scope, transaction_id, for_write=True)
        changes = patch.changes()
        if "category_id" in changes:
            await self._require_category_in_scope(scope, changes["category_id"])
        stored = _to_storage_changes(changes)
        if stored:
            await self.db_manager.get_collection(scope.transactions_collection).update_one(
                {"_id": transaction_id}, {"$set": stored}
            )
            doc.update(stored)
        return transaction_from_doc(doc, await self._find_category_doc(scope, doc["category_id"]))

    async def delete_transaction(self, principal: Principal, scope: LedgerScope, transaction_id: str) -> None:
        await self._authorized_transaction(principal, scope, transaction_id, for_write=True)
        await self.db_manager.get_collection(scope.transactions_collection).delete_one({"_id": transaction_id})
        self.logger.info("Transaction %s deleted from %s ledger by %s", transaction_id, scope.kind, principal.id)

    # Statistics

    @log_performance("compute_dashboard_stats")
    async def stats(self, principal: Principal, scope: LedgerScope, today: Optional[date] = None) -> DashboardStats:
        """Dashboard totals for a scope, under the same authorization as listing it."""
        await self._authorize_scope(principal, scope)
        categories = [category_from_doc(doc) for doc in await self._category_docs(scope)]
        transactions = await self.load_transactions(scope)
        return compute_stats(transactions, categories, today or utc_now().date())


ledger_manager = LedgerManager()
