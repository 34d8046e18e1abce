"""
Tests for the personal and family ledgers.

Covers the authorization table (owner-only personal ledgers; membership, creator-or-admin for family entries),
category scoping, partial updates and the dashboard statistics.
"""

from datetime import date
from decimal import Decimal

import pytest

from family_ledger.database import CATEGORIES, FAMILY_TRANSACTIONS, TRANSACTIONS
from family_ledger.managers.ledger_manager import LedgerScope
from family_ledger.models.ledger_models import (
    CategoryCreateRequest,
    CategoryPatch,
    FamilyCategoryCreateRequest,
    FamilyTransactionCreateRequest,
    TransactionCreateRequest,
    TransactionPatch,
    TransactionType,
    WarningLevel,
)
from family_ledger.utils.error_handling import Conflict, Forbidden, NotFound, ValidationError

TODAY = date(2024, 5, 20)


def _category_request(name="Groceries", kind="EXPENSE", budget="3000"):
    return CategoryCreateRequest.model_validate({"name": name, "icon": "shopping_cart", "type": kind, "budgetLimit": budget})


def _transaction_request(category_id, amount="42.50", kind="EXPENSE", day="2024-05-03", **extra):
    return TransactionCreateRequest.model_validate(
        {"amount": amount, "description": "Weekly shop", "date": day, "categoryId": category_id, "type": kind, **extra}
    )


@pytest.fixture
async def personal(ledger, alice):
    scope = LedgerScope.personal(alice.id)
    category = await ledger.create_category(alice, scope, _category_request())
    return scope, category


@pytest.fixture
async def shared(families, ledger, alice, bob, carol):
    """A family with alice as admin, bob and carol as members, and one family category."""
    family = await families.create_family(alice.id, "Smiths")
    await families.join_family(bob.id, family.invite_code)
    await families.join_family(carol.id, family.invite_code)
    scope = LedgerScope.family(family.id)
    category = await ledger.create_category(
        bob,
        scope,
        FamilyCategoryCreateRequest.model_validate(
            {"familyId": family.id, "name": "Dining", "icon": "restaurant", "type": "EXPENSE", "budgetLimit": "200"}
        ),
    )
    return scope, category


class TestPersonalLedger:
    async def test_create_and_list_transaction(self, ledger, alice, personal):
        scope, category = personal

        created = await ledger.create_transaction(alice, scope, _transaction_request(category.id))
        [listed] = await ledger.list_transactions(alice, scope)

        assert created.user_id == alice.id
        assert created.amount == Decimal("42.50")
        assert created.date == date(2024, 5, 3)
        assert listed.id == created.id
        assert listed.category_name == "Groceries"
        assert listed.category_icon == "shopping_cart"

    async def test_amount_is_stored_exactly(self, ledger, alice, personal, fake_db):
        scope, category = personal

        await ledger.create_transaction(alice, scope, _transaction_request(category.id, amount="0.10"))
        await ledger.create_transaction(alice, scope, _transaction_request(category.id, amount="0.20"))
        stats = await ledger.stats(alice, scope, today=TODAY)

        assert stats.total_expense == Decimal("0.30")

    async def test_other_users_transaction_is_forbidden(self, ledger, alice, bob, personal):
        scope, category = personal
        created = await ledger.create_transaction(alice, scope, _transaction_request(category.id))
        bob_scope = LedgerScope.personal(bob.id)

        with pytest.raises(Forbidden):
            await ledger.get_transaction(bob, bob_scope, created.id)
        with pytest.raises(Forbidden):
            await ledger.delete_transaction(bob, bob_scope, created.id)
        with pytest.raises(Forbidden):
            await ledger.update_transaction(bob, bob_scope, created.id, TransactionPatch.model_validate({"amount": "1"}))

    async def test_scope_must_belong_to_principal(self, ledger, bob, personal):
        scope, _ = personal

        with pytest.raises(Forbidden):
            await ledger.list_transactions(bob, scope)
        with pytest.raises(Forbidden):
            await ledger.list_categories(bob, scope)

    async def test_missing_transaction(self, ledger, alice, personal):
        scope, _ = personal

        with pytest.raises(NotFound) as exc_info:
            await ledger.get_transaction(alice, scope, "nope")
        assert exc_info.value.error_code == "TRANSACTION_NOT_FOUND"

    async def test_category_from_another_ledger_is_rejected(self, ledger, alice, bob, personal):
        _, alice_category = personal
        bob_scope = LedgerScope.personal(bob.id)

        with pytest.raises(ValidationError) as exc_info:
            await ledger.create_transaction(bob, bob_scope, _transaction_request(alice_category.id))
        assert exc_info.value.error_code == "UNKNOWN_CATEGORY"

    async def test_partial_update(self, ledger, alice, personal):
        scope, category = personal
        created = await ledger.create_transaction(
            alice, scope, _transaction_request(category.id, notes="split with Bob")
        )

        updated = await ledger.update_transaction(
            alice, scope, created.id, TransactionPatch.model_validate({"amount": "10.00", "notes": None})
        )

        assert updated.amount == Decimal("10.00")
        assert updated.notes is None
        assert updated.description == "Weekly shop"
        [stored] = await ledger.list_transactions(alice, scope)
        assert stored.amount == Decimal("10.00")

    async def test_required_fields_cannot_be_cleared(self, ledger, alice, personal):
        scope, category = personal
        created = await ledger.create_transaction(alice, scope, _transaction_request(category.id))

        with pytest.raises(ValidationError) as exc_info:
            await ledger.update_transaction(
                alice, scope, created.id, TransactionPatch.model_validate({"description": None})
            )
        assert exc_info.value.error_code == "FIELD_NOT_NULLABLE"

    async def test_update_to_unknown_category(self, ledger, alice, personal):
        scope, category = personal
        created = await ledger.create_transaction(alice, scope, _transaction_request(category.id))

        with pytest.raises(ValidationError):
            await ledger.update_transaction(
                alice, scope, created.id, TransactionPatch.model_validate({"categoryId": "nope"})
            )

    async def test_category_in_use_cannot_be_deleted(self, ledger, alice, personal, fake_db):
        scope, category = personal
        created = await ledger.create_transaction(alice, scope, _transaction_request(category.id))

        with pytest.raises(Conflict) as exc_info:
            await ledger.delete_category(alice, scope, category.id)
        assert exc_info.value.error_code == "CATEGORY_IN_USE"

        await ledger.delete_transaction(alice, scope, created.id)
        await ledger.delete_category(alice, scope, category.id)
        assert fake_db.get_collection(CATEGORIES).docs == []
        assert fake_db.get_collection(TRANSACTIONS).docs == []

    async def test_category_update_and_ownership(self, ledger, alice, bob, personal):
        scope, category = personal

        updated = await ledger.update_category(
            alice, scope, category.id, CategoryPatch.model_validate({"budgetLimit": "250", "color": None})
        )
        assert updated.budget_limit == Decimal("250")
        assert updated.name == "Groceries"

        with pytest.raises(Forbidden):
            await ledger.update_category(
                bob, LedgerScope.personal(bob.id), category.id, CategoryPatch.model_validate({"name": "Mine"})
            )

    async def test_categories_carry_budget_warning(self, ledger, alice, fake_db):
        scope = LedgerScope.personal(alice.id)
        category = await ledger.create_category(alice, scope, _category_request(name="Dining", budget="100"))
        await ledger.create_transaction(alice, scope, _transaction_request(category.id, amount="85", day="2024-05-10"))

        [listed] = await ledger.list_categories(alice, scope, today=TODAY)

        assert listed.current_spent == Decimal("85")
        assert listed.warning_level == WarningLevel.WARNING

    async def test_stats_balance(self, ledger, alice):
        scope = LedgerScope.personal(alice.id)
        salary = await ledger.create_category(alice, scope, _category_request(name="Salary", kind="INCOME", budget=None))
        groceries = await ledger.create_category(alice, scope, _category_request())
        await ledger.create_transaction(alice, scope, _transaction_request(salary.id, amount="1000", kind="INCOME"))
        await ledger.create_transaction(alice, scope, _transaction_request(groceries.id, amount="500"))

        stats = await ledger.stats(alice, scope, today=TODAY)

        assert stats.total_income == Decimal("1000")
        assert stats.total_expense == Decimal("500")
        assert stats.balance == Decimal("500")
        assert stats.monthly_budget == Decimal("3000")
        assert stats.monthly_spent == Decimal("500")


class TestFamilyLedger:
    async def test_creator_is_the_principal_not_the_payload(self, ledger, bob, shared, fake_db):
        scope, category = shared
        request = FamilyTransactionCreateRequest.model_validate(
            {
                "familyId": scope.owner_id,
                "userId": "mallory",
                "amount": "30",
                "description": "Pizza",
                "date": "2024-05-04",
                "categoryId": category.id,
                "type": "EXPENSE",
            }
        )

        created = await ledger.create_transaction(bob, scope, request)

        assert created.user_id == bob.id
        assert created.family_id == scope.owner_id
        [stored] = fake_db.get_collection(FAMILY_TRANSACTIONS).docs
        assert stored["user_id"] == bob.id

    async def test_outsider_cannot_read_or_write(self, ledger, make_principal, shared):
        scope, category = shared
        mallory = make_principal("mallory")

        with pytest.raises(Forbidden):
            await ledger.list_transactions(mallory, scope)
        with pytest.raises(Forbidden):
            await ledger.create_transaction(mallory, scope, _transaction_request(category.id))
        with pytest.raises(Forbidden):
            await ledger.stats(mallory, scope, today=TODAY)

    async def test_only_creator_or_admin_may_change_an_entry(self, ledger, alice, bob, carol, shared):
        scope, category = shared
        created = await ledger.create_transaction(bob, scope, _transaction_request(category.id, amount="30"))
        patch = TransactionPatch.model_validate({"description": "Team lunch"})

        with pytest.raises(Forbidden):
            await ledger.update_transaction(carol, scope, created.id, patch)
        with pytest.raises(Forbidden):
            await ledger.delete_transaction(carol, scope, created.id)

        by_creator = await ledger.update_transaction(bob, scope, created.id, patch)
        assert by_creator.description == "Team lunch"
        by_admin = await ledger.update_transaction(
            alice, scope, created.id, TransactionPatch.model_validate({"amount": "35"})
        )
        assert by_admin.amount == Decimal("35")
        await ledger.delete_transaction(alice, scope, created.id)
        assert await ledger.list_transactions(carol, scope) == []

    async def test_members_read_each_others_entries(self, ledger, bob, carol, shared):
        scope, category = shared
        created = await ledger.create_transaction(bob, scope, _transaction_request(category.id))

        fetched = await ledger.get_transaction(carol, scope, created.id)

        assert fetched.id == created.id
        assert fetched.category_name == "Dining"

    async def test_personal_category_is_unknown_in_family(self, ledger, alice, personal, shared):
        scope, _ = shared
        _, personal_category = personal

        with pytest.raises(ValidationError) as exc_info:
            await ledger.create_transaction(alice, scope, _transaction_request(personal_category.id))
        assert exc_info.value.error_code == "UNKNOWN_CATEGORY"

    async def test_transaction_of_other_family_is_not_found(self, ledger, families, alice, shared):
        scope, category = shared
        created = await ledger.create_transaction(alice, scope, _transaction_request(category.id))
        other = await families.create_family(alice.id, "Second")

        with pytest.raises(NotFound):
            await ledger.get_transaction(alice, LedgerScope.family(other.id), created.id)

    async def test_family_category_in_use(self, ledger, alice, carol, shared):
        scope, category = shared
        await ledger.create_transaction(carol, scope, _transaction_request(category.id))

        with pytest.raises(Conflict):
            await ledger.delete_category(alice, scope, category.id)

    async def test_family_stats(self, ledger, bob, carol, shared):
        scope, category = shared
        await ledger.create_transaction(bob, scope, _transaction_request(category.id, amount="120", day="2024-05-02"))
        await ledger.create_transaction(carol, scope, _transaction_request(category.id, amount="90", day="2024-05-09"))

        stats = await ledger.stats(carol, scope, today=TODAY)

        assert stats.total_expense == Decimal("210")
        assert stats.balance == Decimal("-210")
        [dining] = stats.categories
        assert dining.current_spent == Decimal("210")
        assert dining.warning_level == WarningLevel.DANGER

    async def test_transaction_type_is_kept(self, ledger, bob, shared):
        scope, category = shared
        created = await ledger.create_transaction(bob, scope, _transaction_request(category.id, kind="INCOME"))
        assert created.type == TransactionType.INCOME
