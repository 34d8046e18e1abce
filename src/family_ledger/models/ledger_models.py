"""
Pydantic models for the personal and family ledgers.

JSON field names are camelCase (``budgetLimit``, ``categoryId``); Python attributes stay snake_case.
Patch models distinguish an omitted field from one explicitly sent as ``null`` through ``model_fields_set``.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from family_ledger.utils.error_handling import ValidationError

CATEGORY_NAME_MAX_LENGTH = 100
CATEGORY_ICON_MAX_LENGTH = 50
CATEGORY_COLOR_MAX_LENGTH = 100
MONEY_MAX_DIGITS = 12
MONEY_DECIMAL_PLACES = 2


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class WarningLevel(str, Enum):
    NONE = "none"
    WARNING = "warning"
    DANGER = "danger"


def _strip_required(value: str, field_name: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    return value


# Domain models
class Category(CamelModel):
    id: str
    name: str
    icon: str
    type: TransactionType
    budget_limit: Optional[Decimal] = None
    color: Optional[str] = None
    user_id: Optional[str] = Field(None, description="Owner of a personal category")
    family_id: Optional[str] = Field(None, description="Family of a shared category")
    created_at: dt.datetime
    current_spent: Optional[Decimal] = Field(None, description="Expense total of the current month")
    warning_level: Optional[WarningLevel] = None


class Transaction(CamelModel):
    id: str
    user_id: str = Field(..., description="User who recorded the transaction")
    family_id: Optional[str] = None
    amount: Decimal
    description: str
    date: dt.date
    category_id: str
    type: TransactionType
    notes: Optional[str] = None
    receipt_image: Optional[str] = None
    created_at: dt.datetime
    category_name: Optional[str] = None
    category_icon: Optional[str] = None
    category_color: Optional[str] = None


# Request models
class CategoryCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=CATEGORY_NAME_MAX_LENGTH, examples=["Groceries"])
    icon: str = Field(..., min_length=1, max_length=CATEGORY_ICON_MAX_LENGTH, examples=["shopping_cart"])
    type: TransactionType
    budget_limit: Optional[Decimal] = Field(
        None, ge=0, max_digits=MONEY_MAX_DIGITS, decimal_places=MONEY_DECIMAL_PLACES, examples=["3000.00"]
    )
    color: Optional[str] = Field(None, max_length=CATEGORY_COLOR_MAX_LENGTH)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _strip_required(v, "Category name")


class FamilyCategoryCreateRequest(CategoryCreateRequest):
    family_id: str = Field(..., min_length=1)


class TransactionCreateRequest(CamelModel):
    amount: Decimal = Field(..., gt=0, max_digits=MONEY_MAX_DIGITS, decimal_places=MONEY_DECIMAL_PLACES)
    description: str = Field(..., min_length=1)
    date: dt.date
    category_id: str = Field(..., min_length=1)
    type: TransactionType
    notes: Optional[str] = None
    receipt_image: Optional[str] = Field(None, description="Base64 data URI of the receipt photo")

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        return _strip_required(v, "Description")


class FamilyTransactionCreateRequest(TransactionCreateRequest):
    family_id: str = Field(..., min_length=1)


class PatchModel(CamelModel):
    """Partial update: only fields present in the request body are applied."""

    NON_NULLABLE: ClassVar[FrozenSet[str]] = frozenset()
    ADDRESSING: ClassVar[FrozenSet[str]] = frozenset()

    def changes(self) -> Dict[str, Any]:
        """Return the supplied fields, refusing ``null`` for fields that cannot be cleared.

        Raises:
            ValidationError: if a required field was sent as null.
        """
        result: Dict[str, Any] = {}
        for field_name in self.model_fields_set - self.ADDRESSING:
            value = getattr(self, field_name)
            if value is None and field_name in self.NON_NULLABLE:
                raise ValidationError(f"{to_camel(field_name)} cannot be cleared", "FIELD_NOT_NULLABLE")
            result[field_name] = value
        return result


class CategoryPatch(PatchModel):
    NON_NULLABLE: ClassVar[FrozenSet[str]] = frozenset({"name", "icon"})

    name: Optional[str] = Field(None, min_length=1, max_length=CATEGORY_NAME_MAX_LENGTH)
    icon: Optional[str] = Field(None, min_length=1, max_length=CATEGORY_ICON_MAX_LENGTH)
    budget_limit: Optional[Decimal] = Field(
        None, ge=0, max_digits=MONEY_MAX_DIGITS, decimal_places=MONEY_DECIMAL_PLACES
    )
    color: Optional[str] = Field(None, max_length=CATEGORY_COLOR_MAX_LENGTH)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return None if v is None else _strip_required(v, "Category name")


class FamilyCategoryPatch(CategoryPatch):
    ADDRESSING: ClassVar[FrozenSet[str]] = frozenset({"id", "family_id"})

    id: str = Field(..., min_length=1)
    family_id: str = Field(..., min_length=1)


class TransactionPatch(PatchModel):
    NON_NULLABLE: ClassVar[FrozenSet[str]] = frozenset({"amount", "description", "date", "category_id", "type"})

    amount: Optional[Decimal] = Field(None, gt=0, max_digits=MONEY_MAX_DIGITS, decimal_places=MONEY_DECIMAL_PLACES)
    description: Optional[str] = None
    date: Optional[dt.date] = None
    category_id: Optional[str] = None
    type: Optional[TransactionType] = None
    notes: Optional[str] = None
    receipt_image: Optional[str] = None

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        return None if v is None else _strip_required(v, "Description")


class FamilyTransactionPatch(TransactionPatch):
    ADDRESSING: ClassVar[FrozenSet[str]] = frozenset({"id", "family_id"})

    id: str = Field(..., min_length=1)
    family_id: str = Field(..., min_length=1)


# Aggregation results
class CategoryBudgetStatus(CamelModel):
    category_id: str
    name: str
    budget_limit: Optional[Decimal] = None
    current_spent: Decimal
    warning_level: WarningLevel


class DashboardStats(CamelModel):
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    monthly_budget: Decimal
    monthly_spent: Decimal
    categories: List[CategoryBudgetStatus] = Field(default_factory=list)


# Response wrappers
class TransactionListResponse(CamelModel):
    transactions: List[Transaction]


class TransactionResponse(CamelModel):
    transaction: Transaction


class CategoryListResponse(CamelModel):
    categories: List[Category]


class CategoryResponse(CamelModel):
    category: Category


class MessageResponse(CamelModel):
    message: str
