"""
Pydantic models for family management and spending limits.

This module contains the request/response models and the document-shaped models the managers return.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator

from family_ledger.models.ledger_models import MONEY_DECIMAL_PLACES, MONEY_MAX_DIGITS, CamelModel

FAMILY_NAME_MAX_LENGTH = 100
DEFAULT_ALERT_THRESHOLD = 80


class FamilyRole(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class LimitPeriod(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class LimitLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    EXCEEDED = "exceeded"


# Document models
class Family(CamelModel):
    id: str
    name: str
    invite_code: str
    created_by: str
    created_at: dt.datetime


class Membership(CamelModel):
    id: str
    family_id: str
    user_id: str
    role: FamilyRole
    joined_at: dt.datetime


class FamilySummary(Family):
    """A family as seen by one of its members."""

    role: FamilyRole
    joined_at: dt.datetime


class MemberDetail(CamelModel):
    id: str
    user_id: str
    role: FamilyRole
    joined_at: dt.datetime
    user_name: Optional[str] = None
    user_email: Optional[str] = None


class SpendingLimit(CamelModel):
    id: str
    family_id: str
    category_id: Optional[str] = None
    user_id: Optional[str] = None
    limit_amount: Decimal
    period: LimitPeriod = LimitPeriod.MONTHLY
    alert_threshold: int = DEFAULT_ALERT_THRESHOLD
    created_at: dt.datetime


class SpendingLimitStatus(CamelModel):
    limit: SpendingLimit
    period_start: dt.date
    period_end: dt.date
    spent: Decimal
    percent_used: Decimal
    level: LimitLevel


# Request models
class CreateFamilyRequest(CamelModel):
    """Request model for creating a new family."""

    name: str = Field(..., max_length=FAMILY_NAME_MAX_LENGTH, description="Display name of the family", examples=["Smiths"])


class UpdateFamilyRequest(CamelModel):
    name: str = Field(..., max_length=FAMILY_NAME_MAX_LENGTH)


class JoinFamilyRequest(CamelModel):
    invite_code: str = Field(..., description="Invite code in XXX-XXXX-XXX format", examples=["ABC-DEFG-HJK"])


class ChangeMemberRoleRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    # Plain string so an unknown role reaches the manager and is refused there with INVALID_ROLE.
    role: str = Field(..., examples=["ADMIN"])


class CreateSpendingLimitRequest(CamelModel):
    family_id: str = Field(..., min_length=1)
    category_id: Optional[str] = None
    user_id: Optional[str] = None
    limit_amount: Decimal = Field(..., gt=0, max_digits=MONEY_MAX_DIGITS, decimal_places=MONEY_DECIMAL_PLACES)
    period: LimitPeriod = LimitPeriod.MONTHLY
    alert_threshold: int = Field(DEFAULT_ALERT_THRESHOLD, ge=1, le=100)

    @field_validator("category_id", "user_id")
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


# Response models
class FamilyResponse(CamelModel):
    family: Family


class FamilyListResponse(CamelModel):
    families: List[FamilySummary]


class FamilyDetailsResponse(CamelModel):
    family: Family
    members: List[MemberDetail]
    current_user_role: FamilyRole


class JoinFamilyResponse(CamelModel):
    message: str
    family: Family
    member: Membership


class MembershipResponse(CamelModel):
    member: Membership


class SpendingLimitListResponse(CamelModel):
    limits: List[SpendingLimit]


class SpendingLimitResponse(CamelModel):
    limit: SpendingLimit


class SpendingLimitStatusResponse(CamelModel):
    statuses: List[SpendingLimitStatus]
