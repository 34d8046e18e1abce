"""Conversions between domain values and their MongoDB representation."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
import uuid

from bson.decimal128 import Decimal128


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def amount_to_storage(value: Optional[Decimal]) -> Optional[Decimal128]:
    if value is None:
        return None
    return Decimal128(Decimal(value))


def amount_from_storage(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


def date_to_storage(value: date) -> str:
    """Calendar dates are kept as ISO strings; BSON has no date-only type."""
    return value.isoformat()


def date_from_storage(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
