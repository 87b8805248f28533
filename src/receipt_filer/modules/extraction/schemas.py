from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

UNKNOWN_VENDOR = "unknown"


class Category(str, enum.Enum):
    MEETING = "meeting expense"
    TRANSPORTATION = "transportation"
    ENTERTAINMENT = "entertainment expense"
    SUPPLIES = "supplies"
    COMMUNICATIONS = "communications"
    OTHER = "other"


CATCH_ALL_CATEGORY = Category.OTHER.value


class ExtractedMetadata(BaseModel):
    """Fields read from one page. Any of them may be missing."""

    model_config = ConfigDict(frozen=True)

    date: dt.date | None = None
    amount: Decimal | None = None
    vendor: str | None = None
    category: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _lenient_date(cls, value: Any) -> Any:
        if value is None or isinstance(value, dt.date):
            return value
        if not isinstance(value, str):
            return None
        try:
            return dt.date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None

    @field_validator("amount", mode="before")
    @classmethod
    def _lenient_amount(cls, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return None
        if not isinstance(value, (int, float, str, Decimal)):
            return None
        try:
            amount = Decimal(str(value).strip().replace(",", ""))
        except (InvalidOperation, ValueError):
            return None
        if not amount.is_finite() or amount < 0:
            return None
        return amount

    @field_validator("vendor", "category", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            value = str(value)
        value = value.strip()
        return value or None


class FiledMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: dt.date
    amount: Decimal
    vendor: str
    category: str


def apply_defaults(metadata: ExtractedMetadata, *, today: dt.date) -> FiledMetadata:
    return FiledMetadata(
        date=metadata.date or today,
        amount=metadata.amount if metadata.amount is not None else Decimal("0"),
        vendor=metadata.vendor or UNKNOWN_VENDOR,
        category=metadata.category or CATCH_ALL_CATEGORY,
    )
