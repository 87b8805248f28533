from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal
from typing import Annotated

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    model_validator,
)

from receipt_filer.core.errors import FailureKind


def _amount_number(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# JSON carries amounts as numbers; Python keeps the Decimal.
Amount = Annotated[
    Decimal, PlainSerializer(_amount_number, return_type=int | float, when_used="json")
]


class SourceDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    content_type: str | None = None
    body: bytes = Field(repr=False)


class FiledRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    date: dt.date
    amount: Amount
    vendor: str
    category: str
    file_name: str = Field(alias="fileName")


class PageFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_index: int
    kind: FailureKind
    reason: str


class BatchStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class BatchOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_name: str
    total_pages: int
    succeeded: tuple[FiledRecord, ...] = ()
    failed: tuple[PageFailure, ...] = ()
    deadline_exceeded: bool = False

    @model_validator(mode="after")
    def _pages_add_up(self) -> BatchOutcome:
        if len(self.succeeded) + len(self.failed) != self.total_pages:
            raise ValueError(
                f"{len(self.succeeded)} succeeded + {len(self.failed)} failed "
                f"!= {self.total_pages} pages"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> BatchStatus:
        if not self.succeeded:
            return BatchStatus.FAILED
        if self.failed:
            return BatchStatus.PARTIAL
        return BatchStatus.SUCCESS

    @property
    def ok(self) -> bool:
        return self.status != BatchStatus.FAILED

    @computed_field  # type: ignore[prop-decorator]
    @property
    def message(self) -> str:
        if not self.succeeded:
            reasons = ", ".join(f"page {f.page_index}: {f.reason}" for f in self.failed)
            return f"{self.source_name}: filing failed: {reasons or 'no pages'}"
        if self.total_pages == 1:
            return f'Saved "{self.succeeded[0].file_name}"'
        msg = f"{self.source_name}: {len(self.succeeded)} of {self.total_pages} pages filed"
        if self.failed:
            msg += f" ({len(self.failed)} failed)"
        return msg
