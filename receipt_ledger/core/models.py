"""
Data models for receipt processing.
"""

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Union

from .errors import InvalidInput


@dataclass(frozen=True)
class Expense:
    """A persisted expense record. Equality is structural over all fields."""
    id: int
    merchant: str
    category: str
    amount: Decimal
    timestamp: dt.datetime
    receipt_image_ref: Optional[str] = None

    def __post_init__(self):
        try:
            amount = Decimal(str(self.amount))
        except InvalidOperation:
            raise InvalidInput(f"Amount is not a number: {self.amount!r}")
        if not amount.is_finite() or amount < 0:
            raise InvalidInput(f"Amount must be a non-negative number: {amount}")
        object.__setattr__(self, "amount", amount)


@dataclass(frozen=True)
class Placeholder:
    """The pending ledger row of the session currently being processed."""
    session_id: int


@dataclass(frozen=True)
class LineItem:
    name: str
    price: Decimal


@dataclass(frozen=True)
class ReceiptFields:
    """Fields recovered from one receipt's OCR text."""
    text: str
    merchant: str
    amount: Decimal
    items: List[LineItem] = field(default_factory=list)


@dataclass(frozen=True)
class ManualCategory:
    value: str


@dataclass(frozen=True)
class PredictedCategory:
    pass


CategorySource = Union[ManualCategory, PredictedCategory]


def category_source(manual: Optional[Union[str, ManualCategory, PredictedCategory]]) -> CategorySource:
    """Map an optional user-supplied category onto a CategorySource."""
    if isinstance(manual, (ManualCategory, PredictedCategory)):
        return manual
    if manual and manual.strip():
        return ManualCategory(manual)
    return PredictedCategory()


class SessionStage(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    FIELDS_READY = "fields-ready"
    CATEGORIZING = "categorizing"
    PERSISTED = "persisted"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStage.PERSISTED, SessionStage.FAILED, SessionStage.CANCELLED)
