"""
Processing sessions: one cancellable unit of work per photo import,
manual entry, or edit.
"""

from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional

from .errors import InvalidInput
from .logging import get_logger
from .models import (CategorySource, Expense, PredictedCategory, ReceiptFields,
                     SessionStage)

logger = get_logger(__name__)

# Allowed stage transitions; terminal stages have none
TRANSITIONS = {
    SessionStage.IDLE: {SessionStage.EXTRACTING, SessionStage.FIELDS_READY,
                        SessionStage.FAILED, SessionStage.CANCELLED},
    SessionStage.EXTRACTING: {SessionStage.FIELDS_READY, SessionStage.FAILED,
                              SessionStage.CANCELLED},
    SessionStage.FIELDS_READY: {SessionStage.CATEGORIZING, SessionStage.CANCELLED},
    SessionStage.CATEGORIZING: {SessionStage.PERSISTED, SessionStage.FAILED,
                                SessionStage.CANCELLED},
    SessionStage.PERSISTED: set(),
    SessionStage.FAILED: set(),
    SessionStage.CANCELLED: set(),
}

StageObserver = Callable[["ProcessingSession", SessionStage, SessionStage], None]


class CancellationToken:
    """Cooperative cancellation flag checked at every stage boundary."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True


class ProcessingSession:
    """
    State of one end-to-end attempt to turn an image (or manual input) into a
    persisted expense.

    Stages: IDLE -> EXTRACTING -> FIELDS_READY -> CATEGORIZING -> PERSISTED,
    with FAILED and CANCELLED as the other terminal stages.
    """

    def __init__(self, session_id: int, original: Optional[Expense] = None):
        self.session_id = session_id
        self.stage = SessionStage.IDLE
        self.token = CancellationToken()
        self.original = original
        self.image: Optional[bytes] = None
        self.fields: Optional[ReceiptFields] = None
        self.merchant = ""
        self.amount = Decimal("0")
        self.category_source: CategorySource = PredictedCategory()
        self.category: Optional[str] = None
        self.result: Optional[Expense] = None
        self.error: Optional[Exception] = None
        self._observers: List[StageObserver] = []

    def __repr__(self):
        return f"<ProcessingSession {self.session_id} {self.stage.value}>"

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    @property
    def is_edit(self) -> bool:
        return self.original is not None

    @property
    def receipt_text(self) -> str:
        return self.fields.text if self.fields else ""

    def subscribe(self, observer: StageObserver):
        self._observers.append(observer)

    def transition(self, stage: SessionStage):
        old = self.stage
        if stage not in TRANSITIONS[old]:
            raise RuntimeError(f"Session {self.session_id}: illegal transition {old.value} -> {stage.value}")
        self.stage = stage
        logger.debug("Session %s: %s -> %s", self.session_id, old.value, stage.value)
        for observer in list(self._observers):
            observer(self, old, stage)

    def apply_fields(self, fields: ReceiptFields):
        self.fields = fields
        self.merchant = fields.merchant
        self.amount = fields.amount

    def edit(self, merchant: Optional[str] = None, amount=None):
        """User edits to the extracted fields; only while FIELDS_READY."""
        if self.stage != SessionStage.FIELDS_READY:
            raise RuntimeError(f"Session {self.session_id} cannot be edited while {self.stage.value}")
        if merchant is not None:
            self.merchant = merchant.strip()
        if amount is not None:
            try:
                self.amount = Decimal(str(amount).strip().lstrip("$"))
            except InvalidOperation:
                raise InvalidInput(f"Amount is not a number: {amount!r}")

    def fail(self, error: Exception):
        self.error = error
        if not self.is_terminal:
            self.transition(SessionStage.FAILED)

    def cancel(self) -> bool:
        """Cancel unless already terminal; returns whether anything changed."""
        self.token.cancel()
        if self.is_terminal:
            return False
        self.transition(SessionStage.CANCELLED)
        return True
