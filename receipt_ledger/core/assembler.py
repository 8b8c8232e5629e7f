"""
Builds the Expense for a finished session, persists it, and hands it to the
ledger.
"""

import datetime as dt
from typing import Callable, Optional

from .database import ReceiptImageStore, Store
from .errors import InvalidInput, StorageError
from .ledger import Ledger
from .logging import get_logger
from .models import Expense, SessionStage
from .session import ProcessingSession
from .utils import money_fmt, utc_now

logger = get_logger(__name__)


class ExpenseAssembler:

    def __init__(self, store: Store, ledger: Ledger,
                 clock: Callable[[], dt.datetime] = utc_now,
                 image_store: Optional[ReceiptImageStore] = None):
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.image_store = image_store

    @staticmethod
    def validate(session: ProcessingSession):
        """Reject empty merchants and non-positive amounts before any external call."""
        if not (session.merchant or "").strip():
            raise InvalidInput("Merchant must not be empty")
        if not session.amount.is_finite() or session.amount <= 0:
            raise InvalidInput(f"Amount must be positive, got {session.amount}")

    def build(self, session: ProcessingSession, category: str,
              image_ref: Optional[str] = None) -> Expense:
        if session.is_edit:
            original = session.original
            return Expense(
                id=original.id,
                merchant=session.merchant.strip(),
                category=category,
                amount=session.amount,
                timestamp=original.timestamp,
                receipt_image_ref=original.receipt_image_ref,
            )
        return Expense(
            id=session.session_id,
            merchant=session.merchant.strip(),
            category=category,
            amount=session.amount,
            timestamp=self.clock(),
            receipt_image_ref=image_ref,
        )

    def _fail(self, session: ProcessingSession, error: Exception):
        logger.warning("Session %s failed to persist: %s", session.session_id, error)
        session.fail(error)
        self.ledger.cancel(session.session_id)

    def assemble(self, session: ProcessingSession, category: str) -> Optional[Expense]:
        """
        Persist the session's expense and publish it to the ledger.

        Returns None without touching the store when the session has been
        cancelled.

        Raises:
            InvalidInput: merchant or amount rejected; the session is unchanged.
            StorageError: persistence failed; the session is FAILED and the
                ledger only loses the session's placeholder.
        """
        self.validate(session)
        if session.cancelled:
            logger.debug("Session %s cancelled before assembly; discarding", session.session_id)
            return None

        image_ref = None
        try:
            if session.image and self.image_store is not None and not session.is_edit:
                image_ref = self.image_store.put(str(session.session_id), session.image)
            expense = self.build(session, category, image_ref)
            if session.is_edit:
                self.store.update(expense)
            else:
                self.store.save(expense)
        except StorageError as e:
            if image_ref and self.image_store is not None:
                self.image_store.discard(image_ref)
            self._fail(session, e)
            raise

        session.category = category
        session.result = expense
        self.ledger.commit(session.session_id, expense)
        session.transition(SessionStage.PERSISTED)
        logger.info("%s expense %s: %s %s (%s)", "Updated" if session.is_edit else "Saved",
                    expense.id, expense.merchant, money_fmt(expense.amount), expense.category)
        return expense
