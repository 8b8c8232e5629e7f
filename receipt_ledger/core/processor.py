"""
Main receipt processing orchestration.
"""

import asyncio
import datetime as dt
from typing import Callable, Optional, Union

from .assembler import ExpenseAssembler
from .categorization import CategoryResolver
from .config import PipelineConfig
from .database import ReceiptImageStore, Store
from .errors import (PredictionError, RecognitionError, StageTimeoutError,
                     StorageError, StorageFailure)
from .ledger import Ledger
from .llm import Predictor
from .logging import get_logger
from .models import (CategorySource, Expense, ManualCategory, ReceiptFields,
                     SessionStage, category_source)
from .ocr import TextExtractor
from .parsers import extract_fields
from .session import ProcessingSession
from .utils import MillisecondIds, money_fmt, utc_now

logger = get_logger(__name__)

CategoryArg = Union[CategorySource, str, None]


class ReceiptProcessor:
    """
    Runs receipt sessions against injected collaborators.

    At most one session is active at a time: starting a new one cancels the
    previous one, whose late results are then discarded.
    """

    def __init__(self, text_extractor: TextExtractor, predictor: Predictor,
                 store: Store, ledger: Optional[Ledger] = None,
                 config: Optional[PipelineConfig] = None,
                 clock: Callable[[], dt.datetime] = utc_now,
                 image_store: Optional[ReceiptImageStore] = None):
        """
        Initialize receipt processor.

        Args:
            text_extractor: OCR adapter
            predictor: Category predictor (LLM or rules)
            store: Durable expense store
            ledger: In-memory list to publish into (a fresh one if omitted)
            config: Timeouts and settings (defaults if omitted)
            clock: Source of capture times, used for ids and timestamps
            image_store: Where receipt images are archived (optional)
        """
        self.text_extractor = text_extractor
        self.store = store
        self.config = config or PipelineConfig()
        self.ledger = ledger if ledger is not None else Ledger()
        self.image_store = image_store
        self.resolver = CategoryResolver(predictor, timeout=self.config.prediction_timeout)
        self.assembler = ExpenseAssembler(store, self.ledger, clock=clock, image_store=image_store)
        self._next_id = MillisecondIds(clock)
        self._active: Optional[ProcessingSession] = None

    @property
    def active_session(self) -> Optional[ProcessingSession]:
        if self._active is not None and not self._active.is_terminal:
            return self._active
        return None

    # Session lifecycle

    def _supersede(self):
        previous = self.active_session
        if previous is not None:
            logger.info("Session %s superseded by a new session", previous.session_id)
            self.cancel(previous)

    def start_session(self) -> ProcessingSession:
        """Begin a photo session, cancelling any session still in flight."""
        self._supersede()
        session = ProcessingSession(self._next_id())
        self._active = session
        self.ledger.begin_placeholder(session.session_id)
        return session

    def start_manual(self, merchant: str = "", amount=None) -> ProcessingSession:
        """Begin a session for hand-entered fields; it starts out FIELDS_READY."""
        session = self.start_session()
        session.transition(SessionStage.FIELDS_READY)
        session.edit(merchant=merchant, amount=amount)
        return session

    def start_edit(self, expense_id: int) -> ProcessingSession:
        """Begin a session editing an existing expense; keeps its category unless changed."""
        original = self.ledger.get(expense_id)
        if original is None:
            raise StorageError(StorageFailure.NOT_FOUND, f"No expense with id {expense_id}")
        self._supersede()
        session = ProcessingSession(self._next_id(), original=original)
        self._active = session
        self.ledger.begin_update(session.session_id)
        session.transition(SessionStage.FIELDS_READY)
        session.merchant = original.merchant
        session.amount = original.amount
        session.category_source = ManualCategory(original.category)
        return session

    def cancel(self, session: Optional[ProcessingSession] = None) -> bool:
        """Cancel a session (the active one by default) and drop its placeholder."""
        session = session or self._active
        if session is None:
            return False
        changed = session.cancel()
        self.ledger.cancel(session.session_id)
        if changed:
            logger.info("Session %s cancelled", session.session_id)
        return changed

    def retry(self, session: ProcessingSession) -> ProcessingSession:
        """
        Start a new session carrying a failed or cancelled session's inputs.

        Sessions that failed before their fields were extracted come back
        IDLE with the image attached, ready for scan(); the rest come back
        FIELDS_READY.
        """
        if session.stage not in (SessionStage.FAILED, SessionStage.CANCELLED):
            raise RuntimeError(f"Only failed or cancelled sessions can be retried, not {session.stage.value}")
        if session.is_edit:
            retried = self.start_edit(session.original.id)
        else:
            retried = self.start_session()
            retried.image = session.image
            if session.fields is None and session.image is not None:
                return retried
            retried.fields = session.fields
            retried.transition(SessionStage.FIELDS_READY)
        retried.merchant = session.merchant
        retried.amount = session.amount
        retried.category_source = session.category_source
        return retried

    def _fail(self, session: ProcessingSession, error: Exception):
        logger.warning("Session %s failed: %s", session.session_id, error)
        session.fail(error)
        self.ledger.cancel(session.session_id)

    # Stages

    async def scan(self, image: Optional[bytes],
                   session: Optional[ProcessingSession] = None) -> Optional[ProcessingSession]:
        """
        Extract text and fields from a receipt image.

        A None image means the user backed out of the camera or gallery and
        cancels the session.

        Returns:
            The session, now FIELDS_READY, or None when it was cancelled.

        Raises:
            StageTimeoutError: OCR exceeded its bound.
            RecognitionError: OCR failed or the image could not be decoded.
        """
        session = session or self.start_session()
        if session.cancelled:
            return None
        if image is None:
            self.cancel(session)
            return None
        session.image = image
        session.transition(SessionStage.EXTRACTING)

        timeout = self.config.ocr_timeout
        try:
            text = await asyncio.wait_for(self.text_extractor.extract_text(image), timeout=timeout)
        except asyncio.TimeoutError:
            if session.cancelled:
                return None
            error = StageTimeoutError("extract", timeout)
            self._fail(session, error)
            raise error
        except RecognitionError as e:
            if session.cancelled:
                return None
            self._fail(session, e)
            raise
        except Exception as e:
            if session.cancelled:
                return None
            error = RecognitionError(f"Text extraction failed: {e}")
            self._fail(session, error)
            raise error from e

        if session.cancelled:
            logger.debug("Discarding OCR result of cancelled session %s", session.session_id)
            return None

        fields = extract_fields(text)
        session.apply_fields(fields)
        session.transition(SessionStage.FIELDS_READY)
        if not text:
            logger.info("No text recognized; fields left for manual entry")
        else:
            logger.debug("Session %s: merchant=%r amount=%s, %d line item(s)",
                         session.session_id, fields.merchant, money_fmt(fields.amount), len(fields.items))
        return session

    async def categorize(self, session: ProcessingSession,
                         category: CategoryArg = None) -> Optional[Expense]:
        """
        Resolve the category, then persist and publish the expense.

        Returns:
            The persisted expense, or None when the session was cancelled.

        Raises:
            InvalidInput: empty merchant or non-positive amount (session unchanged).
            StageTimeoutError: the predictor exceeded its bound.
            PredictionError: the predictor failed.
            StorageError: the store rejected the expense.
        """
        if session.cancelled:
            return None
        if session.stage != SessionStage.FIELDS_READY:
            raise RuntimeError(f"Session {session.session_id} is {session.stage.value}, not ready to categorize")
        if category is not None:
            session.category_source = category_source(category)
        self.assembler.validate(session)

        session.transition(SessionStage.CATEGORIZING)
        try:
            resolved = await self.resolver.resolve(
                session.category_source, session.receipt_text, session.merchant
            )
        except (StageTimeoutError, PredictionError) as e:
            if session.cancelled:
                return None
            self._fail(session, e)
            raise

        if session.cancelled:
            logger.info("Discarding category %r of cancelled session %s", resolved, session.session_id)
            return None
        return self.assembler.assemble(session, resolved)

    async def process_receipt(self, image: Optional[bytes], category: CategoryArg = None,
                              merchant: Optional[str] = None, amount=None) -> Optional[Expense]:
        """Full photo flow: scan, apply the user's edits, categorize and persist."""
        session = await self.scan(image)
        if session is None:
            return None
        if merchant is not None or amount is not None:
            session.edit(merchant=merchant, amount=amount)
        return await self.categorize(session, category)

    async def add_manual(self, merchant: str, amount, category: CategoryArg = None) -> Optional[Expense]:
        """Manual entry flow: no image, straight to categorization."""
        session = self.start_manual(merchant, amount)
        session.fields = ReceiptFields(text="", merchant=session.merchant, amount=session.amount)
        return await self.categorize(session, category)

    # Ledger and store passthroughs

    def load(self) -> int:
        """Replace the ledger contents with everything in the store."""
        expenses = self.store.load_all()
        if expenses:
            self._next_id.observe(max(e.id for e in expenses))
        self.ledger.replace_all(expenses)
        logger.debug("Loaded %d expense(s)", len(expenses))
        return len(expenses)

    def delete(self, expense_id: int) -> bool:
        """Delete an expense; deleting an absent id is not an error."""
        try:
            self.store.delete(expense_id)
        except StorageError as e:
            if e.reason != StorageFailure.NOT_FOUND:
                raise
        expense = self.ledger.get(expense_id)
        removed = self.ledger.remove(expense_id)
        if expense is not None and self.image_store is not None:
            self.image_store.discard(expense.receipt_image_ref)
        return removed

    def export_csv(self) -> bytes:
        return self.store.export_csv()

    def import_csv(self, data: bytes) -> int:
        imported = self.store.import_csv(data)
        self.load()
        return imported
