"""
In-memory, newest-first view of persisted expenses plus at most one pending
placeholder row.

Only the Ledger mutates its rows. Observers get immutable snapshots.
"""

import threading
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .logging import get_logger
from .models import Expense, Placeholder

logger = get_logger(__name__)

Row = Union[Placeholder, Expense]
Snapshot = Tuple[Row, ...]


class Ledger:
    """Ordered expense list with a single placeholder slot keyed by session id."""

    def __init__(self, expenses: Iterable[Expense] = ()):
        self._lock = threading.RLock()
        self._expenses: List[Expense] = []
        self._placeholder: Optional[Placeholder] = None
        self._owner: Optional[int] = None
        self._observers: List[Callable[[Snapshot], None]] = []
        self.replace_all(expenses)

    # Reads

    @property
    def placeholder(self) -> Optional[Placeholder]:
        return self._placeholder

    def rows(self) -> Snapshot:
        """Snapshot of the visible list; the placeholder, if any, comes first."""
        with self._lock:
            head = (self._placeholder,) if self._placeholder else ()
            return head + tuple(self._expenses)

    def expenses(self) -> Tuple[Expense, ...]:
        with self._lock:
            return tuple(self._expenses)

    def get(self, expense_id: int) -> Optional[Expense]:
        with self._lock:
            for expense in self._expenses:
                if expense.id == expense_id:
                    return expense
            return None

    def subscribe(self, callback: Callable[[Snapshot], None]) -> Callable[[], None]:
        """Register a snapshot observer; returns a function that unsubscribes it."""
        self._observers.append(callback)
        return lambda: self._observers.remove(callback)

    # Mutations

    def _publish(self):
        snapshot = self.rows()
        for callback in list(self._observers):
            callback(snapshot)

    def replace_all(self, expenses: Iterable[Expense]):
        """Load persisted expenses, newest first."""
        with self._lock:
            self._expenses = sorted(expenses, key=lambda e: e.id, reverse=True)
        self._publish()

    def begin_placeholder(self, session_id: int):
        """Show the pending row for session_id, replacing any earlier one."""
        with self._lock:
            if self._placeholder and self._placeholder.session_id != session_id:
                logger.debug("Placeholder for session %s superseded by %s",
                             self._placeholder.session_id, session_id)
            self._placeholder = Placeholder(session_id)
            self._owner = session_id
        self._publish()

    def begin_update(self, session_id: int):
        """Let session_id commit an edit without showing a pending row."""
        with self._lock:
            self._placeholder = None
            self._owner = session_id
        self._publish()

    def commit(self, session_id: int, expense: Expense) -> bool:
        """
        Replace the placeholder with the finished expense.

        A commit from any session other than the current owner is stale and
        ignored.
        """
        with self._lock:
            if session_id != self._owner:
                logger.debug("Ignoring stale commit from session %s", session_id)
                return False
            for idx, existing in enumerate(self._expenses):
                if existing.id == expense.id:
                    self._expenses[idx] = expense
                    break
            else:
                self._expenses.insert(0, expense)
            self._placeholder = None
            self._owner = None
        self._publish()
        return True

    def cancel(self, session_id: int) -> bool:
        """Drop the pending row of session_id; other sessions are left alone."""
        with self._lock:
            if session_id != self._owner:
                return False
            self._placeholder = None
            self._owner = None
        self._publish()
        return True

    def remove(self, expense_id: int) -> bool:
        """Remove an expense by id. Removing an absent id is not an error."""
        with self._lock:
            before = len(self._expenses)
            self._expenses = [e for e in self._expenses if e.id != expense_id]
            removed = len(self._expenses) != before
        if removed:
            self._publish()
        return removed
