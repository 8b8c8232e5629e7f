"""
Database operations for expense storage, plus the receipt image archive.
"""

import sqlite3
import datetime as dt
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Protocol

from .errors import StorageError, StorageFailure
from .logging import get_logger
from .models import Expense
from .reporting import expenses_to_csv, parse_expense_csv
from .utils import image_suffix

logger = get_logger(__name__)


class Store(Protocol):
    """Durable home of expenses; the source of truth on load."""

    def save(self, expense: Expense) -> None: ...

    def update(self, expense: Expense) -> None: ...

    def delete(self, expense_id: int) -> None: ...

    def load_all(self) -> List[Expense]: ...

    def export_csv(self) -> bytes: ...

    def import_csv(self, data: bytes) -> int: ...


def _check_timestamp(expense: Expense) -> float:
    ts = expense.timestamp.timestamp()
    if ts <= 0:
        raise StorageError(StorageFailure.INVALID_TIMESTAMP,
                           f"Timestamp must be a valid date (expense {expense.id})")
    return ts


def _row_values(expense: Expense):
    return (expense.merchant, expense.category, float(expense.amount),
            _check_timestamp(expense), expense.receipt_image_ref)


class SQLiteStore:
    """Store backed by a single SQLite table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self):
        return sqlite3.connect(self.db_path.as_posix())

    def _init_db(self):
        """Create the expense table if needed."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("""
            CREATE TABLE IF NOT EXISTS expense (
                id INTEGER PRIMARY KEY,
                merchant TEXT NOT NULL,
                category TEXT NOT NULL,
                amount REAL NOT NULL DEFAULT 0.0,
                timestamp REAL NOT NULL,
                receipt_image_ref TEXT
            )
            """)
            conn.commit()

    def save(self, expense: Expense):
        """Insert a new expense."""
        values = _row_values(expense)
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO expense (id, merchant, category, amount, timestamp, receipt_image_ref)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (expense.id,) + values)
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(StorageFailure.WRITE_FAILURE, f"Could not save expense {expense.id}: {e}") from e
        logger.debug("Saved expense %s", expense.id)

    def update(self, expense: Expense):
        """Overwrite an existing expense."""
        values = _row_values(expense)
        try:
            with self._connect() as conn:
                cur = conn.execute("""
                    UPDATE expense
                    SET merchant = ?, category = ?, amount = ?, timestamp = ?, receipt_image_ref = ?
                    WHERE id = ?
                """, values + (expense.id,))
                conn.commit()
                updated = cur.rowcount
        except sqlite3.Error as e:
            raise StorageError(StorageFailure.WRITE_FAILURE, f"Could not update expense {expense.id}: {e}") from e
        if not updated:
            raise StorageError(StorageFailure.NOT_FOUND, f"No expense with id {expense.id}")

    def delete(self, expense_id: int):
        try:
            with self._connect() as conn:
                cur = conn.execute("DELETE FROM expense WHERE id = ?", (expense_id,))
                conn.commit()
                deleted = cur.rowcount
        except sqlite3.Error as e:
            raise StorageError(StorageFailure.WRITE_FAILURE, f"Could not delete expense {expense_id}: {e}") from e
        if not deleted:
            raise StorageError(StorageFailure.NOT_FOUND, f"No expense with id {expense_id}")

    def load_all(self) -> List[Expense]:
        """Return every expense ordered by id."""
        try:
            with self._connect() as conn:
                rows = conn.execute("""
                    SELECT id, merchant, category, amount, timestamp, receipt_image_ref
                    FROM expense ORDER BY id
                """).fetchall()
        except sqlite3.Error as e:
            raise StorageError(StorageFailure.READ_FAILURE, f"Could not read expenses: {e}") from e

        expenses = []
        for row_id, merchant, category, amount, timestamp, image_ref in rows:
            if timestamp is None or timestamp <= 0:
                raise StorageError(StorageFailure.CORRUPT_ROW,
                                   f"Null or invalid timestamp in database (expense {row_id})")
            try:
                expenses.append(Expense(
                    id=row_id,
                    merchant=merchant,
                    category=category,
                    amount=Decimal(str(amount)),
                    timestamp=dt.datetime.fromtimestamp(timestamp, tz=dt.timezone.utc),
                    receipt_image_ref=image_ref,
                ))
            except ValueError as e:
                raise StorageError(StorageFailure.CORRUPT_ROW, f"Corrupt expense {row_id}: {e}") from e
        return expenses

    def export_csv(self) -> bytes:
        return expenses_to_csv(self.load_all()).encode("utf-8")

    def import_csv(self, data: bytes) -> int:
        """
        Import expenses from CSV bytes, replacing rows with the same id.

        Rows that are too short or do not parse are skipped silently.

        Returns:
            Number of expenses imported
        """
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise StorageError(StorageFailure.PARSE_FAILURE, f"CSV is not valid UTF-8: {e}") from e
        expenses = parse_expense_csv(text)

        try:
            with self._connect() as conn:
                conn.executemany("""
                    INSERT OR REPLACE INTO expense
                    (id, merchant, category, amount, timestamp, receipt_image_ref)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, [(e.id,) + _row_values(e) for e in expenses])
                conn.commit()
        except (sqlite3.Error, OverflowError) as e:
            raise StorageError(StorageFailure.WRITE_FAILURE, f"Could not import expenses: {e}") from e
        logger.info("Imported %d expense(s) from CSV", len(expenses))
        return len(expenses)


class ReceiptImageStore:
    """Directory of receipt images; references are file paths."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def put(self, name: str, data: bytes) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        dest = self.directory / f"{name}{image_suffix(data)}"
        try:
            dest.write_bytes(data)
        except OSError as e:
            raise StorageError(StorageFailure.WRITE_FAILURE, f"Could not store receipt image: {e}") from e
        return dest.as_posix()

    def discard(self, ref: Optional[str]):
        if not ref:
            return
        path = Path(ref)
        if path.parent != self.directory:
            logger.warning("Refusing to delete image outside %s: %s", self.directory, ref)
            return
        path.unlink(missing_ok=True)
