"""
CSV (de)serialization and PDF summary reporting.
"""

import csv
import calendar
import datetime as dt
import io
import math
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import StorageError, StorageFailure
from .models import Expense
from .utils import money_fmt

CSV_FIELDS = ["id", "merchant", "category", "amount", "timestamp", "receipt_image_ref"]
MIN_CSV_COLUMNS = 5
# Ids are stored in an SQLite INTEGER column
MAX_ID = 2 ** 63 - 1


def expenses_to_csv(expenses: Iterable[Expense]) -> str:
    """Serialize expenses to CSV text; timestamps as epoch seconds."""
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(CSV_FIELDS)
    for e in expenses:
        w.writerow([e.id, e.merchant, e.category, f"{e.amount}",
                    repr(e.timestamp.timestamp()), e.receipt_image_ref or ""])
    return buf.getvalue()


def _row_to_expense(columns: List[str]) -> Optional[Expense]:
    if len(columns) < MIN_CSV_COLUMNS:
        return None
    try:
        expense_id = int(columns[0])
        amount = Decimal(columns[3].strip())
        timestamp = float(columns[4])
    except (ValueError, InvalidOperation):
        return None
    if not 0 <= expense_id <= MAX_ID or not math.isfinite(timestamp) or timestamp <= 0:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    try:
        when = dt.datetime.fromtimestamp(timestamp, tz=dt.timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None
    merchant = columns[1]
    if not merchant.strip():
        return None
    image_ref = columns[5].strip() if len(columns) > 5 else ""
    return Expense(
        id=expense_id,
        merchant=merchant,
        category=columns[2],
        amount=amount,
        timestamp=when,
        receipt_image_ref=image_ref or None,
    )


def parse_expense_csv(text: str) -> List[Expense]:
    """
    Parse CSV text into expenses.

    The header row and any row with fewer than five columns or unparsable
    values are skipped silently.
    """
    expenses = []
    try:
        for columns in csv.reader(io.StringIO(text)):
            expense = _row_to_expense(columns)
            if expense is not None:
                expenses.append(expense)
    except csv.Error as e:
        raise StorageError(StorageFailure.PARSE_FAILURE, f"Malformed CSV: {e}") from e
    return expenses


def category_totals(expenses: Iterable[Expense]) -> List[Tuple[str, Decimal]]:
    """Sum amounts per category, largest first."""
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for e in expenses:
        totals[e.category or "Other"] += e.amount
    return sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))


def monthly_totals(expenses: Iterable[Expense]) -> Dict[str, Decimal]:
    """Sum amounts per YYYY-MM of the expense timestamp."""
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for e in expenses:
        totals[e.timestamp.strftime("%Y-%m")] += e.amount
    return dict(sorted(totals.items()))


def _month_label(year_month: str) -> str:
    year, month = year_month.split("-")
    return f"{calendar.month_name[int(month)]} {year}"


def build_summary_pdf(expenses: List[Expense], out_pdf: Path,
                      title: str = "Expense Summary"):
    """Build a summary PDF: category totals, monthly totals, then every expense."""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas
    from reportlab.lib.units import inch

    c = canvas.Canvas(Path(out_pdf).as_posix(), pagesize=letter)
    width, height = letter

    # Title
    y = height - 1 * inch
    c.setFont("Helvetica-Bold", 16)
    c.drawString(1 * inch, y, title)
    y -= 0.3 * inch
    c.setFont("Helvetica", 10)
    generated = dt.datetime.now().isoformat(timespec='seconds')
    total = sum((e.amount for e in expenses), Decimal("0"))
    c.drawString(1 * inch, y, f"Generated: {generated}    Total: {money_fmt(total)}")
    y -= 0.4 * inch

    def ensure_room(y, font=("Helvetica", 10)):
        if y < 1.0 * inch:
            c.showPage()
            c.setFont(*font)
            return height - 1 * inch
        return y

    # Category Totals
    c.setFont("Helvetica-Bold", 12)
    c.drawString(1 * inch, y, "Category Totals")
    y -= 0.25 * inch
    c.setFont("Helvetica", 10)
    for cat, amt in category_totals(expenses):
        share = (amt / total * 100) if total else Decimal("0")
        c.drawString(1.1 * inch, y, f"{cat}: {money_fmt(amt)} ({share:.0f}%)")
        y = ensure_room(y - 0.2 * inch)

    # Monthly breakdown
    y -= 0.2 * inch
    c.setFont("Helvetica-Bold", 12)
    c.drawString(1 * inch, y, "Monthly Totals")
    y -= 0.25 * inch
    c.setFont("Helvetica", 10)
    for year_month, amt in monthly_totals(expenses).items():
        c.drawString(1.1 * inch, y, f"{_month_label(year_month)}: {money_fmt(amt)}")
        y = ensure_room(y - 0.2 * inch)

    # Line items, newest first
    c.showPage()
    y = height - 1 * inch
    c.setFont("Helvetica-Bold", 9)
    c.drawString(1.00 * inch, y, "Date")
    c.drawString(2.10 * inch, y, "Merchant")
    c.drawString(4.30 * inch, y, "Category")
    c.drawRightString(7.50 * inch, y, "Amount")
    y -= 0.15 * inch
    c.line(1.0 * inch, y, 7.6 * inch, y)
    y -= 0.15 * inch

    c.setFont("Helvetica", 9)
    for e in sorted(expenses, key=lambda x: x.id, reverse=True):
        c.drawString(1.00 * inch, y, e.timestamp.strftime("%Y-%m-%d"))
        c.drawString(2.10 * inch, y, e.merchant[:28])
        c.drawString(4.30 * inch, y, e.category[:18])
        c.drawRightString(7.50 * inch, y, money_fmt(e.amount))
        y = ensure_room(y - 0.18 * inch, font=("Helvetica", 9))

    c.showPage()
    c.save()
