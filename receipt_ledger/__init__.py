"""
Receipt Ledger

Turns receipt photos into categorized, persisted expense records through a
cancellable, timeout-bounded OCR and categorization pipeline.
"""

__version__ = "1.0.0"
__author__ = "Receipt Ledger Contributors"

from receipt_ledger.core.models import Expense
from receipt_ledger.core.ledger import Ledger
from receipt_ledger.core.processor import ReceiptProcessor

__all__ = ["Expense", "Ledger", "ReceiptProcessor"]
