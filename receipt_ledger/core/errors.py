"""
Error taxonomy for the receipt pipeline.

Every error is recoverable from the caller's point of view. Only the active
session fails; the user may retry or fill the fields in by hand.
"""

from enum import Enum
from typing import Optional


class ReceiptLedgerError(Exception):
    """Base class for all pipeline errors."""


class RecognitionError(ReceiptLedgerError):
    """OCR failed or the image could not be decoded."""


class PredictionError(ReceiptLedgerError):
    """The category predictor failed."""


class StageTimeoutError(ReceiptLedgerError, TimeoutError):
    """A pipeline stage exceeded its time bound."""

    def __init__(self, stage: str, seconds: float):
        super().__init__(f"{stage} timed out after {seconds:g}s")
        self.stage = stage
        self.seconds = seconds


class InvalidInput(ReceiptLedgerError, ValueError):
    """Fields rejected before any external call was made."""


class StorageFailure(str, Enum):
    INVALID_TIMESTAMP = "invalid-timestamp"
    WRITE_FAILURE = "write-failure"
    NOT_FOUND = "not-found"
    READ_FAILURE = "read-failure"
    CORRUPT_ROW = "corrupt-row"
    PARSE_FAILURE = "parse-failure"


class StorageError(ReceiptLedgerError):
    """Validation or persistence failure at the store boundary."""

    def __init__(self, reason: StorageFailure, message: Optional[str] = None):
        super().__init__(message or reason.value)
        self.reason = reason
