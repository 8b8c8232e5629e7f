"""
Category resolution: manual override, or a predictor validated against the
closed category set.
"""

import asyncio
import json
import re
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

from .config import PREDICTION_TIMEOUT
from .errors import PredictionError, StageTimeoutError
from .llm import Predictor
from .logging import get_logger
from .models import CategorySource, ManualCategory, category_source
from .utils import CATEGORIES, FALLBACK_CATEGORY

logger = get_logger(__name__)

RECEIPT_TEXT_LIMIT = 2000

DEFAULT_RULES = {
    "categories": list(CATEGORIES),
    "matchers": [
        {"name": "Coffee", "any": [{"vendor_re": "STARBUCKS|COFFEE|CAFE"}], "category": "Dining"},
        {"name": "Restaurants", "any": [{"vendor_re": "RESTAURANT|GRILL|PIZZA|DINER|BISTRO"}],
         "category": "Dining"},
        {"name": "Big box", "any": [{"vendor_re": "WALMART|TARGET|COSTCO|KROGER|MARKET|GROCER"}],
         "category": "Groceries"},
        {"name": "Streaming", "any": [{"vendor_re": "NETFLIX|AMAZON|SPOTIFY|CINEMA|THEATER"}],
         "category": "Entertainment"},
        {"name": "Rides", "any": [{"vendor_re": "UBER|LYFT|TAXI|TRANSIT|SHELL|CHEVRON"}],
         "category": "Transportation"},
        {"name": "Electronics", "any": [{"vendor_re": "BEST\\s*BUY|APPLE|MICRO\\s*CENTER"}],
         "category": "Electronics"},
    ],
}


def load_rules(path: Path) -> Dict:
    """Load categorization rules from JSON file."""
    if not path.exists():
        return DEFAULT_RULES
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def categorize(vendor: str, text: str, rules: Dict) -> Tuple[str, Optional[str]]:
    """
    Categorize a receipt based on vendor and text content.

    Args:
        vendor: Merchant name
        text: Full receipt text
        rules: Rules dictionary with format:
            {
              "categories": ["Dining","Groceries","Transportation","Other"],
              "matchers": [
                {"name":"Coffee","any":[{"vendor_re":"STARBUCKS|COFFEE"}], "category":"Dining"},
                {"name":"Uber/Lyft","any":[{"text_re":"UBER|LYFT"}], "category":"Transportation"}
              ]
            }

    Returns:
        Tuple of (category, matcher_name)
    """
    v = vendor or ""
    t = text or ""

    for m in rules.get("matchers", []):
        any_rules = m.get("any", [])
        all_rules = m.get("all", [])

        matched_any = not any_rules  # no 'any' means don't gate on it
        for rule in any_rules:
            vre = rule.get("vendor_re")
            tre = rule.get("text_re")
            if (vre and re.search(vre, v, flags=re.IGNORECASE)) or \
                    (tre and re.search(tre, t, flags=re.IGNORECASE)):
                matched_any = True
                break

        matched_all = True
        for rule in all_rules:
            vre = rule.get("vendor_re")
            tre = rule.get("text_re")
            if (vre and not re.search(vre, v, flags=re.IGNORECASE)) or \
                    (tre and not re.search(tre, t, flags=re.IGNORECASE)):
                matched_all = False
                break

        if matched_any and matched_all:
            return (m.get("category") or FALLBACK_CATEGORY, m.get("name"))

    # fallback
    return (FALLBACK_CATEGORY, None)


class RulePredictor:
    """
    Offline Predictor backed by rules.json matchers.

    The prompt is ignored; the merchant and receipt text are recovered from
    the subject built by build_subject().
    """

    def __init__(self, rules: Optional[Dict] = None):
        self.rules = rules or DEFAULT_RULES

    async def predict(self, subject: str, instructions: str) -> str:
        merchant, text = parse_subject(subject)
        category, matcher = categorize(merchant, text, self.rules)
        logger.debug("Rule matcher %s -> %s", matcher or "(none)", category)
        return category


def build_subject(merchant: str, receipt_text: str) -> str:
    return f"Merchant: {merchant}\nReceipt text:\n{receipt_text[:RECEIPT_TEXT_LIMIT]}"


def parse_subject(subject: str) -> Tuple[str, str]:
    head, _, text = subject.partition("\nReceipt text:\n")
    merchant = head[len("Merchant: "):] if head.startswith("Merchant: ") else head
    return merchant, text


def build_instructions(categories: Sequence[str] = CATEGORIES) -> str:
    return (
        "Classify this purchase receipt into exactly ONE of these categories: "
        f"{', '.join(categories)}.\n"
        "Use the merchant name first and the receipt text (OCR output, may contain errors) "
        "as supporting evidence.\n"
        "Respond with the category name only, no punctuation or explanation."
    )


def normalize_category(answer: Optional[str], categories: Sequence[str] = CATEGORIES) -> str:
    """Exact match against the closed set after trimming; anything else is Other."""
    category = (answer or "").strip()
    return category if category in categories else FALLBACK_CATEGORY


class CategoryResolver:
    """Decides the final category of an expense."""

    def __init__(self, predictor: Predictor, timeout: float = PREDICTION_TIMEOUT,
                 categories: Sequence[str] = CATEGORIES):
        self.predictor = predictor
        self.timeout = timeout
        self.categories = tuple(categories)

    async def resolve(self, source: Union[CategorySource, str, None],
                      receipt_text: str, merchant: str) -> str:
        """
        Resolve the category for one receipt.

        Manual categories are trusted verbatim. Otherwise the predictor's
        answer is validated against the closed set and falls back to Other.

        Raises:
            StageTimeoutError: the predictor did not answer within the bound.
            PredictionError: the predictor itself failed.
        """
        source = category_source(source)
        if isinstance(source, ManualCategory):
            return source.value

        subject = build_subject(merchant, receipt_text or "")
        instructions = build_instructions(self.categories)
        try:
            answer = await asyncio.wait_for(
                self.predictor.predict(subject, instructions), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Category prediction timed out after %gs", self.timeout)
            raise StageTimeoutError("categorize", self.timeout)
        except PredictionError:
            raise
        except Exception as e:
            raise PredictionError(f"Predictor failed: {e}") from e

        category = normalize_category(answer, self.categories)
        if category != (answer or "").strip():
            logger.info("Predictor answer %r is not a known category; using %s",
                        answer, category)
        return category
