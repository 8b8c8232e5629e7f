"""
Parsers for extracting information from receipt text.

Every function here is pure and total: noisy or empty OCR output yields ""
or Decimal("0") rather than an exception.
"""

import re
from decimal import Decimal
from typing import Callable, List, NamedTuple, Optional

from .models import LineItem, ReceiptFields
from .utils import (CURRENCY_MARKERS, MERCHANT_KEYWORDS, MERCHANT_SKIP_TOKENS,
                    MONEY_PATTERN, SAME_LINE_TOTAL_PATTERN, TOTAL_KEYWORD_PATTERN,
                    normalize_amount)

ZERO = Decimal("0")


class LineRule(NamedTuple):
    """A named predicate over a single receipt line."""
    name: str
    matches: Callable[[str], bool]


class AmountRule(NamedTuple):
    """A named amount extractor; returns None when it cannot decide."""
    name: str
    extract: Callable[[List[str]], Optional[Decimal]]


def _tokens(line: str) -> List[str]:
    return re.findall(r"[a-z]+", line.lower())


def _money_values(line: str) -> List[Decimal]:
    values = []
    for m in re.finditer(MONEY_PATTERN, line):
        val = normalize_amount(m.group(1))
        if val is not None:
            values.append(val)
    return values


# Merchant heuristics

def _has_currency_marker(line: str) -> bool:
    lower = line.lower()
    symbols = [c for c in CURRENCY_MARKERS if not c.isalpha()]
    codes = {c for c in CURRENCY_MARKERS if c.isalpha()}
    return any(s in lower for s in symbols) or bool(codes.intersection(_tokens(line)))


MERCHANT_SKIP_RULES = (
    LineRule("blank", lambda ln: not ln.strip()),
    LineRule("currency", _has_currency_marker),
    LineRule("payment_token", lambda ln: bool(MERCHANT_SKIP_TOKENS.intersection(_tokens(ln)))),
)

MERCHANT_QUALIFY_RULES = (
    LineRule("merchant_keyword", lambda ln: any(t in MERCHANT_KEYWORDS for t in _tokens(ln))),
    LineRule("long_enough", lambda ln: len(ln.strip()) > 3),
)


def clean_merchant(line: str) -> str:
    """Keep alphanumerics and spaces, collapse whitespace, title-case."""
    kept = "".join(c for c in line if c.isalnum() or c.isspace())
    return " ".join(kept.split()).title()


def extract_merchant(text: str) -> str:
    """Return the first qualifying line, cleaned; "" if none qualifies."""
    for ln in (text or "").splitlines():
        if any(rule.matches(ln) for rule in MERCHANT_SKIP_RULES):
            continue
        if not any(rule.matches(ln) for rule in MERCHANT_QUALIFY_RULES):
            continue
        merchant = clean_merchant(ln)
        if merchant:
            return merchant
    return ""


# Amount heuristics, in priority order

def _same_line_total(lines: List[str]) -> Optional[Decimal]:
    for ln in lines:
        m = re.search(SAME_LINE_TOTAL_PATTERN, ln, flags=re.IGNORECASE)
        if m:
            return normalize_amount(m.group(1))
    return None


def _after_last_total_keyword(lines: List[str]) -> Optional[Decimal]:
    keyword_lines = [idx for idx, ln in enumerate(lines)
                     if re.search(TOTAL_KEYWORD_PATTERN, ln, flags=re.IGNORECASE)]
    if not keyword_lines:
        return None
    # Pre-discount totals tend to appear before the keyword; tips and grand
    # totals after it.
    candidates = [v for ln in lines[keyword_lines[-1]:] for v in _money_values(ln)]
    return max(candidates) if candidates else None


def _largest_anywhere(lines: List[str]) -> Optional[Decimal]:
    candidates = [v for ln in lines for v in _money_values(ln)]
    return max(candidates) if candidates else None


AMOUNT_RULES = (
    AmountRule("same_line_total", _same_line_total),
    AmountRule("after_last_total_keyword", _after_last_total_keyword),
    AmountRule("largest_anywhere", _largest_anywhere),
)


def extract_amount_with_rule(text: str):
    """Return (amount, rule name) for the first rule that decides, else (0, None)."""
    lines = (text or "").splitlines()
    for rule in AMOUNT_RULES:
        value = rule.extract(lines)
        if value is not None:
            return value, rule.name
    return ZERO, None


def extract_amount(text: str) -> Decimal:
    """Extract the receipt total; Decimal("0") when no monetary value is present."""
    return extract_amount_with_rule(text)[0]


def extract_items(text: str) -> List[LineItem]:
    """Pair every priced line with the text left once the price is removed."""
    items = []
    for line in (text or "").splitlines():
        trimmed = line.strip()
        if "$" not in trimmed and "." not in trimmed:
            continue
        m = re.search(r"\$?(\d+\.\d{2})", trimmed)
        if not m:
            continue
        name = re.sub(r"\s*\$?" + re.escape(m.group(1)) + r"\s*", " ", trimmed, count=1).strip()
        if name:
            items.append(LineItem(name=name, price=Decimal(m.group(1))))
    return items


def extract_fields(text: str) -> ReceiptFields:
    """Run every extractor over one receipt's OCR text."""
    text = text or ""
    return ReceiptFields(
        text=text,
        merchant=extract_merchant(text),
        amount=extract_amount(text),
        items=extract_items(text),
    )
