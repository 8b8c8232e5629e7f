import datetime as dt
from decimal import Decimal

import pytest

from receipt_ledger.core.errors import InvalidInput
from receipt_ledger.core.models import (Expense, ManualCategory, PredictedCategory, SessionStage,
                                        category_source)
from receipt_ledger.core.utils import MillisecondIds

T0 = dt.datetime(2025, 5, 8, tzinfo=dt.timezone.utc)


def test_expense_amount_is_decimal():
    assert Expense(1, "Shop", "Other", "4.10", T0).amount == Decimal("4.10")


def test_expense_equality_is_structural():
    assert Expense(1, "Shop", "Other", Decimal("4.10"), T0) == Expense(1, "Shop", "Other", Decimal("4.1"), T0)
    assert Expense(1, "Shop", "Other", Decimal("4.10"), T0) != Expense(1, "Shop", "Dining", Decimal("4.10"), T0)


@pytest.mark.parametrize("amount", ["-1.00", "four", "NaN", "Infinity"])
def test_expense_rejects_bad_amounts(amount):
    with pytest.raises(InvalidInput):
        Expense(1, "Shop", "Other", amount, T0)


@pytest.mark.parametrize("manual, expected", [
    ("Dining", ManualCategory("Dining")),
    ("  ", PredictedCategory()),
    (None, PredictedCategory()),
    (ManualCategory("Travel"), ManualCategory("Travel")),
])
def test_category_source(manual, expected):
    assert category_source(manual) == expected


def test_terminal_stages():
    terminal = {s for s in SessionStage if s.is_terminal}
    assert terminal == {SessionStage.PERSISTED, SessionStage.FAILED, SessionStage.CANCELLED}


def test_millisecond_ids_never_repeat():
    ids = MillisecondIds(clock=lambda: T0)
    first, second = ids(), ids()
    assert first == int(T0.timestamp() * 1000)
    assert second == first + 1


def test_millisecond_ids_skip_past_observed_ids():
    ids = MillisecondIds(clock=lambda: T0)
    ids.observe(int(T0.timestamp() * 1000) + 5)
    assert ids() == int(T0.timestamp() * 1000) + 6
