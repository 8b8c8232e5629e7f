from decimal import Decimal

import pytest

from receipt_ledger.core.errors import InvalidInput
from receipt_ledger.core.models import SessionStage
from receipt_ledger.core.session import ProcessingSession


def test_happy_path_transitions():
    session = ProcessingSession(1)
    for stage in (SessionStage.EXTRACTING, SessionStage.FIELDS_READY,
                  SessionStage.CATEGORIZING, SessionStage.PERSISTED):
        session.transition(stage)
    assert session.is_terminal


@pytest.mark.parametrize("path", [
    [SessionStage.PERSISTED],
    [SessionStage.EXTRACTING, SessionStage.CATEGORIZING],
    [SessionStage.FIELDS_READY, SessionStage.FAILED],
    [SessionStage.CANCELLED, SessionStage.EXTRACTING],
])
def test_illegal_transitions(path):
    session = ProcessingSession(1)
    with pytest.raises(RuntimeError):
        for stage in path:
            session.transition(stage)


def test_cancel_sets_token_and_is_idempotent():
    session = ProcessingSession(1)
    assert session.cancel() is True
    assert session.cancelled
    assert session.cancel() is False
    assert session.stage == SessionStage.CANCELLED


def test_cancel_after_persisted_keeps_stage():
    session = ProcessingSession(1)
    session.transition(SessionStage.FIELDS_READY)
    session.transition(SessionStage.CATEGORIZING)
    session.transition(SessionStage.PERSISTED)
    assert session.cancel() is False
    assert session.stage == SessionStage.PERSISTED


def test_edit_only_when_fields_ready():
    session = ProcessingSession(1)
    with pytest.raises(RuntimeError):
        session.edit(merchant="Shop")
    session.transition(SessionStage.FIELDS_READY)
    session.edit(merchant="  Shop ", amount="$12.50")
    assert (session.merchant, session.amount) == ("Shop", Decimal("12.50"))


def test_edit_rejects_non_numeric_amount():
    session = ProcessingSession(1)
    session.transition(SessionStage.FIELDS_READY)
    with pytest.raises(InvalidInput):
        session.edit(amount="twelve")
