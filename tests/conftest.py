import pytest

from receipt_ledger.core.config import PipelineConfig
from receipt_ledger.core.database import ReceiptImageStore
from receipt_ledger.core.ledger import Ledger
from receipt_ledger.core.processor import ReceiptProcessor

from fakes import FakeClock, FakeExtractor, FakePredictor, RecordingStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return RecordingStore(tmp_path / "expenses.sqlite")


@pytest.fixture
def image_store(tmp_path):
    return ReceiptImageStore(tmp_path / "images")


@pytest.fixture
def make_processor(store, clock, image_store):
    def _make(extractor=None, predictor=None, store_=None, **config):
        return ReceiptProcessor(
            text_extractor=extractor or FakeExtractor(),
            predictor=predictor or FakePredictor(),
            store=store_ or store,
            ledger=Ledger(),
            config=PipelineConfig(**config),
            clock=clock,
            image_store=image_store,
        )
    return _make
