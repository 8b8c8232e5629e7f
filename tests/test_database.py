import datetime as dt
import sqlite3
from decimal import Decimal

import pytest

from receipt_ledger.core.database import ReceiptImageStore, SQLiteStore
from receipt_ledger.core.errors import StorageError, StorageFailure
from receipt_ledger.core.models import Expense

T0 = dt.datetime(2025, 5, 8, 12, 30, tzinfo=dt.timezone.utc)
EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)


def expense(expense_id=1, merchant="Trader Joe's", category="Groceries", amount="23.47",
            timestamp=T0, image_ref=None):
    return Expense(id=expense_id, merchant=merchant, category=category,
                   amount=Decimal(amount), timestamp=timestamp, receipt_image_ref=image_ref)


@pytest.fixture
def db(tmp_path):
    return SQLiteStore(tmp_path / "nested" / "expenses.sqlite")


class TestSQLiteStore:
    def test_save_and_load(self, db):
        first = expense(1, image_ref="/tmp/receipts/1.jpg")
        second = expense(2, merchant="Shell", category="Transportation", amount="40.00")
        db.save(second)
        db.save(first)
        assert db.load_all() == [first, second]

    def test_save_rejects_epoch_timestamp(self, db):
        with pytest.raises(StorageError) as excinfo:
            db.save(expense(timestamp=EPOCH))
        assert excinfo.value.reason == StorageFailure.INVALID_TIMESTAMP
        assert db.load_all() == []

    def test_save_duplicate_id_is_write_failure(self, db):
        db.save(expense(1))
        with pytest.raises(StorageError) as excinfo:
            db.save(expense(1, merchant="Other shop"))
        assert excinfo.value.reason == StorageFailure.WRITE_FAILURE

    def test_update(self, db):
        db.save(expense(1))
        db.update(expense(1, amount="25.00"))
        assert db.load_all()[0].amount == Decimal("25.00")

    def test_update_missing_is_not_found(self, db):
        with pytest.raises(StorageError) as excinfo:
            db.update(expense(99))
        assert excinfo.value.reason == StorageFailure.NOT_FOUND

    def test_delete(self, db):
        db.save(expense(1))
        db.delete(1)
        assert db.load_all() == []
        with pytest.raises(StorageError) as excinfo:
            db.delete(1)
        assert excinfo.value.reason == StorageFailure.NOT_FOUND

    def test_corrupt_timestamp_on_load(self, db):
        with sqlite3.connect(db.db_path.as_posix()) as conn:
            conn.execute("INSERT INTO expense (id, merchant, category, amount, timestamp) "
                         "VALUES (5, 'Bad', 'Other', 1.0, 0)")
        with pytest.raises(StorageError) as excinfo:
            db.load_all()
        assert excinfo.value.reason == StorageFailure.CORRUPT_ROW


class TestCsv:
    def test_export_then_import_into_empty_store(self, db, tmp_path):
        db.save(expense(1, image_ref="/tmp/receipts/1.jpg"))
        db.save(expense(2, merchant="Uber, Inc.", category="Transportation", amount="18.20"))
        other = SQLiteStore(tmp_path / "other.sqlite")
        assert other.import_csv(db.export_csv()) == 2
        assert other.load_all() == db.load_all()

    def test_round_trip_keeps_quotes_and_spacing(self, db, tmp_path):
        db.save(expense(1, merchant='"Bob" Deli', category=" Dining"))
        other = SQLiteStore(tmp_path / "other.sqlite")
        other.import_csv(db.export_csv())
        restored = other.load_all()[0]
        assert (restored.merchant, restored.category) == ('"Bob" Deli', " Dining")

    def test_export_has_header_and_columns(self, db):
        db.save(expense(1))
        lines = db.export_csv().decode("utf-8").splitlines()
        assert lines[0] == "id,merchant,category,amount,timestamp,receipt_image_ref"
        assert lines[1].startswith("1,Trader Joe's,Groceries,23.47,")

    def test_import_skips_malformed_rows(self, db):
        data = (
            "id,merchant,category,amount,timestamp,receipt_image_ref\n"
            "1,Costco,Groceries,88.10,1746707400.0,\n"
            "2,Short row,Other\n"
            "3,Bad amount,Other,abc,1746707400.0,\n"
            "4,Bad time,Other,1.00,yesterday,\n"
            "5,Zero time,Other,1.00,0,\n"
            "7,NaN time,Other,1.00,nan,\n"
            "8,Infinite time,Other,1.00,inf,\n"
            "9,Far future,Other,1.00,1e20,\n"
            "99999999999999999999,Huge id,Other,1.00,1746707400.0,\n"
            "10,NaN amount,Other,NaN,1746707400.0,\n"
            "6,Best Buy,Electronics,299.99,1746707500.0\n"
        ).encode("utf-8")
        assert db.import_csv(data) == 2
        assert [(e.id, e.merchant) for e in db.load_all()] == [(1, "Costco"), (6, "Best Buy")]

    def test_import_replaces_same_id(self, db):
        db.save(expense(1))
        db.import_csv(b"1,Trader Joe's,Groceries,30.00,1746707400.0,\n")
        assert [e.amount for e in db.load_all()] == [Decimal("30.00")]

    def test_import_undecodable_bytes(self, db):
        with pytest.raises(StorageError) as excinfo:
            db.import_csv(b"\xff\xfe\x00garbage")
        assert excinfo.value.reason == StorageFailure.PARSE_FAILURE

    def test_import_accepts_byte_order_mark(self, db):
        assert db.import_csv("\ufeff1,Costco,Groceries,88.10,1746707400.0,\n".encode("utf-8")) == 1


class TestReceiptImageStore:
    def test_put_uses_sniffed_suffix(self, tmp_path):
        images = ReceiptImageStore(tmp_path / "images")
        ref = images.put("42", b"\xff\xd8\xff\xe0jpeg bytes")
        assert ref.endswith("/42.jpg")
        assert open(ref, "rb").read() == b"\xff\xd8\xff\xe0jpeg bytes"

    def test_discard(self, tmp_path):
        images = ReceiptImageStore(tmp_path / "images")
        ref = images.put("42", b"\x89PNG data")
        images.discard(ref)
        images.discard(ref)
        assert not list(images.directory.iterdir())

    def test_discard_ignores_paths_outside_directory(self, tmp_path):
        outside = tmp_path / "keep.png"
        outside.write_bytes(b"\x89PNG data")
        ReceiptImageStore(tmp_path / "images").discard(outside.as_posix())
        assert outside.exists()
