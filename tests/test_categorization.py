import asyncio
import json

import pytest

from receipt_ledger.core.categorization import (CategoryResolver, RulePredictor, build_subject,
                                                categorize, load_rules, normalize_category,
                                                parse_subject)
from receipt_ledger.core.errors import PredictionError, StageTimeoutError
from receipt_ledger.core.models import ManualCategory, PredictedCategory

from fakes import FakePredictor, GatedPredictor


def resolve(resolver, source, text="TOTAL $3.00", merchant="Starbucks"):
    return asyncio.run(resolver.resolve(source, text, merchant))


class TestCategoryResolver:
    def test_manual_category_is_trusted_verbatim(self):
        predictor = FakePredictor()
        resolver = CategoryResolver(predictor)
        assert resolve(resolver, "Office Supplies") == "Office Supplies"
        assert resolve(resolver, ManualCategory("Gifts")) == "Gifts"
        assert predictor.calls == []

    @pytest.mark.parametrize("source", [None, "", "   ", PredictedCategory()])
    def test_blank_manual_category_asks_predictor(self, source):
        predictor = FakePredictor(answer="Groceries")
        assert resolve(CategoryResolver(predictor), source) == "Groceries"
        assert len(predictor.calls) == 1

    def test_answer_is_trimmed(self):
        assert resolve(CategoryResolver(FakePredictor(answer="  Dining\n")), None) == "Dining"

    @pytest.mark.parametrize("answer", ["dining", "Food", "The category is Dining.", ""])
    def test_unknown_answer_falls_back_to_other(self, answer):
        assert resolve(CategoryResolver(FakePredictor(answer=answer)), None) == "Other"

    def test_prompt_embeds_categories_merchant_and_text(self):
        predictor = FakePredictor()
        resolve(CategoryResolver(predictor), None, text="LATTE 4.75", merchant="Blue Bottle")
        subject, instructions = predictor.calls[0]
        assert "Blue Bottle" in subject
        assert "LATTE 4.75" in subject
        for category in ("Dining", "Transportation", "Entertainment", "Groceries", "Electronics", "Other"):
            assert category in instructions

    def test_timeout(self):
        resolver = CategoryResolver(GatedPredictor(), timeout=0.05)
        with pytest.raises(StageTimeoutError) as excinfo:
            resolve(resolver, None)
        assert isinstance(excinfo.value, TimeoutError)
        assert excinfo.value.stage == "categorize"

    def test_prediction_error_is_surfaced(self):
        resolver = CategoryResolver(FakePredictor(error=PredictionError("model offline")))
        with pytest.raises(PredictionError, match="model offline"):
            resolve(resolver, None)

    def test_unexpected_predictor_error_is_wrapped(self):
        resolver = CategoryResolver(FakePredictor(error=ConnectionError("reset")))
        with pytest.raises(PredictionError, match="reset"):
            resolve(resolver, None)


class TestRules:
    def test_default_rules_mirror_mock_model(self):
        predictor = RulePredictor()
        answer = lambda merchant: asyncio.run(predictor.predict(build_subject(merchant, ""), ""))
        assert answer("Starbucks Store 4521") == "Dining"
        assert answer("Walmart Supercenter") == "Groceries"
        assert answer("Netflix") == "Entertainment"
        assert answer("Hardware Barn") == "Other"

    def test_categorize_any_and_all(self):
        rules = {"matchers": [
            {"name": "Airport ride", "all": [{"vendor_re": "UBER"}, {"text_re": "AIRPORT"}],
             "category": "Transportation"},
            {"name": "Text only", "any": [{"text_re": "HDMI"}], "category": "Electronics"},
        ]}
        assert categorize("Uber", "trip to AIRPORT", rules) == ("Transportation", "Airport ride")
        assert categorize("Uber", "trip downtown", rules) == ("Other", None)
        assert categorize("Corner", "HDMI cable 9.99", rules) == ("Electronics", "Text only")

    def test_load_rules_from_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"matchers": [{"any": [{"vendor_re": "ACME"}], "category": "Electronics"}]}))
        assert categorize("Acme", "", load_rules(path)) == ("Electronics", None)

    def test_load_rules_missing_file_uses_defaults(self, tmp_path):
        assert load_rules(tmp_path / "missing.json")["matchers"]

    def test_subject_round_trip(self):
        assert parse_subject(build_subject("Acme", "line one\nline two")) == ("Acme", "line one\nline two")

    def test_normalize_category(self):
        assert normalize_category(" Electronics ") == "Electronics"
        assert normalize_category(None) == "Other"
