"""
Pipeline configuration, resolved from defaults, environment and CLI flags.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .llm import LLMProvider

OCR_TIMEOUT = 10.0
PREDICTION_TIMEOUT = 15.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class PipelineConfig:
    ocr_timeout: float = OCR_TIMEOUT
    prediction_timeout: float = PREDICTION_TIMEOUT
    llm_provider: str = LLMProvider.OPENAI.value
    llm_model: Optional[str] = None
    use_llm: bool = True
    db_path: Path = Path("./expenses.sqlite")
    image_dir: Path = Path("./receipt_images")
    rules_path: Path = Path("./rules.json")
    ocr_lang: str = "eng"

    def __post_init__(self):
        valid = [p.value for p in LLMProvider]
        if self.llm_provider not in valid:
            raise ValueError(f"Invalid LLM provider: {self.llm_provider}. "
                             f"Must be one of: {', '.join(valid)}")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Resolve settings from LLM_PROVIDER, LLM_MODEL and RECEIPT_LEDGER_* variables."""
        defaults = cls()
        return cls(
            ocr_timeout=_env_float("RECEIPT_LEDGER_OCR_TIMEOUT", OCR_TIMEOUT),
            prediction_timeout=_env_float("RECEIPT_LEDGER_PREDICTION_TIMEOUT", PREDICTION_TIMEOUT),
            llm_provider=os.getenv("LLM_PROVIDER", defaults.llm_provider),
            llm_model=os.getenv("LLM_MODEL") or None,
            db_path=Path(os.getenv("RECEIPT_LEDGER_DB", defaults.db_path)),
            image_dir=Path(os.getenv("RECEIPT_LEDGER_IMAGES", defaults.image_dir)),
            rules_path=Path(os.getenv("RECEIPT_LEDGER_RULES", defaults.rules_path)),
            ocr_lang=os.getenv("RECEIPT_LEDGER_OCR_LANG", defaults.ocr_lang),
        )

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
