#!/usr/bin/env python3
"""
Main CLI entrypoint for the receipt ledger.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from receipt_ledger.core.categorization import RulePredictor, load_rules
from receipt_ledger.core.config import PipelineConfig
from receipt_ledger.core.database import ReceiptImageStore, SQLiteStore
from receipt_ledger.core.errors import ReceiptLedgerError
from receipt_ledger.core.llm import LLMPredictor, LLMProvider
from receipt_ledger.core.logging import configure_logging, get_logger
from receipt_ledger.core.ocr import TesseractTextExtractor
from receipt_ledger.core.processor import ReceiptProcessor
from receipt_ledger.core.reporting import build_summary_pdf, category_totals
from receipt_ledger.core.utils import money_fmt

logger = get_logger("receipt_ledger.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="receipt-ledger",
        description="Turn receipt photos into categorized expense records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # OCR a receipt, let the LLM pick the category
  receipt-ledger scan ./receipt.jpg

  # Override what OCR found
  receipt-ledger scan ./receipt.jpg --merchant "Blue Bottle" --amount 6.50 --category Dining

  # Offline categorization with rules.json
  receipt-ledger --no-llm scan ./receipt.jpg

  # Back up and restore
  receipt-ledger export expenses.csv
  receipt-ledger import expenses.csv
        """
    )
    parser.add_argument("--db", help="SQLite database (default: ./expenses.sqlite, or RECEIPT_LEDGER_DB env var)")
    parser.add_argument("--images", help="Folder for receipt images (default: ./receipt_images)")
    parser.add_argument("--rules", help="rules.json for offline categorization (default: ./rules.json)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show detailed parsing information for debugging")

    # LLM configuration
    parser.add_argument("--llm-provider", choices=[p.value for p in LLMProvider],
                        help="LLM provider to use (default: openai, or LLM_PROVIDER env var)")
    parser.add_argument("--llm-model",
                        help="LLM model to use (uses provider default if not specified, or LLM_MODEL env var)")
    parser.add_argument("--no-llm", action="store_true",
                        help="Disable the LLM, categorize with rules.json matchers only")

    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="OCR a receipt image and save it as an expense")
    scan.add_argument("image", help="Receipt image (png/jpg/tiff) or PDF scan")
    scan.add_argument("--merchant", help="Use this merchant instead of the OCR guess")
    scan.add_argument("--amount", help="Use this amount instead of the OCR guess")
    scan.add_argument("--category", help="Use this category instead of predicting one")

    add = sub.add_parser("add", help="Add an expense by hand")
    add.add_argument("merchant")
    add.add_argument("amount")
    add.add_argument("--category", help="Use this category instead of predicting one")

    sub.add_parser("list", help="List expenses, newest first")

    delete = sub.add_parser("delete", help="Delete an expense")
    delete.add_argument("id", type=int)

    export = sub.add_parser("export", help="Export expenses to CSV")
    export.add_argument("out", help="Output CSV path")

    imp = sub.add_parser("import", help="Import expenses from CSV")
    imp.add_argument("src", help="CSV file produced by export")

    summary = sub.add_parser("summary", help="Totals per category")
    summary.add_argument("--pdf", help="Also write a PDF summary to this path")

    return parser


def build_processor(config: PipelineConfig) -> ReceiptProcessor:
    """Wire the pipeline's collaborators from configuration."""
    if config.use_llm:
        predictor = LLMPredictor(config.llm_provider, config.llm_model)
    else:
        predictor = RulePredictor(load_rules(config.rules_path))
    return ReceiptProcessor(
        text_extractor=TesseractTextExtractor(lang=config.ocr_lang),
        predictor=predictor,
        store=SQLiteStore(config.db_path),
        config=config,
        image_store=ReceiptImageStore(config.image_dir),
    )


def _print_expense(expense):
    print(f"{expense.id}  {expense.timestamp:%Y-%m-%d %H:%M}  {expense.merchant[:28]:<28}  "
          f"{expense.category:<14}  {money_fmt(expense.amount):>10}")


def run(args, processor: ReceiptProcessor) -> int:
    processor.load()
    if args.command == "scan":
        image = Path(args.image).read_bytes()
        expense = asyncio.run(processor.process_receipt(
            image, category=args.category, merchant=args.merchant, amount=args.amount
        ))
        if expense is None:
            logger.warning("Receipt processing was cancelled")
            return 1
        _print_expense(expense)
    elif args.command == "add":
        expense = asyncio.run(processor.add_manual(args.merchant, args.amount, args.category))
        if expense is None:
            return 1
        _print_expense(expense)
    elif args.command == "list":
        for expense in processor.ledger.expenses():
            _print_expense(expense)
    elif args.command == "delete":
        if not processor.delete(args.id):
            logger.info("No expense with id %s (already deleted?)", args.id)
    elif args.command == "export":
        out = Path(args.out)
        out.write_bytes(processor.export_csv())
        print(f"[OK] Wrote {out}")
    elif args.command == "import":
        count = processor.import_csv(Path(args.src).read_bytes())
        print(f"[OK] Imported {count} expense(s)")
    elif args.command == "summary":
        expenses = list(processor.ledger.expenses())
        for category, total in category_totals(expenses):
            print(f"{category:<14} {money_fmt(total):>10}")
        if args.pdf:
            build_summary_pdf(expenses, Path(args.pdf))
            print(f"[OK] Wrote {args.pdf}")
    return 0


def main(argv=None):
    """Main CLI entrypoint."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = PipelineConfig.from_env().with_overrides(
            llm_provider=args.llm_provider,
            llm_model=args.llm_model,
            db_path=Path(args.db) if args.db else None,
            image_dir=Path(args.images) if args.images else None,
            rules_path=Path(args.rules) if args.rules else None,
        )
    except ValueError as e:
        logger.error("%s", e)
        return 1
    if args.no_llm:
        config = config.with_overrides(use_llm=False)
    else:
        logger.debug("LLM: %s (%s)", config.llm_provider, config.llm_model or "default")

    try:
        return run(args, build_processor(config))
    except (ReceiptLedgerError, OSError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
