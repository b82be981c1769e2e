#!/usr/bin/env python3
"""
Main CLI entrypoint for receipt extraction.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from receipt_extraction.core.config import SUPPORTED_LOCALES, load_settings
from receipt_extraction.core.errors import ErrorCode
from receipt_extraction.core.merchants import load_merchants
from receipt_extraction.core.models import FileKind, ReceiptFile, ReceiptProcessingResult
from receipt_extraction.core.processor import ReceiptProcessor
from receipt_extraction.core.utils import money_fmt


def _print_progress(percent: float, stage: str):
    print(f"[INFO] {percent:5.1f}% {stage}", file=sys.stderr)


def process_path(processor: ReceiptProcessor, path: Path,
                 show_progress: bool = False) -> List[ReceiptProcessingResult]:
    """Process one file from disk; email containers may yield several results."""
    on_progress = _print_progress if show_progress else None
    try:
        receipt = ReceiptFile.from_path(path)
    except OSError as e:
        return [ReceiptProcessingResult.failure(ErrorCode.UNEXPECTED, f"Cannot read {path}: {e}")]

    if receipt.kind is FileKind.EMAIL:
        return processor.process_email_container(receipt.data, on_progress)
    return [processor.process_receipt(receipt, on_progress)]


def main(argv=None):
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Extract date, total, merchant and line items from receipt files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Photo of a receipt
  receipt-extract receipt.jpg

  # Several files at once, English descriptions
  receipt-extract scan.pdf order.eml --locale en

  # Custom merchant table
  receipt-extract receipt.png --merchants ./merchants.json
        """
    )
    parser.add_argument("files", nargs="+", type=Path,
                       help="Receipt files: images, PDFs, .txt or .eml")
    parser.add_argument("--lang",
                       help="Tesseract language spec (default: rus+eng, or RECEIPT_OCR_LANG env var)")
    parser.add_argument("--locale", choices=SUPPORTED_LOCALES,
                       help="Language of generated descriptions (default: ru, or RECEIPT_DESCRIPTION_LOCALE env var)")
    parser.add_argument("--merchants", type=Path,
                       help="Merchant table JSON (default: bundled table, or RECEIPT_MERCHANTS_PATH env var)")
    parser.add_argument("--verbose", "-v", action="store_true",
                       help="Show detailed parsing information and progress")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        settings = load_settings(ocr_lang=args.lang, locale=args.locale,
                                 merchants_path=args.merchants)
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    try:
        merchants = load_merchants(settings.merchants_path)
    except (OSError, ValueError) as e:
        print(f"[ERROR] Cannot load merchant table: {e}", file=sys.stderr)
        return 2
    if settings.merchants_path:
        print(f"[INFO] Using {len(merchants.records)} merchant(s) from {settings.merchants_path}",
              file=sys.stderr)

    processor = ReceiptProcessor(merchants=merchants, settings=settings)

    output = []
    all_ok = True
    for path in args.files:
        print(f"[INFO] Processing {path.name}", file=sys.stderr)
        results = process_path(processor, path, show_progress=args.verbose)
        for result in results:
            if result.success:
                print(f"[OK] {path.name}: {money_fmt(result.data.amount)}", file=sys.stderr)
            else:
                all_ok = False
                print(f"[WARN] {path.name}: {result.error}", file=sys.stderr)
        output.append({"file": str(path), "results": [r.to_dict() for r in results]})

    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0 if all_ok else 1


if __name__ == "__main__":
    sys.exit(main())
