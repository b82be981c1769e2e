"""
Main receipt processing orchestration.

One file flows through: QR attempt (images only) -> text extraction ->
parsing -> field fusion -> validation. Every outcome, including failures,
comes back as a ReceiptProcessingResult; nothing is raised to the caller.
"""

import dataclasses
import datetime as dt
import logging
from typing import Callable, List, Optional

from .categorization import categorize
from .config import Settings, load_settings
from .email_parser import extract_from_email
from .errors import ErrorCode, ExtractionError, ReceiptError
from .merchants import MerchantDirectory, load_merchants
from .models import (FileKind, FNSFragment, ParsedFields, ReceiptData,
                     ReceiptFile, ReceiptProcessingResult)
from .ocr import extract_text
from .parsers import parse_receipt_text
from .qr import parse_fiscal_payload, read_qr

logger = logging.getLogger(__name__)

# (percent 0-100, stage label)
StageCallback = Callable[[float, str], None]

# Which source wins for each fused field, highest priority first.
# Fields not listed come from the text parser alone.
FIELD_PRECEDENCE = {
    "date": ("qr", "text"),
    "amount": ("qr", "text"),
}

# Progress checkpoints
PROGRESS_START = 0
PROGRESS_QR_READ = 10
PROGRESS_QR_FOUND = 30
PROGRESS_TEXT = 20
PROGRESS_TEXT_AFTER_QR = 40
PROGRESS_PARSE = 75
PROGRESS_COMPOSE = 90
PROGRESS_DONE = 100
EMAIL_FILES_FOUND = 30


class _Progress:
    """Monotonic, exception-safe wrapper around a caller's callback."""

    def __init__(self, callback: Optional[StageCallback]):
        self._callback = callback
        self._last = 0.0

    def __call__(self, percent: float, stage: str):
        if self._callback is None:
            return
        percent = min(max(float(percent), self._last), 100.0)
        self._last = percent
        try:
            self._callback(percent, stage)
        except Exception:
            logger.warning("Progress callback raised at %.0f%% (%s); ignoring",
                           percent, stage, exc_info=True)


def _qr_value(fragment: Optional[FNSFragment], name: str):
    if fragment is None:
        return None
    if name == "date":
        return fragment.timestamp
    if name == "amount":
        return fragment.amount
    return None


def _usable(name: str, value) -> bool:
    if value is None:
        return False
    if name == "amount":
        return value > 0
    return True


def merge_fields(fragment: Optional[FNSFragment], parsed: ParsedFields) -> ParsedFields:
    """
    Fuse QR-derived and text-derived fields.

    For each field in FIELD_PRECEDENCE the first source with a usable value
    wins; a zero QR amount counts as absent. All other fields are copied
    from the parser output.
    """
    merged = {}
    for name, sources in FIELD_PRECEDENCE.items():
        for source in sources:
            value = _qr_value(fragment, name) if source == "qr" else getattr(parsed, name)
            if _usable(name, value):
                merged[name] = value
                break
        else:
            merged[name] = getattr(parsed, name)
    return dataclasses.replace(parsed, **merged)


def select_result(results: List[ReceiptProcessingResult]) -> Optional[ReceiptProcessingResult]:
    """First successful result, otherwise the first failure (None for an empty list)."""
    for result in results:
        if result.success:
            return result
    return results[0] if results else None


class ReceiptProcessor:
    """Runs receipt files through extraction, parsing and validation."""

    def __init__(self, merchants: Optional[MerchantDirectory] = None,
                 settings: Optional[Settings] = None,
                 text_extractor: Callable[..., str] = extract_text,
                 qr_reader: Callable[[bytes], Optional[str]] = read_qr,
                 email_extractor: Callable[[bytes], List[ReceiptFile]] = extract_from_email):
        """
        Initialize receipt processor.

        Args:
            merchants: Merchant table (loaded from settings when omitted)
            settings: Runtime settings (resolved from the environment when omitted)
            text_extractor: Text extraction engine; called as
                ``text_extractor(file, on_progress, lang=..., tesseract_cmd=...)``
            qr_reader: Returns the QR payload found in image bytes, or None
            email_extractor: Turns .eml bytes into candidate receipt files
        """
        self.settings = settings or load_settings()
        self.merchants = merchants or load_merchants(self.settings.merchants_path)
        self.text_extractor = text_extractor
        self.qr_reader = qr_reader
        self.email_extractor = email_extractor

    def _read_qr(self, file: ReceiptFile) -> Optional[str]:
        try:
            return self.qr_reader(file.data)
        except Exception as e:
            logger.debug("QR reader failed on %s: %s", file.file_name, e)
            return None

    def _receipt_text(self, merged: ParsedFields) -> str:
        parts = [merged.description or ""]
        parts.extend(item.name for item in merged.items)
        return " ".join(p for p in parts if p)

    def _process(self, file: ReceiptFile, progress: _Progress) -> ReceiptProcessingResult:
        progress(PROGRESS_START, "Starting")

        if file.kind is FileKind.EMAIL:
            return ReceiptProcessingResult.failure(
                ErrorCode.UNSUPPORTED_FORMAT,
                f"{file.file_name} is an email container; use process_email_container",
            )

        qr_payload = None
        fragment = None
        if file.kind is FileKind.IMAGE:
            progress(PROGRESS_QR_READ, "Reading QR code")
            qr_payload = self._read_qr(file)
            fragment = parse_fiscal_payload(qr_payload)
            if fragment is not None:
                logger.debug("Fiscal QR found in %s", file.file_name)
                progress(PROGRESS_QR_FOUND, "QR code found")

        base = PROGRESS_TEXT_AFTER_QR if fragment is not None else PROGRESS_TEXT
        progress(base, "Extracting text")

        def on_extract(fraction: float):
            progress(base + fraction * (PROGRESS_PARSE - base), "Recognising text")

        try:
            text = self.text_extractor(file, on_extract,
                                       lang=self.settings.ocr_lang,
                                       tesseract_cmd=self.settings.tesseract_cmd)
        except ExtractionError as e:
            logger.info("Text extraction failed for %s: %s", file.file_name, e)
            return ReceiptProcessingResult.failure(
                ErrorCode.EXTRACTION_FAILURE, str(e), qr_payload=qr_payload)

        progress(PROGRESS_PARSE, "Parsing")
        logger.debug("Extracted text from %s:\n%s", file.file_name, text)
        parsed = parse_receipt_text(text, self.merchants, self.settings.locale)
        merged = merge_fields(fragment, parsed)

        progress(PROGRESS_COMPOSE, "Composing result")
        if merged.amount is None or merged.amount <= 0:
            return ReceiptProcessingResult.failure(
                ErrorCode.NO_AMOUNT_FOUND,
                f"Could not determine the receipt total for {file.file_name}",
                raw_text=text, qr_payload=qr_payload,
            )

        category, matcher = categorize(merged.merchant, self._receipt_text(merged), self.merchants)
        if category:
            logger.debug("Suggested category %s (%s)", category, matcher)

        data = ReceiptData(
            date=merged.date or dt.datetime.now(),
            amount=merged.amount,
            description=merged.description,
            merchant=merged.merchant,
            payment_method=merged.payment_method,
            items=list(merged.items),
            suggested_category=category,
        )
        progress(PROGRESS_DONE, "Done")
        return ReceiptProcessingResult.ok(data, raw_text=text, qr_payload=qr_payload)

    def process_receipt(self, file: ReceiptFile,
                        on_progress: Optional[StageCallback] = None) -> ReceiptProcessingResult:
        """
        Process a single receipt file.

        Args:
            file: Classified receipt file (image, pdf or text)
            on_progress: Called with (percent, stage label); never aborts the run

        Returns:
            ReceiptProcessingResult carrying either data or an error code
        """
        progress = _Progress(on_progress)
        try:
            return self._process(file, progress)
        except ReceiptError as e:
            return ReceiptProcessingResult.failure(e.code, str(e))
        except Exception as e:
            logger.exception("Unexpected error while processing %s", file.file_name)
            return ReceiptProcessingResult.failure(ErrorCode.UNEXPECTED, f"Unexpected error: {e}")

    def process_email_container(self, data: bytes,
                                on_progress: Optional[StageCallback] = None) -> List[ReceiptProcessingResult]:
        """
        Process every receipt found in an email (.eml bytes).

        Returns one result per candidate file, in order. An email without
        receipt attachments or a receipt-like body yields a single
        ``no_receipts_in_email`` failure.
        """
        progress = _Progress(on_progress)
        progress(PROGRESS_START, "Reading email")
        try:
            files = self.email_extractor(data)
        except Exception as e:
            logger.exception("Could not read email container")
            return [ReceiptProcessingResult.failure(ErrorCode.UNEXPECTED, f"Unexpected error: {e}")]

        if not files:
            return [ReceiptProcessingResult.failure(
                ErrorCode.NO_RECEIPTS_IN_EMAIL,
                "No receipt attachments (PDF, image or text) or receipt text found in the email",
            )]

        total = len(files)
        progress(EMAIL_FILES_FOUND, f"Found {total} receipt(s)")
        span = (PROGRESS_DONE - EMAIL_FILES_FOUND) / total

        results = []
        for index, file in enumerate(files):
            base = EMAIL_FILES_FOUND + index * span
            progress(base, f"Processing receipt {index + 1} of {total}")

            def on_file_progress(percent: float, stage: str, base: float = base):
                progress(base + percent / 100.0 * span, stage)

            results.append(self.process_receipt(file, on_file_progress))

        progress(PROGRESS_DONE, "Done")
        return results


_default_processor: Optional[ReceiptProcessor] = None


def get_default_processor() -> ReceiptProcessor:
    """Shared processor built from environment settings on first use."""
    global _default_processor
    if _default_processor is None:
        _default_processor = ReceiptProcessor()
    return _default_processor


def process_receipt(file: ReceiptFile,
                    on_progress: Optional[StageCallback] = None) -> ReceiptProcessingResult:
    """Process one receipt file with the default processor."""
    return get_default_processor().process_receipt(file, on_progress)


def process_email_container(data: bytes,
                            on_progress: Optional[StageCallback] = None) -> List[ReceiptProcessingResult]:
    """Process an .eml container with the default processor."""
    return get_default_processor().process_email_container(data, on_progress)
