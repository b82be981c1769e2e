"""
Receipt Extraction

Turns receipt photos, PDFs, plain-text receipts and receipt emails into
structured data: date, total, merchant, payment method, line items and a
short description.
"""

__version__ = "1.0.0"
__author__ = "Receipt Extraction Contributors"

from receipt_extraction.core.classifier import classify, create_receipt_file
from receipt_extraction.core.errors import ErrorCode, ExtractionError, ReceiptError, UnsupportedFormatError
from receipt_extraction.core.merchants import load_merchants, normalize_merchant_name, suggest_category_for
from receipt_extraction.core.models import (FileKind, LineItem, ReceiptData, ReceiptFile,
                                            ReceiptProcessingResult)
from receipt_extraction.core.processor import (ReceiptProcessor, process_email_container,
                                               process_receipt, select_result)

__all__ = [
    "classify",
    "create_receipt_file",
    "process_receipt",
    "process_email_container",
    "select_result",
    "normalize_merchant_name",
    "suggest_category_for",
    "load_merchants",
    "ReceiptProcessor",
    "ReceiptFile",
    "ReceiptData",
    "ReceiptProcessingResult",
    "LineItem",
    "FileKind",
    "ErrorCode",
    "ReceiptError",
    "ExtractionError",
    "UnsupportedFormatError",
]
