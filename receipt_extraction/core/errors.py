"""
Exception types and failure codes for receipt processing.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable reason attached to a failed processing result."""
    UNSUPPORTED_FORMAT = "unsupported_format"
    EXTRACTION_FAILURE = "extraction_failure"
    NO_AMOUNT_FOUND = "no_amount_found"
    NO_RECEIPTS_IN_EMAIL = "no_receipts_in_email"
    UNEXPECTED = "unexpected"


class ReceiptError(Exception):
    """Base class for errors raised inside the pipeline."""
    code = ErrorCode.UNEXPECTED


class ExtractionError(ReceiptError):
    """The OCR or PDF engine could not produce text from the file."""
    code = ErrorCode.EXTRACTION_FAILURE


class UnsupportedFormatError(ReceiptError):
    """The file kind cannot be handled by the requested operation."""
    code = ErrorCode.UNSUPPORTED_FORMAT
