"""
Utility functions and constants for receipt processing.
"""

import math
import re
from typing import Optional

# File type constants
IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".webp", ".gif"}
PDF_EXTS = {".pdf"}
EMAIL_EXTS = {".eml"}
TEXT_EXTS = {".txt"}

# Media types that carry no information about the payload
GENERIC_MEDIA_TYPES = {
    "",
    "application/octet-stream",
    "binary/octet-stream",
    "application/unknown",
    "application/x-download",
}

# Decimal amount with comma or dot separator, e.g. 900.00 or 1500,75
AMOUNT_RE = r"\d+[.,]\d{2}"
# Same, allowing space-grouped thousands (1 234.56); only safe after a label
LABELED_AMOUNT_RE = r"\d{1,3}(?:[ \u00a0]\d{3})+[.,]\d{2}|\d+[.,]\d{2}"


def normalize_newlines(text: str) -> str:
    """Unify CRLF and CR line breaks to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def normalize_amount(s: str) -> Optional[float]:
    """Normalize amount string to float."""
    if not s:
        return None
    s = re.sub(r"\s", "", s).replace(",", ".")
    try:
        value = float(s)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def money_fmt(v: Optional[float]) -> str:
    """Format amount for console output."""
    return f"{v:,.2f}" if v is not None else ""
