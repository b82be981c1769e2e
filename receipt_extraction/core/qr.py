"""
QR code reading and fiscal payload parsing.

Russian fiscal receipts carry a QR code with a payload such as
``t=20240315T1430&s=900.00&fn=9960440300000000&i=12345&fp=1234567890&n=1``.
Reading the code is a best-effort enrichment: any failure yields None.
"""

import datetime as dt
import io
import logging
from typing import Optional, Dict
from urllib.parse import unquote_plus

from .models import FNSFragment
from .utils import normalize_amount

logger = logging.getLogger(__name__)

# Heavy deps imported on first use
cv2 = None
np = None
PIL_Image = None


def _lazy_import_qr_deps():
    """Lazy import OpenCV, numpy and Pillow."""
    global cv2, np, PIL_Image
    import importlib
    if cv2 is None:
        cv2 = importlib.import_module("cv2")
    if np is None:
        np = importlib.import_module("numpy")
    if PIL_Image is None:
        PIL_Image = importlib.import_module("PIL.Image")


def read_qr(image_bytes: bytes) -> Optional[str]:
    """
    Decode a QR code from raw image bytes.

    Returns:
        The decoded payload, or None when no code is found or decoding fails.
    """
    if not image_bytes:
        return None
    try:
        _lazy_import_qr_deps()
        img = PIL_Image.open(io.BytesIO(image_bytes))
        img = img.convert("RGB")
        pixels = cv2.cvtColor(np.array(img), cv2.COLOR_RGB2BGR)
        data, _points, _ = cv2.QRCodeDetector().detectAndDecode(pixels)
    except Exception as e:
        logger.debug("QR decoding failed: %s", e)
        return None
    return data or None


def _parse_timestamp(token: str) -> Optional[dt.datetime]:
    """Explode YYYYMMDDTHHMM[SS] into a datetime."""
    date_part, sep, time_part = token.partition("T")
    if not sep or len(date_part) != 8 or len(time_part) not in (4, 6):
        return None
    if not (date_part.isdigit() and time_part.isdigit()):
        return None
    try:
        return dt.datetime(
            int(date_part[0:4]), int(date_part[4:6]), int(date_part[6:8]),
            int(time_part[0:2]), int(time_part[2:4]),
            int(time_part[4:6]) if len(time_part) == 6 else 0,
        )
    except ValueError:
        return None


def parse_fiscal_payload(payload: Optional[str]) -> Optional[FNSFragment]:
    """
    Parse an ampersand-delimited fiscal QR payload.

    Keys: t (timestamp), s (amount), fn (fiscal drive / registry id),
    i (document number), fp (fiscal signature), inn (taxpayer id),
    n (operation type).

    Returns:
        FNSFragment, or None when the payload is malformed.
    """
    if not payload:
        return None

    params: Dict[str, str] = {}
    for part in payload.strip().split("&"):
        key, sep, value = part.partition("=")
        key = key.strip().lower()
        if sep and key and value:
            params[key] = unquote_plus(value.strip())

    if "t" not in params and "s" not in params:
        return None

    timestamp = None
    if "t" in params:
        timestamp = _parse_timestamp(params["t"])
        if timestamp is None:
            logger.debug("Malformed QR timestamp: %r", params["t"])
            return None

    amount = None
    if "s" in params:
        amount = normalize_amount(params["s"])
        if amount is None:
            logger.debug("Malformed QR amount: %r", params["s"])
            return None

    return FNSFragment(
        timestamp=timestamp,
        amount=amount,
        registry_id=params.get("fn"),
        document_id=params.get("i"),
        signature=params.get("fp"),
        taxpayer_id=params.get("inn"),
        operation_type=params.get("n"),
    )
