"""
Text extraction for receipt images (Tesseract OCR) and PDFs (PyMuPDF).
"""

import io
import logging
import threading
from typing import Callable, Optional

from .config import DEFAULT_OCR_LANG
from .errors import ExtractionError
from .models import FileKind, ReceiptFile

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def _lazy_import_ocr_deps():
    """Lazy import heavy OCR dependencies."""
    global pytesseract, PIL_Image, fitz
    import importlib
    if pytesseract is None:
        pytesseract = importlib.import_module("pytesseract")
    if PIL_Image is None:
        PIL_Image = importlib.import_module("PIL.Image")
    if fitz is None:
        fitz = importlib.import_module("fitz")  # pymupdf


# Initialize on first use
pytesseract = None
PIL_Image = None
fitz = None

# pytesseract reads the binary path from a module global
_tesseract_lock = threading.Lock()


def _report(on_progress: Optional[ProgressCallback], fraction: float):
    if on_progress is None:
        return
    try:
        on_progress(min(max(fraction, 0.0), 1.0))
    except Exception:
        logger.warning("Progress callback raised; ignoring", exc_info=True)


def _run_tesseract(img, lang: str, tesseract_cmd: Optional[str]) -> str:
    """Run Tesseract, with a custom binary in effect only for this call."""
    with _tesseract_lock:
        previous = pytesseract.pytesseract.tesseract_cmd
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        try:
            return pytesseract.image_to_string(img, lang=lang)
        finally:
            pytesseract.pytesseract.tesseract_cmd = previous


def ocr_image_to_text(data: bytes, on_progress: Optional[ProgressCallback] = None,
                      lang: str = DEFAULT_OCR_LANG,
                      tesseract_cmd: Optional[str] = None) -> str:
    """
    OCR image bytes to text.

    Tesseract runs as a single subprocess call, so progress is reported at
    the checkpoints around it: decoded, prepared, recognised.
    """
    _lazy_import_ocr_deps()
    _report(on_progress, 0.0)
    try:
        img = PIL_Image.open(io.BytesIO(data))
        img.load()
    except Exception as e:
        raise ExtractionError(f"Could not read image: {e}") from e
    _report(on_progress, 0.1)

    # Grayscale improves recognition of thermal-printer receipts
    if img.mode != "L":
        img = img.convert("L")
    _report(on_progress, 0.2)

    try:
        text = _run_tesseract(img, lang, tesseract_cmd)
    except Exception as e:
        raise ExtractionError(f"Could not recognise text in image: {e}") from e
    _report(on_progress, 1.0)
    return text


def pdf_to_text(data: bytes, on_progress: Optional[ProgressCallback] = None) -> str:
    """
    Extract text from a searchable PDF page by page, in page order.

    Pages without text contribute nothing.
    """
    _lazy_import_ocr_deps()
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ExtractionError(f"Could not open PDF: {e}") from e

    try:
        page_count = doc.page_count
        if page_count == 0:
            raise ExtractionError("PDF has no pages")

        _report(on_progress, 0.0)
        chunks = []
        for index, page in enumerate(doc, start=1):
            page_text = page.get_text().strip()
            if page_text:
                chunks.append(page_text)
            _report(on_progress, index / page_count)
    except ExtractionError:
        raise
    except Exception as e:
        raise ExtractionError(f"Could not extract text from PDF: {e}") from e
    finally:
        doc.close()

    return "\n".join(chunks)


def decode_text(data: bytes) -> str:
    """Decode a plain-text receipt."""
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    return data.decode("utf-8", errors="replace")


def extract_text(file: ReceiptFile, on_progress: Optional[ProgressCallback] = None,
                 lang: str = DEFAULT_OCR_LANG,
                 tesseract_cmd: Optional[str] = None) -> str:
    """
    Extract raw text from a receipt file, dispatching on its kind.

    Args:
        file: Classified receipt file
        on_progress: Called with a 0-1 fraction as extraction advances
        lang: Tesseract language spec for images
        tesseract_cmd: Optional path to the tesseract binary

    Raises:
        ExtractionError: when the engine cannot process the bytes
    """
    if not file.data:
        raise ExtractionError(f"File is empty: {file.file_name}")

    logger.debug("Extracting text from %s (%s)", file.file_name, file.kind.value)
    if file.kind is FileKind.PDF:
        return pdf_to_text(file.data, on_progress)
    if file.kind is FileKind.IMAGE:
        return ocr_image_to_text(file.data, on_progress, lang=lang, tesseract_cmd=tesseract_cmd)
    if file.kind is FileKind.TEXT:
        text = decode_text(file.data)
        _report(on_progress, 1.0)
        return text
    raise ExtractionError(f"Cannot extract text from a {file.kind.value} container: {file.file_name}")
