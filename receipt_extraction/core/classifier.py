"""
Route a submitted file to the right extractor.
"""

from pathlib import PurePath
from typing import Optional

from .models import FileKind, ReceiptFile
from .utils import IMAGE_EXTS, PDF_EXTS, EMAIL_EXTS, TEXT_EXTS, GENERIC_MEDIA_TYPES


def _kind_from_media_type(media_type: str) -> Optional[FileKind]:
    if media_type == "application/pdf" or media_type.endswith("/pdf"):
        return FileKind.PDF
    if media_type.startswith("image/"):
        return FileKind.IMAGE
    if media_type in ("message/rfc822", "application/eml"):
        return FileKind.EMAIL
    if media_type == "text/plain":
        return FileKind.TEXT
    return None


def _kind_from_extension(file_name: str) -> Optional[FileKind]:
    ext = PurePath(file_name).suffix.lower()
    if ext in PDF_EXTS:
        return FileKind.PDF
    if ext in IMAGE_EXTS:
        return FileKind.IMAGE
    if ext in EMAIL_EXTS:
        return FileKind.EMAIL
    if ext in TEXT_EXTS:
        return FileKind.TEXT
    return None


def classify(file_name: Optional[str], content_type: Optional[str] = None) -> FileKind:
    """
    Classify a file by its declared media type, falling back to the extension.

    The media type is trusted unless it is missing or generic. Anything that
    cannot be recognised is treated as an image; OCR then fails explicitly
    on bytes it cannot read.
    """
    media_type = (content_type or "").split(";")[0].strip().lower()

    if media_type not in GENERIC_MEDIA_TYPES:
        kind = _kind_from_media_type(media_type)
        if kind is not None:
            return kind

    return _kind_from_extension(file_name or "") or FileKind.IMAGE


def create_receipt_file(data: bytes, file_name: str, content_type: Optional[str] = None) -> ReceiptFile:
    """Wrap submitted bytes as a classified ReceiptFile."""
    content_type = content_type or ""
    return ReceiptFile(
        data=data,
        file_name=file_name,
        content_type=content_type,
        kind=classify(file_name, content_type),
    )
