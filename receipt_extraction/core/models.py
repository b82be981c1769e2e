"""
Data models for receipt processing.
"""

import base64
import datetime as dt
import mimetypes
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any

from .errors import ErrorCode


class FileKind(str, Enum):
    """Routing tag assigned by the format classifier."""
    IMAGE = "image"
    PDF = "pdf"
    EMAIL = "email"
    TEXT = "text"


@dataclass
class ReceiptFile:
    """Raw bytes of a submitted file plus its classified kind."""
    data: bytes
    file_name: str
    content_type: str
    kind: FileKind

    @property
    def preview(self) -> Optional[str]:
        """Data URL suitable for rendering an image preview."""
        if self.kind is not FileKind.IMAGE:
            return None
        mime = self.content_type if self.content_type.startswith("image/") else "image/jpeg"
        return f"data:{mime};base64,{base64.b64encode(self.data).decode('ascii')}"

    @classmethod
    def from_path(cls, path: Path) -> "ReceiptFile":
        """Read a file from disk and classify it."""
        from .classifier import classify

        content_type = mimetypes.guess_type(path.name)[0] or ""
        return cls(
            data=path.read_bytes(),
            file_name=path.name,
            content_type=content_type,
            kind=classify(path.name, content_type),
        )


@dataclass(frozen=True)
class FNSFragment:
    """Fields recovered from a fiscal QR payload. Every field is optional."""
    timestamp: Optional[dt.datetime] = None
    amount: Optional[float] = None
    registry_id: Optional[str] = None
    document_id: Optional[str] = None
    signature: Optional[str] = None
    taxpayer_id: Optional[str] = None
    operation_type: Optional[str] = None


@dataclass(frozen=True)
class LineItem:
    """One purchased position."""
    name: str
    price: float

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Line item name must not be empty")
        if not self.price > 0:
            raise ValueError(f"Line item price must be positive, got {self.price}")


@dataclass
class ParsedFields:
    """Output of the heuristic text parser; absent fields are None."""
    date: Optional[dt.datetime] = None
    amount: Optional[float] = None
    merchant_raw: Optional[str] = None
    merchant: Optional[str] = None
    payment_method: Optional[str] = None
    items: List[LineItem] = field(default_factory=list)
    description: Optional[str] = None


@dataclass
class ReceiptData:
    """Final structured receipt."""
    date: dt.datetime
    amount: float
    description: Optional[str] = None
    merchant: Optional[str] = None
    payment_method: Optional[str] = None
    items: Optional[List[LineItem]] = None
    suggested_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d


@dataclass
class ReceiptProcessingResult:
    """Outcome of processing one file: either data or an error."""
    success: bool
    data: Optional[ReceiptData] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    raw_text: Optional[str] = None
    qr_payload: Optional[str] = None

    @classmethod
    def ok(cls, data: ReceiptData, raw_text: Optional[str] = None,
           qr_payload: Optional[str] = None) -> "ReceiptProcessingResult":
        return cls(success=True, data=data, raw_text=raw_text, qr_payload=qr_payload)

    @classmethod
    def failure(cls, code: ErrorCode, error: str, raw_text: Optional[str] = None,
                qr_payload: Optional[str] = None) -> "ReceiptProcessingResult":
        return cls(success=False, error=error, error_code=code,
                   raw_text=raw_text, qr_payload=qr_payload)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting absent fields."""
        d: Dict[str, Any] = {"success": self.success}
        if self.success:
            d["data"] = self.data.to_dict()
        else:
            d["error"] = self.error
            d["error_code"] = self.error_code.value if self.error_code else None
        if self.raw_text is not None:
            d["raw_text"] = self.raw_text
        if self.qr_payload is not None:
            d["qr_payload"] = self.qr_payload
        return d
