"""
Receipt extraction from email containers (.eml).

``parse_email`` plays the role of the attachment-extraction service: it
returns the ``{attachments, hasReceiptInText, emailText}`` shape that
``files_from_payload`` turns into ReceiptFile objects. A host that runs the
parsing remotely can feed its JSON response straight into
``files_from_payload``.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from email import policy
from email.parser import BytesParser
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from .classifier import classify
from .models import FileKind, ReceiptFile
from .utils import IMAGE_EXTS, PDF_EXTS, TEXT_EXTS

logger = logging.getLogger(__name__)

BODY_RECEIPT_FILE_NAME = "receipt-from-email.txt"

# Phrases that mark a receipt typed directly into the message body
RECEIPT_KEYWORDS = [
    "кассовый чек",
    "чек",
    "итого",
    "сумма по чеку",
    "фн",
    "фд",
    "фпд",
    "инн",
    "ндс",
    "общая стоимость",
    "наличными",
    "безналичными",
    "спасибо за покупку",
    "receipt",
    "total",
    "amount",
]

RECEIPT_ATTACHMENT_KINDS = {FileKind.IMAGE, FileKind.PDF, FileKind.TEXT}

# Elements that end a visual line in an HTML receipt
HTML_BLOCK_TAGS = [
    "p", "div", "tr", "li", "table", "h1", "h2", "h3", "h4", "h5", "h6",
]


@dataclass
class EmailAttachment:
    file_name: str
    content_type: str
    base64content: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "fileName": self.file_name,
            "contentType": self.content_type,
            "base64content": self.base64content,
        }


@dataclass
class EmailParseResult:
    """Attachment-extraction response."""
    attachments: List[EmailAttachment] = field(default_factory=list)
    has_receipt_in_text: bool = False
    email_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attachments": [a.to_dict() for a in self.attachments],
            "hasReceiptInText": self.has_receipt_in_text,
            "emailText": self.email_text,
        }


def html_to_text(markup: str) -> str:
    """
    Convert an HTML body to plain text.

    Block elements and <br> end a line; table cells on the same row are
    joined with a space, so "<td>Coffee</td><td>350.00</td>" reads as
    "Coffee 350.00".
    """
    if not markup:
        return ""

    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(["script", "style", "head", "meta", "noscript"]):
        element.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for element in soup.find_all(HTML_BLOCK_TAGS):
        element.insert_after("\n")

    text = soup.get_text(separator=" ")
    lines = (re.sub(r"[ \t\xa0]+", " ", line).strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def looks_like_receipt(text: Optional[str]) -> bool:
    """True when the text mentions any receipt keyword."""
    if not text:
        return False
    lower = text.lower()
    return any(keyword in lower for keyword in RECEIPT_KEYWORDS)


def _is_receipt_attachment(file_name: str, content_type: str) -> bool:
    content_type = content_type.lower()
    if "pdf" in content_type or content_type.startswith("image/") or content_type == "text/plain":
        return True
    return PurePath(file_name).suffix.lower() in IMAGE_EXTS | PDF_EXTS | TEXT_EXTS


def _body_content(body) -> Optional[str]:
    """Decoded body text; undecodable charsets fall back to lenient UTF-8."""
    try:
        return body.get_content()
    except (LookupError, UnicodeError) as e:
        logger.warning("Email body has an unreadable charset (%s); decoding as UTF-8", e)
    payload = body.get_payload(decode=True)
    if not payload:
        return None
    return payload.decode("utf-8", errors="replace")


def parse_email(email_bytes: bytes) -> EmailParseResult:
    """
    Parse a MIME message into receipt attachments and body text.

    Only image, PDF and plain-text attachments are returned. The body is
    reported only when it looks like a receipt.
    """
    message = BytesParser(policy=policy.default).parsebytes(email_bytes)

    body_text = None
    body = message.get_body(preferencelist=("plain", "html"))
    if body is not None:
        content = _body_content(body)
        if content and body.get_content_type() == "text/html":
            content = html_to_text(content)
        body_text = (content or "").strip() or None

    attachments = []
    for index, part in enumerate(message.iter_attachments(), start=1):
        file_name = part.get_filename() or f"attachment-{index}"
        content_type = part.get_content_type() or "application/octet-stream"
        if not _is_receipt_attachment(file_name, content_type):
            logger.debug("Skipping non-receipt attachment %s (%s)", file_name, content_type)
            continue
        payload = part.get_payload(decode=True)
        if not payload:
            continue
        attachments.append(EmailAttachment(
            file_name=file_name,
            content_type=content_type,
            base64content=base64.b64encode(payload).decode("ascii"),
        ))

    has_receipt = looks_like_receipt(body_text)
    logger.debug("Email parsed: %d receipt attachment(s), receipt in body: %s",
                 len(attachments), has_receipt)
    return EmailParseResult(
        attachments=attachments,
        has_receipt_in_text=has_receipt,
        email_text=body_text if has_receipt else None,
    )


def files_from_payload(payload: Dict[str, Any]) -> List[ReceiptFile]:
    """
    Build ReceiptFiles from an attachment-extraction response.

    Falls back to one synthetic text file wrapping the body when there are
    no attachments but the body holds a receipt.
    """
    files: List[ReceiptFile] = []
    for attachment in payload.get("attachments") or []:
        file_name = attachment.get("fileName") or f"attachment-{len(files) + 1}"
        content_type = attachment.get("contentType") or "application/octet-stream"
        encoded = attachment.get("base64content") or attachment.get("content") or ""
        try:
            data = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError):
            logger.warning("Attachment %s has invalid base64 content; skipping", file_name)
            continue
        if not data:
            logger.warning("Attachment %s is empty; skipping", file_name)
            continue

        kind = classify(file_name, content_type)
        if kind not in RECEIPT_ATTACHMENT_KINDS:
            kind = FileKind.TEXT
        files.append(ReceiptFile(data=data, file_name=file_name,
                                 content_type=content_type, kind=kind))

    email_text = payload.get("emailText")
    if not files and payload.get("hasReceiptInText") and email_text:
        files.append(ReceiptFile(
            data=email_text.encode("utf-8"),
            file_name=BODY_RECEIPT_FILE_NAME,
            content_type="text/plain",
            kind=FileKind.TEXT,
        ))
    return files


def extract_from_email(email_bytes: bytes) -> List[ReceiptFile]:
    """Candidate receipt files found in an email; empty when there are none."""
    return files_from_payload(parse_email(email_bytes).to_dict())
