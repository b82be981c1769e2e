import time
import types
from concurrent.futures import ThreadPoolExecutor

import fitz  # pymupdf
import pytest

from receipt_extraction.core import ocr
from receipt_extraction.core.errors import ExtractionError
from receipt_extraction.core.models import FileKind, ReceiptFile
from receipt_extraction.core.ocr import extract_text, pdf_to_text


class FakeTesseract:
    """Mimics the parts of pytesseract the OCR module touches."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.pytesseract = types.SimpleNamespace(tesseract_cmd="tesseract")
        self.calls = []

    def image_to_string(self, img, lang=None):
        self.calls.append((img.mode, lang, self.pytesseract.tesseract_cmd))
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def fake_tesseract(monkeypatch):
    fake = FakeTesseract("ИТОГ = 100.00")
    monkeypatch.setattr(ocr, "pytesseract", fake)
    return fake


def make_pdf(*pages: str) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def image_file(data: bytes) -> ReceiptFile:
    return ReceiptFile(data=data, file_name="receipt.png", content_type="image/png", kind=FileKind.IMAGE)


def test_image_ocr_uses_grayscale_and_language(fake_tesseract, png_bytes):
    progress = []
    text = extract_text(image_file(png_bytes), progress.append, lang="rus+eng",
                        tesseract_cmd="/opt/tesseract")

    assert text == "ИТОГ = 100.00"
    assert fake_tesseract.calls == [("L", "rus+eng", "/opt/tesseract")]
    assert fake_tesseract.pytesseract.tesseract_cmd == "tesseract"
    assert progress == sorted(progress)
    assert progress[0] == 0.0 and progress[-1] == 1.0


class CommandEchoTesseract(FakeTesseract):
    """Returns the binary path in effect while "recognising"."""

    def image_to_string(self, img, lang=None):
        time.sleep(0.01)
        return self.pytesseract.tesseract_cmd


def test_tesseract_cmd_is_scoped_to_each_call(monkeypatch, png_bytes):
    monkeypatch.setattr(ocr, "pytesseract", CommandEchoTesseract())
    commands = [f"/opt/tesseract-{n}" for n in range(6)] + [None]

    with ThreadPoolExecutor(max_workers=4) as pool:
        seen = list(pool.map(
            lambda cmd: extract_text(image_file(png_bytes), tesseract_cmd=cmd), commands))

    assert seen == [f"/opt/tesseract-{n}" for n in range(6)] + ["tesseract"]
    assert ocr.pytesseract.pytesseract.tesseract_cmd == "tesseract"


def test_image_ocr_engine_failure(monkeypatch, png_bytes):
    monkeypatch.setattr(ocr, "pytesseract", FakeTesseract(error=RuntimeError("tesseract is not installed")))
    with pytest.raises(ExtractionError, match="tesseract is not installed"):
        extract_text(image_file(png_bytes))


def test_unreadable_image(fake_tesseract):
    with pytest.raises(ExtractionError):
        extract_text(image_file(b"\x89PNG broken"))
    assert fake_tesseract.calls == []


def test_progress_callback_errors_do_not_abort(fake_tesseract, png_bytes):
    def explode(fraction):
        raise ValueError("UI went away")

    assert extract_text(image_file(png_bytes), explode) == "ИТОГ = 100.00"


def test_pdf_pages_in_order_skipping_blank_pages():
    progress = []
    text = pdf_to_text(make_pdf("First page", "", "TOTAL: 123.45"), progress.append)

    assert text.split("\n") == ["First page", "TOTAL: 123.45"]
    assert progress == pytest.approx([0.0, 1 / 3, 2 / 3, 1.0])


def test_pdf_with_only_blank_pages_yields_empty_text():
    assert pdf_to_text(make_pdf("")) == ""


def test_corrupt_pdf():
    with pytest.raises(ExtractionError):
        pdf_to_text(b"%PDF-1.4 this is not really a pdf")


def test_extract_text_dispatches_pdf():
    pdf = ReceiptFile(data=make_pdf("ITOGO 99.00"), file_name="r.pdf",
                      content_type="application/pdf", kind=FileKind.PDF)
    assert extract_text(pdf) == "ITOGO 99.00"


def test_extract_text_plain_text_strips_bom():
    progress = []
    file = ReceiptFile(data="\ufeffИТОГ = 10.00".encode("utf-8"), file_name="r.txt",
                       content_type="text/plain", kind=FileKind.TEXT)
    assert extract_text(file, progress.append) == "ИТОГ = 10.00"
    assert progress == [1.0]


def test_extract_text_empty_file():
    with pytest.raises(ExtractionError, match="empty"):
        extract_text(image_file(b""))


def test_extract_text_refuses_email_container():
    file = ReceiptFile(data=b"From: a@b.c\n\nhi", file_name="m.eml",
                       content_type="message/rfc822", kind=FileKind.EMAIL)
    with pytest.raises(ExtractionError):
        extract_text(file)
