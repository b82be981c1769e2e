"""Shared fixtures for receipt extraction tests.

- Small in-memory merchant table (no dependency on the bundled JSON)
- Settings that ignore the caller's environment
- Fake OCR / QR engines so no Tesseract binary is needed
"""

import io

import pytest

from receipt_extraction.core.config import Settings
from receipt_extraction.core.merchants import MerchantDirectory, MerchantRecord
from receipt_extraction.core.processor import ReceiptProcessor


@pytest.fixture
def merchant_directory() -> MerchantDirectory:
    """Two known merchants, one with a category, plus a keyword table."""
    return MerchantDirectory(
        [
            MerchantRecord(
                canonical_name="Green Grocer",
                legal_names=("GREEN GROCER LTD",),
                domains=("greengrocer.com",),
                keywords=("green grocer", "greengrocer"),
                category="Groceries",
            ),
            MerchantRecord(
                canonical_name="Ромашка",
                legal_names=("ООО РОМАШКА",),
                keywords=("ромашка",),
            ),
        ],
        genitive_forms={"Ромашка": "Ромашки"},
        category_keywords={
            "Groceries": ["milk", "bread", "молоко"],
            "Health": ["pharmacy", "аптека"],
        },
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(ocr_lang="eng", locale="ru")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep RECEIPT_* variables of the developer's shell out of the tests."""
    for name in ("RECEIPT_OCR_LANG", "TESSERACT_CMD", "RECEIPT_MERCHANTS_PATH",
                 "RECEIPT_DESCRIPTION_LOCALE"):
        monkeypatch.delenv(name, raising=False)


class FakeExtractor:
    """Stands in for the OCR/PDF engine: returns canned text, reports progress."""

    def __init__(self, text: str = "", error: Exception = None):
        self.text = text
        self.error = error
        self.calls = []

    def __call__(self, file, on_progress=None, **kwargs):
        self.calls.append((file, kwargs))
        if on_progress is not None:
            on_progress(0.0)
            on_progress(0.5)
            on_progress(1.0)
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def make_processor(merchant_directory, settings):
    """Factory for processors wired to fake engines."""
    def _make(text: str = "", qr_payload: str = None, error: Exception = None, **kwargs):
        extractor = FakeExtractor(text, error)
        processor = ReceiptProcessor(
            merchants=merchant_directory,
            settings=settings,
            text_extractor=extractor,
            qr_reader=lambda data: qr_payload,
            **kwargs,
        )
        processor.fake_extractor = extractor
        return processor
    return _make


@pytest.fixture
def png_bytes() -> bytes:
    """A small blank PNG."""
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (64, 64), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_qr_png():
    """Factory rendering a payload as a QR code PNG."""
    import cv2

    def _render(payload: str) -> bytes:
        code = cv2.QRCodeEncoder.create().encode(payload)
        code = cv2.resize(code, None, fx=8, fy=8, interpolation=cv2.INTER_NEAREST)
        code = cv2.copyMakeBorder(code, 40, 40, 40, 40, cv2.BORDER_CONSTANT, value=255)
        ok, buf = cv2.imencode(".png", code)
        assert ok
        return buf.tobytes()
    return _render
