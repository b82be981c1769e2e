from pathlib import Path

import pytest

from receipt_extraction.core.config import DEFAULT_LOCALE, DEFAULT_OCR_LANG, load_settings


def test_defaults_with_empty_environment():
    settings = load_settings(env={})
    assert settings.ocr_lang == DEFAULT_OCR_LANG == "rus+eng"
    assert settings.locale == DEFAULT_LOCALE == "ru"
    assert settings.tesseract_cmd is None
    assert settings.merchants_path is None


def test_environment_variables():
    settings = load_settings(env={
        "RECEIPT_OCR_LANG": "eng",
        "TESSERACT_CMD": "/usr/local/bin/tesseract",
        "RECEIPT_MERCHANTS_PATH": "/etc/receipts/merchants.json",
        "RECEIPT_DESCRIPTION_LOCALE": "en",
    })
    assert settings.ocr_lang == "eng"
    assert settings.tesseract_cmd == "/usr/local/bin/tesseract"
    assert settings.merchants_path == Path("/etc/receipts/merchants.json")
    assert settings.locale == "en"


def test_overrides_beat_environment_and_none_is_ignored():
    settings = load_settings(env={"RECEIPT_OCR_LANG": "eng"}, ocr_lang=None, locale="en",
                             merchants_path="m.json")
    assert settings.ocr_lang == "eng"
    assert settings.locale == "en"
    assert settings.merchants_path == Path("m.json")


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("RECEIPT_OCR_LANG", "deu")
    assert load_settings().ocr_lang == "deu"


def test_invalid_locale():
    with pytest.raises(ValueError, match="Unsupported locale"):
        load_settings(env={"RECEIPT_DESCRIPTION_LOCALE": "fr"})


def test_unknown_override():
    with pytest.raises(TypeError):
        load_settings(env={}, colour="blue")
