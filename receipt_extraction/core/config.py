"""
Runtime settings resolved from the environment.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_OCR_LANG = "rus+eng"
DEFAULT_LOCALE = "ru"
SUPPORTED_LOCALES = ("ru", "en")


@dataclass(frozen=True)
class Settings:
    """Pipeline configuration."""
    ocr_lang: str = DEFAULT_OCR_LANG
    tesseract_cmd: Optional[str] = None
    merchants_path: Optional[Path] = None
    locale: str = DEFAULT_LOCALE


def load_settings(env: Optional[Mapping[str, str]] = None, **overrides) -> Settings:
    """
    Build settings from environment variables, then apply explicit overrides.

    Recognised variables:
        RECEIPT_OCR_LANG: Tesseract language spec (default: rus+eng)
        TESSERACT_CMD: Path to the tesseract binary
        RECEIPT_MERCHANTS_PATH: Alternate merchant table (JSON)
        RECEIPT_DESCRIPTION_LOCALE: "ru" or "en"

    Overrides whose value is None are ignored, so CLI flags can be passed
    through unconditionally.
    """
    env = os.environ if env is None else env

    merchants_path = env.get("RECEIPT_MERCHANTS_PATH")
    values = {
        "ocr_lang": env.get("RECEIPT_OCR_LANG") or DEFAULT_OCR_LANG,
        "tesseract_cmd": env.get("TESSERACT_CMD") or None,
        "merchants_path": Path(merchants_path) if merchants_path else None,
        "locale": env.get("RECEIPT_DESCRIPTION_LOCALE") or DEFAULT_LOCALE,
    }
    for key, value in overrides.items():
        if key not in values:
            raise TypeError(f"Unknown setting: {key}")
        if value is not None:
            values[key] = Path(value) if key == "merchants_path" else value

    if values["locale"] not in SUPPORTED_LOCALES:
        raise ValueError(f"Unsupported locale: {values['locale']} "
                         f"(expected one of: {', '.join(SUPPORTED_LOCALES)})")

    return Settings(**values)
