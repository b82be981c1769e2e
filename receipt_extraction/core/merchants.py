"""
Known-merchant knowledge base: alias normalization and category suggestions.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MERCHANTS_PATH = Path(__file__).resolve().parent.parent / "data" / "merchants.json"

_RU_CONSONANTS = set("бвгджзклмнпрстфхцчшщ")
_RU_VOWELS_INDECLINABLE = set("оеёиуыэю")
_RU_VELAR_SIBILANT = set("гкхжчшщ")


@dataclass(frozen=True)
class MerchantRecord:
    """A known merchant and the spellings it appears under."""
    canonical_name: str
    legal_names: Tuple[str, ...] = ()
    domains: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    category: Optional[str] = None


class MerchantDirectory:
    """Immutable lookup table of known merchants."""

    def __init__(self, records: List[MerchantRecord],
                 genitive_forms: Optional[Dict[str, str]] = None,
                 category_keywords: Optional[Dict[str, List[str]]] = None):
        self._records = tuple(records)
        self._genitive = dict(genitive_forms or {})
        self._category_keywords = {k: tuple(v) for k, v in (category_keywords or {}).items()}

    @property
    def records(self) -> Tuple[MerchantRecord, ...]:
        return self._records

    @property
    def category_keywords(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self._category_keywords)

    def iter_keywords(self) -> Iterator[str]:
        """Keyword aliases in table order."""
        for record in self._records:
            yield from record.keywords

    def _match(self, lower_name: str) -> Optional[MerchantRecord]:
        # Table order; within a merchant keywords, then legal names, then domains
        for record in self._records:
            for alias in record.keywords + record.legal_names + record.domains:
                if alias.lower() in lower_name:
                    return record
        return None

    def normalize(self, raw_name: str) -> str:
        """
        Map a raw merchant spelling onto its canonical display name.

        Unknown merchants come back trimmed but otherwise unchanged.
        """
        record = self._match(raw_name.lower().strip())
        if record is not None:
            return record.canonical_name
        return raw_name.strip()

    def suggest_category(self, canonical_name: Optional[str]) -> Optional[str]:
        """Suggested spending category for a canonical merchant name."""
        if not canonical_name:
            return None
        lower_name = canonical_name.lower().strip()
        for record in self._records:
            if record.canonical_name.lower() == lower_name:
                return record.category
        return None

    def genitive(self, name: str) -> str:
        """
        Russian genitive form of a merchant name, e.g. Самокат -> Самоката.

        Known merchants come from the table; other names get suffix rules
        applied to the last letter. Non-Cyrillic names are left as they are.
        """
        name = name.strip()
        if not name:
            return name
        if name in self._genitive:
            return self._genitive[name]
        for key, value in self._genitive.items():
            if key.lower() == name.lower():
                return value
        return _genitive_by_suffix(name)


def _genitive_by_suffix(name: str) -> str:
    last = name[-1]
    lower = last.lower()
    upper = last.isupper() and name.isupper()

    def fix(suffix: str) -> str:
        return suffix.upper() if upper else suffix

    if lower in _RU_VOWELS_INDECLINABLE:
        return name
    if lower == "а":
        prev = name[-2].lower() if len(name) > 1 else ""
        return name[:-1] + fix("и" if prev in _RU_VELAR_SIBILANT else "ы")
    if lower == "я":
        return name[:-1] + fix("и")
    if lower in ("ь", "й"):
        return name[:-1] + fix("я")
    if lower in _RU_CONSONANTS:
        return name + fix("а")
    return name


def _record_from_dict(entry: Dict) -> MerchantRecord:
    return MerchantRecord(
        canonical_name=entry["canonical_name"],
        legal_names=tuple(entry.get("legal_names", [])),
        domains=tuple(entry.get("domains", [])),
        keywords=tuple(entry.get("keywords", [])),
        category=entry.get("category"),
    )


def load_merchants(path: Optional[Path] = None) -> MerchantDirectory:
    """Load the merchant table from JSON (bundled table by default)."""
    return _load_merchants_cached(Path(path or DEFAULT_MERCHANTS_PATH).resolve())


@lru_cache(maxsize=None)
def _load_merchants_cached(path: Path) -> MerchantDirectory:
    with path.open("r", encoding="utf-8") as f:
        raw = json.load(f)
    records = [_record_from_dict(entry) for entry in raw.get("merchants", [])]
    logger.debug("Loaded %d merchants from %s", len(records), path)
    return MerchantDirectory(
        records,
        genitive_forms=raw.get("genitive", {}),
        category_keywords=raw.get("category_keywords", {}),
    )


def normalize_merchant_name(raw: Optional[str],
                            directory: Optional[MerchantDirectory] = None) -> Optional[str]:
    """Canonical display name for a raw merchant string; None passes through."""
    if not raw or not raw.strip():
        return None
    return (directory or load_merchants()).normalize(raw)


def suggest_category_for(merchant: Optional[str],
                         directory: Optional[MerchantDirectory] = None) -> Optional[str]:
    """Suggested category for a canonical merchant name, if known."""
    if not merchant:
        return None
    return (directory or load_merchants()).suggest_category(merchant)
