"""
Parsers for extracting information from receipt text.

Every field is recovered by an ordered list of rules. A rule takes the
normalized text and returns a value or None; the first rule with a value
wins and the rest are not consulted.
"""

import re
import datetime as dt
import logging
from functools import partial
from typing import Callable, List, Optional, Sequence, TypeVar

from .config import DEFAULT_LOCALE
from .merchants import MerchantDirectory, load_merchants
from .models import LineItem, ParsedFields
from .utils import AMOUNT_RE, LABELED_AMOUNT_RE, normalize_amount, normalize_newlines

logger = logging.getLogger(__name__)

T = TypeVar("T")
Rule = Callable[[str], Optional[T]]

# Amounts at or above this are OCR noise (merged digits, phone numbers)
MAX_SANE_AMOUNT = 1_000_000
# Item prices at or below this are packaging fees or tax lines, not goods
MIN_ITEM_PRICE = 10.0
# How far below a numbered entry its price may appear
ITEM_LOOKAHEAD = 15


def apply_rules(rules: Sequence[Rule], text: str) -> Optional[T]:
    """Run rules in order and return the first non-None result."""
    for rule in rules:
        value = rule(text)
        if value is not None:
            return value
    return None


def _lines(text: str) -> List[str]:
    return [ln.strip() for ln in text.split("\n")]


def _has_letter(s: str) -> bool:
    return any(c.isalpha() for c in s)


# --- Date -------------------------------------------------------------------

DATE_DMY_TIME_RE = re.compile(r"(?<!\d)(\d{2})\.(\d{2})\.(\d{4})\s+(\d{2}):(\d{2})")
DATE_DMY_RE = re.compile(r"(?<!\d)(\d{2})\.(\d{2})\.(\d{4})(?!\d)")
DATE_YMD_TIME_RE = re.compile(r"(?<!\d)(\d{4})-(\d{2})-(\d{2})[\sT]+(\d{2}):(\d{2})")
DATE_YMD_RE = re.compile(r"(?<!\d)(\d{4})-(\d{2})-(\d{2})(?!\d)")


def _build_datetime(year: int, month: int, day: int,
                    hour: int = 0, minute: int = 0) -> Optional[dt.datetime]:
    try:
        return dt.datetime(year, month, day, hour, minute)
    except ValueError:
        logger.debug("Discarding invalid date %04d-%02d-%02d %02d:%02d",
                     year, month, day, hour, minute)
        return None


def date_dmy_time(text: str) -> Optional[dt.datetime]:
    """DD.MM.YYYY HH:MM"""
    m = DATE_DMY_TIME_RE.search(text)
    if not m:
        return None
    d, mo, y, hh, mm = (int(g) for g in m.groups())
    return _build_datetime(y, mo, d, hh, mm)


def date_dmy(text: str) -> Optional[dt.datetime]:
    """DD.MM.YYYY"""
    m = DATE_DMY_RE.search(text)
    if not m:
        return None
    d, mo, y = (int(g) for g in m.groups())
    return _build_datetime(y, mo, d)


def date_ymd_time(text: str) -> Optional[dt.datetime]:
    """YYYY-MM-DD HH:MM"""
    m = DATE_YMD_TIME_RE.search(text)
    if not m:
        return None
    y, mo, d, hh, mm = (int(g) for g in m.groups())
    return _build_datetime(y, mo, d, hh, mm)


def date_ymd(text: str) -> Optional[dt.datetime]:
    """YYYY-MM-DD"""
    m = DATE_YMD_RE.search(text)
    if not m:
        return None
    y, mo, d = (int(g) for g in m.groups())
    return _build_datetime(y, mo, d)


DATE_RULES: List[Rule] = [date_dmy_time, date_dmy, date_ymd_time, date_ymd]


def parse_date(text: str) -> dt.datetime:
    """Extract the receipt date; falls back to the current time."""
    return apply_rules(DATE_RULES, text) or dt.datetime.now()


# --- Amount -----------------------------------------------------------------

GRAND_TOTAL_PATTERNS = [
    # ИТОГ = 900.00 / ИТОГО: 900.00 / GRAND TOTAL: 900.00
    re.compile(rf"(?<!\w)(?:ИТОГО?|GRAND\s+TOTAL)\s*[=:]\s*({LABELED_AMOUNT_RE})", re.IGNORECASE),
    # СУММА ПО ЧЕКУ (БСО) 900.00
    re.compile(rf"(?<!\w)СУММА\s+ПО\s+ЧЕКУ[^:=\d\n]*[:=]?\s*({LABELED_AMOUNT_RE})", re.IGNORECASE),
    # К ОПЛАТЕ: 900.00 / AMOUNT DUE: 900.00
    re.compile(rf"(?<!\w)(?:К\s+ОПЛАТЕ|AMOUNT\s+DUE)\s*[:=]\s*({LABELED_AMOUNT_RE})", re.IGNORECASE),
]

TAX_LINE_RE = re.compile(r"НДС|НАЛОГ|СТАВКА|\bVAT\b|\bTAX\b", re.IGNORECASE)
TOTAL_LABEL_RE = re.compile(r"ИТОГ|СУММА\s+ПО\s+ЧЕКУ|GRAND\s+TOTAL|К\s+ОПЛАТЕ", re.IGNORECASE)
LINE_AMOUNT_RE = re.compile(
    rf"(?<!\w)(?:ИТОГО|СУММА|К\s+ОПЛАТЕ|TOTAL|AMOUNT)\s*[:=]?\s*({LABELED_AMOUNT_RE})",
    re.IGNORECASE,
)


def _positive(raw: str) -> Optional[float]:
    value = normalize_amount(raw)
    if value is not None and value > 0:
        return value
    return None


def amount_grand_total(text: str) -> Optional[float]:
    """Explicit grand-total labels, most reliable first."""
    for pattern in GRAND_TOTAL_PATTERNS:
        m = pattern.search(text)
        if m:
            value = _positive(m.group(1))
            if value is not None:
                return value
    return None


def amount_total_line(text: str) -> Optional[float]:
    """Generic total/amount label on any line, skipping tax and per-item lines."""
    for line in text.split("\n"):
        if TAX_LINE_RE.search(line) and not TOTAL_LABEL_RE.search(line):
            continue
        if LINE_TOTAL_LABEL_RE.search(line):
            continue
        m = LINE_AMOUNT_RE.search(line)
        if m:
            value = _positive(m.group(1))
            if value is not None:
                return value
    return None


def amount_largest_number(text: str) -> Optional[float]:
    """Largest decimal-looking number below the sanity ceiling."""
    values = [normalize_amount(n) for n in re.findall(AMOUNT_RE, text)]
    values = [v for v in values if v is not None and 0 < v < MAX_SANE_AMOUNT]
    return max(values) if values else None


AMOUNT_RULES: List[Rule] = [amount_grand_total, amount_total_line, amount_largest_number]


def parse_amount(text: str) -> Optional[float]:
    """Extract the receipt total."""
    return apply_rules(AMOUNT_RULES, text)


# --- Boilerplate ------------------------------------------------------------

BOILERPLATE_RE = re.compile(
    r"^(?:ЧЕК|КАССОВЫЙ|ФИСКАЛЬНЫЙ|RECEIPT|ИТОГО?|ПОДЫТОГ|СУММА|К\s+ОПЛАТЕ|"
    r"TOTAL|SUBTOTAL|ООО|ИП|OOO|ОПЛАТА|НАЛИЧН\w*|БЕЗНАЛИЧН\w*|ЭЛЕКТРОНН\w*|"
    r"КАРТ(?:ОЙ|А|Ы)|НДС|VAT|TAX|СТАВКА|СПОСОБ|ПРИЗНАК|CASH|CARD|СДАЧА|"
    r"CHANGE|СКИДКА|DISCOUNT)(?!\w)",
    re.IGNORECASE,
)

HEADER_RE = re.compile(
    r"^(?:ДОБРО\s+ПОЖАЛОВАТЬ|СПАСИБО|WELCOME|THANK|ДАТА|DATE|ВРЕМЯ|TIME|"
    r"КАССИР|CASHIER|СМЕНА|ИНН|АДРЕС|ADDRESS|ТЕЛ|TEL|ПРИХОД|ЗАКАЗ|ORDER)(?!\w)",
    re.IGNORECASE,
)


def is_boilerplate_line(line: str) -> bool:
    """True for totals, tax, payment and receipt-header lines."""
    return bool(BOILERPLATE_RE.match(line.strip()))


# --- Merchant ---------------------------------------------------------------

DOMAIN_RE = re.compile(
    r"(?<![\w.@-])((?:[^\W_](?:[\w-]*[^\W_])?\.)+)(ru|com|net|org|su|io|рф|shop|store|online|app)(?![\w-])",
    re.IGNORECASE,
)
# Fiscal data operators, tax service and ISP/mail hosts that appear on receipts
DOMAIN_DENYLIST = {
    "ofd", "platformaofd", "1-ofd", "ofd-ya", "taxcom", "nalog", "gosuslugi",
    "consumer", "kontur", "sbis", "rostelecom", "mts", "beeline", "megafon",
    "tele2", "mail", "www",
}
# Public mailbox providers, ignored only as a bare host
MAIL_HOSTS = {
    "gmail", "yandex", "ya", "rambler", "bk", "inbox", "list", "outlook", "icloud",
    "hotmail", "yahoo",
}
LEGAL_ENTITY_RE = re.compile(r"(?<!\w)(?:ООО|ИП|OOO|IP)\s+(.+)", re.IGNORECASE)
NUMBERED_ITEM_RE = re.compile(r"^\d+\s*:\s*(?![\s\d])(.*[^\W\d_].*)$")
TRAILING_AMOUNT_RE = re.compile(rf"\s({AMOUNT_RE})$")


def merchant_from_keywords(text: str, merchants: MerchantDirectory) -> Optional[str]:
    """Known merchant keyword anywhere in the text."""
    lower = text.lower()
    for keyword in merchants.iter_keywords():
        if keyword.lower() in lower:
            return keyword
    return None


def _is_denied_host(labels: List[str]) -> bool:
    if len(labels) == 1 and labels[0] in MAIL_HOSTS:
        return True
    return any(label in DOMAIN_DENYLIST or "ofd" in label for label in labels)


def merchant_from_domain(text: str) -> Optional[str]:
    """Website-like token (samokat.ru -> samokat), ignoring service domains."""
    for m in DOMAIN_RE.finditer(text):
        labels = [label.lower() for label in m.group(1).rstrip(".").split(".")]
        if labels and labels[0] == "www":
            labels = labels[1:]
        if not labels or _is_denied_host(labels):
            continue
        return ".".join(labels)
    return None


def merchant_from_legal_entity(text: str) -> Optional[str]:
    """Name following an ООО / ИП marker."""
    for line in text.split("\n"):
        m = LEGAL_ENTITY_RE.search(line)
        if not m:
            continue
        name = re.split(r"\s+ИНН\b", m.group(1), maxsplit=1, flags=re.IGNORECASE)[0]
        name = name.strip().strip("«»\"'“”„").strip(" ,;")
        if name:
            return name
    return None


def merchant_from_first_line(text: str) -> Optional[str]:
    """First line that looks like a name rather than receipt boilerplate."""
    for line in _lines(text):
        if len(line) <= 3 or not _has_letter(line):
            continue
        if is_boilerplate_line(line) or HEADER_RE.match(line):
            continue
        if NUMBERED_ITEM_RE.match(line) or TRAILING_AMOUNT_RE.search(line) \
                or LINE_TOTAL_LABEL_RE.search(line):
            continue
        return line
    return None


def parse_merchant(text: str, merchants: Optional[MerchantDirectory] = None) -> Optional[str]:
    """Extract the raw merchant name (not yet canonicalized)."""
    merchants = merchants or load_merchants()
    rules = [
        partial(merchant_from_keywords, merchants=merchants),
        merchant_from_domain,
        merchant_from_legal_entity,
        merchant_from_first_line,
    ]
    return apply_rules(rules, text)


# --- Payment method ---------------------------------------------------------

CASH_RE = re.compile(r"(?<!БЕЗ)НАЛИЧН|\bCASH\b", re.IGNORECASE)
CARD_RE = re.compile(
    r"(?<!\w)КАРТ(?:ОЙ|А|Ы)(?!\w)|БЕЗНАЛИЧН|ЭЛЕКТРОННЫМИ|\b(?:CARD|DEBIT|CREDIT|VISA|MASTERCARD)\b",
    re.IGNORECASE,
)


def _zero_amount_line(line: str) -> bool:
    m = TRAILING_AMOUNT_RE.search(" " + line.strip())
    return bool(m) and normalize_amount(m.group(1)) == 0


def parse_payment_method(text: str) -> Optional[str]:
    """
    Classify payment as "cash" or "card"; None when nothing matches.

    Fiscal receipts print both НАЛИЧНЫМИ and БЕЗНАЛИЧНЫМИ lines, one of them
    with 0.00, so zero-amount lines are ignored.
    """
    cash = card = False
    for line in text.split("\n"):
        if _zero_amount_line(line):
            continue
        cash = cash or bool(CASH_RE.search(line))
        card = card or bool(CARD_RE.search(line))
    if cash:
        return "cash"
    if card:
        return "card"
    return None


# --- Line items -------------------------------------------------------------

END_OF_ITEMS_RE = re.compile(
    r"^(?:ИТОГО?|ПОДЫТОГ|СУММА\s+ПО\s+ЧЕКУ|К\s+ОПЛАТЕ|GRAND\s+TOTAL|TOTAL|SUBTOTAL)(?!\w)",
    re.IGNORECASE,
)
LINE_TOTAL_LABEL_RE = re.compile(r"(?:ОБЩАЯ\s+)?СТОИМОСТЬ\s+ПОЗИЦИИ|LINE\s+TOTAL", re.IGNORECASE)
QTY_PRICE_RE = re.compile(
    rf"(?:(\d+(?:[.,]\d+)?)\s*(?:шт|кг|л|pcs)?\.?\s*)?(?<![^\W\d_])[xх×*]\s*({AMOUNT_RE})",
    re.IGNORECASE,
)
FLAT_ITEM_RE = re.compile(rf"^(.+?)\s+({AMOUNT_RE})$")
BAD_ITEM_NAME_RE = re.compile(r"^(?:шт\.|x\b|×)", re.IGNORECASE)


def _clean_item_name(name: str) -> Optional[str]:
    name = name.strip().strip(" .:=-*")
    if not name or not _has_letter(name) or BAD_ITEM_NAME_RE.match(name):
        return None
    return name


def _qty_times_price(m: re.Match) -> Optional[float]:
    unit = normalize_amount(m.group(2))
    if unit is None:
        return None
    qty = normalize_amount(m.group(1)) if m.group(1) else None
    if qty is not None and qty > 0:
        return round(unit * qty, 2)
    return unit


def _item_price(lines: List[str], start: int) -> Optional[float]:
    """Look below a numbered entry for its line total or qty x price."""
    end = min(len(lines), start + ITEM_LOOKAHEAD)
    qty_price = None
    j = start
    while j < end:
        line = lines[j]
        if NUMBERED_ITEM_RE.match(line) or END_OF_ITEMS_RE.match(line):
            break
        label = LINE_TOTAL_LABEL_RE.search(line)
        if label:
            m = re.search(AMOUNT_RE, line[label.end():])
            if m:
                return normalize_amount(m.group(0))
            if j + 1 < end:
                m = re.match(rf"^({AMOUNT_RE})\b", lines[j + 1])
                if m:
                    return normalize_amount(m.group(1))
        elif qty_price is None:
            m = QTY_PRICE_RE.search(line)
            if m:
                qty_price = _qty_times_price(m)
        j += 1
    return qty_price


def items_numbered(text: str) -> List[LineItem]:
    """Entries of the form "N: name" followed by their price lines."""
    lines = _lines(text)
    items: List[LineItem] = []
    seen_entry = False
    for i, line in enumerate(lines):
        if seen_entry and END_OF_ITEMS_RE.match(line):
            break
        m = NUMBERED_ITEM_RE.match(line)
        if not m:
            continue
        seen_entry = True
        name = _clean_item_name(m.group(1))
        price = _item_price(lines, i + 1)
        if name and price is not None and price > MIN_ITEM_PRICE:
            items.append(LineItem(name=name, price=price))
    return items


def items_flat(text: str) -> List[LineItem]:
    """Lines shaped like "name   123.45"."""
    items: List[LineItem] = []
    for line in _lines(text):
        if not line or is_boilerplate_line(line):
            continue
        m = FLAT_ITEM_RE.match(line)
        if not m:
            continue
        name = _clean_item_name(m.group(1))
        price = normalize_amount(m.group(2))
        if name and price is not None and price > MIN_ITEM_PRICE:
            items.append(LineItem(name=name, price=price))
    return items


def parse_items(text: str) -> List[LineItem]:
    """Extract line items in document order."""
    return items_numbered(text) or items_flat(text)


# --- Description ------------------------------------------------------------

DESCRIPTION_TEMPLATES = {
    "ru": {
        "category_from": "{category} из {merchant}",
        "purchase_from": "Покупка из {merchant}",
        "purchase_count": "Покупка ({count} {noun})",
        "purchase_at": "Покупка в {merchant}",
    },
    "en": {
        "category_from": "{category} from {merchant}",
        "purchase_from": "Purchase from {merchant}",
        "purchase_count": "Purchase ({count} {noun})",
        "purchase_at": "Purchase at {merchant}",
    },
}


def _items_noun(count: int, locale: str) -> str:
    if locale == "en":
        return "item" if count == 1 else "items"
    if count % 10 == 1 and count % 100 != 11:
        return "позиция"
    if 2 <= count % 10 <= 4 and not 12 <= count % 100 <= 14:
        return "позиции"
    return "позиций"


def build_description(items: List[LineItem], merchant: Optional[str],
                      merchants: MerchantDirectory,
                      locale: str = DEFAULT_LOCALE) -> Optional[str]:
    """
    Human-readable description of the purchase.

    One item: its name. Several: category (or a generic purchase) from the
    merchant, or an item count when the merchant is unknown. No items: a
    purchase at the merchant.
    """
    templates = DESCRIPTION_TEMPLATES[locale]
    if len(items) == 1:
        return items[0].name
    if len(items) > 1:
        if merchant:
            declined = merchants.genitive(merchant) if locale == "ru" else merchant
            category = merchants.suggest_category(merchant)
            if category:
                return templates["category_from"].format(category=category, merchant=declined)
            return templates["purchase_from"].format(merchant=declined)
        return templates["purchase_count"].format(count=len(items), noun=_items_noun(len(items), locale))
    if merchant:
        return templates["purchase_at"].format(merchant=merchant)
    return None


# --- Entry point ------------------------------------------------------------

def parse_receipt_text(text: str, merchants: Optional[MerchantDirectory] = None,
                       locale: str = DEFAULT_LOCALE) -> ParsedFields:
    """
    Parse raw receipt text into fields.

    Args:
        text: OCR or PDF text
        merchants: Merchant table (bundled table if omitted)
        locale: "ru" or "en" for the synthesized description

    Returns:
        ParsedFields; date is always set, other fields may be None/empty
    """
    if locale not in DESCRIPTION_TEMPLATES:
        raise ValueError(f"Unsupported locale: {locale}")
    merchants = merchants or load_merchants()
    normalized = normalize_newlines(text or "")

    merchant_raw = parse_merchant(normalized, merchants)
    merchant = merchants.normalize(merchant_raw) if merchant_raw else None
    items = parse_items(normalized)

    return ParsedFields(
        date=parse_date(normalized),
        amount=parse_amount(normalized),
        merchant_raw=merchant_raw,
        merchant=merchant,
        payment_method=parse_payment_method(normalized),
        items=items,
        description=build_description(items, merchant, merchants, locale),
    )
