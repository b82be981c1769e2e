"""
Best-effort category suggestion for a parsed receipt.
"""

from typing import Iterable, Optional, Tuple

from .merchants import MerchantDirectory


def categorize(merchant: Optional[str], text: Optional[str],
               directory: MerchantDirectory,
               categories: Optional[Iterable[str]] = None) -> Tuple[Optional[str], Optional[str]]:
    """
    Suggest a category from the merchant and free text (description, item names).

    Args:
        merchant: Canonical merchant name
        text: Description and item names joined together
        directory: Merchant table with its category keyword map
        categories: Category names the caller accepts; when given, only these
            can be returned (matched case-insensitively, caller's spelling kept)

    Returns:
        Tuple of (category, matcher) where matcher tells which rule fired,
        or (None, None) when nothing matched.
    """
    allowed = None
    if categories is not None:
        allowed = {c.lower(): c for c in categories}

    def accept(category: Optional[str]) -> Optional[str]:
        if not category:
            return None
        if allowed is None:
            return category
        return allowed.get(category.lower())

    # Known merchant with a category
    found = accept(directory.suggest_category(merchant))
    if found:
        return found, "merchant"

    haystack = " ".join(part for part in (merchant, text) if part).lower()
    if not haystack:
        return None, None

    # Keyword table
    for category, keywords in directory.category_keywords.items():
        found = accept(category)
        if not found:
            continue
        for keyword in keywords:
            if keyword.lower() in haystack:
                return found, f"keyword:{keyword}"

    # Category name mentioned verbatim
    if allowed:
        for lower_name, name in allowed.items():
            if lower_name in haystack:
                return name, "name"

    return None, None
