"""Keyword tables used to classify free-text answers.

Every table is an ordered tuple of matchers; the first matcher that fits the
normalized input decides the result. Matching is case-insensitive and
substring based unless a matcher asks for an exact match.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

STYLE_URBAN = "urbano"
STYLE_CLASSIC = "clasico"

CATALOG_ONLINE = "online"
CATALOG_INLINE = "inline"

CART_ADD_MORE = "add_more"
CART_CHECKOUT = "checkout"

_QUANTITY_PATTERN = re.compile(r"\d+")


@dataclass(frozen=True)
class Matcher:
    pattern: str
    result: str
    exact: bool = False

    def matches(self, normalized: str) -> bool:
        if self.exact:
            return normalized == self.pattern
        return self.pattern in normalized


STYLE_MATCHERS: tuple[Matcher, ...] = (
    Matcher("urbano", STYLE_URBAN),
    Matcher("1", STYLE_URBAN),
    Matcher("clásico", STYLE_CLASSIC),
    Matcher("clasico", STYLE_CLASSIC),
    Matcher("2", STYLE_CLASSIC),
)

CATALOG_CHOICE_MATCHERS: tuple[Matcher, ...] = (
    Matcher("online", CATALOG_ONLINE),
    Matcher("web", CATALOG_ONLINE),
    Matcher("1", CATALOG_ONLINE),
)

ADD_MORE_MATCHERS: tuple[Matcher, ...] = (
    Matcher("sí", CART_ADD_MORE),
    Matcher("si", CART_ADD_MORE),
    Matcher("yes", CART_ADD_MORE),
    Matcher("agregar", CART_ADD_MORE),
    Matcher("más", CART_ADD_MORE),
    Matcher("1", CART_ADD_MORE, exact=True),
)

STYLE_LABELS = {STYLE_URBAN: "urbano", STYLE_CLASSIC: "clásico"}


def normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def classify(text: Optional[str], matchers: Sequence[Matcher], default: Optional[str] = None) -> Optional[str]:
    """Return the result of the first matcher that fits ``text``."""
    normalized = normalize(text)
    for matcher in matchers:
        if matcher.matches(normalized):
            return matcher.result
    return default


def classify_style(text: Optional[str]) -> Optional[str]:
    return classify(text, STYLE_MATCHERS)


def classify_catalog_choice(text: Optional[str]) -> str:
    return classify(text, CATALOG_CHOICE_MATCHERS, default=CATALOG_INLINE)


def classify_cart_answer(text: Optional[str]) -> str:
    return classify(text, ADD_MORE_MATCHERS, default=CART_CHECKOUT)


def find_quantity(text: Optional[str]) -> Optional[int]:
    """First integer literal in the text, or None."""
    match = _QUANTITY_PATTERN.search(text or "")
    if not match:
        return None
    return int(match.group(0))


def extract_quantity(text: Optional[str], default: int = 1) -> int:
    """Quantity requested in a message.

    Only the first integer literal counts: "quiero 2 del producto numero 5"
    yields 2. Zero falls back to the default so cart lines stay positive.
    """
    quantity = find_quantity(text)
    if not quantity:
        return default
    return quantity


def tokenize(text: Optional[str]) -> list[str]:
    return (text or "").split()
