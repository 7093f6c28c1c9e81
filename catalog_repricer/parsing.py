# catalog_repricer/parsing.py
from __future__ import annotations

import re
from typing import List, Optional

from bs4 import BeautifulSoup

from .logger import log

_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")


def parse_price_text(text: str) -> Optional[float]:
    """
    '12 345 грн' → 12345.0, '1 299,50' → 1299.5, 'немає' → None.

    Whitespace (including NBSP/thin spaces used as thousand separators) is
    removed before the first number is taken.
    """
    compact = re.sub(r"\s+", "", text or "")
    m = _NUMBER_RE.search(compact)
    if not m:
        return None
    try:
        return float(m.group(0).replace(",", "."))
    except ValueError:
        return None


def extract_prices(html: str, selector: str) -> List[float]:
    soup = BeautifulSoup(html or "", "html.parser")
    prices: List[float] = []
    for node in soup.select(selector):
        price = parse_price_text(node.get_text(" ", strip=True))
        if price is not None:
            prices.append(price)
    return prices


def extract_min_price(html: str, selector: str) -> Optional[float]:
    """Lowest price among all nodes matching ``selector``; None if none parse."""
    prices = extract_prices(html, selector)
    if not prices:
        log(f"no prices matched selector={selector!r}", context="parsing")
        return None

    price = min(prices)
    log(
        f"extracted min price={price} from {len(prices)} candidates",
        context="parsing",
        extra={"candidates": prices},
    )
    return price
