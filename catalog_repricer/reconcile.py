# catalog_repricer/reconcile.py
from __future__ import annotations

from collections import Counter, defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from .logger import log
from .models import CatalogItem, MergedItem, SupplierOffer

OfferIndex = Dict[str, List[Tuple[int, SupplierOffer]]]


def build_offer_index(offers: Sequence[SupplierOffer]) -> OfferIndex:
    """Lowercased part number → [(position in aggregate list, offer), ...]."""
    index: OfferIndex = defaultdict(list)
    for pos, offer in enumerate(offers):
        index[offer.part_number.strip().lower()].append((pos, offer))
    return index


def match_offers(item: CatalogItem, index: OfferIndex) -> Tuple[SupplierOffer, ...]:
    keys = {item.part_number.strip().lower()}
    if item.alt_part_number:
        keys.add(item.alt_part_number.strip().lower())
    keys.discard("")

    hits: Dict[int, SupplierOffer] = {}
    for key in keys:
        for pos, offer in index.get(key, ()):
            hits[pos] = offer

    # aggregated order, not key order
    return tuple(offer for _, offer in sorted(hits.items()))


def pick_best_offer(offers: Sequence[SupplierOffer]) -> Optional[SupplierOffer]:
    best: Optional[SupplierOffer] = None
    for offer in offers:
        if best is None or offer.normalized_price < best.normalized_price:
            best = offer
    return best


def reconcile(
    items: Sequence[CatalogItem],
    offers: Sequence[SupplierOffer],
) -> List[MergedItem]:
    """
    Attach matching supplier offers to every catalog item and pick the
    cheapest one by normalized price. Unmatched items are kept with no offers.
    """
    index = build_offer_index(offers)

    merged: List[MergedItem] = []
    for item in items:
        matched = match_offers(item, index)
        merged.append(MergedItem(item=item, offers=matched, best_offer=pick_best_offer(matched)))

    stats = merge_stats(merged)
    log(
        f"Merged {len(merged)} catalog items against {len(offers)} offers",
        context="reconcile",
        extra={"best_supplier_counts": stats},
    )
    return merged


def merge_stats(merged: Sequence[MergedItem]) -> Dict[str, int]:
    counts = Counter(m.best_supplier_name or "none" for m in merged)
    return dict(counts)
