# catalog_repricer/offers.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from .errors import SupplierFeedError
from .logger import log
from .models import SupplierOffer

RawOffer = Dict[str, Any]
FeedFetcher = Callable[[], Awaitable[List[RawOffer]]]


@dataclass(frozen=True)
class SupplierSource:
    name: str
    fetch: FeedFetcher
    normalization_factor: float = 1.0
    min_count: int = 0


def ensure_min_count(source_name: str, rows: Sequence[Any], minimum: int) -> None:
    """Refuse suspiciously small feeds instead of pricing from partial data."""
    if len(rows) < minimum:
        raise SupplierFeedError(
            f"Less than {minimum} products found from {source_name} (got {len(rows)})",
            detail={"source": source_name, "count": len(rows), "min_count": minimum},
        )


def tag_offers(source: SupplierSource, rows: Sequence[RawOffer]) -> List[SupplierOffer]:
    offers: List[SupplierOffer] = []
    rejected = 0
    for row in rows:
        try:
            offers.append(
                SupplierOffer.from_raw(
                    row,
                    source_name=source.name,
                    normalization_factor=source.normalization_factor,
                )
            )
        except (TypeError, ValueError):
            rejected += 1

    if rejected:
        log(
            f"Dropped {rejected} unusable rows from {source.name}",
            context="offers",
            extra={"source": source.name, "rejected": rejected},
            level="WARNING",
        )
    return offers


async def aggregate_offers(sources: Sequence[SupplierSource]) -> List[SupplierOffer]:
    """
    Fetch every supplier feed in order and return one flat offer list.

    Any failing source aborts the whole aggregation: a partial catalog
    update would silently misprice items.
    """
    all_offers: List[SupplierOffer] = []

    for source in sources:
        try:
            rows = await source.fetch()
        except SupplierFeedError:
            raise
        except Exception as exc:
            raise SupplierFeedError(
                f"Failed to fetch products from {source.name}: {exc}",
                detail={"source": source.name, "exception": type(exc).__name__},
            ) from exc

        offers = tag_offers(source, rows)
        ensure_min_count(source.name, offers, source.min_count)

        log(
            f"Fetched {len(offers)} products from {source.name}",
            context="offers",
            extra={"source": source.name, "count": len(offers)},
        )
        all_offers.extend(offers)

    return all_offers
