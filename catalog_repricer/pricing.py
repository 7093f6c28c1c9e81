# catalog_repricer/pricing.py
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .config import PricingSettings, PricingTier
from .models import CompetitorObservation, MergedItem, PricePoints, ResolvedItem

# Bounds are reported in hundredths of the store currency
REPORTING_DECIMALS = 2


def round_to_unit(value: float, decimals: int = REPORTING_DECIMALS) -> float:
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def format_integer(value: Optional[float]) -> str:
    """Half-up integer string, the form Shopify expects for price/cost/delta."""
    return str(int(Decimal(str(value or 0)).quantize(Decimal(1), rounding=ROUND_HALF_UP)))


# -------------------------------------------------------------------
# Pricing engine
# -------------------------------------------------------------------


def select_tier(supplier_name: Optional[str], settings: PricingSettings) -> PricingTier:
    tier_name = settings.tier_membership.get(supplier_name or "", settings.default_tier)
    return settings.tiers[tier_name]


def stock_factor(in_stock: int) -> float:
    """
    Stock adjustment applied to all three bounds:

        in_stock == 1      → 1.02
        2 < in_stock <= 3  → 0.98
        in_stock > 3       → 0.97
        otherwise (0, 2)   → 1.00
    """
    if in_stock == 1:
        return 1.02
    if 2 < in_stock <= 3:
        return 0.98
    if in_stock > 3:
        return 0.97
    return 1.0


def calculate_price_points(merged: MergedItem, settings: PricingSettings) -> PricePoints:
    offer = merged.best_offer
    if offer is None:
        return PricePoints()

    tier = select_tier(offer.source_name, settings)
    wholesale = offer.wholesale_price

    low = round_to_unit(wholesale * tier.min_mult + tier.min_add)
    middle = round_to_unit(wholesale * tier.mid_mult + tier.mid_add)
    high = round_to_unit(wholesale * tier.max_mult + tier.max_add)

    factor = stock_factor(offer.in_stock)
    return PricePoints(
        min=round_to_unit(low * factor),
        mid=round_to_unit(middle * factor),
        max=round_to_unit(high * factor),
    )


# -------------------------------------------------------------------
# Final price resolver
# -------------------------------------------------------------------


def observed_competitor_price(
    competitor_price: Optional[float],
    floor_price: Optional[float],
) -> Optional[float]:
    present = [p for p in (competitor_price, floor_price) if p is not None]
    return min(present) if present else None


def resolve_final_price(
    retail_price: Optional[float],
    competitor_price: Optional[float],
    points: PricePoints,
    floor_price: Optional[float] = None,
) -> Optional[float]:
    """
    First match wins:
      1) supplier retail price, when set and non-zero
      2) no market signal at all → max bound
      3) market price clamped: above max → max, below min → mid, else as-is

    Returns None when the bounds are undefined (item has no best offer).
    """
    if retail_price:
        return retail_price

    if not points.defined:
        return None

    observed = observed_competitor_price(competitor_price, floor_price)
    if observed is None:
        return points.max

    if observed > points.max:
        return points.max
    if observed < points.min:
        # steep undercuts are not matched outright
        return points.mid
    return observed


# -------------------------------------------------------------------
# Delta metafield
# -------------------------------------------------------------------


def compute_delta(
    final_price: float,
    wholesale_price: float,
    supplier_name: Optional[str],
    settings: PricingSettings,
) -> float:
    delta = final_price - wholesale_price

    marker = settings.delta_exclusion_marker.casefold()
    if supplier_name and marker and marker in supplier_name.casefold():
        delta -= settings.delta_exclusion_offset

    if delta >= 200:
        delta *= 1.2
    elif delta >= 150:
        delta *= 1.15
    elif delta >= 100:
        delta *= 1.1

    return delta


# -------------------------------------------------------------------
# Stage glue
# -------------------------------------------------------------------


def resolve_item(
    merged: MergedItem,
    observation: CompetitorObservation,
    settings: PricingSettings,
) -> ResolvedItem:
    points = calculate_price_points(merged, settings)
    offer = merged.best_offer
    final_price = resolve_final_price(
        retail_price=offer.retail_price if offer else None,
        competitor_price=observation.price,
        points=points,
        floor_price=merged.item.competitor_floor_price,
    )
    return ResolvedItem(
        merged=merged,
        points=points,
        observation=observation,
        final_price=final_price,
    )
