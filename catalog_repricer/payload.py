# catalog_repricer/payload.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence, Tuple

from .config import PricingSettings
from .logger import log
from .models import ResolvedItem
from .pricing import compute_delta, format_integer


def available_quantity(in_stock: int, buffer: int) -> int:
    return in_stock + buffer if in_stock > 0 else 0


def payload_line(
    resolved: ResolvedItem,
    pricing: PricingSettings,
    location_id: str,
) -> Dict[str, Any]:
    """
    One ``productUpdate`` input. Field names and string/int types must stay
    exactly as Shopify's ProductInput expects them.
    """
    item = resolved.item
    offer = resolved.best_offer
    if offer is None or resolved.final_price is None:
        raise ValueError(f"item {item.id} has no resolved price")

    supplier_name = offer.source_name or ""
    delta = compute_delta(resolved.final_price, offer.wholesale_price, supplier_name, pricing)

    return {
        "input": {
            "id": item.id,
            "title": item.title,
            "variants": [
                {
                    "price": format_integer(resolved.final_price),
                    "barcode": item.part_number,
                    "sku": f"{item.sku}^{supplier_name}",
                    "inventoryManagement": "SHOPIFY",
                    "inventoryQuantities": {
                        "availableQuantity": available_quantity(offer.in_stock, pricing.stock_buffer),
                        "locationId": location_id,
                    },
                    "inventoryItem": {
                        "cost": format_integer(offer.wholesale_price),
                    },
                }
            ],
            "metafields": [
                {
                    "namespace": "custom",
                    "key": "delta",
                    "value": format_integer(delta),
                    "type": "number_integer",
                },
                {
                    "namespace": "custom",
                    "key": "warranty",
                    "value": offer.warranty or "",
                    "type": "single_line_text_field",
                },
            ],
        }
    }


def build_payload(
    items: Sequence[ResolvedItem],
    pricing: PricingSettings,
    location_id: str,
) -> Tuple[str, int]:
    """
    Serialize resolved items as JSONL. Items without a final price are left
    out rather than pushed with a zero price.

    Returns (payload text, number of lines).
    """
    lines: List[str] = []
    skipped = 0
    for resolved in items:
        if resolved.final_price is None or resolved.best_offer is None:
            skipped += 1
            continue
        lines.append(
            json.dumps(
                payload_line(resolved, pricing, location_id),
                ensure_ascii=False,
                separators=(",", ":"),
            )
        )

    log(
        f"Serialized {len(lines)} payload lines, skipped {skipped} unpriced items",
        context="payload",
        extra={"lines": len(lines), "skipped": skipped},
    )
    return "\n".join(lines), len(lines)
