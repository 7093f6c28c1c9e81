# catalog_repricer/__init__.py
"""
Catalog Repricer: supplier feeds → Shopify catalog pricing.

Fetch Shopify catalog → aggregate wholesale supplier offers → reconcile by
part number → probe competitor prices with Playwright → resolve final prices →
push price/stock/cost through a Shopify bulk mutation.
"""

__all__ = [
    "config",
    "errors",
    "models",
    "logger",
    "gsheet",
    "workbook",
    "feeds",
    "offers",
    "reconcile",
    "pricing",
    "parsing",
    "scraping",
    "shopify",
    "payload",
    "retry",
    "bulk",
    "orchestrator",
]
