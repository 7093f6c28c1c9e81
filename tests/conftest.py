import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from catalog_repricer.config import (
    BulkSettings,
    PricingSettings,
    ProbeSettings,
    Settings,
    ShopifySettings,
)
from catalog_repricer.logger import clear_logs
from catalog_repricer.models import CatalogItem, MergedItem, SupplierOffer
from catalog_repricer.scraping import ProbeTactics


@pytest.fixture(autouse=True)
def _fresh_log_buffer():
    clear_logs()
    yield
    clear_logs()


@pytest.fixture
def pricing_settings():
    return PricingSettings()


@pytest.fixture
def settings():
    return Settings(
        shopify=ShopifySettings(store_url="https://shop.example.com", access_token="shpat_test"),
        probe=ProbeSettings(batch_size=2, navigation_timeout_ms=1000),
        bulk=BulkSettings(poll_interval_seconds=0.01, max_poll_attempts=300),
        pricing=PricingSettings(),
    )


@pytest.fixture
def no_wait_tactics():
    """Deterministic tactics that never actually sleep."""
    return ProbeTactics(rng=random.Random(7), sleep=AsyncMock())


def make_item(part_number="AB-100", **kwargs):
    defaults = {
        "id": f"gid://shopify/Product/{part_number}",
        "title": f"Widget {part_number}",
        "handle": f"widget-{part_number.lower()}",
        "part_number": part_number,
    }
    defaults.update(kwargs)
    return CatalogItem(**defaults)


def make_offer(part_number="AB-100", wholesale_price=100.0, source_name="ЧЕ", **kwargs):
    defaults = {
        "part_number": part_number,
        "name": f"Offer {part_number}",
        "warranty": "12 months",
        "in_stock": 2,
        "wholesale_price": wholesale_price,
        "source_name": source_name,
    }
    defaults.update(kwargs)
    return SupplierOffer(**defaults)


def make_merged(item=None, offer=None):
    item = item or make_item()
    if offer is None:
        return MergedItem(item=item)
    return MergedItem(item=item, offers=(offer,), best_offer=offer)


def async_cm(value):
    """MagicMock usable as ``async with ... as value``."""
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=value)
    cm.__aexit__ = AsyncMock(return_value=False)
    return cm


def http_response(status=200, json_body=None, text="", json_error=None):
    resp = MagicMock()
    resp.status = status
    if json_error is not None:
        resp.json = AsyncMock(side_effect=json_error)
    else:
        resp.json = AsyncMock(return_value=json_body)
    resp.text = AsyncMock(return_value=text)
    return async_cm(resp)
