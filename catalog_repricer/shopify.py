# catalog_repricer/shopify.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from .config import ShopifySettings
from .errors import ErrorCode, ShopifyApiError
from .logger import log
from .models import CatalogItem

DEFAULT_TIMEOUT = 60  # seconds
PAGE_SIZE = 250

PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges {
      node {
        id
        title
        handle
        variants(first: 1) {
          edges {
            node {
              barcode
            }
          }
        }
        custom_hotline_href: metafield(namespace: "custom", key: "hotline_href") {
          value
        }
        custom_product_number_1: metafield(namespace: "custom", key: "product_number_1") {
          value
        }
        custom_alternative_part_number: metafield(namespace: "custom", key: "alternative_part_number") {
          value
        }
        custom_competitor_minimum_price: metafield(namespace: "custom", key: "competitor_minimum_price") {
          value
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""


class ShopifyClient:
    """
    Thin GraphQL Admin API client over a shared aiohttp session.

    Every failure (HTTP status, transport error, GraphQL ``errors``) raises
    ``ShopifyApiError`` tagged with the caller's error code; nothing is
    retried here.
    """

    def __init__(self, settings: ShopifySettings, session: aiohttp.ClientSession) -> None:
        self.settings = settings
        self.session = session

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.settings.access_token,
        }

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.CATALOG_FETCH,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables

        try:
            async with self.session.post(
                self.settings.graphql_url,
                json=payload,
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=DEFAULT_TIMEOUT),
            ) as resp:
                status = resp.status
                if status != 200:
                    body = await resp.text()
                    raise ShopifyApiError(
                        f"Shopify GraphQL request failed: HTTP {status}",
                        code=code,
                        detail={"status": status, "body": body[:2000]},
                    )
                data: Dict[str, Any] = await resp.json()
        except ShopifyApiError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ShopifyApiError(
                f"Shopify GraphQL request failed: {type(exc).__name__}: {exc}",
                code=code,
                detail={"exception": type(exc).__name__},
            ) from exc
        except ValueError as exc:
            raise ShopifyApiError(
                f"Shopify returned a body that is not JSON: {exc}",
                code=code,
                detail={"exception": type(exc).__name__},
            ) from exc

        if not isinstance(data, dict):
            raise ShopifyApiError(
                "Shopify returned an unexpected JSON body",
                code=code,
                detail={"body": str(data)[:2000]},
            )

        errors = data.get("errors")
        if errors:
            messages = ", ".join(str(e.get("message", e)) for e in errors)
            raise ShopifyApiError(messages, code=code, detail={"errors": errors})

        return data.get("data") or {}

    async def fetch_catalog_items(self, page_size: int = PAGE_SIZE) -> List[CatalogItem]:
        """
        Page through every product and return them as catalog items.
        An empty catalog is an error: there is nothing to price.
        """
        items: List[CatalogItem] = []
        cursor: Optional[str] = None

        while True:
            data = await self.execute(PRODUCTS_QUERY, {"first": page_size, "after": cursor})
            products = data.get("products") or {}

            items.extend(
                catalog_item_from_node(edge.get("node") or {})
                for edge in products.get("edges") or []
            )
            log(f"Fetched {len(items)} products from Shopify", context="shopify")

            page_info = products.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            next_cursor = page_info.get("endCursor")
            if not next_cursor or next_cursor == cursor:
                raise ShopifyApiError(
                    "Shopify pagination did not advance past the current page",
                    detail={"cursor": cursor, "end_cursor": next_cursor},
                )
            cursor = next_cursor

        if not items:
            raise ShopifyApiError("No products found from Shopify")
        return items


def _metafield(node: Dict[str, Any], alias: str) -> str:
    field = node.get(alias) or {}
    return str(field.get("value") or "").strip()


def _parse_price(raw: str) -> Optional[float]:
    if not raw:
        return None
    try:
        return float(raw.replace(",", "."))
    except ValueError:
        return None


def catalog_item_from_node(node: Dict[str, Any]) -> CatalogItem:
    variants = (node.get("variants") or {}).get("edges") or []
    barcode = ""
    if variants:
        barcode = str((variants[0].get("node") or {}).get("barcode") or "").strip()

    return CatalogItem(
        id=str(node.get("id") or ""),
        title=str(node.get("title") or ""),
        handle=str(node.get("handle") or ""),
        part_number=barcode,
        alt_part_number=_metafield(node, "custom_alternative_part_number"),
        competitor_url=_metafield(node, "custom_hotline_href"),
        competitor_floor_price=_parse_price(_metafield(node, "custom_competitor_minimum_price")),
        sku=_metafield(node, "custom_product_number_1"),
    )
