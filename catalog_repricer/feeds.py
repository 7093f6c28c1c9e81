# catalog_repricer/feeds.py
"""
Generic supplier feed adapters.

Each adapter kind turns one supplier's published price list into rows of the
adapter contract:

    {
      "part_number": str,
      "name": str,
      "warranty": str,
      "in_stock": int,
      "wholesale_price": float,
      "retail_price": float | None,
    }

and refuses to return fewer rows than the feed's ``min_count``.
"""
from __future__ import annotations

import asyncio
import math
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import aiohttp
import pandas as pd

from .config import Settings, SupplierFeedConfig
from .errors import ConfigError, SupplierFeedError
from .gsheet import download_worksheet, get_sheets_client
from .offers import FeedFetcher, RawOffer, SupplierSource, ensure_min_count
from .workbook import read_offer_sheet

DEFAULT_COLUMNS: Dict[str, str] = {
    "part_number": "part_number",
    "name": "name",
    "in_stock": "instock",
    "wholesale_price": "price_opt",
    "retail_price": "price_rtl",
}

XML_TIMEOUT = 60  # seconds
XML_AVAILABLE_STOCK = 5  # YML feeds only say available/unavailable


def _columns(feed: SupplierFeedConfig) -> Dict[str, str]:
    columns = dict(DEFAULT_COLUMNS)
    columns.update(feed.options.get("columns") or {})
    return columns


def _number(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.replace(" ", "").replace(",", ".")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _text(value: Any) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ""
    return str(value).strip()


def rows_from_frame(
    df: pd.DataFrame,
    columns: Mapping[str, str],
    warranty: str,
    row_filter: Optional[Callable[[Mapping[str, Any]], bool]] = None,
) -> List[RawOffer]:
    rows: List[RawOffer] = []
    for record in df.to_dict(orient="records"):
        if row_filter is not None and not row_filter(record):
            continue

        part_number = _text(record.get(columns["part_number"]))
        stock = _number(record.get(columns["in_stock"]))
        rows.append({
            "part_number": part_number,
            "name": _text(record.get(columns["name"])) or part_number,
            "warranty": warranty,
            "in_stock": int(stock) if stock is not None else 0,
            "wholesale_price": _number(record.get(columns["wholesale_price"])),
            "retail_price": _number(record.get(columns.get("retail_price", ""))),
        })
    return rows


# -------------------------------------------------------------------
# Google Sheet feeds
# -------------------------------------------------------------------


def _positive_digit(value: Any) -> bool:
    text = str(value).strip()
    return text.isdecimal() and int(text) > 0


async def fetch_sheet_offers(feed: SupplierFeedConfig, service_account_file: Path) -> List[RawOffer]:
    sheet_id = feed.options.get("sheet_id")
    if not sheet_id:
        raise ConfigError(f"Sheet feed {feed.name} needs 'sheet_id'")

    columns = _columns(feed)
    stock_column = columns["in_stock"]

    def _download() -> pd.DataFrame:
        client = get_sheets_client(service_account_file)
        return download_worksheet(
            client,
            sheet_id=str(sheet_id),
            tab=feed.options.get("tab"),
            worksheet_id=feed.options.get("worksheet_id"),
        )

    df = await asyncio.to_thread(_download)
    rows = rows_from_frame(
        df,
        columns,
        feed.warranty,
        row_filter=lambda rec: _positive_digit(rec.get(stock_column, "")),
    )
    ensure_min_count(feed.name, rows, feed.min_count)
    return rows


# -------------------------------------------------------------------
# XLSX feeds
# -------------------------------------------------------------------


async def fetch_workbook_offers(feed: SupplierFeedConfig) -> List[RawOffer]:
    path = feed.options.get("path")
    if not path:
        raise ConfigError(f"Workbook feed {feed.name} needs 'path'")

    df = await asyncio.to_thread(read_offer_sheet, Path(path), feed.options.get("sheet"))
    rows = rows_from_frame(df, _columns(feed), feed.warranty)
    ensure_min_count(feed.name, rows, feed.min_count)
    return rows


# -------------------------------------------------------------------
# YML / XML catalog feeds
# -------------------------------------------------------------------


def parse_yml_offers(
    xml_text: str,
    warranty: str,
    available_stock: int = XML_AVAILABLE_STOCK,
) -> List[RawOffer]:
    """
    Parse ``yml_catalog/shop/offers/offer`` elements. Offers without a
    vendorCode or with a non-positive price are skipped.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise SupplierFeedError(f"Failed to read XML: {exc}") from exc

    rows: List[RawOffer] = []
    for offer in root.findall("./shop/offers/offer"):
        part_number = (offer.findtext("vendorCode") or "").strip()
        price = _number(offer.findtext("price"))
        if not part_number or not price or price <= 0:
            continue

        available = (offer.get("available") or "").lower() == "true"
        rows.append({
            "part_number": part_number,
            "name": (offer.findtext("name") or part_number).strip(),
            "warranty": warranty,
            "in_stock": available_stock if available else 0,
            "wholesale_price": price,
            "retail_price": None,
        })
    return rows


async def fetch_xml_offers(feed: SupplierFeedConfig) -> List[RawOffer]:
    url = feed.options.get("url")
    if not url:
        raise ConfigError(f"XML feed {feed.name} needs 'url'")

    timeout = aiohttp.ClientTimeout(total=XML_TIMEOUT)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url) as resp:
            if resp.status != 200:
                raise SupplierFeedError(
                    f"Failed to fetch XML: HTTP {resp.status}",
                    detail={"source": feed.name, "status": resp.status, "url": url},
                )
            text = await resp.text()

    rows = parse_yml_offers(
        text,
        feed.warranty,
        available_stock=int(feed.options.get("available_stock") or XML_AVAILABLE_STOCK),
    )
    ensure_min_count(feed.name, rows, feed.min_count)
    return rows


# -------------------------------------------------------------------
# Source table
# -------------------------------------------------------------------


def _fetcher_for(feed: SupplierFeedConfig, settings: Settings) -> FeedFetcher:
    if feed.kind == "sheet":
        if settings.google_service_account_file is None:
            raise ConfigError(
                f"Sheet feed {feed.name} needs GOOGLE_SERVICE_ACCOUNT_FILE in secrets.json"
            )
        account_file = settings.google_service_account_file
        return lambda: fetch_sheet_offers(feed, account_file)
    if feed.kind == "workbook":
        return lambda: fetch_workbook_offers(feed)
    if feed.kind == "xml":
        return lambda: fetch_xml_offers(feed)
    raise ConfigError(f"Unknown supplier feed kind '{feed.kind}' for {feed.name}")


def build_sources(settings: Settings) -> List[SupplierSource]:
    return [
        SupplierSource(
            name=feed.name,
            fetch=_fetcher_for(feed, settings),
            normalization_factor=feed.normalization_factor,
            min_count=feed.min_count,
        )
        for feed in settings.suppliers
    ]
