# catalog_repricer/workbook.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd
import openpyxl

from .logger import log
from .models import ResolvedItem


SNAPSHOT_SHEET = "Resolved Items"

SNAPSHOT_COLUMNS = [
    "ID",
    "Title",
    "Handle",
    "Part Number",
    "Competitor Link",
    "Product SKU",
    "Alt Part Number",
    "Best Supplier",
    "Wholesale Price",
    "Retail Price",
    "Stock",
    "Warranty",
    "Competitor Price",
    "Min Price",
    "Mid Price",
    "Max Price",
    "Final Price",
]


# --------------------------------------------------------------
# Load XLSX workbook into pandas DataFrames
# --------------------------------------------------------------

def load_workbook_tables(workbook_path: Path) -> Dict[str, pd.DataFrame]:
    """
    Loads all sheets from XLSX into pandas DataFrames.
    Returns dict: sheet_name -> DataFrame
    """
    log(f"Loading workbook: {workbook_path}", context="workbook")

    try:
        xl = pd.ExcelFile(workbook_path, engine="openpyxl")
    except Exception as e:
        log(f"ERROR loading workbook: {e!r}", context="workbook", level="ERROR")
        raise

    sheets: Dict[str, pd.DataFrame] = {}

    for name in xl.sheet_names:
        df = xl.parse(name)
        df.columns = [str(c).strip() for c in df.columns]
        sheets[name] = df
        log(f"Loaded sheet '{name}' with {len(df)} rows", context="workbook")

    return sheets


def read_offer_sheet(workbook_path: Path, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """
    Returns the named sheet, or the first one when no name is given.
    """
    sheets = load_workbook_tables(workbook_path)
    if not sheets:
        raise KeyError(f"Workbook has no sheets: {workbook_path}")

    if sheet_name is None:
        return next(iter(sheets.values()))

    if sheet_name not in sheets:
        raise KeyError(f"Could not find sheet '{sheet_name}' in {workbook_path}")
    return sheets[sheet_name]


# --------------------------------------------------------------
# Run snapshot
# --------------------------------------------------------------

def snapshot_frame(items: Sequence[ResolvedItem]) -> pd.DataFrame:
    rows: List[list] = []
    for r in items:
        item = r.item
        offer = r.best_offer
        rows.append([
            item.id,
            item.title,
            item.handle,
            item.part_number,
            item.competitor_url,
            item.sku,
            item.alt_part_number,
            r.merged.best_supplier_name,
            offer.wholesale_price if offer else None,
            offer.retail_price if offer else None,
            offer.in_stock if offer else None,
            offer.warranty if offer else None,
            r.observation.price,
            r.points.min,
            r.points.mid,
            r.points.max,
            r.final_price,
        ])
    return pd.DataFrame(rows, columns=SNAPSHOT_COLUMNS)


def save_snapshot(items: Sequence[ResolvedItem], workbook_path: Path) -> Path:
    """
    Writes a fresh XLSX file with one row per resolved item.
    """
    workbook_path = Path(workbook_path)
    workbook_path.parent.mkdir(parents=True, exist_ok=True)
    log(f"Saving snapshot workbook → {workbook_path}", context="workbook")

    df = snapshot_frame(items)
    # NaN has no XLSX representation; leave those cells empty
    df = df.astype(object).where(pd.notna(df), None)

    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    ws = wb.create_sheet(title=SNAPSHOT_SHEET)

    ws.append(list(df.columns))
    for row in df.itertuples(index=False, name=None):
        ws.append(list(row))

    wb.save(workbook_path)
    log(f"Snapshot saved with {len(df)} rows.", context="workbook")
    return workbook_path
