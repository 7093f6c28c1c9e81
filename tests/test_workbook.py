import openpyxl
import pandas as pd
import pytest

from catalog_repricer.models import CompetitorObservation, PricePoints, ResolvedItem
from catalog_repricer.workbook import (
    SNAPSHOT_COLUMNS,
    SNAPSHOT_SHEET,
    read_offer_sheet,
    save_snapshot,
    snapshot_frame,
)

from conftest import make_item, make_merged, make_offer


@pytest.fixture
def resolved_items():
    priced = ResolvedItem(
        merged=make_merged(
            item=make_item("AB-1", sku="SKU-1", competitor_url="https://compare.example/ab-1"),
            offer=make_offer("AB-1", 100.0, "ЧЕ", in_stock=4),
        ),
        points=PricePoints(min=126.1, mid=155.2, max=184.3),
        observation=CompetitorObservation(price=150.0),
        final_price=150.0,
    )
    unmatched = ResolvedItem(merged=make_merged(item=make_item("ZZ-9")))
    return [priced, unmatched]


def test_snapshot_frame_columns(resolved_items):
    df = snapshot_frame(resolved_items)
    assert list(df.columns) == SNAPSHOT_COLUMNS
    assert df.loc[0, "Best Supplier"] == "ЧЕ"
    assert df.loc[0, "Final Price"] == 150.0
    assert pd.isna(df.loc[1, "Wholesale Price"])


def test_save_snapshot_writes_xlsx(resolved_items, tmp_path):
    path = save_snapshot(resolved_items, tmp_path / "out" / "snapshot.xlsx")

    wb = openpyxl.load_workbook(path)
    ws = wb[SNAPSHOT_SHEET]
    rows = list(ws.iter_rows(values_only=True))

    assert list(rows[0]) == SNAPSHOT_COLUMNS
    assert rows[1][3] == "AB-1"
    assert rows[1][-1] == 150
    assert rows[2][3] == "ZZ-9"
    assert rows[2][-1] is None


def test_read_offer_sheet_by_name(tmp_path):
    path = tmp_path / "feed.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame({"a": [1]}).to_excel(writer, sheet_name="Cover", index=False)
        pd.DataFrame({" part_number ": ["X"]}).to_excel(writer, sheet_name="Prices", index=False)

    assert list(read_offer_sheet(path).columns) == ["a"]
    assert list(read_offer_sheet(path, "Prices").columns) == ["part_number"]
    with pytest.raises(KeyError):
        read_offer_sheet(path, "Missing")
