# catalog_repricer/gsheet.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import pandas as pd
import gspread
from google.oauth2.service_account import Credentials

from .logger import log

# Supplier sheets are only ever read
SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets.readonly",
]


def get_sheets_client(service_account_file: Path) -> gspread.Client:
    """
    Create an authorized gspread client from a service account JSON file.
    """
    creds = Credentials.from_service_account_file(
        str(service_account_file),
        scopes=SCOPES,
    )
    return gspread.authorize(creds)


def download_worksheet(
    client: gspread.Client,
    sheet_id: str,
    tab: Optional[str] = None,
    worksheet_id: Optional[int] = None,
) -> pd.DataFrame:
    """
    Read one worksheet of a supplier's Google Sheet into a DataFrame.

    The worksheet is picked by numeric id when given (supplier sheets get
    renamed more often than re-created), else by tab title, else the first
    worksheet.
    """
    sh = client.open_by_key(sheet_id)

    if worksheet_id is not None:
        ws = sh.get_worksheet_by_id(int(worksheet_id))
    elif tab:
        ws = sh.worksheet(tab)
    else:
        ws = sh.sheet1

    data = ws.get_all_records()
    df = pd.DataFrame(data)
    df.columns = [str(c).strip() for c in df.columns]

    log(
        f"Downloaded {len(df)} rows from '{ws.title}' in sheet {sheet_id}",
        context="gsheet",
    )
    return df
