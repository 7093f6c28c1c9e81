# catalog_repricer/logger.py

from __future__ import annotations

import json
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional

from .config import PROJECT_ROOT


# ================================================================
# BASE DIRECTORY
# ================================================================

LOG_ROOT = PROJECT_ROOT / "logs"


# ================================================================
# RUN MODE + RUN ID
# ================================================================

RUN_MODES = ("dry-run", "prod")
LEVELS = ("INFO", "WARNING", "ERROR")

CURRENT_RUN_MODE = "prod"
CURRENT_RUN_ID = uuid.uuid4().hex


def set_run_mode(mode: str) -> None:
    """
    dry-run  → payload written locally, no bulk sync
    prod     → full pipeline
    """
    global CURRENT_RUN_MODE
    if mode not in RUN_MODES:
        mode = "prod"
    CURRENT_RUN_MODE = mode


# ================================================================
# IN-MEMORY EVENT BUFFER
# ================================================================

_LOG_BUFFER: List[Dict[str, Any]] = []


def log(
    message: str,
    context: str = "general",
    extra: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
) -> None:
    _LOG_BUFFER.append(
        {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": CURRENT_RUN_ID,
            "mode": CURRENT_RUN_MODE,
            "level": level if level in LEVELS else "INFO",
            "context": context,
            "message": message,
            "extra": extra or {},
        }
    )


def clear_logs() -> None:
    """Empty the buffer and start a fresh run id."""
    global CURRENT_RUN_ID
    _LOG_BUFFER.clear()
    CURRENT_RUN_ID = uuid.uuid4().hex


# ================================================================
# JSONL EXPORT
# ================================================================

def export_logs_as_jsonl(log_root: Optional[Path] = None) -> str:
    """
    Append buffered events to a partitioned file:

        logs/<mode>/date=YYYY-MM-DD/hour=HH/catalog_repricer.jsonl

    Several runs in the same hour share a file; ``run_id`` tells them apart.
    """
    now = datetime.now(timezone.utc)

    partition = (
        Path(log_root or LOG_ROOT)
        / CURRENT_RUN_MODE
        / f"date={now:%Y-%m-%d}"
        / f"hour={now:%H}"
    )
    partition.mkdir(parents=True, exist_ok=True)

    out_file = partition / "catalog_repricer.jsonl"
    with out_file.open("a", encoding="utf-8") as f:
        for entry in _LOG_BUFFER:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

    return str(out_file)


# ================================================================
# QUERY
# ================================================================

def get_logs(
    context: Optional[str] = None,
    text: Optional[str] = None,
    level: Optional[str] = None,
) -> List[Dict[str, Any]]:
    out = []
    for ev in _LOG_BUFFER:
        if context and ev["context"] != context:
            continue
        if level and ev["level"] != level:
            continue
        if text and text.lower() not in ev["message"].lower():
            continue
        out.append(ev)
    return out


def level_counts() -> Dict[str, int]:
    return dict(Counter(ev["level"] for ev in _LOG_BUFFER))
