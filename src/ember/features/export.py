"""Write extracted records as delimited tables.

Column order is OUTPUT_COLUMNS for both the fire and non-fire tables; the
sentinel is written as an empty cell.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping

import pandas as pd

from ember.features.batch import EventFailure
from ember.schema import OUTPUT_COLUMNS

NA_REP = ""


def records_to_frame(records: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame([dict(r) for r in records], columns=list(OUTPUT_COLUMNS))


def export_table(records: Iterable[Mapping[str, Any]], folder: Path, description: str) -> Path:
    """Write `folder/description.csv` and return its path."""
    out_path = folder / f"{description}.csv"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df = records_to_frame(records)
    df.to_csv(out_path, index=False, na_rep=NA_REP)
    return out_path


def write_failures(failures: Iterable[EventFailure], out_path: Path) -> Path:
    """QA table of events that produced no record."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([{"ID": f.event_id, "reason": f.reason} for f in failures], columns=["ID", "reason"])
    df.to_csv(out_path, index=False)
    return out_path
