"""Console table and CSV export for calibration entries."""
from __future__ import annotations

from pathlib import Path
from typing import Union

import pandas as pd

from .calram import CalibrationImage, describe_entries

CalibrationSource = Union[CalibrationImage, bytes, pd.DataFrame]


def _frame(data: CalibrationSource) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        return data
    return describe_entries(data)


def format_entries_table(data: CalibrationSource) -> str:
    """Render all entries as a fixed-width text table."""

    df = _frame(data)
    width = max(int(df["label"].str.len().max()), len("Calibration"))
    lines: list[str] = []
    lines.append(f"    {'Calibration':<{width}}  Raw              Raw")
    lines.append(f"#   {'Entry':<{width}}  Offset  Offset   Gain   Gain      Checksum")
    lines.append(f"--  {'-' * width}  ------  -------  -----  --------  --------")
    for row in df.itertuples(index=False):
        lines.append(
            f"{row.entry:02d}  {row.label:>{width}}  {row.offset_raw:>6}  {row.offset:>7}  "
            f"{row.gain_raw:>5}  {row.gain:>8.6f}  {row.checksum}"
        )
    return "\n".join(lines)


def export_entries_csv(data: CalibrationSource, path: Path) -> None:
    """Persist the entry table to *path* as CSV."""

    path.parent.mkdir(parents=True, exist_ok=True)
    _frame(data).to_csv(path, index=False)
