from __future__ import annotations

from pathlib import Path

import pandas as pd

from conftest import build_image, sample_entries
from hp3478acal.calram import CalibrationImage
from hp3478acal.reporting import export_entries_csv, format_entries_table


def test_format_entries_table_layout() -> None:
    table = format_entries_table(CalibrationImage(build_image(sample_entries())))
    lines = table.splitlines()
    assert len(lines) == 3 + 19
    assert lines[1].startswith("#   Entry")
    assert "Checksum" in lines[1]
    first = lines[3]
    assert first.startswith("01  ")
    assert "30 mV DC" in first
    assert "000123" in first
    assert "1.011900" in first
    assert lines[-1].startswith("19  ")
    assert "<not used>" in lines[-1]


def test_export_entries_csv(tmp_path: Path) -> None:
    out = tmp_path / "reports" / "entries.csv"
    export_entries_csv(CalibrationImage(build_image(sample_entries())), out)
    df = pd.read_csv(out, dtype={"offset_raw": str, "gain_raw": str, "checksum": str})
    assert len(df) == 19
    assert df.loc[2, "offset"] == -10
    assert df.loc[0, "offset_raw"] == "000123"
