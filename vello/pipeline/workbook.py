from __future__ import annotations

import csv
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter

from .variables import VariableInfo


DATA_SHEET_TITLE = "Payslip Data"


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _load_csv(path: Path) -> List[Dict[str, str]]:
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise ValueError("CSV has no header")
        return [
            {key: _cell_text(value) for key, value in row.items() if key is not None}
            for row in reader
        ]


def _load_xlsx(path: Path) -> List[Dict[str, str]]:
    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        if not wb.sheetnames:
            raise ValueError("The Excel file contains no sheets.")
        ws = wb[wb.sheetnames[0]]
        rows = ws.iter_rows(values_only=True)
        header = next(rows, None)
        if not header or not any(h is not None for h in header):
            raise ValueError("The Excel file has no header row")
        keys = [_cell_text(h) for h in header]
        records: List[Dict[str, str]] = []
        for values in rows:
            record = {
                key: _cell_text(value)
                for key, value in zip(keys, values)
                if key
            }
            for key in keys:
                if key:
                    record.setdefault(key, "")
            records.append(record)
        return records
    finally:
        wb.close()


def load_rows(path: Path) -> List[Dict[str, str]]:
    """Read batch data from a CSV or XLSX file, one dict per non-empty row."""
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".csv":
        rows = _load_csv(path)
    elif suffix in (".xlsx", ".xlsm"):
        rows = _load_xlsx(path)
    else:
        raise ValueError(f"Unsupported data file type: {path.suffix}")
    rows = [row for row in rows if any(value for value in row.values())]
    if not rows:
        raise ValueError("Data file has no data rows")
    return rows


def build_data_sheet(variables: Sequence[VariableInfo], out_path: Path) -> Path:
    ordered = sorted(variables, key=lambda v: (v.category or "", v.key))
    headers = [v.key for v in ordered]

    wb = Workbook()
    ws = wb.active
    ws.title = DATA_SHEET_TITLE
    ws.append(headers)
    for index, header in enumerate(headers, start=1):
        ws.column_dimensions[get_column_letter(index)].width = max(len(header) + 5, 15)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(out_path)
    return out_path
