"""schedule_etl.payload

Intake of already-decoded tabular payloads.

Workbook decoding happens upstream; this module only accepts what arrives
from there:
  - a CSV export (one sheet, every cell text), or
  - a JSON payload of named sheets whose cells are text, numbers, booleans,
    null, or tagged dates ({"date": "2025-07-01"} / {"datetime": "..."}).

JSON payload shape:
    {
      "import_id": "optional-id",
      "source_name": "shift-detail.xlsx",
      "sheets": {"Shift Detail": [["Employee Name", ...], ["Jane Doe", ...]]}
    }
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

from schedule_etl.shared import ImportPayloadError

Cell = Any
RawTable = list[list[Cell]]


@dataclass(frozen=True)
class ImportRequest:
    """An import label, a source name and the decoded sheets (header row first)."""

    import_id: str
    source_name: str | None
    sheets: dict[str, RawTable]


def read_csv_table(csv_path: Path) -> RawTable:
    """Read a CSV export into rows of text cells."""
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        return [list(row) for row in csv.reader(fh)]


def _decode_cell(value: Any) -> Cell:
    if isinstance(value, dict):
        if "date" in value:
            return date.fromisoformat(value["date"])
        if "datetime" in value:
            return datetime.fromisoformat(value["datetime"])
        raise ImportPayloadError(f"Unsupported cell object: {value!r}")
    if isinstance(value, list):
        raise ImportPayloadError("Nested lists are not valid cell values.")
    return value


def decode_sheets(raw_sheets: Any) -> dict[str, RawTable]:
    if not isinstance(raw_sheets, dict):
        raise ImportPayloadError("'sheets' must be a mapping of sheet name to rows.")
    sheets: dict[str, RawTable] = {}
    for name, rows in raw_sheets.items():
        if not isinstance(rows, list) or not all(isinstance(r, list) for r in rows):
            raise ImportPayloadError(f"Sheet {name!r} must be a list of rows.")
        try:
            sheets[str(name)] = [[_decode_cell(c) for c in row] for row in rows]
        except (TypeError, ValueError) as exc:
            raise ImportPayloadError(f"Sheet {name!r}: {exc}") from exc
    return sheets


def read_json_payload(
    payload_path: Path,
    import_id: str,
    source_name: str | None = None,
) -> ImportRequest:
    """Load a JSON payload.

    The payload's own import_id and source_name take precedence over the
    arguments; the file name is the last fallback for source_name.
    """
    try:
        data = json.loads(payload_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ImportPayloadError(f"{payload_path.name} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict) or "sheets" not in data:
        raise ImportPayloadError(f"{payload_path.name} has no 'sheets' mapping.")
    return ImportRequest(
        import_id=str(data.get("import_id") or import_id),
        source_name=data.get("source_name") or source_name or payload_path.name,
        sheets=decode_sheets(data["sheets"]),
    )


def csv_request(csv_path: Path, import_id: str, source_name: str | None = None) -> ImportRequest:
    """Wrap a CSV export as a single-sheet request named after the file."""
    return ImportRequest(
        import_id=import_id,
        source_name=source_name or csv_path.name,
        sheets={csv_path.stem: read_csv_table(csv_path)},
    )
