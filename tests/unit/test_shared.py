"""Unit tests for schedule_etl.shared."""

from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from schedule_etl.shared import (
    MAX_ERROR_MESSAGE_LENGTH,
    MAX_RETAINED_ERRORS,
    ROW_INSERTED,
    ROW_UPDATED,
    ImportCounters,
    ImportOutcome,
    RejectWriter,
    RowResult,
    failure_result,
    truncate_message,
    write_run_report,
)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class TestTruncateMessage:
    def test_short_message_unchanged(self):
        assert truncate_message("boom") == "boom"

    def test_long_message_capped(self):
        out = truncate_message("x" * 500)
        assert len(out) == MAX_ERROR_MESSAGE_LENGTH
        assert out.endswith("...")

    def test_row_error_includes_exception_type(self):
        result = RowResult.error(ValueError("bad cell"))
        assert result.detail == "ValueError: bad cell"

    def test_row_error_truncated(self):
        result = RowResult.error(RuntimeError("y" * 1000))
        assert len(result.detail) == MAX_ERROR_MESSAGE_LENGTH


# ---------------------------------------------------------------------------
# ImportCounters
# ---------------------------------------------------------------------------

class TestImportCounters:
    def test_each_row_counted_once(self):
        counters = ImportCounters()
        counters.record(2, RowResult(ROW_INSERTED))
        counters.record(3, RowResult(ROW_UPDATED))
        counters.record(4, RowResult.skipped("missing_date"))
        counters.record(5, RowResult.error(ValueError("x")))
        assert counters.rows_read == 4
        assert (counters.inserted, counters.updated, counters.skipped, counters.errors) == (
            1, 1, 1, 1,
        )

    def test_skip_reasons_tallied(self):
        counters = ImportCounters()
        counters.record(2, RowResult.skipped("missing_date"))
        counters.record(3, RowResult.skipped("missing_date"))
        counters.record(4, RowResult.skipped("store_not_found"))
        assert counters.skip_reasons == {"missing_date": 2, "store_not_found": 1}

    def test_error_messages_carry_row_number(self):
        counters = ImportCounters()
        counters.record(7, RowResult.error(KeyError("x")))
        assert counters.error_messages == ["row 7: KeyError: 'x'"]

    def test_error_messages_bounded(self):
        counters = ImportCounters()
        for n in range(MAX_RETAINED_ERRORS + 25):
            counters.record(n + 2, RowResult.error(ValueError("x")))
        assert counters.errors == MAX_RETAINED_ERRORS + 25
        assert len(counters.error_messages) == MAX_RETAINED_ERRORS

    def test_unknown_status_raises(self):
        with pytest.raises(ValueError, match="bogus"):
            ImportCounters().record(2, RowResult("bogus"))


# ---------------------------------------------------------------------------
# ImportOutcome / result contract
# ---------------------------------------------------------------------------

def _outcome(**overrides) -> ImportOutcome:
    counters = ImportCounters(rows_read=6, inserted=3, updated=2, skipped=1)
    counters.skip_reasons = {"missing_date": 1}
    fields = dict(
        import_id="imp-1",
        source_name="July.xlsx",
        sheet_name="Shift Detail",
        duration_ms=12,
    )
    fields.update(overrides)
    return ImportOutcome.from_counters(counters, **fields)


class TestImportOutcome:
    def test_total_records_is_inserted_plus_updated(self):
        assert _outcome().total_records == 5

    def test_deduped_matches_updated(self):
        assert _outcome().deduped == _outcome().updated == 2

    def test_result_contract(self):
        result = _outcome().to_result()
        assert result == {
            "success": True,
            "import_id": "imp-1",
            "source_name": "July.xlsx",
            "sheet": "Shift Detail",
            "total_records": 5,
            "inserted": 3,
            "updated": 2,
            "deduped": 2,
            "skipped": 1,
            "errors_count": 0,
            "duration_ms": 12,
            "skip_reasons": {"missing_date": 1},
        }

    def test_result_is_json_serializable(self):
        json.dumps(_outcome().to_result())

    def test_outcome_is_immutable(self):
        outcome = _outcome()
        with pytest.raises(AttributeError):
            outcome.inserted = 99  # type: ignore[misc]

    def test_failure_result(self):
        result = failure_result("imp-2", ValueError("no data rows"), sheet_name="S")
        assert result["success"] is False
        assert result["error"] == "ValueError: no data rows"
        assert result["sheet"] == "S"
        assert result["total_records"] == result["inserted"] == result["updated"] == 0


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class TestRejectWriter:
    def test_no_file_until_first_write(self, tmp_path: Path):
        path = tmp_path / "rejects" / "out.csv"
        writer = RejectWriter(path)
        writer.close()
        assert not path.exists()

    def test_writes_rows_with_reason(self, tmp_path: Path):
        path = tmp_path / "rejects" / "out.csv"
        writer = RejectWriter(path)
        writer.write({"Employee Name": "", "Store": "79"}, "missing_employee_name")
        writer.write({"Employee Name": "Jane", "Store": "9999"}, "store_not_found")
        writer.close()
        with path.open(encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert [r["_reject_reason"] for r in rows] == [
            "missing_employee_name", "store_not_found",
        ]
        assert rows[1]["Store"] == "9999"


# ---------------------------------------------------------------------------
# write_run_report
# ---------------------------------------------------------------------------

class TestWriteRunReport:
    def test_writes_report_named_after_import(self, tmp_path: Path):
        result = _outcome().to_result()
        path = write_run_report(
            "imp-1", "2025-07-01T00:00:00+00:00", False,
            {"csv_path": "x.csv", "payload_path": None}, result,
            "v1.0.0", "abc123", ["row 4: ValueError: x"],
            reports_dir=tmp_path,
        )
        assert path == tmp_path / "imp-1.json"
        report = json.loads(path.read_text())
        assert report["result"] == result
        assert report["csv_path"] == "x.csv"
        assert report["rules_version"] == "v1.0.0"
        assert report["rules_hash"] == "abc123"
        assert report["error_messages"] == ["row 4: ValueError: x"]
        assert report["dry_run"] is False
        assert "finished_at" in report
