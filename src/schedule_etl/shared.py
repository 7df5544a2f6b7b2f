"""schedule_etl.shared

Shared types for the schedule import pipeline: exceptions, the per-row
result and the import-wide accumulator, the immutable ImportOutcome returned
to callers, RejectWriter for skipped rows, and run-report writing.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Row classifications
ROW_INSERTED = "inserted"
ROW_UPDATED = "updated"
ROW_SKIPPED = "skipped"
ROW_ERROR = "error"

MAX_ERROR_MESSAGE_LENGTH = 200
MAX_RETAINED_ERRORS = 100


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ImportPayloadError(Exception):
    """Raised when a payload cannot be imported at all (no sheet, no data rows)."""


def truncate_message(message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# Row results + accumulator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RowResult:
    """Classification of one data row; detail is the skip reason or error text."""

    status: str
    detail: str | None = None

    @classmethod
    def skipped(cls, reason: str) -> RowResult:
        return cls(ROW_SKIPPED, reason)

    @classmethod
    def error(cls, exc: BaseException) -> RowResult:
        return cls(ROW_ERROR, truncate_message(f"{type(exc).__name__}: {exc}"))


@dataclass
class ImportCounters:
    rows_read: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)
    error_messages: list[str] = field(default_factory=list)

    def record(self, row_number: int, result: RowResult) -> None:
        self.rows_read += 1
        if result.status == ROW_INSERTED:
            self.inserted += 1
        elif result.status == ROW_UPDATED:
            self.updated += 1
        elif result.status == ROW_SKIPPED:
            self.skipped += 1
            reason = result.detail or "unspecified"
            self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1
        elif result.status == ROW_ERROR:
            self.errors += 1
            if len(self.error_messages) < MAX_RETAINED_ERRORS:
                self.error_messages.append(f"row {row_number}: {result.detail}")
        else:
            raise ValueError(f"Unknown row status {result.status!r}")


# ---------------------------------------------------------------------------
# ImportOutcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImportOutcome:
    """Final, immutable summary of one import."""

    import_id: str
    source_name: str | None
    sheet_name: str
    rows_considered: int
    inserted: int
    updated: int
    skipped: int
    errors_count: int
    duration_ms: int
    dry_run: bool = False
    skip_reasons: dict[str, int] = field(default_factory=dict)
    error_messages: tuple[str, ...] = ()

    @classmethod
    def from_counters(
        cls,
        counters: ImportCounters,
        *,
        import_id: str,
        source_name: str | None,
        sheet_name: str,
        duration_ms: int,
        dry_run: bool = False,
    ) -> ImportOutcome:
        return cls(
            import_id=import_id,
            source_name=source_name,
            sheet_name=sheet_name,
            rows_considered=counters.rows_read,
            inserted=counters.inserted,
            updated=counters.updated,
            skipped=counters.skipped,
            errors_count=counters.errors,
            duration_ms=duration_ms,
            dry_run=dry_run,
            skip_reasons=dict(counters.skip_reasons),
            error_messages=tuple(counters.error_messages),
        )

    @property
    def total_records(self) -> int:
        return self.inserted + self.updated

    @property
    def deduped(self) -> int:
        # Rows matching an existing natural key; same population as updated.
        return self.updated

    def to_result(self) -> dict[str, Any]:
        return {
            "success": True,
            "import_id": self.import_id,
            "source_name": self.source_name,
            "sheet": self.sheet_name,
            "total_records": self.total_records,
            "inserted": self.inserted,
            "updated": self.updated,
            "deduped": self.deduped,
            "skipped": self.skipped,
            "errors_count": self.errors_count,
            "duration_ms": self.duration_ms,
            "skip_reasons": dict(self.skip_reasons),
        }


def failure_result(
    import_id: str,
    error: BaseException,
    *,
    sheet_name: str | None = None,
    source_name: str | None = None,
    duration_ms: int = 0,
) -> dict[str, Any]:
    """Result contract for an import that aborted before or during its transaction."""
    return {
        "success": False,
        "import_id": import_id,
        "source_name": source_name,
        "sheet": sheet_name,
        "total_records": 0,
        "inserted": 0,
        "updated": 0,
        "deduped": 0,
        "skipped": 0,
        "errors_count": 0,
        "duration_ms": duration_ms,
        "error": truncate_message(f"{type(error).__name__}: {error}"),
    }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    import_id: str,
    started_at: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    result: dict[str, Any],
    rules_version: str,
    rules_hash: str | None,
    error_messages: tuple[str, ...] | list[str] = (),
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "import_id": import_id,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "rules_version": rules_version,
        "rules_hash": rules_hash,
        "result": result,
        "error_messages": list(error_messages),
    }
    report_path = reports_dir / f"{import_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
