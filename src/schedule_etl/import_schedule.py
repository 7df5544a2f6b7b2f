"""schedule_etl.import_schedule

Shift-schedule import: orchestration and CLI entrypoint.

One import = one sheet of one decoded payload, processed in source order
inside a single transaction:

  1. Pick the sheet (explicit name, else a preferred name, else the first).
  2. Resolve the header row once into a HeaderIndex.
  3. For each data row, up to the safety cap, under SAVEPOINT row_{idx}:
       extract → validate → store reference check → upsert
     A row is inserted, updated, skipped (validation / unknown store), or
     errored (unexpected exception; its savepoint is rolled back).
  4. Commit (or roll back for --dry-run).  Any failure outside the per-row
     boundary rolls the whole transaction back and propagates.

Usage:
    python -m schedule_etl.import_schedule \\
        --db-dsn "$DB_DSN" \\
        --payload-path "exports/shift-detail.json" \\
        --rules-file config/import_rules.yml
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Sequence

import click
import psycopg
import yaml

from schedule_etl.header_map import HeaderIndex, build_header_index, pick_cell, pick_value
from schedule_etl.import_rules import (
    ImportRules,
    ImportRulesValidationError,
    default_import_rules,
    load_import_rules,
)
from schedule_etl.normalize import (
    normalize_space,
    parse_bool,
    parse_date,
    parse_numeric,
    parse_store_number,
)
from schedule_etl.payload import ImportRequest, RawTable, csv_request, read_json_payload
from schedule_etl.schedule_store import (
    ScheduleRecord,
    compose_shift_time,
    store_exists,
    upsert_schedule_entry,
)
from schedule_etl.shared import (
    ROW_ERROR,
    ROW_SKIPPED,
    ImportCounters,
    ImportOutcome,
    ImportPayloadError,
    RejectWriter,
    RowResult,
    failure_result,
    write_run_report,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_DATA_ROWS = 200_000

# schedule_entry.scheduled_hours is numeric(5, 2).
MAX_SCHEDULED_HOURS = Decimal("999.99")

SKIP_MISSING_EMPLOYEE_NAME = "missing_employee_name"
SKIP_MISSING_STORE_NUMBER = "missing_store_number"
SKIP_MISSING_DATE = "missing_date"
SKIP_MISSING_SHIFT_TIME = "missing_shift_time"
SKIP_INVALID_STORE_NUMBER = "invalid_store_number"
SKIP_INVALID_DATE = "invalid_date"
SKIP_STORE_NOT_FOUND = "store_not_found"


# ---------------------------------------------------------------------------
# Sheet selection
# ---------------------------------------------------------------------------

def select_sheet(
    sheets: Mapping[str, RawTable],
    preferred: Sequence[str],
    sheet_name: str | None = None,
) -> tuple[str, RawTable]:
    """Return (name, rows) of the sheet to import.

    Raises ImportPayloadError when the payload has no sheets or the requested
    sheet is absent.
    """
    if not sheets:
        raise ImportPayloadError("No sheets found in payload")
    if sheet_name is not None:
        if sheet_name not in sheets:
            raise ImportPayloadError(
                f"Sheet {sheet_name!r} not found; available: {sorted(sheets)}"
            )
        return sheet_name, sheets[sheet_name]
    wanted = {p.strip().lower() for p in preferred}
    for name, rows in sheets.items():
        if name.strip().lower() in wanted:
            return name, rows
    name = next(iter(sheets))
    return name, sheets[name]


# ---------------------------------------------------------------------------
# Row extraction
# ---------------------------------------------------------------------------

def _parse_hours(raw: str | None) -> Decimal | None:
    """Scheduled hours, or None when unparseable or too large for the column."""
    hours = parse_numeric(raw)
    if hours is None or abs(hours) > MAX_SCHEDULED_HOURS:
        return None
    return hours


def extract_record(
    row: Sequence[Any],
    header_index: HeaderIndex,
    rules: ImportRules,
) -> tuple[ScheduleRecord | None, str | None]:
    """Build a ScheduleRecord from one data row.

    Returns (record, None) for a valid row, or (None, skip_reason).
    """

    def value(field_name: str) -> str | None:
        return pick_value(row, header_index, rules.alias_set(field_name))

    employee_name = normalize_space(value("employee_name"))
    if employee_name is None:
        parts = [p for p in (value("first_name"), value("last_name")) if p]
        employee_name = normalize_space(" ".join(parts))
    if employee_name is None:
        return None, SKIP_MISSING_EMPLOYEE_NAME

    store_raw = value("store_number")
    if store_raw is None:
        return None, SKIP_MISSING_STORE_NUMBER

    date_cell = pick_cell(row, header_index, rules.alias_set("date"))
    if date_cell is None:
        return None, SKIP_MISSING_DATE

    start = value("shift_start")
    end = value("shift_end")
    shift_time = compose_shift_time(start, end)
    if shift_time is None:
        return None, SKIP_MISSING_SHIFT_TIME

    store_number = parse_store_number(store_raw)
    if store_number is None:
        return None, SKIP_INVALID_STORE_NUMBER

    shift_date = parse_date(date_cell)
    if shift_date is None:
        return None, SKIP_INVALID_DATE

    return ScheduleRecord(
        store_number=store_number,
        date=shift_date,
        employee_name=employee_name,
        shift_time=shift_time,
        employee_id=value("employee_id"),
        role=value("role"),
        employee_type=value("employee_type"),
        scheduled_hours=_parse_hours(value("scheduled_hours")),
        region=value("region"),
        start_time=start,
        end_time=end,
        notes=value("notes"),
        published=parse_bool(value("published"), default=True),
    ), None


def _row_as_dict(header_row: Sequence[Any], row: Sequence[Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for idx, header in enumerate(header_row):
        key = header.strip() if isinstance(header, str) and header.strip() else f"column_{idx}"
        out[key] = row[idx] if idx < len(row) else ""
    return out


# ---------------------------------------------------------------------------
# Per-row processing
# ---------------------------------------------------------------------------

def _process_row(
    conn: psycopg.Connection,
    row: Sequence[Any],
    header_index: HeaderIndex,
    rules: ImportRules,
) -> RowResult:
    """Process one data row.  Caller manages savepoint."""
    record, skip_reason = extract_record(row, header_index, rules)
    if record is None:
        return RowResult.skipped(skip_reason or "unspecified")

    # Imports never create stores.
    if not store_exists(conn, record.store_number):
        return RowResult.skipped(SKIP_STORE_NOT_FOUND)

    result = upsert_schedule_entry(conn, record)
    return RowResult(result.outcome)


def _rollback_after_failure(conn: psycopg.Connection, import_id: str) -> None:
    try:
        conn.rollback()
    except psycopg.Error as exc:
        log.error("[%s] rollback after failure also failed: %s", import_id, exc)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def run_import(
    conn: psycopg.Connection,
    request: ImportRequest,
    *,
    rules: ImportRules | None = None,
    sheet_name: str | None = None,
    max_rows: int = MAX_DATA_ROWS,
    rejects: RejectWriter | None = None,
    dry_run: bool = False,
) -> ImportOutcome:
    """Import one sheet of a decoded payload in a single transaction.

    Args:
        conn: Open psycopg connection with autocommit off; this function owns
            its transaction until it commits or rolls back.
        request: Import label, source name and decoded sheets.
        rules: Alias sets and preferred sheets (built-in defaults if None).
        sheet_name: Import this sheet instead of the preferred/first one.
        max_rows: Data rows beyond this count are ignored entirely.
        rejects: Optional writer receiving skipped and errored rows.
        dry_run: Process everything, then roll back instead of committing.

    Returns:
        ImportOutcome with per-classification counts.

    Raises:
        ImportPayloadError: No sheet resolvable or no data rows (before any SQL).
        Exception: Any failure outside the per-row boundary, after rollback.
    """
    started = time.monotonic()
    rules = rules or default_import_rules()
    import_id = request.import_id

    chosen_name, table = select_sheet(request.sheets, rules.preferred_sheets, sheet_name)
    if len(table) < 2:
        raise ImportPayloadError(f"Sheet {chosen_name!r} has no data rows")

    header_row = table[0]
    header_index = build_header_index(header_row)
    if not header_index:
        log.warning("[%s] sheet %r has no usable headers; every row will be skipped",
                    import_id, chosen_name)

    available = len(table) - 1
    data_rows = table[1 : 1 + max_rows]
    if available > max_rows:
        log.warning("[%s] %d data rows exceed the cap of %d; %d rows ignored",
                    import_id, available, max_rows, available - max_rows)

    log.info("[%s] importing sheet %r (%d rows) from %s",
             import_id, chosen_name, len(data_rows), request.source_name)

    counters = ImportCounters()
    try:
        for idx, row in enumerate(data_rows):
            row_number = idx + 2  # sheet row, header is row 1
            sp_name = f"row_{idx}"
            conn.execute(f"SAVEPOINT {sp_name}")
            try:
                result = _process_row(conn, row, header_index, rules)
                conn.execute(f"RELEASE SAVEPOINT {sp_name}")
            except Exception as exc:
                conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
                result = RowResult.error(exc)
                log.warning("[%s] row %d failed: %s", import_id, row_number, result.detail)

            counters.record(row_number, result)
            if rejects is not None and result.status in (ROW_SKIPPED, ROW_ERROR):
                rejects.write(_row_as_dict(header_row, row), result.detail or result.status)

        if dry_run:
            conn.rollback()
            log.info("[%s] dry run: all changes rolled back", import_id)
        else:
            conn.commit()
    except Exception:
        log.error("[%s] import failed after %d rows; rolling back",
                  import_id, counters.rows_read, exc_info=True)
        _rollback_after_failure(conn, import_id)
        raise

    outcome = ImportOutcome.from_counters(
        counters,
        import_id=import_id,
        source_name=request.source_name,
        sheet_name=chosen_name,
        duration_ms=int((time.monotonic() - started) * 1000),
        dry_run=dry_run,
    )
    log.info(
        "[%s] done: %d inserted, %d updated, %d skipped, %d errors in %d ms",
        import_id, outcome.inserted, outcome.updated, outcome.skipped,
        outcome.errors_count, outcome.duration_ms,
    )
    return outcome


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _fatal(import_id: str, message: str) -> None:
    click.echo(f"[{import_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _validate_source_flags(
    csv_path: str | None,
    payload_path: str | None,
    import_id: str,
) -> None:
    if (csv_path is None) == (payload_path is None):
        _fatal(import_id, "exactly one of --csv-path or --payload-path is required")


@click.command()
@click.option("--db-dsn", required=True, envvar="DB_DSN", help="PostgreSQL DSN")
@click.option("--csv-path", default=None, type=click.Path(dir_okay=False), help="CSV export (single sheet)")
@click.option("--payload-path", default=None, type=click.Path(dir_okay=False), help="Decoded JSON payload with named sheets")
@click.option("--sheet-name", default=None, help="Import this sheet instead of the preferred/first one")
@click.option("--import-id", default=None, help="Override UUID for log correlation")
@click.option("--source-name", default=None, help="Original file name, for the result and report")
@click.option("--rules-file", default=None, type=click.Path(dir_okay=False), help="YAML import rules (field aliases, preferred sheets)")
@click.option(
    "--max-rows",
    default=MAX_DATA_ROWS,
    type=click.IntRange(min=1),
    show_default=True,
    help="Safety cap on data rows considered",
)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/schedule_rejects.csv",
    show_default=True,
)
@click.option("--reports-dir", default="./artifacts/reports", show_default=True)
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--verbose", is_flag=True, default=False, help="DEBUG logging")
def main(
    db_dsn: str,
    csv_path: str | None,
    payload_path: str | None,
    sheet_name: str | None,
    import_id: str | None,
    source_name: str | None,
    rules_file: str | None,
    max_rows: int,
    rejects_path: str,
    reports_dir: str,
    dry_run: bool,
    verbose: bool,
) -> None:
    """Import a shift-schedule export into schedule_entry."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    import_id = import_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    _validate_source_flags(csv_path, payload_path, import_id)
    click.echo(f"[{import_id}] Starting schedule import (dry_run={dry_run})")

    try:
        rules = load_import_rules(Path(rules_file)) if rules_file else default_import_rules()
    except (ImportRulesValidationError, yaml.YAMLError, OSError) as exc:
        _fatal(import_id, f"invalid rules file {rules_file}: {exc}")

    try:
        if csv_path is not None:
            request = csv_request(Path(csv_path), import_id, source_name)
        else:
            request = read_json_payload(Path(payload_path), import_id, source_name)  # type: ignore[arg-type]
    except (ImportPayloadError, OSError, UnicodeDecodeError) as exc:
        _fatal(import_id, f"unreadable payload: {exc}")
    import_id = request.import_id

    source_paths = {"csv_path": csv_path, "payload_path": payload_path}
    rejects = RejectWriter(Path(rejects_path))
    conn = None
    try:
        conn = psycopg.connect(db_dsn, autocommit=False)
        outcome = run_import(
            conn,
            request,
            rules=rules,
            sheet_name=sheet_name,
            max_rows=max_rows,
            rejects=rejects,
            dry_run=dry_run,
        )
    except Exception as exc:
        result = failure_result(
            import_id, exc, sheet_name=sheet_name, source_name=request.source_name,
        )
        report_path = write_run_report(
            import_id, started_at, dry_run, source_paths, result,
            rules.version, rules.yaml_hash, reports_dir=Path(reports_dir),
        )
        click.echo(f"[{import_id}] Run report: {report_path}")
        click.echo(json.dumps(result, indent=2, default=str))
        _fatal(import_id, f"import failed: {exc}")
    finally:
        if conn is not None:
            conn.close()
        rejects.close()

    result = outcome.to_result()
    report_path = write_run_report(
        import_id, started_at, dry_run, source_paths, result,
        rules.version, rules.yaml_hash, outcome.error_messages,
        reports_dir=Path(reports_dir),
    )
    click.echo(f"[{import_id}] Run report: {report_path}")
    click.echo(json.dumps(result, indent=2, default=str))
    if outcome.errors_count:
        click.echo(
            f"[{import_id}] {outcome.errors_count} row error(s); see run report",
            err=True,
        )
    if dry_run:
        click.echo(f"[{import_id}] DRY RUN — rolled back.")
    click.echo(f"[{import_id}] Done.")


if __name__ == "__main__":
    main()
