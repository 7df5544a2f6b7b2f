"""schedule_etl.schedule_store

Reconciliation of canonical schedule records into schedule_entry.

The natural key (store_number, date, employee_name, shift_time) decides
whether a record is new.  The write is a single INSERT ... ON CONFLICT DO
UPDATE so concurrent imports of the same key are resolved by PostgreSQL;
the inserted/updated classification comes from the existence check taken
just before the write.  Caller manages transaction/savepoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import NamedTuple

import psycopg

from schedule_etl.shared import ROW_INSERTED, ROW_UPDATED


class NaturalKey(NamedTuple):
    store_number: int
    date: date
    employee_name: str
    shift_time: str


@dataclass(frozen=True)
class ScheduleRecord:
    """One validated shift row, ready for reconciliation."""

    store_number: int
    date: date
    employee_name: str
    shift_time: str
    employee_id: str | None = None
    role: str | None = None
    employee_type: str | None = None
    scheduled_hours: Decimal | None = None
    region: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    notes: str | None = None
    published: bool = True

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(self.store_number, self.date, self.employee_name, self.shift_time)


@dataclass(frozen=True)
class UpsertResult:
    entry_id: str
    record: ScheduleRecord
    outcome: str  # ROW_INSERTED | ROW_UPDATED


def compose_shift_time(start: str | None, end: str | None) -> str | None:
    """'{start} - {end}' when both bounds exist, else whichever one does."""
    if start and end:
        return f"{start} - {end}"
    return start or end or None


# ---------------------------------------------------------------------------
# Store reference set (read-only)
# ---------------------------------------------------------------------------

def store_exists(conn: psycopg.Connection, store_number: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM store WHERE store_number = %s",
        (store_number,),
    ).fetchone()
    return row is not None


# ---------------------------------------------------------------------------
# schedule_entry
# ---------------------------------------------------------------------------

def find_schedule_entry(conn: psycopg.Connection, key: NaturalKey) -> str | None:
    row = conn.execute(
        """
        SELECT id FROM schedule_entry
        WHERE store_number = %s
          AND date = %s
          AND employee_name = %s
          AND shift_time = %s
        """,
        tuple(key),
    ).fetchone()
    return str(row[0]) if row else None


def upsert_schedule_entry(
    conn: psycopg.Connection,
    record: ScheduleRecord,
) -> UpsertResult:
    """Insert the record, or overwrite the mutable fields of its natural-key twin."""
    existing_id = find_schedule_entry(conn, record.natural_key)
    row = conn.execute(
        """
        INSERT INTO schedule_entry
          (store_number, date, employee_name, shift_time,
           employee_id, role, employee_type, scheduled_hours, region,
           start_time, end_time, notes, published)
        VALUES
          (%(store_number)s, %(date)s, %(employee_name)s, %(shift_time)s,
           %(employee_id)s, %(role)s, %(employee_type)s, %(scheduled_hours)s, %(region)s,
           %(start_time)s, %(end_time)s, %(notes)s, %(published)s)
        ON CONFLICT (store_number, date, employee_name, shift_time) DO UPDATE SET
          notes = EXCLUDED.notes,
          employee_id = EXCLUDED.employee_id,
          region = EXCLUDED.region,
          role = EXCLUDED.role,
          employee_type = EXCLUDED.employee_type,
          scheduled_hours = EXCLUDED.scheduled_hours,
          start_time = EXCLUDED.start_time,
          end_time = EXCLUDED.end_time,
          published = EXCLUDED.published,
          updated_at = now()
        RETURNING id
        """,
        {
            "store_number": record.store_number,
            "date": record.date,
            "employee_name": record.employee_name,
            "shift_time": record.shift_time,
            "employee_id": record.employee_id,
            "role": record.role,
            "employee_type": record.employee_type,
            "scheduled_hours": record.scheduled_hours,
            "region": record.region,
            "start_time": record.start_time,
            "end_time": record.end_time,
            "notes": record.notes,
            "published": record.published,
        },
    ).fetchone()
    outcome = ROW_UPDATED if existing_id is not None else ROW_INSERTED
    return UpsertResult(entry_id=str(row[0]), record=record, outcome=outcome)
