"""Integration test fixtures.

Applies the schema migrations against an ephemeral PostgreSQL database
provided by pytest-postgresql and seeds the store reference table.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_schedule_core.sql",
]

SEED_STORES = [
    (79, "Syracuse (Electronics Pkwy)", "Central"),
    (1001, "Utica", "North"),
    (1002, "Rome", "North"),
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture: fresh schema per test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (conn, dsn) with schema applied and stores seeded.

    The connection is left with autocommit off, as the importer expects.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        for store_number, name, region in SEED_STORES:
            conn.execute(
                "INSERT INTO store (store_number, name, region) VALUES (%s, %s, %s)",
                (store_number, name, region),
            )
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()
