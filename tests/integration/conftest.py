"""Integration test fixtures.

Applies migrations/0001_identity.sql against an ephemeral PostgreSQL
database provided by pytest-postgresql before each integration test.
Collection is skipped when pg_ctl cannot be found, either on PATH or in
the directory reported by `pg_config --bindir`. A client-only install
ships pg_config without pg_ctl and cannot start a server.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_identity.sql",
]


def find_pg_ctl() -> str | None:
    """Return the pg_ctl path pytest-postgresql would use, or None."""
    found = shutil.which("pg_ctl")
    if found:
        return found
    pg_config = shutil.which("pg_config")
    if pg_config is None:
        return None
    proc = subprocess.run(
        [pg_config, "--bindir"], capture_output=True, text=True, check=False
    )
    if proc.returncode != 0:
        return None
    candidate = Path(proc.stdout.strip()) / "pg_ctl"
    return str(candidate) if candidate.is_file() else None


if find_pg_ctl() is None:
    collect_ignore_glob = ["test_*.py"]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (conn, dsn) with the schema applied.

    Each test gets a fresh database via function scope so tests are isolated.
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
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()
