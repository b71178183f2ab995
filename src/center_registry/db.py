"""center_registry.db

Connection and transaction helpers shared by every module that writes.

Callers own the connection.  Multi-row writes run inside with_transaction
(psycopg opens a transaction, or a SAVEPOINT when one is already open), and
per-item isolation inside a batch uses savepoint().
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

import psycopg
from psycopg import errors as pg_errors

T = TypeVar("T")

_savepoint_seq = 0


def connect(db_dsn: str) -> psycopg.Connection:
    """Open a non-autocommit connection; the caller commits or rolls back."""
    return psycopg.connect(db_dsn, autocommit=False)


def with_transaction(conn: psycopg.Connection, fn: Callable[[psycopg.Connection], T]) -> T:
    """Run fn(conn) atomically; any exception rolls back everything fn wrote."""
    with conn.transaction():
        return fn(conn)


def _next_savepoint(prefix: str) -> str:
    global _savepoint_seq
    _savepoint_seq += 1
    return f"{prefix}_{_savepoint_seq}"


@contextmanager
def savepoint(conn: psycopg.Connection, prefix: str = "sp") -> Iterator[str]:
    """SAVEPOINT around one unit of work; ROLLBACK TO it if the block raises.

    The exception is re-raised after the rollback so the caller decides
    whether it counts as a failure or aborts the batch.
    """
    sp = _next_savepoint(prefix)
    conn.execute(f"SAVEPOINT {sp}")
    try:
        yield sp
    except Exception:
        conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
        raise
    conn.execute(f"RELEASE SAVEPOINT {sp}")


def is_unique_violation(exc: BaseException) -> bool:
    return isinstance(exc, pg_errors.UniqueViolation)

