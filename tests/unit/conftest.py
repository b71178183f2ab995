"""Unit test fixtures: a psycopg-like connection that records SQL and returns no rows."""

from __future__ import annotations

from contextlib import contextmanager

import psycopg
import pytest


class FakeCursor:
    def fetchone(self):
        return None

    def fetchall(self):
        return []


class FakeConn:
    """Minimal psycopg-like conn; query helpers are monkeypatched in tests."""

    def __init__(self) -> None:
        self.statements: list[str] = []
        self.transactions = 0
        self.forced_rollbacks = 0
        self.closed = False

    def execute(self, sql, params=None):
        self.statements.append(" ".join(str(sql).split()))
        return FakeCursor()

    @contextmanager
    def transaction(self, savepoint_name=None, force_rollback=False):
        self.transactions += 1
        if force_rollback:
            self.forced_rollbacks += 1
        try:
            yield self
        except psycopg.Rollback:
            self.forced_rollbacks += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_conn() -> FakeConn:
    return FakeConn()
