import logging
from contextlib import nullcontext

from sqlalchemy.exc import ProgrammingError

from medibook.database import RESERVATION_OVERLAP_CONSTRAINT, _ensure_overlap_constraint


class FakeResult:
    def __init__(self, row):
        self.row = row

    def first(self):
        return self.row


class FakeConnection:
    def __init__(self, existing: bool = False, fail_on: str | None = None):
        self.existing = existing
        self.fail_on = fail_on
        self.statements = []

    def begin_nested(self):
        return nullcontext()

    def execute(self, statement, params=None):
        sql = str(statement)
        self.statements.append(sql)
        if self.fail_on and self.fail_on in sql:
            raise ProgrammingError(sql, params, Exception('permission denied to create extension "btree_gist"'))
        if 'pg_constraint' in sql:
            return FakeResult((1,) if self.existing else None)
        return FakeResult(None)


def test_overlap_constraint_is_added_when_missing() -> None:
    connection = FakeConnection()

    assert _ensure_overlap_constraint(connection) is True
    assert any(f'ADD CONSTRAINT {RESERVATION_OVERLAP_CONSTRAINT}' in sql for sql in connection.statements)


def test_existing_overlap_constraint_is_left_alone() -> None:
    connection = FakeConnection(existing=True)

    assert _ensure_overlap_constraint(connection) is True
    assert len(connection.statements) == 1


def test_refused_overlap_constraint_logs_warning_instead_of_failing(caplog) -> None:
    connection = FakeConnection(fail_on='CREATE EXTENSION')

    with caplog.at_level(logging.WARNING, logger='medibook.database'):
        assert _ensure_overlap_constraint(connection) is False

    assert not any('ADD CONSTRAINT' in sql for sql in connection.statements)
    assert 'Could not create reservation overlap constraint' in caplog.text
