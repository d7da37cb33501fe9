"""
Unit tests for the read-only query executor.
"""

from datetime import datetime
from datetime import timezone
from pathlib import Path

import pytest

from calvault.db import Store
from calvault.models import Attendee
from calvault.models import CalendarEntry
from calvault.models import EventRecord
from calvault.models import QueryError
from calvault.query import QueryExecutor
from calvault.query import strip_sql_comments
from calvault.query import validate_query

EXAMPLES_DIR = Path(__file__).resolve().parent.parent / "examples"


@pytest.fixture
def archive(db_path):
    with Store(db_path) as store:
        account = store.get_or_create_account("a@x.com")
        cal = store.upsert_calendar(account.id, CalendarEntry(id="primary", summary="Main"))
        for i, summary in enumerate(["Dermatologist", "Standup", "Standup"], start=1):
            event_id, _ = store.upsert_event(
                account.id,
                cal,
                EventRecord(
                    provider_event_id=f"e{i}",
                    summary=summary,
                    start_time=datetime(2024, 3, i, 9, tzinfo=timezone.utc),
                    organizer_email="boss@x.com",
                ),
            )
            store.replace_attendees(event_id, [Attendee(email="me@x.com")])
    return db_path


@pytest.fixture
def executor(archive):
    with QueryExecutor(archive) as ex:
        yield ex


class TestValidation:
    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT 1",
            "  select * from events",
            "WITH x AS (SELECT 1) SELECT * FROM x",
            "-- leading comment\nSELECT 1",
        ],
    )
    def test_accepted(self, sql):
        validate_query(sql)

    @pytest.mark.parametrize(
        "sql, message",
        [
            ("", "empty"),
            ("-- only a comment", "empty"),
            ("DELETE FROM events", "only SELECT"),
            ("UPDATE events SET summary = 'x'", "only SELECT"),
            ("SELECT * INTO backup FROM events", "into"),
            ("SELECT 1; ATTACH DATABASE 'x.db' AS x", "attach"),
            ("SELECT load_extension('evil')", "load_extension"),
            ("SELECT * FROM pragma_table_info('events'); PRAGMA writable_schema", "pragma"),
        ],
    )
    def test_rejected(self, sql, message):
        with pytest.raises(QueryError, match=message):
            validate_query(sql)

    def test_strip_comments(self):
        sql = "-- header\nSELECT a, -- trailing\n  b\nFROM t"
        assert strip_sql_comments(sql) == "SELECT a, b FROM t"


class TestExecute:
    def test_columns_and_rows(self, executor):
        result = executor.execute(
            "SELECT provider_event_id, summary FROM events ORDER BY provider_event_id"
        )

        assert result.columns == ["provider_event_id", "summary"]
        assert result.rows == [["e1", "Dermatologist"], ["e2", "Standup"], ["e3", "Standup"]]
        assert result.row_count == 3
        assert result.to_dict() == {
            "columns": result.columns,
            "rows": result.rows,
            "row_count": 3,
        }

    def test_blob_values_decoded(self, executor):
        assert executor.execute("SELECT X'6869' AS b").rows == [["hi"]]

    def test_sql_error_wrapped(self, executor):
        with pytest.raises(QueryError, match="query failed"):
            executor.execute("SELECT nope FROM events")

    def test_multiple_statements_rejected(self, executor):
        with pytest.raises(QueryError):
            executor.execute("SELECT 1; DELETE FROM events")
        assert executor.execute("SELECT COUNT(*) FROM events").rows == [[3]]

    def test_timeout(self, executor):
        runaway = (
            "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n) "
            "SELECT COUNT(*) FROM n"
        )
        with pytest.raises(QueryError, match="timed out"):
            executor.execute(runaway, timeout=0.2)

        # The connection is usable again after an aborted query.
        assert executor.execute("SELECT 1").rows == [[1]]

    def test_missing_database(self, tmp_path):
        with pytest.raises(QueryError, match="not found"):
            QueryExecutor(tmp_path / "missing.db")


@pytest.mark.parametrize("path", sorted(EXAMPLES_DIR.glob("*.sql")), ids=lambda p: p.name)
def test_bundled_examples_run(executor, path):
    result = executor.execute(path.read_text(encoding="utf-8"))
    assert result.columns


def test_examples_present():
    assert {p.name for p in EXAMPLES_DIR.glob("*.sql")} >= {
        "busiest_days.sql",
        "dermatologist_visits.sql",
        "meetings_by_organizer.sql",
    }
