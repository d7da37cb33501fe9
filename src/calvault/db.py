"""
SQLite persistence for the calendar archive.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from datetime import timezone
from pathlib import Path

from calvault.models import Account
from calvault.models import ArchiveStats
from calvault.models import Attendee
from calvault.models import Calendar
from calvault.models import CalendarEntry
from calvault.models import EventRecord
from calvault.models import SyncRun
from calvault.models import SyncStats

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY,
    source_type TEXT NOT NULL DEFAULT 'google',
    identifier TEXT NOT NULL UNIQUE,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS calendars (
    id INTEGER PRIMARY KEY,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    provider_calendar_id TEXT NOT NULL,
    summary TEXT,
    description TEXT,
    timezone TEXT,
    is_primary INTEGER DEFAULT 0,
    sync_token TEXT,
    last_synced_at TEXT,
    UNIQUE(account_id, provider_calendar_id)
);

CREATE INDEX IF NOT EXISTS idx_calendars_account ON calendars(account_id);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    calendar_id INTEGER NOT NULL REFERENCES calendars(id),
    provider_event_id TEXT NOT NULL,
    summary TEXT,
    description TEXT,
    location TEXT,
    start_time TEXT,
    end_time TEXT,
    all_day INTEGER DEFAULT 0,
    original_timezone TEXT,
    recurring_event_id TEXT,
    recurrence_rule TEXT,
    status TEXT DEFAULT 'confirmed',
    visibility TEXT,
    organizer_email TEXT,
    organizer_name TEXT,
    creator_email TEXT,
    created_at TEXT,
    updated_at TEXT,
    synced_at TEXT,
    UNIQUE(account_id, provider_event_id)
);

CREATE INDEX IF NOT EXISTS idx_events_start ON events(start_time);
CREATE INDEX IF NOT EXISTS idx_events_calendar ON events(calendar_id);
CREATE INDEX IF NOT EXISTS idx_events_recurring ON events(recurring_event_id);
CREATE INDEX IF NOT EXISTS idx_events_summary ON events(summary);

CREATE TABLE IF NOT EXISTS attendees (
    id INTEGER PRIMARY KEY,
    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    email TEXT NOT NULL,
    display_name TEXT,
    response_status TEXT,
    is_organizer INTEGER DEFAULT 0,
    is_self INTEGER DEFAULT 0,
    UNIQUE(event_id, email)
);

CREATE INDEX IF NOT EXISTS idx_attendees_email ON attendees(email);
CREATE INDEX IF NOT EXISTS idx_attendees_event ON attendees(event_id);

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    calendar_id INTEGER REFERENCES calendars(id),
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT NOT NULL DEFAULT 'running',
    events_added INTEGER DEFAULT 0,
    events_updated INTEGER DEFAULT 0,
    events_deleted INTEGER DEFAULT 0,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_account ON sync_runs(account_id);
"""

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def to_db_time(value: datetime | None) -> str | None:
    """Format a datetime for storage.

    Aware values are converted to UTC; naive values (all-day dates) are kept
    as wall-clock midnight with no conversion.
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(_TIME_FORMAT)


def _now() -> str:
    return datetime.now(timezone.utc).strftime(_TIME_FORMAT)


def _row_to_calendar(row: sqlite3.Row) -> Calendar:
    return Calendar(
        id=row["id"],
        account_id=row["account_id"],
        provider_calendar_id=row["provider_calendar_id"],
        summary=row["summary"] or "",
        description=row["description"] or "",
        timezone=row["timezone"] or "",
        is_primary=bool(row["is_primary"]),
        sync_token=row["sync_token"],
        last_synced_at=row["last_synced_at"],
    )


class Store:
    """SQLite store for accounts, calendars, events, attendees and sync runs.

    Single-statement writes commit immediately. Use ``transaction()`` to
    group several writes into one atomic unit.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self._tx_depth = 0

    def __enter__(self):
        if self.conn is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Open the database, creating the file and schema if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.execute("PRAGMA journal_mode = WAL")
        self._init_schema()
        return self

    def _init_schema(self):
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on error. Nested calls join the outer one."""
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self.conn.rollback()
            raise
        else:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self.conn.commit()

    # ------------------------------------------------------------------ #
    # Accounts                                                            #
    # ------------------------------------------------------------------ #

    def get_account(self, identifier: str) -> Account | None:
        row = self.conn.execute(
            "SELECT id, source_type, identifier, created_at FROM accounts WHERE identifier = ?",
            (identifier,),
        ).fetchone()
        if row is None:
            return None
        return Account(
            id=row["id"],
            identifier=row["identifier"],
            source_type=row["source_type"],
            created_at=row["created_at"],
        )

    def get_or_create_account(self, identifier: str) -> Account:
        """Return the account for ``identifier``, creating it on first use."""
        with self.transaction():
            self.conn.execute(
                "INSERT OR IGNORE INTO accounts (source_type, identifier) VALUES ('google', ?)",
                (identifier,),
            )
        return self.get_account(identifier)

    def list_accounts(self) -> list[Account]:
        cursor = self.conn.execute(
            "SELECT id, source_type, identifier, created_at FROM accounts ORDER BY identifier"
        )
        return [
            Account(
                id=row["id"],
                identifier=row["identifier"],
                source_type=row["source_type"],
                created_at=row["created_at"],
            )
            for row in cursor.fetchall()
        ]

    # ------------------------------------------------------------------ #
    # Calendars                                                           #
    # ------------------------------------------------------------------ #

    def upsert_calendar(self, account_id: int, entry: CalendarEntry) -> int:
        """Insert or refresh calendar metadata. The sync token is left untouched."""
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO calendars
                    (account_id, provider_calendar_id, summary, description, timezone, is_primary)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_id, provider_calendar_id) DO UPDATE SET
                    summary = excluded.summary,
                    description = excluded.description,
                    timezone = excluded.timezone,
                    is_primary = excluded.is_primary
                """,
                (
                    account_id,
                    entry.id,
                    entry.summary,
                    entry.description,
                    entry.timezone,
                    int(entry.is_primary),
                ),
            )
            row = self.conn.execute(
                "SELECT id FROM calendars WHERE account_id = ? AND provider_calendar_id = ?",
                (account_id, entry.id),
            ).fetchone()
        return row["id"]

    def get_calendars(self, account_id: int) -> list[Calendar]:
        cursor = self.conn.execute(
            "SELECT * FROM calendars WHERE account_id = ? ORDER BY is_primary DESC, summary",
            (account_id,),
        )
        return [_row_to_calendar(row) for row in cursor.fetchall()]

    def get_calendar(self, calendar_id: int) -> Calendar | None:
        row = self.conn.execute("SELECT * FROM calendars WHERE id = ?", (calendar_id,)).fetchone()
        return _row_to_calendar(row) if row else None

    def update_calendar_token(self, calendar_id: int, token: str):
        with self.transaction():
            self.conn.execute(
                "UPDATE calendars SET sync_token = ?, last_synced_at = ? WHERE id = ?",
                (token, _now(), calendar_id),
            )

    def clear_calendar_token(self, calendar_id: int):
        """Forget the sync token (provider answered 410 Gone)."""
        with self.transaction():
            self.conn.execute("UPDATE calendars SET sync_token = NULL WHERE id = ?", (calendar_id,))

    def mark_calendar_synced(self, calendar_id: int):
        with self.transaction():
            self.conn.execute(
                "UPDATE calendars SET last_synced_at = ? WHERE id = ?", (_now(), calendar_id)
            )

    # ------------------------------------------------------------------ #
    # Events                                                              #
    # ------------------------------------------------------------------ #

    def event_exists(self, account_id: int, provider_event_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM events WHERE account_id = ? AND provider_event_id = ?",
            (account_id, provider_event_id),
        ).fetchone()
        return row is not None

    def get_event(self, account_id: int, provider_event_id: str) -> sqlite3.Row | None:
        return self.conn.execute(
            "SELECT * FROM events WHERE account_id = ? AND provider_event_id = ?",
            (account_id, provider_event_id),
        ).fetchone()

    def upsert_event(self, account_id: int, calendar_id: int, record: EventRecord) -> tuple[int, bool]:
        """Insert or update an event.

        Returns ``(event_id, inserted)``. The existence probe and the write
        run in the same transaction.
        """
        with self.transaction():
            existing = self.conn.execute(
                "SELECT id FROM events WHERE account_id = ? AND provider_event_id = ?",
                (account_id, record.provider_event_id),
            ).fetchone()
            cursor = self.conn.execute(
                """
                INSERT INTO events (
                    account_id, calendar_id, provider_event_id, summary, description, location,
                    start_time, end_time, all_day, original_timezone,
                    recurring_event_id, recurrence_rule, status, visibility,
                    organizer_email, organizer_name, creator_email,
                    created_at, updated_at, synced_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_id, provider_event_id) DO UPDATE SET
                    calendar_id = excluded.calendar_id,
                    summary = excluded.summary,
                    description = excluded.description,
                    location = excluded.location,
                    start_time = excluded.start_time,
                    end_time = excluded.end_time,
                    all_day = excluded.all_day,
                    original_timezone = excluded.original_timezone,
                    recurring_event_id = excluded.recurring_event_id,
                    recurrence_rule = excluded.recurrence_rule,
                    status = excluded.status,
                    visibility = excluded.visibility,
                    organizer_email = excluded.organizer_email,
                    organizer_name = excluded.organizer_name,
                    creator_email = excluded.creator_email,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    synced_at = excluded.synced_at
                """,
                (
                    account_id,
                    calendar_id,
                    record.provider_event_id,
                    record.summary,
                    record.description,
                    record.location,
                    to_db_time(record.start_time),
                    to_db_time(record.end_time),
                    int(record.all_day),
                    record.original_timezone,
                    record.recurring_event_id,
                    record.recurrence_rule,
                    record.status,
                    record.visibility,
                    record.organizer_email,
                    record.organizer_name,
                    record.creator_email,
                    to_db_time(record.created_at),
                    to_db_time(record.updated_at),
                    _now(),
                ),
            )
        if existing is not None:
            return existing["id"], False
        return cursor.lastrowid, True

    def delete_event(self, account_id: int, provider_event_id: str) -> bool:
        """Delete an event and its attendees. Returns False if nothing matched."""
        with self.transaction():
            cursor = self.conn.execute(
                "DELETE FROM events WHERE account_id = ? AND provider_event_id = ?",
                (account_id, provider_event_id),
            )
        return cursor.rowcount > 0

    def count_events(self, account_id: int | None = None, calendar_id: int | None = None) -> int:
        sql = "SELECT COUNT(*) FROM events WHERE 1 = 1"
        params: list[int] = []
        if account_id is not None:
            sql += " AND account_id = ?"
            params.append(account_id)
        if calendar_id is not None:
            sql += " AND calendar_id = ?"
            params.append(calendar_id)
        return self.conn.execute(sql, params).fetchone()[0]

    # ------------------------------------------------------------------ #
    # Attendees                                                           #
    # ------------------------------------------------------------------ #

    def replace_attendees(self, event_id: int, attendees: list[Attendee]):
        """Replace the whole attendee set of an event (delete then insert)."""
        with self.transaction():
            self.conn.execute("DELETE FROM attendees WHERE event_id = ?", (event_id,))
            for a in attendees:
                self.conn.execute(
                    """
                    INSERT INTO attendees
                        (event_id, email, display_name, response_status, is_organizer, is_self)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(event_id, email) DO UPDATE SET
                        display_name = excluded.display_name,
                        response_status = excluded.response_status,
                        is_organizer = excluded.is_organizer,
                        is_self = excluded.is_self
                    """,
                    (
                        event_id,
                        a.email,
                        a.display_name,
                        a.response_status,
                        int(a.is_organizer),
                        int(a.is_self),
                    ),
                )

    def get_attendees(self, event_id: int) -> list[Attendee]:
        cursor = self.conn.execute(
            "SELECT email, display_name, response_status, is_organizer, is_self "
            "FROM attendees WHERE event_id = ? ORDER BY email",
            (event_id,),
        )
        return [
            Attendee(
                email=row["email"],
                display_name=row["display_name"] or "",
                response_status=row["response_status"] or "",
                is_organizer=bool(row["is_organizer"]),
                is_self=bool(row["is_self"]),
            )
            for row in cursor.fetchall()
        ]

    # ------------------------------------------------------------------ #
    # Sync runs                                                           #
    # ------------------------------------------------------------------ #

    def start_sync_run(self, account_id: int, calendar_id: int | None = None) -> int:
        with self.transaction():
            cursor = self.conn.execute(
                "INSERT INTO sync_runs (account_id, calendar_id, started_at, status) "
                "VALUES (?, ?, ?, 'running')",
                (account_id, calendar_id, _now()),
            )
        return cursor.lastrowid

    def finish_sync_run(
        self,
        run_id: int,
        status: str,
        stats: SyncStats | None = None,
        error: str | None = None,
    ) -> bool:
        """Finalize a running sync run. Returns False if it was already finalized."""
        if status not in ("completed", "failed", "cancelled"):
            raise ValueError(f"invalid sync run status: {status!r}")
        stats = stats or SyncStats()
        with self.transaction():
            cursor = self.conn.execute(
                "UPDATE sync_runs SET completed_at = ?, status = ?, "
                "events_added = ?, events_updated = ?, events_deleted = ?, error_message = ? "
                "WHERE id = ? AND status = 'running'",
                (_now(), status, stats.added, stats.updated, stats.deleted, error, run_id),
            )
        return cursor.rowcount > 0

    def get_sync_run(self, run_id: int) -> SyncRun | None:
        row = self.conn.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,)).fetchone()
        return SyncRun(**dict(row)) if row else None

    def get_recent_sync_runs(self, limit: int = 10) -> list[SyncRun]:
        cursor = self.conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,)
        )
        return [SyncRun(**dict(row)) for row in cursor.fetchall()]

    # ------------------------------------------------------------------ #
    # Statistics                                                          #
    # ------------------------------------------------------------------ #

    def get_stats(self) -> ArchiveStats:
        def scalar(sql: str):
            return self.conn.execute(sql).fetchone()[0]

        return ArchiveStats(
            account_count=scalar("SELECT COUNT(*) FROM accounts"),
            calendar_count=scalar("SELECT COUNT(*) FROM calendars"),
            event_count=scalar("SELECT COUNT(*) FROM events"),
            earliest_event=scalar("SELECT MIN(start_time) FROM events WHERE start_time IS NOT NULL"),
            latest_event=scalar("SELECT MAX(start_time) FROM events WHERE start_time IS NOT NULL"),
            unique_locations=scalar(
                "SELECT COUNT(DISTINCT location) FROM events "
                "WHERE location IS NOT NULL AND location != ''"
            ),
            recurring_count=scalar(
                "SELECT COUNT(*) FROM events "
                "WHERE (recurring_event_id IS NOT NULL AND recurring_event_id != '') "
                "OR (recurrence_rule IS NOT NULL AND recurrence_rule != '')"
            ),
        )

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
