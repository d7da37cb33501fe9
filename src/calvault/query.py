"""
Read-only SQL query execution against the archive.
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from .models import QueryError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_ALLOWED_PREFIXES = ("SELECT", "WITH")

_FORBIDDEN_PATTERNS = (
    "into ",
    "attach ",
    "detach ",
    "pragma ",
    "load_extension",
)

# SQLite invokes the progress handler every N virtual machine instructions.
_PROGRESS_INTERVAL = 10_000


@dataclass
class QueryResult:
    columns: list[str] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {"columns": self.columns, "rows": self.rows, "row_count": self.row_count}


def strip_sql_comments(sql: str) -> str:
    """Drop ``--`` comments and collapse the statement onto one line."""
    result = []
    for line in sql.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("--"):
            continue
        idx = trimmed.find("--")
        if idx > 0:
            trimmed = trimmed[:idx].strip()
        if trimmed:
            result.append(trimmed)
    return " ".join(result).strip()


def validate_query(sql: str) -> None:
    """Raise QueryError unless ``sql`` is a plain read-only SELECT."""
    normalized = strip_sql_comments(sql)
    if not normalized:
        raise QueryError("empty query")
    if not normalized.upper().startswith(_ALLOWED_PREFIXES):
        raise QueryError("only SELECT queries allowed")
    lower = sql.lower()
    for pattern in _FORBIDDEN_PATTERNS:
        if pattern in lower:
            raise QueryError(f"query contains forbidden pattern: {pattern.strip()}")


def _json_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class QueryExecutor:
    """Executes validated SELECT statements on a read-only connection."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        if not db_path.exists():
            raise QueryError(f"database not found: {db_path} (run 'init-db' or 'sync' first)")
        try:
            self.conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise QueryError(f"open database: {e}") from e

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def execute(self, sql: str, timeout: float = DEFAULT_TIMEOUT) -> QueryResult:
        validate_query(sql)

        deadline = time.monotonic() + timeout
        self.conn.set_progress_handler(
            lambda: 1 if time.monotonic() > deadline else 0, _PROGRESS_INTERVAL
        )
        try:
            cursor = self.conn.execute(sql)
            columns = [d[0] for d in cursor.description or ()]
            rows = [[_json_value(v) for v in row] for row in cursor.fetchall()]
        except sqlite3.OperationalError as e:
            if time.monotonic() > deadline:
                raise QueryError(f"query timed out after {timeout:g}s") from e
            raise QueryError(f"query failed: {e}") from e
        except (sqlite3.Error, sqlite3.Warning) as e:
            # Older Pythons signal multiple statements with sqlite3.Warning.
            raise QueryError(f"query failed: {e}") from e
        finally:
            self.conn.set_progress_handler(None, 0)

        logger.debug("Query returned %d row(s)", len(rows))
        return QueryResult(columns=columns, rows=rows)

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
