"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import logging
import sqlite3
from contextlib import closing

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from calvault.config import AppConfig
from calvault.models import ConfigError

logger = logging.getLogger(__name__)


def run_preflight_checks(cfg: AppConfig, console: Console, need_secrets: bool = True) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. OAuth client secrets configured and present
    if need_secrets:
        try:
            cfg.require_client_secrets()
        except ConfigError as e:
            logger.error("Client secrets unavailable: %s", cfg.client_secrets)
            first_line = str(e).splitlines()[0]
            issues.append(
                (
                    "OAuth client secrets",
                    first_line,
                    "Set client_secrets in the [calvault] section of config.ini",
                )
            )

    # 2. Home directory writable + DB readable/writable if it exists
    db_path = cfg.database_path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create calvault home %s: %s", db_path.parent, e)
        issues.append(
            (
                "Database",
                f"{db_path}: {e}",
                f"Check permissions on {db_path.parent} or set CALVAULT_HOME",
            )
        )
    else:
        if db_path.exists():
            try:
                with closing(sqlite3.connect(db_path)) as conn:
                    conn.execute("SELECT 1")
                    # BEGIN IMMEDIATE takes the write lock and needs a journal file
                    # next to the database.
                    conn.execute("BEGIN IMMEDIATE")
                    conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Database not readable/writable (%s): %s", db_path, e)
                issues.append(
                    (
                        "Database",
                        f"{db_path}: {e}",
                        f"Check permissions on {db_path.parent} "
                        f"(journal files must be creatable alongside the database)",
                    )
                )

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
