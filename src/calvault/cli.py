"""
Command-line interface for calvault.
"""

import json
import logging
import signal
import sqlite3
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from calvault.config import AppConfig
from calvault.config import default_config_path
from calvault.config import load_config
from calvault.db import Store
from calvault.models import CalendarSyncError
from calvault.models import ConfigError
from calvault.models import QueryError
from calvault.models import Summary
from calvault.models import SyncMode
from calvault.models import TokenState

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Archive Google Calendar history into a local SQLite database.",
)

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file path (default: <home>/config.ini)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=err_console)],
    )
    # googleapiclient logs every discovery/request at INFO.
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def _load_app_config() -> AppConfig:
    try:
        return load_config(state.config_path)
    except ConfigError as e:
        console.print(f"[bold red]Config error:[/] {e}")
        raise typer.Exit(1) from None


def _open_store(cfg: AppConfig) -> Store:
    try:
        return Store(cfg.database_path).connect()
    except (OSError, sqlite3.Error) as e:
        console.print(f"[bold red]Error:[/] cannot open {cfg.database_path}: {e}")
        raise typer.Exit(1) from None


def _oauth_manager(cfg: AppConfig):
    from calvault.oauth import OAuthManager

    try:
        secrets = cfg.require_client_secrets()
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    return OAuthManager(secrets, cfg.tokens_dir)


class ConsoleProgress:
    """Prints per-calendar progress lines to the console."""

    def __init__(self, out: Console):
        self.out = out

    def on_calendar_start(self, calendar_name: str) -> None:
        self.out.print(f"  [dim]→[/dim] {calendar_name}")

    def on_calendar_done(self, calendar_name: str, added: int, updated: int, deleted: int) -> None:
        self.out.print(
            f"  [green]✓[/green] {calendar_name}: "
            f"[green]+{added}[/green] [yellow]~{updated}[/yellow] [red]-{deleted}[/red]"
        )

    def on_event(self, event_summary: str) -> None:
        logger.debug(f"    {event_summary or '(no title)'}")


def _install_sigint(cancel_event: threading.Event):
    """Route Ctrl-C to ``cancel_event``; a second Ctrl-C interrupts immediately."""

    def _handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()
        err_console.print("[yellow]Interrupt received, finishing current event...[/]")

    try:
        return signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread; cancellation stays manual.
        return None


def _print_summary(summary: Summary) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Calendars", str(summary.calendars_synced))
    results.add_row("Added", str(summary.events_added))
    results.add_row("Updated", str(summary.events_updated))
    results.add_row("Deleted", str(summary.events_deleted))
    error_val = Text(str(summary.errors))
    if summary.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)
    results.add_row("Duration", f"{summary.duration:.1f}s")
    if summary.cancelled:
        results.add_row("Status", Text("cancelled", style="yellow"))

    console.print(Panel(results, title=f"[bold]{summary.account}[/bold]", expand=False))


def _print_failures(failures: list[tuple[str, str, str]]) -> None:
    table = Table(show_header=True, header_style="bold red")
    table.add_column("Account")
    table.add_column("Calendar")
    table.add_column("Error", overflow="fold")
    for account, calendar, error in failures:
        table.add_row(account, calendar, error)
    console.print(Panel(table, title="[bold red]Failures[/bold red]"))


# ---------------------------------------------------------------------------
# Subcommand: init-db
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create the archive database (safe to re-run)."""
    cfg = _load_app_config()
    with _open_store(cfg) as store:
        stats = store.get_stats()

    info = Text()
    info.append("  Database:  ", style="bold")
    info.append(f"{cfg.database_path}\n")
    info.append("  Accounts:  ", style="bold")
    info.append(f"{stats.account_count}\n")
    info.append("  Calendars: ", style="bold")
    info.append(f"{stats.calendar_count}\n")
    info.append("  Events:    ", style="bold")
    info.append(str(stats.event_count))
    console.print(Panel(info, title="[bold]Database initialized[/bold]"))


# ---------------------------------------------------------------------------
# Subcommand: add-account
# ---------------------------------------------------------------------------


@app.command("add-account")
def add_account(
    email: Annotated[str, typer.Argument(help="Google account email address")],
    headless: Annotated[
        bool,
        typer.Option("--headless", help="Print the authorization URL instead of opening a browser"),
    ] = False,
) -> None:
    """Authorize a Google account and register it in the archive."""
    from calvault.preflight import run_preflight_checks

    cfg = _load_app_config()
    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)

    oauth = _oauth_manager(cfg)
    if oauth.has_token(email):
        console.print(f"[yellow]Account {email} is already authorized.[/]")
    else:
        if headless:
            console.print(
                "[bold]Headless mode:[/] open the URL below in a browser. If that browser "
                "runs on another machine, forward the printed localhost port over SSH."
            )
        try:
            oauth.authorize(email, headless=headless)
        except CalendarSyncError as e:
            console.print(f"[bold red]Authorization failed:[/] {e}")
            raise typer.Exit(1) from None

    with _open_store(cfg) as store:
        store.get_or_create_account(email)

    console.print(f"[green]✓[/green] Account [cyan]{email}[/] ready. Run [cyan]calvault sync[/].")


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    email: Annotated[
        str | None,
        typer.Argument(help="Account to sync (default: every authorized account)"),
    ] = None,
    incremental: Annotated[
        bool,
        typer.Option("--incremental", "-i", help="Only fetch changes since the last sync"),
    ] = False,
) -> None:
    """Sync calendars into the archive.

    A full sync re-reads every event. [cyan]--incremental[/] applies only the
    changes since the stored sync token and falls back to a full sync for
    calendars without one.
    """
    from calvault.google_client import GoogleCalendarClient
    from calvault.preflight import run_preflight_checks
    from calvault.ratelimit import RateLimiter
    from calvault.sync import CalendarSynchronizer
    from calvault.sync import SyncOptions

    cfg = _load_app_config()
    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)

    oauth = _oauth_manager(cfg)
    mode = SyncMode.INCREMENTAL if incremental else SyncMode.FULL

    with _open_store(cfg) as store:
        if email:
            emails = [email]
        else:
            emails = [a.identifier for a in store.list_accounts()]
            if not emails:
                console.print(
                    "[yellow]No accounts yet. Run[/] [cyan]calvault add-account EMAIL[/] "
                    "[yellow]first.[/]"
                )
                raise typer.Exit(1)

        cancel_event = threading.Event()
        limiter = RateLimiter(cfg.rate_limit_qps)
        options = SyncOptions(progress=ConsoleProgress(console), cancel_event=cancel_event)
        failures: list[tuple[str, str, str]] = []

        previous_handler = _install_sigint(cancel_event)
        try:
            for account_email in emails:
                if cancel_event.is_set():
                    break

                console.rule(f"[bold]{account_email}[/bold] [dim]({mode.value} sync)[/dim]")
                try:
                    creds = oauth.credentials(account_email)
                except ConfigError as e:
                    console.print(f"[bold red]Error:[/] {e}")
                    failures.append((account_email, "—", str(e)))
                    continue

                client = GoogleCalendarClient.from_credentials(
                    creds, rate_limiter=limiter, cancel_event=cancel_event
                )
                synchronizer = CalendarSynchronizer(client, store, options)
                try:
                    summary = synchronizer.sync_account(account_email, mode)
                except CalendarSyncError as e:
                    console.print(f"[bold red]Sync failed:[/] {e}")
                    failures.append((account_email, "—", str(e)))
                    continue

                _print_summary(summary)
                for failure in summary.failures:
                    failures.append((account_email, failure.calendar_name, failure.error))
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/]")
            raise typer.Exit(130) from None
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGINT, previous_handler)

    if cancel_event.is_set():
        console.print(
            "[yellow]Sync cancelled.[/] Completed calendars are saved; "
            "re-run to continue."
        )

    if failures:
        _print_failures(failures)
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: stats
# ---------------------------------------------------------------------------


@app.command()
def stats() -> None:
    """Show archive statistics."""
    cfg = _load_app_config()
    if not cfg.database_path.exists():
        console.print(
            "[yellow]No database yet — run[/] [cyan]calvault init-db[/] "
            "[yellow]or[/] [cyan]calvault sync[/][yellow].[/]"
        )
        raise typer.Exit(1)

    with _open_store(cfg) as store:
        archive = store.get_stats()

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(justify="right")
    table.add_row("Accounts", str(archive.account_count))
    table.add_row("Calendars", str(archive.calendar_count))
    table.add_row("Events", str(archive.event_count))
    table.add_row("Recurring", str(archive.recurring_count))
    table.add_row("Unique locations", str(archive.unique_locations))
    table.add_row("Earliest event", archive.earliest_event or "—")
    table.add_row("Latest event", archive.latest_event or "—")

    console.print(Panel(table, title="[bold]calvault — Archive[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------

_TOKEN_LABELS = {
    TokenState.NO_TOKEN: Text("none", style="yellow"),
    TokenState.HAS_TOKEN: Text("✓ held", style="green"),
    TokenState.TOKEN_EXPIRED: Text("expired", style="red"),
}


@app.command()
def status(
    runs: Annotated[int, typer.Option("--runs", help="Number of recent sync runs to show")] = 10,
) -> None:
    """Show configuration, per-calendar sync state and recent sync runs."""
    cfg = _load_app_config()
    config_path = state.config_path or default_config_path(cfg.home_dir)
    db_exists = cfg.database_path.exists()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(config_path) + " ")
    cfg_info.append(
        "✓" if config_path.exists() else "(not found)",
        style="green" if config_path.exists() else "yellow",
    )
    cfg_info.append("\n  Database: ", style="bold")
    cfg_info.append(str(cfg.database_path) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")
    cfg_info.append("\n  Secrets:  ", style="bold")
    cfg_info.append(str(cfg.client_secrets) if cfg.client_secrets else "(not configured)")
    cfg_info.append("\n  Rate:     ", style="bold")
    cfg_info.append(f"{cfg.rate_limit_qps:g} requests/s")
    console.print(Panel(cfg_info, title="[bold]calvault — Status[/bold]"))

    if not db_exists:
        console.print("[yellow]No database yet — run[/] [cyan]calvault sync[/] [yellow]to create it.[/]")
        return

    with _open_store(cfg) as store:
        accounts = store.list_accounts()
        if not accounts:
            console.print("[yellow]No accounts registered yet.[/]")
            return

        for account in accounts:
            table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
            table.add_column("Calendar")
            table.add_column("Events", justify="right")
            table.add_column("Token")
            table.add_column("Last sync")
            for cal in store.get_calendars(account.id):
                name = cal.summary or cal.provider_calendar_id
                if cal.is_primary:
                    name += " [dim](primary)[/dim]"
                count = store.count_events(account.id, cal.id)
                table.add_row(
                    name, str(count), _TOKEN_LABELS[cal.token_state], cal.last_synced_at or "—"
                )
            console.print(Panel(table, title=f"[bold]{account.identifier}[/bold]", expand=False))

        recent = store.get_recent_sync_runs(runs)

    if not recent:
        return

    run_table = Table(show_header=True, header_style="bold cyan")
    run_table.add_column("#", justify="right")
    run_table.add_column("Started")
    run_table.add_column("Scope")
    run_table.add_column("Status")
    run_table.add_column("+/~/-", justify="right")
    run_table.add_column("Error", overflow="fold")
    run_styles = {
        "completed": "green",
        "failed": "red",
        "cancelled": "yellow",
        "running": "yellow",
    }
    for run in recent:
        scope = "account" if run.calendar_id is None else f"calendar {run.calendar_id}"
        run_table.add_row(
            str(run.id),
            run.started_at,
            scope,
            Text(run.status, style=run_styles.get(run.status, "")),
            f"{run.events_added}/{run.events_updated}/{run.events_deleted}",
            run.error_message or "",
        )
    console.print(Panel(run_table, title="[bold]Recent sync runs[/bold]"))


# ---------------------------------------------------------------------------
# Subcommand: query
# ---------------------------------------------------------------------------


@app.command()
def query(
    sql: Annotated[str | None, typer.Argument(help="SQL SELECT statement")] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Read the query from a file"),
    ] = None,
) -> None:
    """Run a read-only SQL query and print the result as JSON.

    The query comes from the argument, [cyan]--file[/], or standard input.
    """
    from calvault.query import QueryExecutor

    if sql and file:
        raise typer.BadParameter("pass either SQL or --file, not both")

    if file is not None:
        try:
            sql = file.read_text(encoding="utf-8")
        except OSError as e:
            console.print(f"[bold red]Error:[/] cannot read {file}: {e}")
            raise typer.Exit(1) from None
    elif not sql:
        if sys.stdin.isatty():
            console.print("[bold red]Error:[/] no query given (argument, --file, or stdin)")
            raise typer.Exit(1)
        sql = sys.stdin.read()

    cfg = _load_app_config()
    try:
        with QueryExecutor(cfg.database_path) as executor:
            result = executor.execute(sql)
    except QueryError as e:
        err_console.print(f"[bold red]Query error:[/] {e}")
        raise typer.Exit(1) from None

    typer.echo(json.dumps(result.to_dict(), indent=2, default=str))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
