"""Shout Out CLI.

Commands:
- init: Create database tables
- poll: Run one live poll (celebrates new TGL / big-sale estimates)
- backfill: Re-ingest a date range without celebrations
- sync-pricebook: Sync pricebook SKUs and their cross-sale groups
- sync-salespeople: Sync technician names
- recalculate: Recompute cross-sale attribution from stored estimates
- reconcile: Compare a manually kept ledger CSV with stored events
- coverage: Per-day counts of stored events
- web: Serve the admin API
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional, TypeVar

import httpx
import typer
from rich.console import Console
from rich.table import Table

from shoutout.config import AppConfig, get_config
from shoutout.core.logging import configure_logging
from shoutout.db.connection import close_db, get_session_factory, init_db
from shoutout.errors import ShoutOutError
from shoutout.integration.servicetitan import ServiceTitanClient
from shoutout.notifications.celebrations import make_celebrate_hook
from shoutout.pipeline.classification_cache import ClassificationCache
from shoutout.pipeline.jobs import (
    ENDPOINTS,
    day_start,
    recalculate_attribution,
    run_backfill,
    run_poll,
    sync_pricebook,
    sync_salespeople,
)
from shoutout.pipeline.types import IngestSummary
from shoutout.reporting.reconciliation import coverage, load_ledger, load_stored_events, reconcile

app = typer.Typer(
    name="shoutout",
    help="Shout Out - ServiceTitan sales sync and celebrations",
    no_args_is_help=True,
)

console = Console()

T = TypeVar("T")


def _load_config() -> AppConfig:
    """Read configuration or exit 1 before touching the network or database."""
    try:
        return get_config()
    except KeyError as e:
        console.print(f"[bold red]✗ Missing required environment variable:[/bold red] {e}")
        raise typer.Exit(1)


def _run(job: Coroutine[Any, Any, T]) -> T:
    """Run a ServiceTitan job; auth and upstream failures exit 1 with one line."""
    try:
        return asyncio.run(job)
    except ShoutOutError as e:
        console.print(f"[bold red]✗ {type(e).__name__}:[/bold red] {e}")
        raise typer.Exit(1)


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


def _parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"Expected a number, got {value!r}")


def _print_summary(summary: IngestSummary) -> None:
    table = Table(title=f"Ingest: {summary.source_name}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    for key, value in summary.as_dict().items():
        if isinstance(value, (list, dict)):
            continue
        table.add_row(key, str(value))
    console.print(table)

    if summary.failed_ids:
        console.print(f"[yellow]⚠[/yellow] Failed estimates: {', '.join(summary.failed_ids[:20])}")
    if summary.success:
        console.print("[bold green]✓[/bold green] Done")
    else:
        console.print(f"[bold red]✗[/bold red] {summary.message or 'Ingest failed'}")


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Create database tables."""
    config = _load_config()
    configure_logging(config.log_level, config.json_logs)
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        try:
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
            await init_db(drop=drop)
        finally:
            await close_db()

    asyncio.run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command()
def poll(
    force: bool = typer.Option(False, "--force", help="Poll even when polling is disabled"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Fetch and classify without writing"),
):
    """Run one live poll."""
    config = _load_config()
    configure_logging(config.log_level, config.json_logs)

    async def _poll():
        session_factory = get_session_factory()
        try:
            async with ServiceTitanClient(config.servicetitan) as client, httpx.AsyncClient(
                timeout=config.notifications.timeout_seconds
            ) as http:
                return await run_poll(
                    session_factory,
                    client,
                    config,
                    celebrate=make_celebrate_hook(session_factory, http, config.notifications.timeout_seconds),
                    force=force,
                    dry_run=dry_run,
                )
        finally:
            await close_db()

    summary = _run(_poll())
    _print_summary(summary)
    if not summary.success:
        raise typer.Exit(1)


@app.command()
def backfill(
    start: str = typer.Argument(..., help="First day (YYYY-MM-DD)"),
    end: str = typer.Argument(..., help="Last day, inclusive (YYYY-MM-DD)"),
    endpoint: str = typer.Option("export", "--endpoint", help=f"One of: {', '.join(ENDPOINTS)}"),
    threshold: Optional[str] = typer.Option(None, "--threshold", help="Big-sale threshold override"),
    marker: Optional[str] = typer.Option(None, "--marker", help="TGL option name override"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Fetch and classify without writing"),
):
    """Re-ingest a date range. Never sends celebrations."""
    config = _load_config()
    start_day, end_day = _parse_day(start), _parse_day(end)
    if end_day < start_day:
        raise typer.BadParameter("end must not be before start")
    if endpoint not in ENDPOINTS:
        raise typer.BadParameter(f"endpoint must be one of: {', '.join(ENDPOINTS)}")
    override = _parse_decimal(threshold)
    configure_logging(config.log_level, config.json_logs)

    console.print(f"[bold]Backfilling:[/bold] {start_day} to {end_day} via {endpoint}")

    async def _backfill():
        try:
            async with ServiceTitanClient(config.servicetitan) as client:
                return await run_backfill(
                    get_session_factory(),
                    client,
                    config,
                    start_day,
                    end_day,
                    endpoint=endpoint,
                    threshold=override,
                    marker=marker,
                    dry_run=dry_run,
                )
        finally:
            await close_db()

    summary = _run(_backfill())
    _print_summary(summary)
    if not summary.success:
        raise typer.Exit(1)


@app.command(name="sync-pricebook")
def sync_pricebook_cmd():
    """Sync materials, equipment and services from the pricebook."""
    config = _load_config()
    configure_logging(config.log_level, config.json_logs)

    async def _sync():
        try:
            async with ServiceTitanClient(config.servicetitan) as client:
                return await sync_pricebook(get_session_factory(), client)
        finally:
            await close_db()

    stats = _run(_sync())
    console.print("\n[bold]Pricebook sync:[/bold]")
    for key, value in stats.items():
        console.print(f"  {key}: {value}")
    if stats["failed"]:
        console.print(f"[yellow]⚠[/yellow] {stats['failed']} items failed (see log)")


@app.command(name="sync-salespeople")
def sync_salespeople_cmd():
    """Sync technician names."""
    config = _load_config()
    configure_logging(config.log_level, config.json_logs)

    async def _sync():
        try:
            async with ServiceTitanClient(config.servicetitan) as client:
                return await sync_salespeople(get_session_factory(), client)
        finally:
            await close_db()

    stats = _run(_sync())
    console.print(
        f"[bold green]✓[/bold green] {stats['inserted']} new, {stats['updated']} updated, "
        f"{stats['skipped']} skipped, {stats['failed']} failed"
    )


@app.command()
def recalculate(
    start: Optional[str] = typer.Option(None, "--start", help="First day (YYYY-MM-DD)"),
    end: Optional[str] = typer.Option(None, "--end", help="Last day, inclusive (YYYY-MM-DD)"),
):
    """Recompute cross-sale attribution for stored estimates."""
    config = _load_config()
    tz_name = config.ingestion.report_timezone
    lower = day_start(_parse_day(start), tz_name) if start else None
    upper = day_start(_parse_day(end) + timedelta(days=1), tz_name) if end else None
    configure_logging(config.log_level, config.json_logs)

    async def _recalculate():
        session_factory = get_session_factory()
        try:
            cache = ClassificationCache(session_factory, config.ingestion.classification_ttl_seconds)
            return await recalculate_attribution(session_factory, cache, lower, upper)
        finally:
            await close_db()

    stats = asyncio.run(_recalculate())
    console.print(
        f"[bold green]✓[/bold green] Recalculated {stats['processed']} estimates "
        f"({stats['updated']} changed, {stats['unchanged']} unchanged, {stats['failed']} failed)"
    )


@app.command(name="reconcile")
def reconcile_cmd(
    ledger: Path = typer.Argument(..., help="Ledger CSV with date,time,tech,customer columns"),
    start: str = typer.Argument(..., help="First day (YYYY-MM-DD)"),
    end: str = typer.Argument(..., help="Last day, inclusive (YYYY-MM-DD)"),
    kind: str = typer.Option("tgl", "--kind", help="tgl, big_sale or all"),
    date_format: str = typer.Option("%m/%d/%Y", "--date-format", help="Ledger date format"),
):
    """Compare a ledger CSV against stored events, day by day."""
    config = _load_config()
    if not ledger.exists():
        console.print(f"[red]Error: File not found: {ledger}[/red]")
        raise typer.Exit(1)
    start_day, end_day = _parse_day(start), _parse_day(end)
    tz_name = config.ingestion.report_timezone
    configure_logging(config.log_level, config.json_logs)

    entries = [
        entry for entry in load_ledger(ledger, date_format) if start_day <= entry.day <= end_day
    ]

    async def _load():
        try:
            async with get_session_factory()() as session:
                return await load_stored_events(session, start_day, end_day, kind, tz_name)
        finally:
            await close_db()

    stored = asyncio.run(_load())
    days = reconcile(entries, stored, tz_name)

    table = Table(title=f"Ledger vs stored ({kind})")
    table.add_column("Day")
    table.add_column("Ledger", justify="right")
    table.add_column("Stored", justify="right")
    table.add_column("Status")
    for day in days:
        status = "[green]match[/green]" if day.matches else "[red]mismatch[/red]"
        table.add_row(day.day.isoformat(), str(day.count_a), str(day.count_b), status)
    console.print(table)

    mismatched = [day for day in days if not day.matches]
    for day in mismatched:
        console.print(f"\n[bold]{day.day.isoformat()}[/bold]")
        for record in day.only_in_a:
            console.print(f"  [yellow]ledger only:[/yellow] {record.person} / {record.customer}")
        for record in day.only_in_b:
            console.print(
                f"  [yellow]stored only:[/yellow] {record.person} / {record.customer} ({record.identifier})"
            )

    if mismatched:
        console.print(f"\n[yellow]⚠[/yellow] {len(mismatched)} of {len(days)} days differ")
        raise typer.Exit(1)
    console.print(f"\n[bold green]✓[/bold green] All {len(days)} days match")


@app.command(name="coverage")
def coverage_cmd(
    start: str = typer.Argument(..., help="First day (YYYY-MM-DD)"),
    end: str = typer.Argument(..., help="Last day, inclusive (YYYY-MM-DD)"),
    kind: str = typer.Option("all", "--kind", help="tgl, big_sale or all"),
):
    """Per-day counts of stored events, flagging days with none."""
    config = _load_config()
    start_day, end_day = _parse_day(start), _parse_day(end)
    tz_name = config.ingestion.report_timezone
    configure_logging(config.log_level, config.json_logs)

    async def _load():
        try:
            async with get_session_factory()() as session:
                return await load_stored_events(session, start_day, end_day, kind, tz_name)
        finally:
            await close_db()

    report = coverage(asyncio.run(_load()), start_day, end_day, tz_name)

    table = Table(title=f"Coverage ({kind}) {start_day} to {end_day}")
    table.add_column("Day")
    table.add_column("Events", justify="right")
    for day, count in report.counts.items():
        table.add_row(day.isoformat(), str(count) if count else "[red]0[/red]")
    console.print(table)
    console.print(f"Total: {report.total}")
    if report.missing_days:
        console.print(f"[yellow]⚠[/yellow] {len(report.missing_days)} days with no events")


@app.command()
def web(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8001, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Serve the admin API."""
    _load_config()
    import uvicorn

    typer.echo(f"Starting admin API on http://{host}:{port}")
    uvicorn.run("shoutout.web.app:app", host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    app()
