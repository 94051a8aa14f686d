# escrow/cli/main.py
"""
CLI for inspecting, verifying and exporting persisted escrow ledgers.

Read-only: deposits and redemptions are made by the embedding application,
this tool only looks at what it recorded.
"""

import json
import logging
import os
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from escrow.contract.ledger import EscrowLedger
from escrow.core.hashing import record_hash
from escrow.core.units import TOKEN_SYMBOL, format_units
from escrow.storage import SQLiteStorage
from escrow.verify.verifier import JournalVerifier

app = typer.Typer(
    name="escrow-ledger",
    help="Inspect, verify and export persisted escrow ledgers",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def get_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. ESCROW_DB_PATH environment variable
    3. Default: ~/.escrow/escrow-ledger.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        env_path = os.environ.get("ESCROW_DB_PATH")
        if env_path:
            path = Path(env_path).resolve()
        else:
            path = Path.home() / ".escrow" / "escrow-ledger.db"

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def open_storage(db: Optional[Path]) -> SQLiteStorage:
    db_path = get_db_path(db)

    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Record some ledger activity from your application first")
        console.print("  • Set env var: export ESCROW_DB_PATH=/path/to/escrow.db")
        console.print("  • Or use --db: escrow-ledger ledgers --db /custom/path.db")
        raise typer.Exit(1)

    try:
        return SQLiteStorage(db_path)
    except sqlite3.Error as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        console.print("[yellow]The file may be corrupted or not a valid SQLite DB.[/]")
        raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Inspect persisted escrow ledgers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command()
def ledgers(
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database (overrides ESCROW_DB_PATH)"),
):
    """List all stored ledgers with event counts and last activity."""
    with open_storage(db) as storage:
        ledger_ids = storage.list_ledgers()

        if not ledger_ids:
            console.print("[yellow]No ledgers found in database.[/]")
            return

        table = Table(title="Stored Ledgers")
        table.add_column("Ledger ID")
        table.add_column("Admin")
        table.add_column("Deadline")
        table.add_column("Events")
        table.add_column("Last Activity")

        for lid in ledger_ids:
            terms = storage.load_terms(lid)
            last_ts = storage.get_latest_timestamp(lid)
            table.add_row(
                lid,
                terms.admin,
                iso(terms.deadline),
                str(storage.get_event_count(lid)),
                iso(last_ts) if last_ts is not None else "—",
            )

        console.print(table)


@app.command()
def info(
    ledger_id: str = typer.Argument(..., help="Ledger ID to show"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database (overrides ESCROW_DB_PATH)"),
    now: Optional[int] = typer.Option(None, "--now", help="Unix time to evaluate the deadline against"),
):
    """Show terms, balance and active depositors of a ledger."""
    storage = open_storage(db)
    try:
        ledger = EscrowLedger.open(ledger_id, storage)
    except ValueError as e:
        storage.close()
        console.print(f"[red]Failed to load ledger '{ledger_id}': {str(e)}[/]")
        raise typer.Exit(1)

    with ledger:
        current = now if now is not None else int(time.time())
        status = "[green]refunds open[/]" if ledger.refunds_open(current) else "[yellow]deadline passed, redeem sweeps to admin[/]"

        console.print(f"[bold]Ledger {ledger.ledger_id}[/]")
        console.print(f"  Admin:          {ledger.admin}")
        console.print(f"  Deposit amount: {format_units(ledger.deposit_amount)} {TOKEN_SYMBOL}")
        console.print(f"  Deadline:       {ledger.deadline} ({iso(ledger.deadline)})")
        console.print(f"  Status:         {status}")
        console.print(f"  Balance:        {format_units(ledger.balance)} {TOKEN_SYMBOL}")
        console.print(f"  Sweeps:         {ledger.sweep_count}")

        depositors = ledger.depositors()
        if not depositors:
            console.print("  [yellow]No active deposits[/]")
            return

        table = Table(title="Active Depositors")
        table.add_column("#")
        table.add_column("Identity")
        for i, who in enumerate(depositors):
            table.add_row(str(i), who)
        console.print(table)


@app.command()
def events(
    ledger_id: str = typer.Argument(..., help="Ledger ID to display"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database (overrides ESCROW_DB_PATH)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent events to show"),
):
    """Show the most recent events of a ledger."""
    with open_storage(db) as storage:
        records = storage.query_records(ledger_id, limit=limit)

        if not records:
            console.print(f"[yellow]No events found for ledger '{ledger_id}'[/]")
            return

        for record in records:
            event = record.event
            console.print(
                f"[bold cyan]{record.sequence:4d} | {iso(event.when)} | {event.kind:16} | {event.party}[/]"
                f"  {format_units(event.amount)} {TOKEN_SYMBOL}"
            )


@app.command()
def verify(
    ledger_id: str = typer.Argument(..., help="Ledger ID to verify"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database (overrides ESCROW_DB_PATH)"),
):
    """Verify a ledger's journal (hash chain + fund accounting + deadline rules)."""
    with open_storage(db) as storage:
        terms = storage.load_terms(ledger_id)
        if terms is None:
            console.print(f"[red]✗ Ledger '{ledger_id}' not found[/]")
            raise typer.Exit(1)

        result = JournalVerifier(terms).verify_from_storage(ledger_id, storage)

    if result.is_valid:
        console.print(f"[green]✓ Ledger '{ledger_id}' is valid[/]")
        console.print(f"  {result.message}")
        return

    console.print(f"[red]✗ Verification failed for ledger '{ledger_id}'[/]")
    for failure in result.failures:
        console.print(f"  • [{failure.index}] {failure.category}: {failure.message}")
    raise typer.Exit(1)


@app.command()
def export(
    ledger_id: str = typer.Argument(..., help="Ledger ID to export"),
    db: Optional[Path] = typer.Option(None, "--db", help="Path to SQLite database (overrides ESCROW_DB_PATH)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: <ledger_id>.jsonl)"),
):
    """Export a ledger's events as JSONL (one hash-linked record per line)."""
    with open_storage(db) as storage:
        try:
            records = storage.load_records(ledger_id)
        except ValueError as e:
            console.print(f"[red]Failed to load ledger '{ledger_id}': {str(e)}[/]")
            raise typer.Exit(1)

    if not records:
        console.print(f"[yellow]No events found for ledger '{ledger_id}'[/]")
        raise typer.Exit(0)

    out_path = output or Path(f"{ledger_id}.jsonl")
    with open(out_path, "w", encoding="utf-8") as f:
        for record in records:
            line = record.to_dict()
            line["hash"] = record_hash(record)
            json.dump(line, f, separators=(",", ":"))
            f.write("\n")

    console.print(f"[green]Exported {len(records)} events to {out_path}[/]")
    console.print("Format: JSONL — one hash-linked event record per line")


if __name__ == "__main__":
    app()
