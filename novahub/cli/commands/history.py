"""``novahub history [RUN_ID]`` — show a run's audit trail.

Without a run id, lists the most recent runs in the ledger.
"""

from __future__ import annotations

import typer
from rich.markup import escape
from rich.table import Table

from novahub.cli.output import (
    HANDLED_ERRORS,
    console,
    fail,
    load_settings,
    print_states,
)
from novahub.core.run_ledger import RunLedger
from novahub.core.stage_machine import StageMachine


def history_cmd(
    run_id: str = typer.Argument(None, help="Run to show. Omit to list recent runs."),
    limit: int = typer.Option(20, "--limit", "-n", help="Runs to list."),
    verify_chain: bool = typer.Option(
        True,
        "--verify-chain/--no-verify-chain",
        help="Verify hash chain integrity.",
    ),
) -> None:
    """Show ledger entries and stage states for a run."""
    settings = load_settings()
    if not settings.ledger_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {settings.ledger_path}")
        raise typer.Exit(code=1)
    ledger = RunLedger(settings.ledger_path)

    if not run_id:
        run_ids = ledger.get_all_run_ids()[:limit]
        if not run_ids:
            console.print("[dim]No runs recorded.[/dim]")
            return
        for rid in run_ids:
            console.print(rid)
        return

    entries = ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]No entries for run {run_id}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Ledger: {run_id}")
    table.add_column("Time (UTC)", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Transition")
    table.add_column("Detail", overflow="fold")
    table.add_column("Entry hash", style="dim")
    for entry in entries:
        table.add_row(
            entry.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
            entry.stage_id,
            entry.state_transition,
            escape(entry.detail),
            entry.entry_hash[:16],
        )
    console.print(table)
    print_states(run_id, StageMachine(ledger).get_all_states(run_id))

    if verify_chain:
        try:
            ledger.verify_chain(run_id)
        except HANDLED_ERRORS as exc:
            raise fail(exc) from exc
        console.print("[bold green]Hash chain verified[/bold green]")
