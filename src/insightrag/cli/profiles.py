"""insightrag profiles — list loaded customer profiles (no API calls)."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from insightrag.cli.errors import err_stage
from insightrag.config import load_config
from insightrag.errors import InsightRagError
from insightrag.store.records import RecordStore

console = Console()


def profiles_cmd(
    data: Annotated[
        Path | None,
        typer.Option("--data", "-d", help="CSV file with customer feedback records."),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", min=0, help="Maximum rows to show (0 = all)."),
    ] = 20,
) -> None:
    """Load the record source and show each profile summary."""
    try:
        cfg = load_config()
        store = RecordStore.load(data or Path(cfg.data.path))
    except InsightRagError as exc:
        console.print(err_stage(exc))
        raise typer.Exit(1)

    records = store.records if limit == 0 else store.records[:limit]

    table = Table(title=f"Customer profiles ({len(store)} loaded)")
    table.add_column("CustomerID", style="bold")
    table.add_column("Loyalty")
    table.add_column("Satisfaction", justify="right")
    table.add_column("Summary", overflow="fold")
    for record in records:
        table.add_row(
            record.customer_id,
            record.loyalty_level,
            f"{record.satisfaction_score:.1f}%",
            escape(record.summary),
        )
    console.print(table)

    if len(records) < len(store):
        console.print(f"  [dim]… {len(store) - len(records)} more (use --limit 0 to show all)[/]")
