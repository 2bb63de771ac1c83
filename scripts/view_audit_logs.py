#!/usr/bin/env python3
"""
Utility script to view recent audit events from the GradeLedger database.

Usage:
    python scripts/view_audit_logs.py [limit] [action]

Examples:
    python scripts/view_audit_logs.py 50
    python scripts/view_audit_logs.py 20 USER_
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.table import Table
from rich import print as rprint

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.audit.models import AuditLog, AuditQuery
from backend.audit.store import AuditStore
from backend.auth.database import get_engine, get_session_factory, init_db

console = Console()

DETAIL_WIDTH = 50


def format_values(values: Optional[Dict[str, Any]], width: int = DETAIL_WIDTH) -> str:
    """Compact one-line rendering of a snapshot."""
    if not values:
        return "-"
    text = json.dumps(values, sort_keys=True, default=str)
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def build_table(rows: Iterable[AuditLog], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Time", style="cyan", no_wrap=True)
    table.add_column("Action", style="magenta")
    table.add_column("Actor", style="yellow")
    table.add_column("Record", style="green")
    table.add_column("Before", style="white")
    table.add_column("After", style="white")
    table.add_column("IP", style="blue")

    for row in rows:
        table.add_row(
            row.created_at.strftime("%Y-%m-%d %H:%M:%S") if row.created_at else "N/A",
            row.action,
            str(row.user_id) if row.user_id else "anonymous",
            f"{row.table_name or '-'}:{row.record_id or '-'}",
            format_values(row.old_values),
            format_values(row.new_values),
            row.ip_address or "-",
        )
    return table


async def view_logs(limit: int = 20, action: Optional[str] = None) -> None:
    engine = get_engine()
    init_db(engine)
    store = AuditStore(get_session_factory(engine))

    try:
        result = await store.query(AuditQuery(action=action, limit=limit))
        rows = result["data"]

        if not rows:
            rprint("[yellow]No audit events found.[/yellow]")
            return

        console.print(build_table(rows, f"Audit Events (Limit: {limit})"))
        rprint(f"\n[dim]Showing {len(rows)} of {result['pagination']['total']} events.[/dim]")
    finally:
        engine.dispose()


def parse_args(argv) -> tuple:
    limit = 20
    if len(argv) > 1:
        try:
            limit = max(1, min(int(argv[1]), 500))
        except ValueError:
            rprint(f"[red]Invalid limit: {argv[1]}[/red]")
            sys.exit(2)
    action = argv[2] if len(argv) > 2 else None
    return limit, action


if __name__ == "__main__":
    try:
        asyncio.run(view_logs(*parse_args(sys.argv)))
    except KeyboardInterrupt:
        pass
