"""Rich formatting helpers for the patchloop CLI.

Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from patchloop.models.patch import SkippedOperation
    from patchloop.normalize.unflatten import DroppedField


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def format_json(value: Any, console: Console) -> None:
    """Print a JSON document (highlighted on a terminal, plain when piped)."""
    console.print_json(json.dumps(value))


def format_dropped(dropped: Sequence[DroppedField], console: Console) -> None:
    """List fields removed while unflattening tagged unions."""
    if not dropped:
        return
    console.print(f"[yellow]Dropped {len(dropped)} field(s):[/yellow]")
    for item in dropped:
        console.print(f"  {escape(str(item))}", highlight=False)


def format_skipped(skipped: Sequence[SkippedOperation], console: Console) -> None:
    """Display operations PARTIAL_APPLY skipped."""
    if not skipped:
        return
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("#", justify="right", style="yellow")
    table.add_column("Op", style="cyan")
    table.add_column("Path")
    table.add_column("Reason", style="dim")
    for item in skipped:
        table.add_row(
            str(item.index),
            item.op.op,
            escape(item.op.path),
            escape(f"({item.error.kind.value}) {item.error.detail}"),
        )
    console.print(f"[yellow]Skipped {len(skipped)} operation(s):[/yellow]")
    console.print(table)


def format_sessions(sessions: Sequence[tuple[str, int, str]], console: Console) -> None:
    """Display recorded sessions as (session_id, attempt count, last status)."""
    if not sessions:
        console.print("[dim]No recorded sessions.[/dim]")
        return
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Session", style="yellow")
    table.add_column("Attempts", justify="right", style="green")
    table.add_column("Last status")
    for session_id, count, status in sessions:
        table.add_row(session_id, str(count), _status_markup(status))
    console.print(table)


def format_attempts_compact(attempts: Sequence[dict], console: Console) -> None:
    """Display attempt rows in compact table format."""
    if not attempts:
        console.print("[dim]No attempts.[/dim]")
        return
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("#", justify="right", style="yellow")
    table.add_column("Status")
    table.add_column("Generator", style="cyan")
    table.add_column("Ops", justify="right")
    table.add_column("First issue")
    for attempt in attempts:
        issues = attempt["issues"]
        first = f"{issues[0]['path'] or '/'}: {issues[0]['message']}" if issues else ""
        table.add_row(
            str(attempt["index"]),
            _status_markup(attempt["status"]),
            escape(attempt["generator"] or "-"),
            str(len(attempt["operations"])),
            escape(first),
        )
    console.print(table)


def format_attempts_verbose(attempts: Sequence[dict], console: Console) -> None:
    """Display attempt rows with issues, patches and warnings."""
    if not attempts:
        console.print("[dim]No attempts.[/dim]")
        return
    for i, attempt in enumerate(attempts):
        if i > 0:
            console.print()
        console.print(
            f"[yellow]attempt {attempt['index']}[/yellow] "
            f"{_status_markup(attempt['status'])}"
        )
        if attempt["generator"]:
            console.print(f"  Generator: [cyan]{escape(attempt['generator'])}[/cyan]")
        if attempt.get("created_at"):
            console.print(f"  Date:      {attempt['created_at']}")
        for op in attempt["operations"]:
            console.print(f"  Patch:     {escape(json.dumps(op))}", highlight=False)
        for issue in attempt["issues"]:
            console.print(
                f"  Issue:     {escape('[' + issue['kind'] + ']')} {escape(issue['path'] or '/')}: "
                f"{escape(issue['message'])}",
                highlight=False,
            )
        for warning in attempt["warnings"]:
            console.print(f"  Warning:   {escape(warning)}", highlight=False)


def _status_markup(status: str) -> str:
    color = "green" if status == "valid" else "red"
    return f"[{color}]{status}[/{color}]"


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
