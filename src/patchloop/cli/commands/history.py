"""patchloop history -- show recorded refinement attempts."""

from __future__ import annotations

import os

import click

from patchloop.cli.formatting import (
    format_attempts_compact,
    format_attempts_verbose,
    format_error,
    format_sessions,
    get_console,
)


@click.command()
@click.argument("session_id", required=False)
@click.option(
    "--db",
    "db_path",
    default=".patchloop.db",
    envvar="PATCHLOOP_DB",
    show_default=True,
    help="Path to the trace database.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show issues, patches and warnings.")
def history(session_id: str | None, db_path: str, verbose: bool) -> None:
    """List recorded sessions, or the attempts of SESSION_ID."""
    from patchloop.storage.sink import SqlTraceSink

    console = get_console()
    if not os.path.exists(db_path):
        format_error(f"Database not found: {db_path}", console)
        raise SystemExit(1)

    sink = SqlTraceSink.open(db_path)
    try:
        if session_id is None:
            rows = []
            for sid in sink.sessions():
                attempts = sink.history(sid)
                rows.append((sid, len(attempts), attempts[-1]["status"]))
            format_sessions(rows, console)
            return

        attempts = sink.history(session_id)
        if not attempts:
            format_error(f"No attempts recorded for session {session_id}", console)
            raise SystemExit(1)
        if verbose:
            format_attempts_verbose(attempts, console)
        else:
            format_attempts_compact(attempts, console)
    finally:
        sink.close()
