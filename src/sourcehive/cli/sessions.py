"""sourcehive sessions — manage research sessions.

Commands:
  sourcehive sessions list                 all sessions, most recently updated first
  sourcehive sessions create <title>       register a session and create its store
  sourcehive sessions delete <id>          remove a session, its store and promoted chunks
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from sourcehive.cli.common import console, open_hive
from sourcehive.cli.errors import err_session_not_found
from sourcehive.db.models import DomainPack, SessionStatus

sessions_app = typer.Typer(
    name="sessions",
    help="Manage research sessions (list, create, delete).",
    add_completion=False,
)


@sessions_app.command("list")
def sessions_list_cmd(
    ctx: typer.Context,
    status: Annotated[
        SessionStatus | None,
        typer.Option("--status", help="Only sessions with this status."),
    ] = None,
) -> None:
    """List sessions."""
    with open_hive(ctx) as hive:
        sessions = hive.sessions.list_sessions(status)

    if not sessions:
        console.print(
            "[yellow]No sessions yet.[/]\n"
            "  Run:  sourcehive sessions create <title>"
        )
        raise typer.Exit(0)

    table = Table(title="Sessions", show_header=True, header_style="bold")
    table.add_column("Id", style="bold")
    table.add_column("Title")
    table.add_column("Domain pack")
    table.add_column("Status")
    table.add_column("Updated")
    for s in sessions:
        table.add_row(s.id, s.title, s.domain_pack.value, s.status.value, s.updated_utc[:19])
    console.print(table)


@sessions_app.command("create")
def sessions_create_cmd(
    ctx: typer.Context,
    title: Annotated[str, typer.Argument(help="Session title.")],
    domain_pack: Annotated[
        DomainPack,
        typer.Option("--domain-pack", "-d", help="Domain pack for prompts and memory scope."),
    ] = DomainPack.GENERAL_RESEARCH,
    description: Annotated[str, typer.Option("--description", help="Free-text notes.")] = "",
) -> None:
    """Create a session."""
    with open_hive(ctx) as hive:
        session = hive.sessions.create_session(
            title, description=description, domain_pack=domain_pack
        )
    console.print(f"[green]✓[/] Created session [bold]{session.id}[/] ({session.title})")


@sessions_app.command("delete")
def sessions_delete_cmd(
    ctx: typer.Context,
    session_id: Annotated[str, typer.Argument(help="Session id.")],
    keep_global: Annotated[
        bool,
        typer.Option("--keep-global", help="Keep chunks this session promoted to global memory."),
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Delete a session and its store."""
    if not yes and not typer.confirm(f"Delete session {session_id} and all its data?"):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)
    with open_hive(ctx) as hive:
        deleted = hive.sessions.delete_session(session_id, purge_global=not keep_global)
    if not deleted:
        console.print(err_session_not_found(session_id))
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Deleted session {session_id}")
