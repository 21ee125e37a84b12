"""sourcehive status — overview of stores, a session's knowledge base and its jobs."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.panel import Panel

from sourcehive.cli.common import SESSION_HELP, console, open_hive
from sourcehive.db.models import JobState, Session
from sourcehive.errors import SessionNotFound
from sourcehive.hive import SourceHive
from sourcehive.jobs.state import WORKING_STATES


def status_cmd(
    ctx: typer.Context,
    session_id: Annotated[
        str | None,
        typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
    ] = None,
) -> None:
    """Show data root, routing, global memory and (with --session) session status."""
    with open_hive(ctx) as hive:
        _show_hive_panel(hive)
        if session_id is None:
            return
        try:
            session = hive.sessions.get_session(session_id)
        except SessionNotFound:
            console.print(
                Panel(
                    f"[yellow]Session '{session_id}' not found.[/]\n"
                    "  Run:  sourcehive sessions list",
                    title="[bold]Session[/]",
                    expand=False,
                )
            )
            return
        _show_session_panel(hive, session)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_hive_panel(hive: SourceHive) -> None:
    cfg = hive.config
    stats = hive.memory.stats()
    sessions = hive.sessions.list_sessions()
    cloud = cfg.routing.cloud.model if cfg.routing.cloud else "(none)"
    breakers = "  ".join(
        f"{name}: {hive.router.breaker(name).state.value}" for name in hive.router.eligible()
    )
    lines = [
        f"Data root:  {cfg.storage.root}",
        f"Sessions:   [bold]{len(sessions)}[/]",
        f"Routing:    {cfg.routing.strategy}  (local: {cfg.routing.local.model}, cloud: {cloud})",
        f"Breakers:   {breakers or '(no providers)'}",
        f"Embedding:  {cfg.embedding.model}",
        f"Global:     {stats.total_chunks} chunks, {stats.strategy_count} strategies",
    ]
    console.print(Panel("\n".join(lines), title="[bold]SourceHive[/]", expand=False))


def _show_session_panel(hive: SourceHive, session: Session) -> None:
    store = hive.store(session.id)
    sources = store.list_sources()
    jobs = store.list_jobs()
    running = sum(1 for j in jobs if j.state in WORKING_STATES)
    completed = sum(1 for j in jobs if j.state == JobState.COMPLETED)
    failed = sum(1 for j in jobs if j.state == JobState.FAILED)

    lines = [
        f"Title:      [bold]{session.title}[/]  ({session.domain_pack.value})",
        f"Sources:    [bold]{len(sources)}[/]  |  Chunks: [bold]{store.count_chunks():,}[/]"
        f"  |  Embedding dims: {store.embedding_dimensions() or '-'}",
        f"Jobs:       {len(jobs)} total, {running} in progress, "
        f"{completed} completed, {failed} failed",
    ]
    if jobs:
        latest = jobs[0]
        lines.append(f"Latest:     {latest.state.value}  {latest.prompt[:60]}")
    console.print(Panel("\n".join(lines), title=f"[bold]Session {session.id}[/]", expand=False))
