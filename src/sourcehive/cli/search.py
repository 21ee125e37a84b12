"""sourcehive search — hybrid keyword + semantic search over a session."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.table import Table

from sourcehive.cli.common import SESSION_HELP, console, open_hive, require_session
from sourcehive.cli.errors import err_no_results
from sourcehive.db.models import SourceType


def search_cmd(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    session_id: Annotated[
        str | None,
        typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
    ] = None,
    source_type: Annotated[
        list[SourceType] | None,
        typer.Option("--type", help="Restrict to a source type (repeatable)."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Number of results (default from config)."),
    ] = None,
) -> None:
    """Search the session's knowledge base."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        hits = asyncio.run(
            hive.hybrid_search(
                session.id,
                query,
                source_types=tuple(source_type) if source_type else None,
                top_k=top_k,
            )
        )
        titles = {s.id: s.title or s.locator for s in hive.store(session.id).list_sources()}

    if not hits:
        console.print(err_no_results(query))
        raise typer.Exit(0)

    table = Table(title=f"Results for '{query}'", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Excerpt")
    for rank, hit in enumerate(hits, start=1):
        excerpt = " ".join(hit.chunk.text.split())[:160]
        table.add_row(
            str(rank),
            f"{hit.score:.3f}",
            titles.get(hit.chunk.source_id, hit.chunk.source_id),
            excerpt,
        )
    console.print(table)
