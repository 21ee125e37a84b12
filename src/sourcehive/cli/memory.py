"""sourcehive memory — cross-session global memory.

Commands:
  sourcehive memory promote            copy a session's best chunks into global memory
  sourcehive memory query <text>       search global memory in a scope
  sourcehive memory stats              size and content types of global memory
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.table import Table

from sourcehive.cli.common import SESSION_HELP, console, open_hive, require_session
from sourcehive.cli.errors import err_no_results, err_scope_key
from sourcehive.memory.global_memory import MemoryScope

memory_app = typer.Typer(
    name="memory",
    help="Promote to and query cross-session global memory (promote, query, stats).",
    add_completion=False,
)


@memory_app.command("promote")
def memory_promote_cmd(
    ctx: typer.Context,
    session_id: Annotated[
        str | None,
        typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
    ] = None,
    chunk: Annotated[
        list[str] | None,
        typer.Option("--chunk", help="Promote exactly this chunk id (repeatable)."),
    ] = None,
    repo_url: Annotated[
        str | None,
        typer.Option("--repo", help="Repository URL the chunks belong to."),
    ] = None,
    max_chunks: Annotated[
        int,
        typer.Option("--max-chunks", min=1, help="Cap when promoting a whole session."),
    ] = 100,
) -> None:
    """Promote session chunks. Re-promoting the same chunks updates them in place."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        count = hive.promote(
            session.id, chunk_ids=chunk, repo_url=repo_url, max_chunks=max_chunks
        )
        total = hive.memory.stats().total_chunks
    console.print(f"[green]✓[/] Promoted {count} chunks  (global memory: {total} chunks)")


@memory_app.command("query")
def memory_query_cmd(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    scope: Annotated[
        MemoryScope,
        typer.Option("--scope", help="Which part of global memory to search."),
    ] = MemoryScope.HIVE_MIND,
    session_id: Annotated[
        str | None,
        typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
    ] = None,
    repo_url: Annotated[str | None, typer.Option("--repo", help="Repository URL.")] = None,
    top_k: Annotated[int | None, typer.Option("--top-k", "-k", min=1)] = None,
) -> None:
    """Search global memory."""
    with open_hive(ctx) as hive:
        if scope in (MemoryScope.THIS_SESSION, MemoryScope.THIS_DOMAIN):
            require_session(hive, session_id)
        try:
            hits = asyncio.run(
                hive.query_global(
                    query, scope, session_id=session_id, repo_url=repo_url, top_k=top_k
                )
            )
        except ValueError as exc:
            console.print(err_scope_key(str(exc)))
            raise typer.Exit(1) from exc

    if not hits:
        console.print(err_no_results(query))
        raise typer.Exit(0)

    table = Table(title=f"Global memory: '{query}'", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Type")
    table.add_column("Session")
    table.add_column("Excerpt")
    for rank, hit in enumerate(hits, start=1):
        table.add_row(
            str(rank),
            f"{hit.score:.3f}",
            hit.chunk.source_type.value,
            hit.chunk.session_id[:8],
            " ".join(hit.chunk.text.split())[:160],
        )
    console.print(table)


@memory_app.command("stats")
def memory_stats_cmd(ctx: typer.Context) -> None:
    """Show global memory size."""
    with open_hive(ctx) as hive:
        stats = hive.memory.stats()
    types = ", ".join(t.value for t in stats.source_types) or "(empty)"
    console.print(
        f"Chunks: [bold]{stats.total_chunks}[/]  |  "
        f"Strategies: [bold]{stats.strategy_count}[/]  |  Types: {types}"
    )
