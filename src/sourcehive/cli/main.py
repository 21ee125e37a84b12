"""SourceHive CLI entry point."""

from __future__ import annotations

import importlib.metadata
from pathlib import Path
from typing import Annotated

import typer

from sourcehive.cli.common import CliState, configure_logging
from sourcehive.cli.evidence import evidence_app
from sourcehive.cli.ingest import ingest_cmd
from sourcehive.cli.init import init_cmd
from sourcehive.cli.jobs import jobs_app
from sourcehive.cli.memory import memory_app
from sourcehive.cli.research import research_cmd
from sourcehive.cli.search import search_cmd
from sourcehive.cli.sessions import sessions_app
from sourcehive.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("sourcehive")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sourcehive {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="sourcehive",
    help=(
        "SourceHive — local-first research substrate.\n\n"
        "  sourcehive ingest    Index local documents into a session.\n"
        "  sourcehive research  Plan, search, verify and synthesize a cited report."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output to stderr."),
    ] = False,
    data_root: Annotated[
        Path | None,
        typer.Option("--data-root", help="Override storage.data_root for this run."),
    ] = None,
) -> None:
    """SourceHive — local-first research substrate."""
    configure_logging(verbose)
    ctx.obj = CliState(data_root=data_root, verbose=verbose)


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("research")(research_cmd)
app.command("status")(status_cmd)
app.add_typer(sessions_app, name="sessions")
app.add_typer(jobs_app, name="jobs")
app.add_typer(evidence_app, name="evidence")
app.add_typer(memory_app, name="memory")


@app.command("version")
def version_cmd() -> None:
    """Show the installed SourceHive version."""
    typer.echo(f"sourcehive {_installed_version()}")


if __name__ == "__main__":
    app()
