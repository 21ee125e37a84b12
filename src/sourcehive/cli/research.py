"""sourcehive research — submit a research job and run it to completion.

Ctrl-C cancels the job cooperatively; its last checkpoint is kept and the
job can be inspected with ``sourcehive jobs show``.
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.markdown import Markdown
from rich.panel import Panel

from sourcehive.cli.common import (
    SESSION_HELP,
    check_api_keys,
    console,
    open_hive,
    require_session,
)
from sourcehive.cli.errors import err_job_failed
from sourcehive.db.models import JobState, JobType, ResearchJob


def research_cmd(
    ctx: typer.Context,
    prompt: Annotated[str, typer.Argument(help="The research question.")],
    session_id: Annotated[
        str | None,
        typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
    ] = None,
    job_type: Annotated[
        JobType,
        typer.Option("--type", help="Job type; selects the source types searched."),
    ] = JobType.RESEARCH,
    target: Annotated[
        int | None,
        typer.Option("--target", min=1, help="Sources to acquire before synthesis."),
    ] = None,
    iterations: Annotated[
        int | None,
        typer.Option("--iterations", min=1, help="Maximum search iterations."),
    ] = None,
) -> None:
    """Research a question against the session's sources and write reports."""
    with open_hive(ctx) as hive:
        check_api_keys(hive.config)
        session = require_session(hive, session_id)
        job = hive.submit(
            session.id,
            prompt,
            job_type,
            target_source_count=target,
            max_iterations=iterations,
        )
        console.print(f"[bold]Job {job.id}[/] submitted")

        try:
            with console.status("Researching…"):
                job = asyncio.run(hive.run(session.id, job.id))
        except KeyboardInterrupt:
            console.print(
                f"\n[yellow]Cancelled.[/] Last checkpoint kept.\n"
                f"  Run:  sourcehive jobs show {job.id}"
            )
            raise typer.Exit(130)

        citations = len(hive.get_citations(session.id, job.id))
        claims = len(hive.get_claim_ledger(session.id, job.id))

    _show_outcome(job, citations, claims)


def _show_outcome(job: ResearchJob, citations: int, claims: int) -> None:
    if job.state == JobState.FAILED:
        console.print(err_job_failed(job.id, job.error_message))
        raise typer.Exit(1)
    if job.state == JobState.CANCELLED:
        console.print(f"[yellow]Job {job.id} was cancelled.[/]")
        raise typer.Exit(1)

    console.print(
        Panel(
            Markdown(job.executive_summary or "(no summary)"),
            title="[bold]Executive Summary[/]",
            expand=False,
        )
    )
    grounding = job.grounding_score or 0.0
    console.print(
        f"Sources: [bold]{len(job.acquired_source_ids)}[/]/{job.target_source_count}  |  "
        f"Citations: [bold]{citations}[/]  |  Claims: [bold]{claims}[/]  |  "
        f"Grounding: [bold]{grounding:.0%}[/]"
    )
    console.print(
        f"\n  Full report:  sourcehive jobs show {job.id} --report full\n"
        f"  Claims:       sourcehive evidence claims {job.id}"
    )
