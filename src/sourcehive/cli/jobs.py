"""sourcehive jobs — inspect and control research jobs.

Commands:
  sourcehive jobs list              jobs of the session, newest first
  sourcehive jobs show <id>         state, progress, step log and reports
  sourcehive jobs cancel <id>       cancel a job that has not finished
  sourcehive jobs resume <id>       continue an interrupted job from its checkpoint
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from sourcehive.cli.common import (
    SESSION_HELP,
    check_api_keys,
    console,
    open_hive,
    require_session,
)
from sourcehive.cli.errors import err_job_failed, err_job_not_found, err_job_terminal
from sourcehive.db.models import JobState, ReportType, ResearchJob
from sourcehive.errors import InvalidTransition, JobNotFound
from sourcehive.hive import SourceHive

jobs_app = typer.Typer(
    name="jobs",
    help="Inspect and control research jobs (list, show, cancel, resume).",
    add_completion=False,
)

_STATE_STYLE = {
    JobState.COMPLETED: "green",
    JobState.FAILED: "red",
    JobState.CANCELLED: "yellow",
}

SessionOpt = Annotated[
    str | None,
    typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
]


@jobs_app.command("list")
def jobs_list_cmd(
    ctx: typer.Context,
    session_id: SessionOpt = None,
    state: Annotated[
        list[JobState] | None,
        typer.Option("--state", help="Only jobs in this state (repeatable)."),
    ] = None,
) -> None:
    """List jobs of the session."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        jobs = hive.list_jobs(session.id, state)

    if not jobs:
        console.print("[yellow]No jobs yet.[/]\n  Run:  sourcehive research \"<question>\"")
        raise typer.Exit(0)

    table = Table(title="Jobs", show_header=True, header_style="bold")
    table.add_column("Id", style="bold")
    table.add_column("State")
    table.add_column("Type")
    table.add_column("Sources", justify="right")
    table.add_column("Prompt")
    for job in jobs:
        style = _STATE_STYLE.get(job.state, "cyan")
        table.add_row(
            job.id,
            f"[{style}]{job.state.value}[/]",
            job.job_type.value,
            f"{len(job.acquired_source_ids)}/{job.target_source_count}",
            job.prompt[:60],
        )
    console.print(table)


@jobs_app.command("show")
def jobs_show_cmd(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    session_id: SessionOpt = None,
    report: Annotated[
        ReportType | None,
        typer.Option("--report", help="Print one of the job's reports."),
    ] = None,
) -> None:
    """Show a job's state, step log and (optionally) a report."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        job = hive.get_job(session.id, job_id)
        if job is None:
            console.print(err_job_not_found(job_id))
            raise typer.Exit(1)
        steps = hive.get_job_steps(session.id, job_id)
        reports = {r.report_type: r for r in hive.get_reports(session.id, job_id)}

    style = _STATE_STYLE.get(job.state, "cyan")
    lines = [
        f"Prompt:     {job.prompt}",
        f"State:      [{style}]{job.state.value}[/]",
        f"Sources:    {len(job.acquired_source_ids)}/{job.target_source_count}",
        f"Iteration:  {job.current_iteration}/{job.max_iterations}",
    ]
    if job.grounding_score is not None:
        lines.append(f"Grounding:  {job.grounding_score:.0%}")
    if job.error_message:
        lines.append(f"Error:      [red]{job.error_message}[/]")
    console.print(Panel("\n".join(lines), title=f"[bold]Job {job.id}[/]", expand=False))

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("State")
    table.add_column("Action")
    table.add_column("Detail")
    for step in steps:
        mark = "" if step.success else " [red]✗[/]"
        table.add_row(str(step.step_number), step.state_after.value, step.action + mark, step.detail)
    console.print(table)

    if report is not None:
        found = reports.get(report)
        if found is None:
            console.print(f"[yellow]No {report.value} report for this job yet.[/]")
        else:
            console.print(Markdown(found.content))


@jobs_app.command("cancel")
def jobs_cancel_cmd(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    session_id: SessionOpt = None,
) -> None:
    """Cancel a job. A running job stops before its next phase."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        try:
            cancelled = hive.cancel(session.id, job_id)
        except JobNotFound as exc:
            console.print(err_job_not_found(job_id))
            raise typer.Exit(1) from exc
        if not cancelled:
            state = hive.get_job(session.id, job_id).state  # type: ignore[union-attr]
            console.print(err_job_terminal(job_id, state.value))
            raise typer.Exit(0)
    console.print(f"[green]✓[/] Cancellation requested for {job_id}")


@jobs_app.command("resume")
def jobs_resume_cmd(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    session_id: SessionOpt = None,
) -> None:
    """Resume an interrupted job from its last checkpoint."""
    with open_hive(ctx) as hive:
        check_api_keys(hive.config)
        session = require_session(hive, session_id)
        try:
            with console.status("Resuming…"):
                job = asyncio.run(_resume(hive, session.id, job_id))
        except JobNotFound as exc:
            console.print(err_job_not_found(job_id))
            raise typer.Exit(1) from exc
        except InvalidTransition as exc:
            state = hive.get_job(session.id, job_id).state  # type: ignore[union-attr]
            console.print(err_job_terminal(job_id, state.value))
            raise typer.Exit(0) from exc

    if job.state == JobState.FAILED:
        console.print(err_job_failed(job.id, job.error_message))
        raise typer.Exit(1)
    style = _STATE_STYLE.get(job.state, "cyan")
    console.print(f"Job {job.id}: [{style}]{job.state.value}[/]")


async def _resume(hive: SourceHive, session_id: str, job_id: str) -> ResearchJob:
    return await hive.resume(session_id, job_id)
