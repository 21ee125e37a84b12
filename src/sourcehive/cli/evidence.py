"""sourcehive evidence — citations and the claim ledger of a job.

Commands:
  sourcehive evidence citations <job>   numbered citations with excerpts
  sourcehive evidence claims <job>      claims, support level and cited labels
  sourcehive evidence verify <job>      re-run the integrity check, downgrading defects
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from sourcehive.cli.common import SESSION_HELP, console, open_hive, require_session
from sourcehive.cli.errors import err_job_not_found
from sourcehive.db.models import SupportLevel
from sourcehive.hive import SourceHive

evidence_app = typer.Typer(
    name="evidence",
    help="Inspect citations and the claim ledger (citations, claims, verify).",
    add_completion=False,
)

_SUPPORT_STYLE = {
    SupportLevel.SUPPORTED: "green",
    SupportLevel.PARTIALLY_SUPPORTED: "cyan",
    SupportLevel.DISPUTED: "red",
    SupportLevel.UNVERIFIED: "yellow",
}

SessionOpt = Annotated[
    str | None,
    typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
]
JobArg = Annotated[str, typer.Argument(help="Job id.")]


def _require_job(hive: SourceHive, session_id: str, job_id: str) -> None:
    if hive.get_job(session_id, job_id) is None:
        console.print(err_job_not_found(job_id))
        raise typer.Exit(1)


@evidence_app.command("citations")
def evidence_citations_cmd(
    ctx: typer.Context, job_id: JobArg, session_id: SessionOpt = None
) -> None:
    """List a job's citations."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        _require_job(hive, session.id, job_id)
        citations = hive.get_citations(session.id, job_id)
        store = hive.store(session.id)
        locators = {c.source_id: store.get_source(c.source_id) for c in citations}

    if not citations:
        console.print("[yellow]No citations for this job.[/]")
        raise typer.Exit(0)

    table = Table(title="Citations", show_header=True, header_style="bold")
    table.add_column("Label", style="bold")
    table.add_column("Type")
    table.add_column("Source")
    table.add_column("Excerpt")
    for c in citations:
        source = locators.get(c.source_id)
        where = (source.title or source.locator) if source is not None else c.source_id
        table.add_row(c.label, c.citation_type.value, where, " ".join(c.excerpt.split())[:200])
    console.print(table)


@evidence_app.command("claims")
def evidence_claims_cmd(
    ctx: typer.Context, job_id: JobArg, session_id: SessionOpt = None
) -> None:
    """Show a job's claim ledger."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        _require_job(hive, session.id, job_id)
        claims = hive.get_claim_ledger(session.id, job_id)
        labels = {c.id: c.label for c in hive.get_citations(session.id, job_id)}

    if not claims:
        console.print("[yellow]No claims recorded for this job.[/]")
        raise typer.Exit(0)

    table = Table(title="Claim Ledger", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Support")
    table.add_column("Cites")
    table.add_column("Claim")
    for entry in claims:
        style = _SUPPORT_STYLE[entry.support]
        cites = " ".join(labels.get(cid, "?") for cid in entry.citation_ids)
        table.add_row(
            str(entry.position + 1), f"[{style}]{entry.support.value}[/]", cites, entry.claim
        )
    console.print(table)

    supported = sum(1 for c in claims if c.support == SupportLevel.SUPPORTED)
    console.print(f"\n  {supported}/{len(claims)} supported")


@evidence_app.command("verify")
def evidence_verify_cmd(
    ctx: typer.Context, job_id: JobArg, session_id: SessionOpt = None
) -> None:
    """Check every claim against its citations; defective claims become unverified."""
    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        _require_job(hive, session.id, job_id)
        violations = hive.verify_claims(session.id, job_id)

    if not violations:
        console.print("[green]✓[/] Claim ledger is consistent")
        return
    for v in violations:
        console.print(f"  [yellow]↓[/] {v}")
    console.print(f"\n  {len(violations)} claim(s) downgraded to unverified")
