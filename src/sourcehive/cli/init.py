"""sourcehive init — first-run setup.

Creates:
  ~/.sourcehive/config.yaml   global model config (created once, mode 0o600)
  <data_root>/registry.db     sessions index
  <data_root>/global.db       global memory
  <data_root>/sessions/<id>.db  first session store (with --title)
"""

from __future__ import annotations

from typing import Annotated

import typer

from sourcehive.cli.common import console, open_hive
from sourcehive.config import ensure_global_config
from sourcehive.db.models import DomainPack


def init_cmd(
    ctx: typer.Context,
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="Create a first session with this title."),
    ] = None,
    domain_pack: Annotated[
        DomainPack,
        typer.Option("--domain-pack", "-d", help="Domain pack of the first session."),
    ] = DomainPack.GENERAL_RESEARCH,
) -> None:
    """Create the global config and data stores; optionally a first session."""
    config_path = ensure_global_config()
    console.print(f"  [green]✓[/] {config_path}")

    with open_hive(ctx) as hive:
        storage = hive.config.storage
        console.print(f"  [green]✓[/] {storage.registry_path}")
        console.print(f"  [green]✓[/] {storage.global_path}")
        if title:
            session = hive.sessions.create_session(title, domain_pack=domain_pack)
            console.print(f"  [green]✓[/] session [bold]{session.id}[/] ({session.title})")
            console.print(f"\n  Next:  export SOURCEHIVE_SESSION={session.id}")
            console.print("         sourcehive ingest <path>")
