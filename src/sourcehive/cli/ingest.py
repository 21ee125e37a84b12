"""sourcehive ingest — index local files into a session store.

Source dispatch by extension:
  .txt .md .markdown .rst  → plain text
  .pdf                     → pypdf page text
  .html .htm               → BeautifulSoup + html2text (stored as snapshots)
  directory                → expanded to supported files (--recursive for subdirs)
"""

from __future__ import annotations

import asyncio
import fnmatch
from pathlib import Path
from typing import Annotated

import typer
from pypdf.errors import PdfReadError

from sourcehive.cli.common import SESSION_HELP, console, open_hive, require_session
from sourcehive.cli.errors import err_embedding_mismatch, err_unsupported_file
from sourcehive.errors import PersistenceError
from sourcehive.hive import SourceHive
from sourcehive.ingest.extract import SUPPORTED_SUFFIXES
from sourcehive.ingest.indexer import IndexResult

_MAX_DEPTH = 10


def ingest_cmd(
    ctx: typer.Context,
    paths: Annotated[list[Path], typer.Argument(help="Files or directories to ingest.")],
    session_id: Annotated[
        str | None,
        typer.Option("--session", "-s", envvar="SOURCEHIVE_SESSION", help=SESSION_HELP),
    ] = None,
    recursive: Annotated[
        bool,
        typer.Option("--recursive", "-r", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
) -> None:
    """Ingest files into the session's knowledge base."""
    files = expand_paths(paths, recursive=recursive, exclude=exclude or [])
    if not files:
        console.print("[yellow]No supported files found to ingest.[/]")
        raise typer.Exit(0)

    with open_hive(ctx) as hive:
        session = require_session(hive, session_id)
        failed = asyncio.run(_ingest_all(hive, session.id, files))
    if failed:
        raise typer.Exit(1)


async def _ingest_all(hive: SourceHive, session_id: str, files: list[Path]) -> int:
    failed = 0
    for path in files:
        console.print(f"\n[bold]→ {path}[/]")
        try:
            [result] = await hive.ingest(session_id, [path])
        except ValueError as exc:
            if path.suffix.lower() not in SUPPORTED_SUFFIXES:
                console.print(err_unsupported_file(str(path), sorted(SUPPORTED_SUFFIXES)))
            else:
                console.print(err_embedding_mismatch(str(exc)))
            failed += 1
            continue
        except (OSError, PdfReadError, PersistenceError) as exc:
            console.print(f"  [red]✗ Failed:[/] {exc}")
            failed += 1
            continue
        _report(result)
    return failed


def _report(result: IndexResult) -> None:
    if result.unchanged:
        console.print("  [dim]✓ Unchanged — skipped[/]")
        return
    if result.replaced_source_id:
        console.print("  [yellow]↻ Content changed — previous version replaced[/]")
    embedded = f"{result.embedded}/{result.chunks} embedded"
    style = "green" if result.embedded == result.chunks else "yellow"
    console.print(f"  [{style}]✓[/] {result.chunks} chunks ({embedded})")


def expand_paths(paths: list[Path], *, recursive: bool, exclude: list[str]) -> list[Path]:
    """Expand directories into supported files, dropping excluded names. Order is stable."""
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            for child in sorted(path.glob(pattern)):
                depth = len(child.relative_to(path).parts)
                if (
                    child.is_file()
                    and depth <= _MAX_DEPTH
                    and child.suffix.lower() in SUPPORTED_SUFFIXES
                ):
                    files.append(child)
        else:
            files.append(path)
    return [
        f
        for f in files
        if not any(fnmatch.fnmatch(f.name, pat) or fnmatch.fnmatch(str(f), pat) for pat in exclude)
    ]
