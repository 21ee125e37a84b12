"""Shared CLI plumbing: console, logging, config + hive construction, session lookup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from sourcehive.cli.errors import (
    err_config,
    err_no_api_key,
    err_no_session,
    err_session_not_found,
    warn_fallback_without_key,
)
from sourcehive.config import ConfigError, HiveConfig, StorageCfg, load_config
from sourcehive.db.models import Session
from sourcehive.errors import SessionNotFound
from sourcehive.hive import SourceHive
from sourcehive.llm.providers import validate_api_key
from sourcehive.llm.router import STRATEGY_ORDER

console = Console()

SESSION_HELP = "Session id (or set SOURCEHIVE_SESSION)."


@dataclass
class CliState:
    """Options of the root command, shared with every sub-command via ctx.obj."""

    data_root: Path | None = None
    verbose: bool = False


def configure_logging(verbose: bool) -> None:
    """Route library logging through rich on stderr; DEBUG with --verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )
    # litellm and httpx are chatty at DEBUG
    for name in ("LiteLLM", "litellm", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def load_cli_config(ctx: typer.Context) -> HiveConfig:
    """Load config and apply root-level CLI overrides; exit 1 on ConfigError."""
    state: CliState = ctx.obj or CliState()
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if state.data_root is not None:
        cfg = replace(cfg, storage=StorageCfg(data_root=str(state.data_root)))
    return cfg


def open_hive(ctx: typer.Context) -> SourceHive:
    return SourceHive.from_config(load_cli_config(ctx))


def require_session(hive: SourceHive, session_id: str | None) -> Session:
    if not session_id:
        console.print(err_no_session())
        raise typer.Exit(1)
    try:
        return hive.sessions.get_session(session_id)
    except SessionNotFound as exc:
        console.print(err_session_not_found(session_id))
        raise typer.Exit(1) from exc


def check_api_keys(cfg: HiveConfig) -> None:
    """Fail fast if the primary provider lacks a key; warn for the fallback."""
    providers = {"local": cfg.routing.local, "cloud": cfg.routing.cloud}
    order = [name for name in STRATEGY_ORDER[cfg.routing.strategy] if providers[name]]
    for position, name in enumerate(order):
        provider_cfg = providers[name]
        assert provider_cfg is not None
        try:
            validate_api_key(provider_cfg.model)
        except EnvironmentError as exc:
            vendor = provider_cfg.model.split("/")[0] if "/" in provider_cfg.model else "openai"
            if position == 0:
                console.print(err_no_api_key(vendor))
                raise typer.Exit(1) from exc
            console.print(warn_fallback_without_key(vendor, provider_cfg.model))
