"""SourceHive rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from sourcehive.cli.errors import err_session_not_found
    console.print(err_session_not_found(session_id))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "together_ai": "TOGETHERAI_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-...\n"
        "  Or route to the local model:  export SOURCEHIVE_ROUTING=local_only"
    )


def warn_fallback_without_key(provider: str, model: str) -> str:
    """The fallback provider cannot be used without a key."""
    return (
        f"[yellow]Warning:[/] No API key for fallback model '{model}' ({provider}).\n"
        "  Calls fail if the primary provider is unavailable."
    )


def err_config(message: str) -> str:
    """Config file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix sourcehive.yaml or ~/.sourcehive/config.yaml and retry."
    )


def err_no_session() -> str:
    """Command needs a session but none was given."""
    return (
        "[red]Error:[/] No session selected.\n"
        "  Pass --session <id> or set SOURCEHIVE_SESSION.\n"
        "  Run:  sourcehive sessions list"
    )


def err_session_not_found(session_id: str) -> str:
    return (
        f"[red]Error:[/] Session '{session_id}' not found.\n"
        "  Run:  sourcehive sessions list"
    )


def err_job_not_found(job_id: str) -> str:
    return (
        f"[red]Error:[/] Job '{job_id}' not found in this session.\n"
        "  Run:  sourcehive jobs list"
    )


def err_job_failed(job_id: str, message: str | None) -> str:
    """A research job ended in the Failed state."""
    return (
        f"[red]Error:[/] Job '{job_id}' failed: {message or 'unknown error'}\n"
        "  Check that the configured models are reachable, then run:\n"
        f"    sourcehive jobs resume {job_id}"
    )


def err_job_terminal(job_id: str, state: str) -> str:
    return f"[yellow]Job '{job_id}' is already {state}.[/] Nothing to do."


def err_unsupported_file(path: str, accepted: list[str]) -> str:
    """Ingest was given a file type without an extractor."""
    return (
        f"[red]✗ Unsupported file type:[/] '{path}' — skipping\n"
        f"  Accepted: {', '.join(accepted)}"
    )


def err_no_results(query: str) -> str:
    return (
        f"[yellow]No results for[/] '{query}'.\n"
        "  Ingest sources first:  sourcehive ingest <path>"
    )


def err_embedding_mismatch(message: str) -> str:
    """Embedding length differs from the one the store was built with."""
    return (
        f"[red]Error:[/] {message}\n"
        "  The session was indexed with a different embedding model.\n"
        "  Restore the original embedding.model or ingest into a new session."
    )


def err_scope_key(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Pass --session <id> (this_session, this_domain) or --repo <url> (this_repo)."
    )
