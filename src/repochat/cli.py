"""
Command line interface for the repository chat assistant.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from .errors import InputValidationError, RepoChatError
from .ingestion import IngestionPipeline
from .logger import configure_logging, get_logger, redirect_logging_to_file
from .services import ConversationOrchestrator
from .settings import settings

app = typer.Typer(name="repochat", help="Chat with a language model about GitHub repositories.")
configure_logging(settings.log_level, enable_console=False)
log = get_logger(__name__)
console = Console()


def _fail(exc: RepoChatError) -> NoReturn:
    log.error("cli_command_failed", error=str(exc))
    console.print(f"[red][ERROR][/red] {exc}")
    raise typer.Exit(code=2 if isinstance(exc, InputValidationError) else 1)


def _enable_log_file(log_file: Optional[Path]) -> None:
    if log_file:
        redirect_logging_to_file(log_file.resolve())
        typer.echo(f"Logging detailed output to {log_file.resolve()}")


@app.command()
def pack(
    repo_url: str = typer.Argument(..., help="GitHub repository URL."),
    force: bool = typer.Option(False, "--force", "-f", help="Re-pack even when cached."),
    log_file: Optional[Path] = typer.Option(
        None, "--log", help="Write detailed logs to this file."
    ),
) -> None:
    """Clone and pack a repository into the local cache."""
    _enable_log_file(log_file)
    pipeline = IngestionPipeline()
    try:
        with console.status(f"Packing {repo_url}..."):
            result = asyncio.run(pipeline.process(repo_url, force_refresh=force))
    except RepoChatError as exc:
        _fail(exc)

    source = "cache" if result.from_cache else "fresh pack"
    typer.echo(
        f"Packed {result.repo_url} ({result.commit_sha or 'latest'}) from {source}: "
        f"key={result.cache_key} size={result.size}"
    )


@app.command()
def status(cache_key: str = typer.Argument(..., help="Cache key returned by pack.")) -> None:
    """Show metadata for a cached repository."""
    pipeline = IngestionPipeline()
    try:
        metadata = asyncio.run(pipeline.cache.metadata(cache_key))
    except RepoChatError as exc:
        _fail(exc)
    if metadata is None:
        typer.echo(f"No cached repository for key {cache_key}")
        raise typer.Exit(code=1)

    table = Table(title=f"Cache entry {cache_key[:12]}")
    table.add_column("Field")
    table.add_column("Value")
    for field_name, value in metadata.to_dict().items():
        table.add_row(field_name, str(value))
    console.print(table)


@app.command()
def delete(cache_key: str = typer.Argument(..., help="Cache key to remove.")) -> None:
    """Delete a cached repository. Missing entries are ignored."""
    pipeline = IngestionPipeline()
    try:
        asyncio.run(pipeline.cache.delete(cache_key))
    except RepoChatError as exc:
        _fail(exc)
    typer.echo(f"Deleted cache entry {cache_key}")


@app.command()
def chat(
    message: str = typer.Argument(..., help="Question or instruction for the assistant."),
    cache_key: Optional[str] = typer.Option(
        None, "--cache-key", "-k", help="Reuse a previously packed repository as context."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response payload."),
    log_file: Optional[Path] = typer.Option(
        None, "--log", help="Write detailed logs to this file."
    ),
) -> None:
    """Send one chat turn; the model may pack repositories on demand."""
    _enable_log_file(log_file)
    orchestrator = ConversationOrchestrator()
    try:
        with console.status("Thinking..."):
            result = asyncio.run(orchestrator.chat(message, cache_key=cache_key))
    except RepoChatError as exc:
        _fail(exc)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    console.print(result.response)
    for record in result.tool_calls:
        outcome = f"error: {record.error}" if record.error else "ok"
        console.print(f"[dim]tool {record.tool} {json.dumps(record.arguments)} -> {outcome}[/dim]")
    if result.cache_key:
        console.print(f"[dim]cache key: {result.cache_key}[/dim]")


@app.command()
def serve() -> None:
    """Run the HTTP API."""
    from .api.main import run

    run()


@app.command()
def config() -> None:
    """Show the effective configuration (secrets hidden)."""
    hidden = {"llm_api_key", "github_token"}
    for name, value in settings.model_dump().items():
        shown = "***" if name in hidden and value else value
        typer.echo(f"{name} = {shown}")


if __name__ == "__main__":  # pragma: no cover
    app()
