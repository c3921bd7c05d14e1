"""
Command-line interface for artifact ingestion.

Uses Typer to provide the two run modes as commands:

    artifact-ingest validate   complete submissions and write them back
    artifact-ingest upload     verify, store and publish complete submissions

Secrets are read from the environment; a .env file in the working
directory is loaded first.
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.markup import escape

from .config import AppConfig, load_config
from .core.schema import Mode
from .errors import IngestError
from .runner import run_pipeline

app = typer.Typer(add_completion=False)
console = Console()


def _apply_overrides(
    cfg: AppConfig,
    *,
    path: Path | None,
    log_level: str | None,
    log_file: bool | None,
    concurrency: int | None,
    retries: int | None,
) -> None:
    if path is not None:
        cfg.submissions.path = str(path)
    if log_level:
        cfg.logging.level = log_level
    if log_file is not None:
        cfg.logging.file = log_file
    if concurrency is not None:
        cfg.fetch.concurrency = concurrency
    if retries is not None:
        cfg.fetch.retries = retries


def _run(
    mode: Mode,
    *,
    config: Path | None,
    path: Path | None,
    log_level: str | None,
    log_file: bool | None,
    concurrency: int | None,
    retries: int | None,
    dry_run: bool,
    progress: bool,
) -> None:
    load_dotenv()
    try:
        cfg = load_config(str(config) if config else None)
        _apply_overrides(
            cfg,
            path=path,
            log_level=log_level,
            log_file=log_file,
            concurrency=concurrency,
            retries=retries,
        )
        run_pipeline(cfg, mode, dry_run=dry_run, show_progress=progress, console=console)
    except IngestError as exc:
        console.print(
            f"[bold red]Error:[/bold red] {escape(str(exc))}", highlight=False, soft_wrap=True
        )
        raise typer.Exit(1) from exc


_CONFIG = typer.Option(None, "--config", "-c", exists=True, help="YAML config file.")
_PATH = typer.Option(None, "--path", "-p", help="Submissions directory.")
_LOG_LEVEL = typer.Option(None, "--log-level", help="Logging level.")
_LOG_FILE = typer.Option(None, "--log-file/--no-log-file", help="Enable or disable file logging.")
_CONCURRENCY = typer.Option(None, "--concurrency", min=1, help="Worker pool size.")
_RETRIES = typer.Option(None, "--retries", min=0, help="Retries for failed fetches.")
_PROGRESS = typer.Option(True, "--progress/--no-progress")


@app.command()
def validate(
    config: Path | None = _CONFIG,
    path: Path | None = _PATH,
    log_level: str | None = _LOG_LEVEL,
    log_file: bool | None = _LOG_FILE,
    concurrency: int | None = _CONCURRENCY,
    retries: int | None = _RETRIES,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Complete submissions without writing them back."
    ),
    progress: bool = _PROGRESS,
):
    """Check every submission and fill in ids, digests and media types.

    Completed submissions are written back to their files only when the
    whole batch succeeds.
    """
    _run(
        "validate",
        config=config,
        path=path,
        log_level=log_level,
        log_file=log_file,
        concurrency=concurrency,
        retries=retries,
        dry_run=dry_run,
        progress=progress,
    )


@app.command()
def upload(
    config: Path | None = _CONFIG,
    path: Path | None = _PATH,
    log_level: str | None = _LOG_LEVEL,
    log_file: bool | None = _LOG_FILE,
    concurrency: int | None = _CONCURRENCY,
    retries: int | None = _RETRIES,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Download and verify files without storing or publishing."
    ),
    progress: bool = _PROGRESS,
):
    """Verify and store every artifact file, then publish the metadata.

    Files already in the content store are skipped. Nothing is published if
    any file fails verification.
    """
    _run(
        "upload",
        config=config,
        path=path,
        log_level=log_level,
        log_file=log_file,
        concurrency=concurrency,
        retries=retries,
        dry_run=dry_run,
        progress=progress,
    )


if __name__ == "__main__":
    app()
