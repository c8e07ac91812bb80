"""Main Typer application for yuque-mirror."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.markup import escape
from rich.table import Table

from yuque_mirror.builder import BuildSummary, build
from yuque_mirror.cli.errorhandler import handle_cli_errors
from yuque_mirror.config import MirrorSettings, load_settings
from yuque_mirror.crawler import CrawlResult, crawl
from yuque_mirror.logging_setup import configure_logging, console
from yuque_mirror.sdk import YuqueClient
from yuque_mirror.source import MetaStore

app = typer.Typer(
    name="yuque-mirror",
    help="Mirror Yuque knowledge bases into a local Markdown tree, incrementally",
    add_completion=False,
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

MAX_FAILURES_TO_SHOW = 10

Targets = Annotated[
    list[str] | None,
    typer.Argument(help="Repos to crawl: 'user', 'user/repo', or nothing for the token's own repos"),
]
ConfigOption = Annotated[
    Path | None, typer.Option("--config", help="TOML file with a [mirror] table", exists=True, dir_okay=False)
]
TokenOption = Annotated[str | None, typer.Option("--token", "-t", help="Personal access token", show_default=False)]
HostOption = Annotated[str | None, typer.Option("--host", help="Service host (default: https://www.yuque.com)")]
OutputOption = Annotated[Path | None, typer.Option("--output", "-o", help="Output directory (default: ./storage)")]
RepoDirOption = Annotated[
    str | None, typer.Option("--repo", help="Directory name for the repo root; '.' maps it onto the output root")
]
CleanOption = Annotated[
    bool | None, typer.Option("--clean/--no-clean", help="Wipe the output area (metadata kept) before building")
]
DraftOption = Annotated[
    bool | None,
    typer.Option("--skip-draft/--keep-draft", help="Skip documents missing from the table of contents"),
]
TimeoutOption = Annotated[float | None, typer.Option("--timeout", help="Request timeout in seconds")]
ConcurrencyOption = Annotated[int | None, typer.Option("--concurrency", "-c", help="Maximum concurrent tasks")]
RetriesOption = Annotated[int | None, typer.Option("--max-retries", help="Retries for transient API failures")]
RetryDelayOption = Annotated[float | None, typer.Option("--retry-delay", help="Initial retry backoff in seconds")]
StrictOption = Annotated[bool, typer.Option("--strict", help="Exit with code 2 when any task failed")]
DebugOption = Annotated[bool, typer.Option("--debug", help="Enable debug logging and full tracebacks")]


@app.callback()
def main() -> None:
    """Crawl Yuque repositories and build a Markdown mirror of them."""


def _load(config: Path | None, **overrides: Any) -> MirrorSettings:
    settings = load_settings(config, **overrides)
    logger.debug("Output directory: %s", settings.output_dir.resolve())
    return settings


def _run_crawl(settings: MirrorSettings, targets: list[str] | None) -> list[CrawlResult]:
    store = MetaStore(settings.meta_dir)
    with YuqueClient.from_settings(settings) as client:
        return crawl(client, store, targets, concurrency=settings.concurrency)


def _print_crawl(results: list[CrawlResult]) -> None:
    table = Table(title="Crawl", show_header=True, header_style="bold cyan")
    table.add_column("Repository")
    table.add_column("Documents", justify="right")
    table.add_column("Fetched", justify="right")
    table.add_column("Pruned", justify="right")
    for result in results:
        table.add_row(escape(result.namespace), str(len(result.docs)), str(len(result.fetched)), str(len(result.pruned)))
    console.print(table)


def _print_summary(summary: BuildSummary) -> None:
    table = Table(title="Build", show_header=True, header_style="bold cyan")
    table.add_column("Result")
    table.add_column("Paths", justify="right")
    for name, count in summary.counts().items():
        style = "red" if name == "failed" and count else None
        table.add_row(name, str(count), style=style)
    console.print(table)

    for failure in summary.failures[:MAX_FAILURES_TO_SHOW]:
        console.print(f"  [red]✗[/red] {escape(str(failure))}")
    if len(summary.failures) > MAX_FAILURES_TO_SHOW:
        console.print(f"  [dim]... and {len(summary.failures) - MAX_FAILURES_TO_SHOW} more[/dim]")


def _finish(summary: BuildSummary, *, strict: bool) -> None:
    _print_summary(summary)
    if summary.failures and strict:
        raise typer.Exit(2)


@app.command("crawl")
def crawl_command(  # noqa: PLR0913
    targets: Targets = None,
    *,
    config: ConfigOption = None,
    token: TokenOption = None,
    host: HostOption = None,
    output: OutputOption = None,
    timeout: TimeoutOption = None,
    concurrency: ConcurrencyOption = None,
    max_retries: RetriesOption = None,
    retry_delay: RetryDelayOption = None,
    debug: DebugOption = False,
) -> None:
    """Fetch repositories, tables of contents and changed documents into the metadata cache."""
    configure_logging(debug=debug)
    with handle_cli_errors(debug=debug):
        settings = _load(
            config,
            token=token,
            host=host,
            output_dir=output,
            timeout=timeout,
            concurrency=concurrency,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )
        _print_crawl(_run_crawl(settings, targets))


@app.command("build")
def build_command(  # noqa: PLR0913
    *,
    config: ConfigOption = None,
    host: HostOption = None,
    output: OutputOption = None,
    repo_dir: RepoDirOption = None,
    clean: CleanOption = None,
    skip_draft: DraftOption = None,
    timeout: TimeoutOption = None,
    concurrency: ConcurrencyOption = None,
    strict: StrictOption = False,
    debug: DebugOption = False,
) -> None:
    """Build the Markdown mirror from the metadata cache, without network calls for records."""
    configure_logging(debug=debug)
    with handle_cli_errors(debug=debug):
        settings = _load(
            config,
            host=host,
            output_dir=output,
            repo_dir=repo_dir,
            clean=clean,
            skip_draft=skip_draft,
            timeout=timeout,
            concurrency=concurrency,
        )
        summary = build(settings)
    _finish(summary, strict=strict)


@app.command("sync")
def sync_command(  # noqa: PLR0913
    targets: Targets = None,
    *,
    config: ConfigOption = None,
    token: TokenOption = None,
    host: HostOption = None,
    output: OutputOption = None,
    repo_dir: RepoDirOption = None,
    clean: CleanOption = None,
    skip_draft: DraftOption = None,
    timeout: TimeoutOption = None,
    concurrency: ConcurrencyOption = None,
    max_retries: RetriesOption = None,
    retry_delay: RetryDelayOption = None,
    strict: StrictOption = False,
    debug: DebugOption = False,
) -> None:
    """Crawl, then build: one full incremental mirror cycle."""
    configure_logging(debug=debug)
    with handle_cli_errors(debug=debug):
        settings = _load(
            config,
            token=token,
            host=host,
            output_dir=output,
            repo_dir=repo_dir,
            clean=clean,
            skip_draft=skip_draft,
            timeout=timeout,
            concurrency=concurrency,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )
        _print_crawl(_run_crawl(settings, targets))
        summary = build(settings)
    _finish(summary, strict=strict)
