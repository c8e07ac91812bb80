"""CLI error handling utilities."""

from collections.abc import Generator
from contextlib import contextmanager

import typer
from rich.markup import escape

from yuque_mirror.exceptions import (
    ConfigError,
    ReconciliationError,
    SourceReadError,
    YuqueAPIError,
    YuqueMirrorError,
)
from yuque_mirror.logging_setup import console


def _print_suggestion(error: YuqueMirrorError) -> None:
    if error.suggestion:
        console.print(f"[yellow]{escape(error.suggestion)}[/yellow]")


@contextmanager
def handle_cli_errors(*, debug: bool = False) -> Generator[None, None, None]:
    """Context manager to handle CLI errors gracefully.

    Args:
        debug: If True, re-raise with the full traceback. If False, print a
            user-friendly error and exit with code 1.

    """
    try:
        yield
    except (KeyboardInterrupt, SystemExit, typer.Exit):
        raise
    except YuqueAPIError as e:
        if debug:
            raise
        label = "Network Error" if e.status_code == 0 else f"API Error ({e.status_code})"
        console.print(f"[bold red]🌐 {label}:[/bold red] {escape(str(e))}")
        _print_suggestion(e)
        raise typer.Exit(1) from e
    except ConfigError as e:
        if debug:
            raise
        console.print(f"[bold red]⚙️ Configuration Error:[/bold red] {escape(str(e))}")
        _print_suggestion(e)
        raise typer.Exit(1) from e
    except SourceReadError as e:
        if debug:
            raise
        console.print(f"[bold red]📖 Source Error:[/bold red] {escape(str(e))}")
        _print_suggestion(e)
        raise typer.Exit(1) from e
    except ReconciliationError as e:
        if debug:
            raise
        console.print(f"[bold red]🧹 Reconciliation Failed:[/bold red] {escape(str(e))}")
        console.print("State was not saved; the next run will redo this cycle.")
        raise typer.Exit(1) from e
    except YuqueMirrorError as e:
        if debug:
            raise
        console.print(f"[bold red]🚨 Error:[/bold red] {escape(str(e))}")
        _print_suggestion(e)
        raise typer.Exit(1) from e
    except Exception as e:
        if debug:
            console.print_exception(show_locals=False)
            raise typer.Exit(1) from e

        console.print(f"[bold red]💥 An unexpected error occurred:[/bold red] {escape(str(e))}")
        console.print("[dim]Run with [bold]--debug[/bold] for more details.[/dim]")
        raise typer.Exit(1) from e
