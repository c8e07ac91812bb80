"""Command-line interface for yuque-mirror."""

from yuque_mirror.cli.main import app

__all__ = ["app", "main"]


def main() -> None:
    """Entry point for the CLI."""
    app()
