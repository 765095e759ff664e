"""Main entry point for goldsync CLI tool."""

import logging

import typer
from rich.logging import RichHandler

from cli import __version__
from cli.commands import config, database

# Create main app
app = typer.Typer(
    name="goldsync",
    help="Sync golden database copies and clone them into worktree databases",
    no_args_is_help=True,
    add_completion=False,
)

# Add subcommands
app.add_typer(database.app, name="database")
app.add_typer(database.app, name="db", hidden=True)
app.add_typer(config.app, name="config")


def version_callback(show_version: bool) -> None:
    """Show version and exit.

    Args:
        show_version: Whether to show version
    """
    if show_version:
        typer.echo(f"goldsync version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route engine logs through rich; DEBUG when verbose, otherwise WARNING"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Sync golden database copies and clone them into worktree databases.

    Examples:

        # Refresh the golden copy of the project in the current directory
        goldsync database sync

        # Clone the golden copy for a worktree
        goldsync database clone --worktree feature-x

        # Check a worktree database's migrations
        goldsync database migration-status

    For detailed help on each command:
        goldsync database --help
        goldsync config --help
    """
    configure_logging(verbose)


if __name__ == "__main__":
    app()
