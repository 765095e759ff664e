"""Output formatting utilities for CLI."""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from goldsync.errors import GoldsyncError

logger = logging.getLogger(__name__)

console = Console()

OUTPUT_FORMATS = ("text", "json", "yaml")


def format_json(data: Any, pretty: bool = True) -> str:
    """Format data as JSON.

    Args:
        data: Data to format
        pretty: Whether to pretty-print with indentation

    Returns:
        JSON string
    """
    if pretty:
        return json.dumps(data, indent=2, ensure_ascii=False, default=str)
    return json.dumps(data, ensure_ascii=False, default=str)


def format_yaml(data: Any) -> str:
    """Format data as YAML.

    Args:
        data: Data to format

    Returns:
        YAML string
    """
    result = yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
    return str(result) if result is not None else ""


def check_format(output_format: str) -> None:
    """Exit with an error for an unknown --format value"""
    if output_format not in OUTPUT_FORMATS:
        error_message(f"Unknown output format: {output_format}", hint="Use one of: text, json, yaml")
        raise typer.Exit(1)


def output_data(data: Any, output_format: str) -> None:
    """Print structured data as highlighted JSON or YAML.

    Args:
        data: JSON-serializable data
        output_format: json or yaml
    """
    match output_format:
        case "yaml":
            console.print(Syntax(format_yaml(data), "yaml", theme="monokai", line_numbers=False))
        case _:
            console.print(Syntax(format_json(data), "json", theme="monokai", line_numbers=False))


def print_table(title: str, columns: list[str], rows: list[list[str]]) -> None:
    """Print rows as a rich table; columns after the first are right-aligned"""
    table = Table(title=title, show_header=True, header_style="bold")
    for position, column in enumerate(columns):
        table.add_column(column, justify="left" if position == 0 else "right")
    for row in rows:
        table.add_row(*row)
    console.print(table)


def error_message(message: str, hint: str | None = None) -> None:
    """Print error message.

    Args:
        message: Error message
        hint: Optional hint for user
    """
    typer.secho(f"✗ Error: {message}", fg=typer.colors.RED, err=True)
    if hint:
        typer.secho(f"  Hint: {hint}", fg=typer.colors.YELLOW, err=True)


def warning_message(message: str) -> None:
    typer.secho(f"⚠ {message}", fg=typer.colors.YELLOW, err=True)


def success_message(message: str) -> None:
    """Print success message.

    Args:
        message: Success message
    """
    typer.secho(f"✓ {message}", fg=typer.colors.GREEN)


def progress_message(message: str) -> None:
    """Print a progress line, highlighting warnings"""
    if message.startswith("Warning: "):
        warning_message(message.removeprefix("Warning: "))
    else:
        typer.echo(f"  {message}")


@contextmanager
def handle_errors(action: str) -> Iterator[None]:
    """Turn errors raised by a command body into an error message and exit code 1.

    Args:
        action: What the command was doing, used for unexpected errors
    """
    try:
        yield
    except (typer.Exit, typer.Abort):
        raise
    except KeyboardInterrupt as e:
        error_message(f"{action} cancelled")
        raise typer.Exit(130) from e
    except GoldsyncError as e:
        error_message(str(e), hint=e.hint)
        raise typer.Exit(1) from e
    except FileExistsError as e:
        error_message(str(e), hint="Use --force to overwrite")
        raise typer.Exit(1) from e
    except KeyError as e:
        error_message(str(e.args[0]) if e.args else str(e), hint="Check the connections section of your config")
        raise typer.Exit(1) from e
    except ValueError as e:
        error_message(str(e), hint="Check your goldsync config file")
        raise typer.Exit(1) from e
    except Exception as e:
        logger.debug(f"Unexpected error during {action}", exc_info=True)
        error_message(f"Failed to {action}: {e}")
        raise typer.Exit(1) from e
