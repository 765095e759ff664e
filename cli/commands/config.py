"""Config file commands."""

import typer

from cli.config import get_config_path, init_config, load_config, validate_config
from cli.output import error_message, handle_errors, output_data, success_message, warning_message
from goldsync.database.connection import mask_connection_string

app = typer.Typer(help="Manage the goldsync config file", no_args_is_help=True)


@app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
) -> None:
    """Write a default config file."""
    with handle_errors("initialize config"):
        path = init_config(force=force)
        success_message(f"Config written to {path}")


@app.command("show")
def config_show(
    output_format: str = typer.Option("yaml", "--format", "-f", help="Output format: json or yaml"),
) -> None:
    """Show the current config with passwords masked, and report problems."""
    with handle_errors("show config"):
        config = load_config()
        data = config.model_dump(mode="json", exclude_none=True)

        data["local_url"] = mask_connection_string(config.local_url)
        data["connections"] = {name: mask_connection_string(url) for name, url in config.connections.items()}
        for project in data["projects"].values():
            if "database" in project:
                project["database"]["source"] = mask_connection_string(project["database"]["source"])

        typer.echo(f"# {get_config_path()}")
        output_data(data, output_format)

        errors = validate_config(config)
        for message in errors:
            warning_message(message)
        if errors:
            error_message(f"{len(errors)} problem(s) found in config")
            raise typer.Exit(1)
