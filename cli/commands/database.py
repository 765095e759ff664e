"""Golden copy and worktree database commands."""

from datetime import timedelta
from pathlib import Path

import typer

from cli.config import (
    Config,
    ProjectConfig,
    WorktreeNotFoundError,
    detect_project,
    find_worktree,
    load_config,
    resolve_source_config,
    worktree_database_name,
)
from cli.output import (
    check_format,
    handle_errors,
    output_data,
    print_table,
    progress_message,
    success_message,
    warning_message,
)
from goldsync.database.analyzer import format_size, suggest_exclusions
from goldsync.database.connection import check_client_tools, mask_connection_string, sanitize_identifier
from goldsync.database.golden import format_ms, golden_db_name
from goldsync.database.manager import DatabaseManager
from goldsync.database.migrations import has_prisma_migrations
from goldsync.database.pipeline import CLIENT_TOOLS_HINT
from goldsync.errors import GoldsyncError
from goldsync.models import CloneResult, MigrationState, SourceConfig

app = typer.Typer(help="Manage golden copies and worktree databases", no_args_is_help=True)

PROJECT_HELP = "Project name (default: detected from the current directory)"
WORKTREE_HELP = "Worktree name (default: detected from the current directory)"
FORMAT_HELP = "Output format: text, json or yaml"


def _project_context(project: str | None) -> tuple[Config, str, ProjectConfig, DatabaseManager]:
    config = load_config()
    name, project_config = detect_project(config, name=project)
    return config, name, project_config, DatabaseManager(config.local_url)


def _worktree_target(project_name: str, project_config: ProjectConfig, worktree: str | None) -> tuple[str, str]:
    """Database name and path of the selected worktree"""
    worktree_name, worktree_config = find_worktree(project_config, name=worktree)
    db_name = worktree_database_name(project_name, project_config, worktree_name, worktree_config)
    return db_name, worktree_config.path


def _require_client_tools() -> None:
    missing = [tool for tool, version in check_client_tools().items() if version is None]
    if missing:
        raise GoldsyncError(f"{', '.join(missing)} not found on PATH", hint=CLIENT_TOOLS_HINT)


def _check_source(manager: DatabaseManager, source_config: SourceConfig) -> None:
    """Fail if the source is unreachable; warn if its user can write to it"""
    manager.validate_source_connection(source_config)
    if not manager.is_source_read_only(source_config):
        warning_message("The source connection has WRITE access; consider using a read-only user")


def _print_migration_state(state: MigrationState) -> None:
    typer.echo(f"Migration state: {state.compatibility.value}")
    for label, names in (
        ("Pending", state.pending_migrations),
        ("Extra", state.extra_migrations),
        ("Divergent", state.divergent_migrations),
    ):
        if names:
            typer.echo(f"  {label}: {', '.join(names)}")
    if state.recommended_action:
        typer.echo(f"  → {state.recommended_action}")


def _print_clone_result(result: CloneResult) -> None:
    success_message(f"Database {result.database_name} is ready")
    typer.echo(f"  DATABASE_URL={mask_connection_string(result.database_url)}")
    if result.migration_state is not None:
        _print_migration_state(result.migration_state)


@app.command("sync")
def sync(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
    force: bool = typer.Option(False, "--force", help="Sync even if the golden copy is within the cooldown"),
) -> None:
    """Refresh the golden copy from the project's source database.

    Example:
        goldsync database sync --project app --force
    """
    with handle_errors("sync"):
        config, name, project_config, manager = _project_context(project)
        source_config = resolve_source_config(name, project_config, config)

        if not force:
            check = manager.check_sync_needed(name, timedelta(hours=config.defaults.sync_cooldown_hours))
            if not check.needs_sync:
                success_message(f"Golden copy of {name} is fresh: {check.reason}")
                typer.echo("  Use --force to sync anyway")
                return
            typer.echo(f"Syncing {name} ({check.reason})")
        else:
            typer.echo(f"Syncing {name} (forced)")

        _require_client_tools()
        _check_source(manager, source_config)
        result = manager.sync_project(name, source_config, progress=progress_message)

        success_message(
            f"Synced {result.golden_db_name} in {format_ms(result.sync_duration_ms)}: "
            f"{result.table_count} tables, {len(result.excluded_tables)} excluded, "
            f"{len(result.filtered_tables)} filtered"
        )
        for table in result.skipped_tables:
            warning_message(f"Filtered table {table} was skipped")


@app.command("status")
def status(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
    output_format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """Show golden copy state and whether a sync is due."""
    check_format(output_format)
    with handle_errors("read golden copy status"):
        config, name, _, manager = _project_context(project)
        info = manager.sync_info(name)
        check = manager.check_sync_needed(name, timedelta(hours=config.defaults.sync_cooldown_hours))
        size = manager.golden_copy_size(name) if info is not None else 0

        if output_format != "text":
            output_data(
                {
                    "project": name,
                    "golden": info.model_dump(mode="json") if info else None,
                    "size_bytes": size,
                    "sync": check.model_dump(mode="json"),
                },
                output_format,
            )
            return

        if info is None:
            typer.echo(f"Golden copy of {name}: not created")
        else:
            typer.echo(f"Golden copy of {name}: {info.golden_db_name} ({format_size(size)}, {info.table_count} tables)")
            if info.last_sync_at is not None:
                typer.echo(f"  Last sync: {info.last_sync_at:%Y-%m-%d %H:%M:%S %Z} from {info.source_url}")
                typer.echo(f"  Duration: {format_ms(info.sync_duration_ms or 0)}")
            else:
                warning_message("No sync has been recorded for this golden copy")

        verdict = "needed" if check.needs_sync else "not needed"
        typer.echo(f"Sync {verdict}: {check.reason}")


@app.command("list")
def list_databases(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
) -> None:
    """List the project's golden copy and worktree databases."""
    with handle_errors("list databases"):
        _, name, project_config, manager = _project_context(project)

        registered: dict[str, str] = {}
        for worktree_name, worktree in project_config.worktrees.items():
            try:
                db_name = worktree_database_name(name, project_config, worktree_name, worktree)
            except WorktreeNotFoundError:
                continue
            registered[sanitize_identifier(db_name)] = worktree_name

        rows = []
        if manager.has_golden_copy(name):
            rows.append([golden_db_name(name), "golden copy"])
        for db_name in manager.list_worktree_databases(list(registered)):
            rows.append([db_name, registered[db_name]])

        if not rows:
            typer.echo(f"No databases found for {name}.")
            return

        print_table(f"Databases of {name}", ["Database", "Worktree"], rows)


@app.command("clone")
def clone(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
    worktree: str | None = typer.Option(None, "--worktree", "-w", help=WORKTREE_HELP),
) -> None:
    """Clone the golden copy into a worktree database.

    Example:
        goldsync database clone --worktree feature-x
    """
    with handle_errors("clone"):
        _, name, project_config, manager = _project_context(project)
        db_name, worktree_path = _worktree_target(name, project_config, worktree)
        _require_client_tools()

        typer.echo(f"Cloning {golden_db_name(name)} into {db_name}")
        result = manager.clone_for_worktree(name, db_name, worktree_path, progress=progress_message)
        _print_clone_result(result)


@app.command("drop")
def drop(
    db_name: str = typer.Argument(..., help="Name of the worktree database to drop"),
    project: str | None = typer.Option(None, "--project", "-p", help="Project whose golden copy must be kept"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Drop a worktree database."""
    with handle_errors("drop database"):
        config = load_config()
        protected = {golden_db_name(project_name) for project_name in config.projects}
        if project:
            protected.add(golden_db_name(project))

        safe_name = sanitize_identifier(db_name)
        if safe_name in protected:
            raise GoldsyncError(
                f"{safe_name} is a golden copy and cannot be dropped with this command",
                hint="Run 'goldsync database sync --force' to refresh it instead",
            )

        if not yes:
            typer.confirm(f"Drop database {safe_name}?", abort=True)

        DatabaseManager(config.local_url).drop_worktree_database(safe_name)
        success_message(f"Dropped database {safe_name}")


@app.command("reinit")
def reinit(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
    worktree: str | None = typer.Option(None, "--worktree", "-w", help=WORKTREE_HELP),
) -> None:
    """Drop and re-clone a worktree database from the golden copy."""
    with handle_errors("reinitialize"):
        _, name, project_config, manager = _project_context(project)
        db_name, worktree_path = _worktree_target(name, project_config, worktree)
        _require_client_tools()

        typer.echo(f"Re-initializing {db_name} from {golden_db_name(name)}")
        result = manager.reinit_worktree(name, db_name, worktree_path, progress=progress_message)
        _print_clone_result(result)


@app.command("migration-status")
def migration_status(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
    worktree: str | None = typer.Option(None, "--worktree", "-w", help=WORKTREE_HELP),
    output_format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """Compare a worktree database's applied migrations with the worktree's migration files."""
    check_format(output_format)
    with handle_errors("check migrations"):
        _, name, project_config, manager = _project_context(project)
        db_name, worktree_path = _worktree_target(name, project_config, worktree)

        if not has_prisma_migrations(worktree_path):
            warning_message(f"{worktree_path} does not use Prisma migrations")
            return

        state = manager.migration_status(db_name, worktree_path)

        if output_format != "text":
            output_data({"database": sanitize_identifier(db_name), **state.model_dump(mode="json")}, output_format)
            return

        typer.echo(f"Database {sanitize_identifier(db_name)}: {len(state.applied_migrations)} applied migrations")
        _print_migration_state(state)


@app.command("check-freshness")
def check_freshness(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
    worktree: str | None = typer.Option(None, "--worktree", "-w", help=WORKTREE_HELP),
    schema: bool = typer.Option(False, "--schema", help="Also compare the source schema with the golden copy"),
) -> None:
    """Check whether the golden copy matches the checkout's migrations."""
    with handle_errors("check freshness"):
        config, name, project_config, manager = _project_context(project)

        path = project_config.path
        if worktree is not None:
            _, worktree_config = find_worktree(project_config, name=worktree)
            path = worktree_config.path
        else:
            try:
                _, worktree_config = find_worktree(project_config, cwd=Path.cwd())
                path = worktree_config.path
            except WorktreeNotFoundError:
                pass

        check = manager.check_sync_needed(name, timedelta(hours=config.defaults.sync_cooldown_hours))
        verdict = "needed" if check.needs_sync else "not needed"
        typer.echo(f"Sync {verdict}: {check.reason}")

        golden_baseline, current_baseline, compatibility = manager.golden_freshness(name, path)
        if golden_baseline is None:
            warning_message(f"No golden copy for {name}")
        if current_baseline is None:
            warning_message(f"{path} does not use Prisma migrations")

        typer.echo(f"Migrations (golden vs checkout): {compatibility.value}")
        if golden_baseline is not None and current_baseline is not None:
            typer.echo(
                f"  Golden: {golden_baseline.total_migrations} migrations, "
                f"last {golden_baseline.last_migration_name or '-'}"
            )
            typer.echo(
                f"  Checkout: {current_baseline.total_migrations} migrations, "
                f"last {current_baseline.last_migration_name or '-'}"
            )

        if schema:
            source_config = resolve_source_config(name, project_config, config)
            diff = manager.schema_drift(name, source_config)
            if not diff.has_changes:
                success_message("Source schema matches the golden copy")
            else:
                warning_message("Source schema differs from the golden copy")
                for label, tables in (
                    ("Added", diff.added_tables),
                    ("Removed", diff.removed_tables),
                    ("Modified", diff.modified_tables),
                ):
                    if tables:
                        typer.echo(f"  {label}: {', '.join(tables)}")


@app.command("analyze")
def analyze(
    project: str | None = typer.Option(None, "--project", "-p", help=PROJECT_HELP),
    threshold: int | None = typer.Option(None, "--threshold", help="Size threshold in MB for exclusion suggestions"),
    limit: int = typer.Option(20, "--limit", help="Number of tables to show"),
    output_format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """Analyze source tables and suggest tables to exclude from sync."""
    check_format(output_format)
    with handle_errors("analyze source"):
        config, name, project_config, manager = _project_context(project)
        source_config = resolve_source_config(name, project_config, config)
        threshold_mb = config.defaults.analyze_threshold_mb if threshold is None else threshold

        _check_source(manager, source_config)
        tables = manager.analyze_source(source_config)
        suggestions = suggest_exclusions(tables, threshold_mb)

        if output_format != "text":
            output_data(
                {
                    "project": name,
                    "threshold_mb": threshold_mb,
                    "tables": [table.model_dump(mode="json", by_alias=True) for table in tables],
                    "suggested_exclusions": suggestions,
                },
                output_format,
            )
            return

        total = sum(table.size_bytes for table in tables)
        rows = [
            [
                table.qualified_name,
                format_size(table.size_bytes),
                f"{table.row_count:,}",
                "yes" if table.is_audit else "",
            ]
            for table in tables[:limit]
        ]
        print_table(
            f"{name}: {len(tables)} tables, {format_size(total)}", ["Table", "Size", "Rows", "Audit/log"], rows
        )

        if not suggestions:
            success_message("No exclusions suggested")
            return

        typer.echo(f"Suggested exclusions (threshold {threshold_mb} MB):")
        for table in suggestions:
            typer.echo(f"  - {table}")
        typer.echo("Add them under projects.<name>.database.exclude_tables in your goldsync config.")
