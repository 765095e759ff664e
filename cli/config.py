"""Configuration file handling for goldsync.

The config file is YAML, stored at ~/.goldsync.yaml unless GOLDSYNC_CONFIG
points elsewhere. It holds the local server URL, named connections, defaults
and the registered projects with their worktrees.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from goldsync.database.connection import generate_database_name, parse_connection_string
from goldsync.errors import ConnectionStringError, GoldsyncError
from goldsync.models import SourceConfig

CONFIG_ENV_VAR = "GOLDSYNC_CONFIG"
DEFAULT_CONFIG_FILE = ".goldsync.yaml"
DEFAULT_LOCAL_URL = "postgresql://postgres@localhost:5432/postgres"
NAME_PLACEHOLDERS = ("{project}", "{port}", "{worktree}")


class ProjectNotFoundError(GoldsyncError):
    """No registered project matches the name or the current directory"""

    def __init__(self, message: str) -> None:
        super().__init__(message, hint="Pass --project NAME or add the project to your goldsync config")


class WorktreeNotFoundError(GoldsyncError):
    """No registered worktree matches the name or the current directory"""

    def __init__(self, message: str) -> None:
        super().__init__(message, hint="Pass --worktree NAME or run the command inside a registered worktree")


class Defaults(BaseModel):
    """Default values for commands"""

    sync_cooldown_hours: int = Field(default=24, ge=0, description="Minimum hours between syncs")
    analyze_threshold_mb: int = Field(default=100, ge=0, description="Size threshold for exclusion suggestions")


class WorktreeConfig(BaseModel):
    """A worktree checkout of a project"""

    path: str
    ports: list[int] = Field(default_factory=list)
    database_name: str | None = Field(default=None, description="Explicit database name (default: from pattern)")


class ProjectConfig(BaseModel):
    """A registered project"""

    path: str
    database: SourceConfig | None = None
    worktrees: dict[str, WorktreeConfig] = Field(default_factory=dict)


class Config(BaseModel):
    """Main configuration"""

    version: str = "1.0"
    local_url: str = DEFAULT_LOCAL_URL
    connections: dict[str, str] = Field(default_factory=dict)
    defaults: Defaults = Field(default_factory=Defaults)
    projects: dict[str, ProjectConfig] = Field(default_factory=dict)


def get_config_path() -> Path:
    """Get path to config file.

    Returns:
        Path from GOLDSYNC_CONFIG, or ~/.goldsync.yaml
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path.home() / DEFAULT_CONFIG_FILE


def load_config() -> Config:
    """Load config from file.

    Returns:
        Config object (defaults if the file doesn't exist)

    Raises:
        ValueError: If the file is not valid YAML or fails validation
    """
    config_path = get_config_path()

    if not config_path.exists():
        return Config()

    try:
        with config_path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file {config_path}: {e}") from e

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid config file {config_path}: {e}") from e


def save_config(config: Config) -> None:
    """Save config to file.

    Args:
        config: Config object to save
    """
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json", exclude_none=True)
    with config_path.open("w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)


def init_config(force: bool = False) -> Path:
    """Write a default config file.

    Args:
        force: Overwrite an existing file

    Returns:
        Path to the created config file

    Raises:
        FileExistsError: If the file exists and force is False
    """
    config_path = get_config_path()

    if config_path.exists() and not force:
        raise FileExistsError(f"Config file already exists: {config_path}")

    save_config(Config())
    return config_path


def get_connection(name: str, config: Config | None = None) -> str:
    """Get a named connection string.

    Raises:
        KeyError: If the connection is not defined
    """
    if config is None:
        config = load_config()

    if name not in config.connections:
        raise KeyError(f"Connection '{name}' not found in config")

    return config.connections[name]


def resolve_connection(value: str, config: Config | None = None) -> str:
    """Resolve an @name reference to its connection string; other values pass through"""
    if value.startswith("@"):
        return get_connection(value[1:], config)
    return value


def validate_config(config: Config) -> list[str]:
    """Check a config for problems pydantic cannot see.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    try:
        parse_connection_string(config.local_url)
    except ConnectionStringError as e:
        errors.append(f"'local_url' is invalid: {e}")

    for name, connection in config.connections.items():
        try:
            parse_connection_string(connection)
        except ConnectionStringError as e:
            errors.append(f"'connections.{name}' is invalid: {e}")

    for project_name, project in config.projects.items():
        source_config = project.database
        if source_config is None:
            continue

        prefix = f"projects.{project_name}.database"
        if source_config.source.startswith("@"):
            if source_config.source[1:] not in config.connections:
                errors.append(f"'{prefix}.source' references unknown connection '{source_config.source}'")
        else:
            try:
                parse_connection_string(source_config.source)
            except ConnectionStringError as e:
                errors.append(f"'{prefix}.source' is invalid: {e}")

        for table in source_config.filter_tables:
            if "." not in table:
                errors.append(f"'{prefix}.filter_tables' key '{table}' must be schema-qualified")

        if not any(placeholder in source_config.db_name_pattern for placeholder in NAME_PLACEHOLDERS):
            errors.append(f"'{prefix}.db_name_pattern' must contain {{project}}, {{port}} or {{worktree}}")

    return errors


# ============================================================================
# Project and worktree lookup
# ============================================================================


def _contains(parent: str, child: Path) -> bool:
    parent_path = Path(parent).expanduser().resolve()
    return child == parent_path or parent_path in child.parents


def _depth(path: str) -> int:
    return len(Path(path).expanduser().resolve().parts)


def detect_project(config: Config, cwd: Path | None = None, name: str | None = None) -> tuple[str, ProjectConfig]:
    """Find the project by name, or by the directory the command runs in.

    The deepest project or worktree path containing cwd wins.

    Raises:
        ProjectNotFoundError: If no project matches
    """
    if name is not None:
        if name not in config.projects:
            raise ProjectNotFoundError(f"project '{name}' is not in the config")
        return name, config.projects[name]

    cwd = (cwd or Path.cwd()).resolve()
    best: tuple[int, str] | None = None

    for project_name, project in config.projects.items():
        paths = [project.path, *(worktree.path for worktree in project.worktrees.values())]
        for path in paths:
            if _contains(path, cwd) and (best is None or _depth(path) > best[0]):
                best = (_depth(path), project_name)

    if best is None:
        raise ProjectNotFoundError(f"no project registered for {cwd}")

    return best[1], config.projects[best[1]]


def find_worktree(
    project: ProjectConfig, cwd: Path | None = None, name: str | None = None
) -> tuple[str, WorktreeConfig]:
    """Find a worktree of a project by name, or by the current directory.

    Raises:
        WorktreeNotFoundError: If no worktree matches
    """
    if name is not None:
        if name not in project.worktrees:
            raise WorktreeNotFoundError(f"worktree '{name}' is not registered for this project")
        return name, project.worktrees[name]

    cwd = (cwd or Path.cwd()).resolve()
    matches = [(key, worktree) for key, worktree in project.worktrees.items() if _contains(worktree.path, cwd)]
    if not matches:
        raise WorktreeNotFoundError(f"{cwd} is not inside a registered worktree")

    return max(matches, key=lambda match: _depth(match[1].path))


def resolve_source_config(project_name: str, project: ProjectConfig, config: Config) -> SourceConfig:
    """The project's SourceConfig with any @name source resolved.

    Raises:
        ProjectNotFoundError: If the project has no database section
        KeyError: If the source references an unknown connection
    """
    if project.database is None:
        raise ProjectNotFoundError(f"project '{project_name}' has no database section")

    source = resolve_connection(project.database.source, config)
    return project.database.model_copy(update={"source": source})


def worktree_database_name(
    project_name: str, project: ProjectConfig, worktree_name: str, worktree: WorktreeConfig
) -> str:
    """Database name of a worktree: explicit name, else the naming pattern with its first port.

    Raises:
        WorktreeNotFoundError: If neither a name nor a port is configured
    """
    if worktree.database_name:
        return worktree.database_name

    if not worktree.ports:
        raise WorktreeNotFoundError(f"worktree '{worktree_name}' has no ports or database_name configured")

    pattern = project.database.db_name_pattern if project.database else None
    return generate_database_name(project_name, worktree.ports[0], pattern, worktree_name)
