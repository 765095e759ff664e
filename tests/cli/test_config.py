"""Tests for CLI config functionality."""

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from cli.config import (
    Config,
    ProjectConfig,
    ProjectNotFoundError,
    WorktreeConfig,
    WorktreeNotFoundError,
    detect_project,
    find_worktree,
    get_config_path,
    get_connection,
    init_config,
    load_config,
    resolve_connection,
    resolve_source_config,
    save_config,
    validate_config,
    worktree_database_name,
)
from goldsync.models import SourceConfig

SOURCE = "postgresql://reader:pw@db.example.com:5432/app"


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "goldsync.yaml"
    with patch("cli.config.get_config_path", return_value=path):
        yield path


@pytest.fixture
def project_tree(tmp_path: Path) -> Config:
    """Config with one project whose main checkout and worktrees live under tmp_path"""
    main = tmp_path / "app"
    feature = tmp_path / "app-feature"
    nested = main / ".worktrees" / "hotfix"
    for path in (main, feature, nested):
        path.mkdir(parents=True)

    return Config(
        projects={
            "app": ProjectConfig(
                path=str(main),
                database=SourceConfig(source=SOURCE),
                worktrees={
                    "feature": WorktreeConfig(path=str(feature), ports=[3100]),
                    "hotfix": WorktreeConfig(path=str(nested), ports=[3200], database_name="app_hotfix"),
                },
            ),
            "other": ProjectConfig(path=str(tmp_path / "other")),
        }
    )


def test_default_config_path() -> None:
    """Test that default config path is in home directory."""
    with patch.dict("os.environ", {}, clear=True):
        assert get_config_path() == Path.home() / ".goldsync.yaml"


def test_custom_config_path() -> None:
    """Test that custom config path is used when env var is set."""
    with patch.dict("os.environ", {"GOLDSYNC_CONFIG": "/tmp/custom.yaml"}):
        assert get_config_path() == Path("/tmp/custom.yaml")


def test_load_config_missing_file(config_path: Path) -> None:
    """Test loading config when file doesn't exist returns defaults."""
    config = load_config()

    assert config.version == "1.0"
    assert config.connections == {}
    assert config.defaults.sync_cooldown_hours == 24


def test_save_and_load_config(config_path: Path) -> None:
    """Test saving and loading config file."""
    config = Config(
        connections={"prod": SOURCE},
        projects={"app": ProjectConfig(path="/src/app", database=SourceConfig(source="@prod"))},
    )

    save_config(config)
    loaded = load_config()

    assert loaded.connections["prod"] == SOURCE
    assert loaded.projects["app"].database.source == "@prod"
    assert loaded.projects["app"].database.db_name_pattern == "{project}-{port}"


def test_load_invalid_yaml(config_path: Path) -> None:
    config_path.write_text("projects: [unclosed")

    with pytest.raises(ValueError, match="Invalid YAML"):
        load_config()


def test_load_invalid_structure(config_path: Path) -> None:
    config_path.write_text(yaml.safe_dump({"defaults": {"sync_cooldown_hours": -1}}))

    with pytest.raises(ValueError, match="Invalid config file"):
        load_config()


def test_init_config(config_path: Path) -> None:
    """Test initializing config file."""
    assert init_config() == config_path

    content = yaml.safe_load(config_path.read_text())
    assert content["version"] == "1.0"
    assert "local_url" in content


def test_init_config_already_exists(config_path: Path) -> None:
    """Test that init refuses to overwrite without force."""
    config_path.write_text("version: '1.0'\n")

    with pytest.raises(FileExistsError):
        init_config()

    init_config(force=True)


def test_get_connection() -> None:
    config = Config(connections={"prod": SOURCE})

    assert get_connection("prod", config) == SOURCE
    with pytest.raises(KeyError, match="Connection 'missing' not found"):
        get_connection("missing", config)


def test_resolve_connection() -> None:
    config = Config(connections={"prod": SOURCE})

    assert resolve_connection("@prod", config) == SOURCE
    assert resolve_connection(SOURCE, config) == SOURCE


class TestValidateConfig:
    """Tests for validate_config"""

    def test_valid(self, project_tree: Config) -> None:
        assert validate_config(project_tree) == []

    def test_invalid_urls(self) -> None:
        config = Config(local_url="mysql://root@localhost/db", connections={"prod": "not a url"})

        errors = validate_config(config)

        assert any("'local_url' is invalid" in e for e in errors)
        assert any("'connections.prod' is invalid" in e for e in errors)

    def test_project_source_problems(self) -> None:
        config = Config(
            projects={
                "app": ProjectConfig(
                    path="/src/app",
                    database=SourceConfig(
                        source="@missing", filter_tables={"orders": "id < 10"}, db_name_pattern="static_name"
                    ),
                )
            }
        )

        errors = validate_config(config)

        assert len(errors) == 3
        assert any("unknown connection '@missing'" in e for e in errors)
        assert any("must be schema-qualified" in e for e in errors)
        assert any("db_name_pattern" in e for e in errors)


class TestProjectLookup:
    """Tests for project and worktree detection"""

    def test_by_name(self, project_tree: Config) -> None:
        name, project = detect_project(project_tree, name="app")
        assert name == "app"
        assert project.database.source == SOURCE

    def test_unknown_name(self, project_tree: Config) -> None:
        with pytest.raises(ProjectNotFoundError) as exc_info:
            detect_project(project_tree, name="nope")
        assert exc_info.value.hint is not None

    def test_by_worktree_directory(self, project_tree: Config) -> None:
        feature = Path(project_tree.projects["app"].worktrees["feature"].path)

        name, _ = detect_project(project_tree, cwd=feature / "src")

        assert name == "app"

    def test_outside_any_project(self, project_tree: Config, tmp_path: Path) -> None:
        outside = tmp_path / "elsewhere"
        outside.mkdir()

        with pytest.raises(ProjectNotFoundError):
            detect_project(project_tree, cwd=outside)

    def test_deepest_worktree_wins(self, project_tree: Config) -> None:
        project = project_tree.projects["app"]
        hotfix = Path(project.worktrees["hotfix"].path)

        name, worktree = find_worktree(project, cwd=hotfix)

        assert name == "hotfix"
        assert worktree.database_name == "app_hotfix"

    def test_main_checkout_is_not_a_worktree(self, project_tree: Config) -> None:
        project = project_tree.projects["app"]

        with pytest.raises(WorktreeNotFoundError):
            find_worktree(project, cwd=Path(project.path))

    def test_worktree_database_name(self, project_tree: Config) -> None:
        project = project_tree.projects["app"]

        assert worktree_database_name("app", project, "feature", project.worktrees["feature"]) == "app_3100"
        assert worktree_database_name("app", project, "hotfix", project.worktrees["hotfix"]) == "app_hotfix"

    def test_worktree_without_port_or_name(self) -> None:
        project = ProjectConfig(path="/src/app")

        with pytest.raises(WorktreeNotFoundError, match="no ports or database_name"):
            worktree_database_name("app", project, "bare", WorktreeConfig(path="/src/app-bare"))

    def test_resolve_source_config(self) -> None:
        config = Config(connections={"prod": SOURCE})
        project = ProjectConfig(path="/src/app", database=SourceConfig(source="@prod", exclude_tables=["public.x"]))

        resolved = resolve_source_config("app", project, config)

        assert resolved.source == SOURCE
        assert resolved.exclude_tables == ["public.x"]
        assert project.database.source == "@prod"

    def test_resolve_source_without_database(self) -> None:
        with pytest.raises(ProjectNotFoundError, match="no database section"):
            resolve_source_config("app", ProjectConfig(path="/src/app"), Config())
