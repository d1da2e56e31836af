"""Tests for config module."""

from pathlib import Path

import pytest
import yaml

from repokeeper import config as config_module
from repokeeper.errors import ConfigError
from repokeeper.models import Config


@pytest.fixture(autouse=True)
def no_env_config(monkeypatch):
    monkeypatch.delenv(config_module.CONFIG_ENV_VAR, raising=False)


class TestFindConfigPath:
    def test_returns_none_when_no_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            config_module,
            "DEFAULT_CONFIG_LOCATIONS",
            [tmp_path / "nonexistent.yml"],
        )
        assert config_module.find_config_path() is None

    def test_finds_local_config(self, tmp_path, monkeypatch):
        config_file = tmp_path / "repokeeper.yml"
        config_file.write_text("roots: []")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            config_module,
            "DEFAULT_CONFIG_LOCATIONS",
            [config_file],
        )
        assert config_module.find_config_path() == config_file

    def test_env_var_location(self, tmp_path, monkeypatch):
        config_file = tmp_path / "custom.yml"
        config_file.write_text("roots: []")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            config_module,
            "DEFAULT_CONFIG_LOCATIONS",
            [tmp_path / "a.yml", tmp_path / "b.yml", tmp_path / "home.yml"],
        )
        monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(config_file))
        assert config_module.find_config_path() == config_file

    def test_local_config_beats_env_var(self, tmp_path, monkeypatch):
        local = tmp_path / "repokeeper.yml"
        local.write_text("roots: []")
        other = tmp_path / "custom.yml"
        other.write_text("roots: []")
        monkeypatch.setattr(config_module, "DEFAULT_CONFIG_LOCATIONS", [local])
        monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(other))
        assert config_module.config_locations() == [local, other]
        assert config_module.find_config_path() == local


class TestLoadConfig:
    def test_raises_when_no_config_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(
            config_module,
            "DEFAULT_CONFIG_LOCATIONS",
            [tmp_path / "nonexistent.yml"],
        )
        with pytest.raises(FileNotFoundError, match="repokeeper init"):
            config_module.load_config()

    def test_loads_from_explicit_path(self, sample_config_yaml):
        config = config_module.load_config(sample_config_yaml)
        assert isinstance(config, Config)
        assert len(config.roots) == 1


class TestLoadConfigFromPath:
    def test_raises_for_nonexistent_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            config_module.load_config_from_path(tmp_path / "nonexistent.yml")

    def test_parses_valid_yaml(self, sample_config_yaml, tmp_path):
        config = config_module.load_config_from_path(sample_config_yaml)
        assert config.concurrency == 2
        assert config.timeout_seconds == 30
        assert config.stale_days == 10
        assert config.inventory_path == (tmp_path / "inventory.yml").resolve()
        assert config.sync.protected_branches == ["main", "release/*"]
        assert config.sync.update_local is False

    def test_handles_empty_yaml(self, tmp_path):
        config_file = tmp_path / "empty.yml"
        config_file.write_text("")
        config = config_module.load_config_from_path(config_file)
        assert config.roots == []
        assert config.inventory_path is None

    def test_null_values_use_defaults(self, tmp_path):
        config_file = tmp_path / "nulls.yml"
        config_file.write_text("roots:\nstale_days:\nsync:\n")
        config = config_module.load_config_from_path(config_file)
        assert config.stale_days == 30
        assert config.sync.continue_on_error is True

    def test_expands_paths(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("roots:\n  - ~/code\n")
        config = config_module.load_config_from_path(config_file)
        assert config.roots[0].is_absolute()
        assert "~" not in str(config.roots[0])

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "bad.yml"
        config_file.write_text("roots: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            config_module.load_config_from_path(config_file)

    def test_non_mapping(self, tmp_path):
        config_file = tmp_path / "list.yml"
        config_file.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            config_module.load_config_from_path(config_file)

    def test_schema_violation(self, tmp_path):
        config_file = tmp_path / "bad.yml"
        config_file.write_text("concurrency: 0\n")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            config_module.load_config_from_path(config_file)


class TestResolveInventoryPath:
    def test_override_wins(self, tmp_path):
        config = Config(inventory_path=tmp_path / "configured.yml")
        path = config_module.resolve_inventory_path(config, tmp_path / "cli.yml")
        assert path == (tmp_path / "cli.yml").resolve()

    def test_configured(self, tmp_path):
        config = Config(inventory_path=tmp_path / "configured.yml")
        assert config_module.resolve_inventory_path(config) == (tmp_path / "configured.yml").resolve()

    def test_default(self):
        expected = config_module.DEFAULT_INVENTORY_PATH.resolve()
        assert config_module.resolve_inventory_path(Config()) == expected


class TestCreateDefaultConfig:
    def test_creates_file(self, tmp_path):
        output = tmp_path / "nested" / "repokeeper.yml"
        config_module.create_default_config(output)
        assert output.exists()
        assert "roots:" in output.read_text()

    def test_template_loads(self, tmp_path):
        output = tmp_path / "repokeeper.yml"
        config_module.create_default_config(output)
        raw = yaml.safe_load(output.read_text())
        assert raw["sync"]["protected_branches"] == ["main", "master", "release/*"]
        config = config_module.load_config_from_path(output)
        assert config.stale_days == 30

    def test_raises_if_exists(self, tmp_path):
        output = tmp_path / "repokeeper.yml"
        output.write_text("existing")
        with pytest.raises(FileExistsError):
            config_module.create_default_config(output)


def test_default_locations_include_home_config():
    home_config = Path.home() / ".config" / "repokeeper" / "config.yml"
    assert home_config in config_module.DEFAULT_CONFIG_LOCATIONS
