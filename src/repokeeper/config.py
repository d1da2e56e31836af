"""Configuration management for repokeeper."""

import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from repokeeper.errors import ConfigError
from repokeeper.models import Config, SyncConfig

CONFIG_ENV_VAR = "REPOKEEPER_CONFIG"
CONFIG_DIR = Path.home() / ".config" / "repokeeper"
DEFAULT_INVENTORY_PATH = CONFIG_DIR / "inventory.yml"

DEFAULT_CONFIG_LOCATIONS = [
    Path("./repokeeper.yml"),
    Path("./repokeeper.yaml"),
    CONFIG_DIR / "config.yml",
    CONFIG_DIR / "config.yaml",
]

DEFAULT_CONFIG_TEMPLATE = """\
# Directories to scan for git repositories
roots:
  - ~/code

# Glob patterns for directories to exclude from scanning
exclude_patterns:
  - "**/node_modules"
  - "**/.terraform"
  - "**/dist"
  - "**/vendor"

# Descend into symlinked directories while scanning
follow_symlinks: false

# Parallel git workers and per-repository timeout
# concurrency: 8
timeout_seconds: 60

# Where the inventory of known repositories is stored
inventory_path: ~/.config/repokeeper/inventory.yml

# Days a missing repository stays in the inventory before 'prune' drops it
stale_days: 30

# Branch used as the upstream target by 'repair-upstream'
# main_branch: main

# Sync defaults (command-line flags override these)
sync:
  update_local: false
  push_local: false
  rebase_dirty: false
  continue_on_error: true
  protected_branches:
    - main
    - master
    - "release/*"
  update_branches:
    - "*"
"""


def config_locations() -> list[Path]:
    """Config locations in search order; $REPOKEEPER_CONFIG sits after the local files."""
    locations = list(DEFAULT_CONFIG_LOCATIONS[:2])
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_path:
        locations.append(Path(env_path))
    locations.extend(DEFAULT_CONFIG_LOCATIONS[2:])
    return locations


def find_config_path() -> Path | None:
    """Find configuration file in standard locations.

    Searches in order: current directory, $REPOKEEPER_CONFIG, then
    ~/.config/repokeeper/.

    Returns:
        Path to config file if found, None otherwise.
    """
    for path in config_locations():
        expanded = path.expanduser()
        if expanded.exists():
            return expanded
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Explicit path to config. If None, searches default locations.

    Returns:
        Validated Config object with defaults applied.

    Raises:
        FileNotFoundError: If no config file found and none specified.
        ConfigError: If config file is invalid YAML or schema.
    """
    if config_path is None:
        config_path = find_config_path()

    if config_path is None:
        raise FileNotFoundError(
            "No config file found. Create one with 'repokeeper init' or specify with --config"
        )

    return load_config_from_path(config_path)


def load_config_from_path(config_path: Path) -> Config:
    """Load and parse config from a specific path.

    Args:
        config_path: Path to the YAML config file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If file does not exist.
        ConfigError: If YAML is invalid or doesn't match schema.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    config = parse_raw_config(raw_config)
    return expand_paths(config)


def parse_raw_config(raw: dict) -> Config:
    """Parse raw dictionary into Config object.

    Args:
        raw: Dictionary from YAML parsing.

    Returns:
        Config object with nested models populated.

    Raises:
        ConfigError: If a value does not match the schema.
    """
    values = {key: value for key, value in raw.items() if key != "sync" and value is not None}
    sync_raw = raw.get("sync") or {}

    try:
        if "roots" in values:
            values["roots"] = [Path(str(p)) for p in values["roots"]]
        if "inventory_path" in values:
            values["inventory_path"] = Path(str(values["inventory_path"]))
        return Config(**values, sync=SyncConfig(**sync_raw))
    except (ValidationError, TypeError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def expand_paths(config: Config) -> Config:
    """Expand ~ and resolve all paths to absolute paths.

    Args:
        config: Config with potentially unexpanded paths.

    Returns:
        Config with all paths expanded and resolved.
    """
    inventory_path = config.inventory_path
    return config.model_copy(
        update={
            "roots": [p.expanduser().resolve() for p in config.roots],
            "inventory_path": inventory_path.expanduser().resolve() if inventory_path else None,
        }
    )


def resolve_inventory_path(config: Config, override: Path | None = None) -> Path:
    """Inventory file to use: explicit override, configured path, or the default.

    Args:
        config: Loaded configuration.
        override: Path given on the command line.

    Returns:
        Absolute inventory path.
    """
    path = override or config.inventory_path or DEFAULT_INVENTORY_PATH
    return path.expanduser().resolve()


def create_default_config(output_path: Path) -> None:
    """Create a default configuration file with comments.

    Args:
        output_path: Where to write the config file.

    Raises:
        FileExistsError: If file already exists.
    """
    output_path = output_path.expanduser().resolve()

    if output_path.exists():
        raise FileExistsError(f"Config file already exists: {output_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(DEFAULT_CONFIG_TEMPLATE)
