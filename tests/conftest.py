"""Shared test fixtures."""

import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from repokeeper.inventory import Inventory
from repokeeper.models import (
    Config,
    Head,
    InventoryEntry,
    Remote,
    RepositoryStatus,
    SyncConfig,
    Tracking,
    TrackingStatus,
    Worktree,
)
from repokeeper.vcs import GitAdapter, VCSAdapter

NOW = datetime(2024, 6, 1, 12, 0, 0)


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` and return stripped stdout; fail the test on error."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def configure_identity(repo: Path) -> None:
    git(repo, "config", "user.email", "test@test.com")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "commit.gpgsign", "false")


def init_repo(repo_path: Path, branch: str = "main") -> Path:
    """Create a repository with one commit on ``branch``."""
    repo_path.mkdir(parents=True, exist_ok=True)
    git(repo_path, "init")
    git(repo_path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    configure_identity(repo_path)
    commit(repo_path, "README.md", f"# {repo_path.name}")
    return repo_path


def commit(repo_path: Path, name: str, content: str, message: str | None = None) -> None:
    """Write a file and commit it."""
    (repo_path / name).write_text(content)
    git(repo_path, "add", name)
    git(repo_path, "commit", "-m", message or f"update {name}")


@dataclass
class RemoteSetup:
    """A bare origin, a seed clone that publishes commits, and a working clone."""

    origin: Path
    seed: Path
    work: Path


@pytest.fixture
def sample_config(tmp_path: Path) -> Config:
    """Create a sample configuration for testing."""
    return Config(
        roots=[tmp_path],
        exclude_patterns=["**/node_modules"],
        concurrency=2,
        timeout_seconds=30,
        inventory_path=tmp_path / "inventory.yml",
        stale_days=30,
        sync=SyncConfig(),
    )


@pytest.fixture
def temp_git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository on branch main."""
    return init_repo(tmp_path / "test-repo")


@pytest.fixture
def temp_git_repo_dirty(temp_git_repo: Path) -> Path:
    """Create a temp git repo with one staged and one untracked file."""
    (temp_git_repo / "dirty.txt").write_text("uncommitted changes")
    git(temp_git_repo, "add", "dirty.txt")
    (temp_git_repo / "untracked.txt").write_text("untracked file")
    return temp_git_repo


@pytest.fixture
def remote_setup(tmp_path: Path) -> RemoteSetup:
    """Bare origin with main, plus two clones tracking origin/main."""
    origin = tmp_path / "origin.git"
    git(tmp_path, "init", "--bare", str(origin))
    git(origin, "symbolic-ref", "HEAD", "refs/heads/main")

    seed = init_repo(tmp_path / "seed")
    git(seed, "remote", "add", "origin", str(origin))
    git(seed, "push", "-u", "origin", "main")

    work = tmp_path / "work"
    git(tmp_path, "clone", str(origin), str(work))
    configure_identity(work)
    return RemoteSetup(origin=origin, seed=seed, work=work)


@pytest.fixture
def nested_repos(tmp_path: Path) -> Path:
    """Create a directory structure with multiple git repos."""
    base = tmp_path / "projects"
    base.mkdir()

    for name in ["repo1", "repo2", "repo3"]:
        init_repo(base / name)

    # A repo inside node_modules that should be excluded
    node_modules = base / "vendored" / "node_modules" / "some-package"
    init_repo(node_modules)

    return base


@pytest.fixture
def sample_config_yaml(tmp_path: Path) -> Path:
    """Create a sample config YAML file."""
    config_path = tmp_path / "config.yml"
    config_path.write_text(
        f"""\
roots:
  - {tmp_path / "projects"}

exclude_patterns:
  - "**/node_modules"

concurrency: 2
timeout_seconds: 30
inventory_path: {tmp_path / "inventory.yml"}
stale_days: 10

sync:
  update_local: false
  protected_branches:
    - main
    - "release/*"
"""
    )
    return config_path


def make_status(
    path: Path,
    repo_id: str = "github.com/org/repo",
    branch: str = "feature",
    tracking: TrackingStatus = TrackingStatus.BEHIND,
    dirty: bool = False,
    bare: bool = False,
    detached: bool = False,
    remote_url: str = "git@github.com:org/repo.git",
    **updates,
) -> RepositoryStatus:
    """Build a RepositoryStatus without touching git."""
    upstream = "" if tracking == TrackingStatus.NONE else f"origin/{branch}"
    counts = {
        TrackingStatus.AHEAD: (1, 0),
        TrackingStatus.BEHIND: (0, 2),
        TrackingStatus.DIVERGED: (1, 2),
        TrackingStatus.EQUAL: (0, 0),
    }.get(tracking, (None, None))
    status = RepositoryStatus(
        repo_id=repo_id,
        path=path,
        bare=bare,
        remotes=[Remote(name="origin", url=remote_url)] if remote_url else [],
        primary_remote="origin" if remote_url else "",
        head=Head(branch=branch, detached=detached),
        worktree=None if bare else Worktree(dirty=dirty, unstaged=1 if dirty else 0),
        tracking=Tracking(upstream=upstream, status=tracking, ahead=counts[0], behind=counts[1]),
    )
    return status.model_copy(update=updates)


def make_entry(path: Path, repo_id: str = "github.com/org/repo", **fields) -> InventoryEntry:
    fields.setdefault("remote_url", "git@github.com:org/repo.git")
    fields.setdefault("last_seen", NOW)
    return InventoryEntry(repo_id=repo_id, path=path, **fields)


@pytest.fixture
def mock_adapter() -> MagicMock:
    """VCSAdapter double that succeeds at everything and describes steps like git."""
    adapter = MagicMock(spec=VCSAdapter)
    real = GitAdapter()
    adapter.describe_step.side_effect = real.describe_step
    adapter.normalize_url.side_effect = real.normalize_url
    adapter.primary_remote.side_effect = real.primary_remote
    adapter.stash_push.return_value = True
    return adapter


@pytest.fixture
def empty_inventory() -> Inventory:
    return Inventory()
