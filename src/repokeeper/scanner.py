"""Filesystem scanning for git repositories and inventory reconciliation."""

import fnmatch
import logging
import os
import re
from collections.abc import Callable, Iterator
from datetime import datetime
from pathlib import Path

from repokeeper.inventory import Inventory
from repokeeper.models import EntryStatus, InventoryEntry, RepositoryStatus, RepoType

logger = logging.getLogger(__name__)

MAX_DEPTH = 20  # Prevent runaway recursion on pathological trees


class Candidate:
    """A directory that looks like a repository root."""

    def __init__(self, path: Path, bare: bool, gitdir: Path | None = None) -> None:
        self.path = path
        self.bare = bare
        self.gitdir = gitdir

    def __repr__(self) -> str:
        return f"Candidate({self.path!s}, bare={self.bare})"


def find_git_repos(
    roots: list[Path],
    exclude_patterns: list[str],
    follow_symlinks: bool = False,
) -> Iterator[Candidate]:
    """Find all git repositories under the given roots.

    Excluded directories are pruned before descent and the walk stops
    descending once a repository root is found.

    Args:
        roots: Root directories to scan.
        exclude_patterns: Glob patterns to exclude (e.g., "**/node_modules").
        follow_symlinks: Whether to descend into symlinked directories.

    Yields:
        Candidate for each repository root.
    """
    visited: set[str] = set()
    skip_dirs: set[Path] = set()

    for root in roots:
        root = root.expanduser().absolute()
        if not root.is_dir():
            logger.debug("skipping scan root %s: not a directory", root)
            continue

        yield from scan_directory(
            root=root,
            exclude_patterns=exclude_patterns,
            follow_symlinks=follow_symlinks,
            visited=visited,
            skip_dirs=skip_dirs,
            depth=0,
        )


def scan_directory(
    root: Path,
    exclude_patterns: list[str],
    follow_symlinks: bool,
    visited: set[str],
    skip_dirs: set[Path],
    depth: int,
) -> Iterator[Candidate]:
    """Recursively scan a directory for git repos.

    Args:
        root: Directory to scan.
        exclude_patterns: Patterns to exclude.
        follow_symlinks: Whether to descend into symlinked directories.
        visited: Real paths already walked, to prevent loops.
        skip_dirs: Git directories referenced by linked worktrees.
        depth: Current recursion depth.

    Yields:
        Candidate for each repository root found.
    """
    if depth > MAX_DEPTH:
        return
    if root in skip_dirs or root.name == ".git":
        return
    if matches_any_pattern(root, exclude_patterns):
        return

    try:
        real = os.path.realpath(root)
    except OSError:
        return
    if real in visited:
        return
    visited.add(real)

    candidate = detect_repo(root)
    if candidate is not None:
        if candidate.gitdir is not None:
            skip_dirs.add(candidate.gitdir)
        yield candidate
        return  # Don't descend into git repos

    try:
        entries = sorted(root.iterdir())
    except (PermissionError, OSError):
        return

    for entry in entries:
        try:
            if not entry.is_dir():
                continue
        except OSError:
            continue
        if entry.is_symlink() and not follow_symlinks:
            continue

        yield from scan_directory(
            root=entry,
            exclude_patterns=exclude_patterns,
            follow_symlinks=follow_symlinks,
            visited=visited,
            skip_dirs=skip_dirs,
            depth=depth + 1,
        )


def detect_repo(path: Path) -> Candidate | None:
    """Decide whether ``path`` is a repository root.

    Recognizes a ``.git`` directory, a ``.git`` file pointing at a linked git
    directory, and the bare layout (``HEAD`` file plus ``objects``).

    Args:
        path: Directory to check.

    Returns:
        Candidate, or None if the directory is not a repository root.
    """
    git_path = path / ".git"
    try:
        if git_path.is_dir():
            return Candidate(path, bare=False)
        if git_path.is_file():
            gitdir = read_gitdir_file(git_path)
            if gitdir is not None:
                return Candidate(path, bare=False, gitdir=gitdir)
        if (path / "HEAD").is_file() and (path / "objects").is_dir() and (path / "refs").is_dir():
            return Candidate(path, bare=True)
    except OSError:
        return None
    return None


def read_gitdir_file(git_file: Path) -> Path | None:
    """Resolve the ``gitdir: <path>`` pointer of a linked worktree.

    Args:
        git_file: The ``.git`` file.

    Returns:
        Absolute git directory path, or None if the file is not a pointer.
    """
    try:
        content = git_file.read_text().strip()
    except OSError:
        return None
    if not content.startswith("gitdir:"):
        return None
    raw = content[len("gitdir:"):].strip()
    if not raw:
        return None
    gitdir = Path(raw)
    if not gitdir.is_absolute():
        gitdir = git_file.parent / gitdir
    return Path(os.path.normpath(gitdir))


def matches_any_pattern(path: Path, patterns: list[str]) -> bool:
    """Check if path matches any of the glob patterns.

    Patterns containing a slash are matched against the whole path with
    ``**`` spanning any number of components; bare names are matched against
    the directory name.

    Args:
        path: Path to check.
        patterns: List of glob patterns.

    Returns:
        True if path matches any pattern.
    """
    path_str = path.as_posix()

    for pattern in patterns:
        pattern = pattern.strip()
        if not pattern:
            continue
        if "/" not in pattern:
            if fnmatch.fnmatch(path.name, pattern):
                return True
            continue
        if glob_to_regex(pattern).match(path_str):
            return True
        # "**/name/**" should prune the directory itself, not only its children
        if pattern.endswith("/**") and glob_to_regex(pattern[:-3]).match(path_str):
            return True

    return False


_REGEX_CACHE: dict[str, re.Pattern[str]] = {}


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a double-star glob into an anchored regex."""
    cached = _REGEX_CACHE.get(pattern)
    if cached is not None:
        return cached

    parts: list[str] = []
    i = 0
    if not pattern.startswith("/") and not pattern.startswith("**"):
        parts.append("(?:.*/)?")
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1

    compiled = re.compile("^" + "".join(parts) + "$")
    _REGEX_CACHE[pattern] = compiled
    return compiled


def reconcile_inventory(
    inventory: Inventory,
    statuses: list[RepositoryStatus],
    now: datetime,
    path_exists: Callable[[Path], bool] = Path.exists,
) -> list[InventoryEntry]:
    """Merge discovered repositories into the inventory.

    Entries whose path vanished become ``missing``; a discovered repo_id that
    matches a missing entry updates it in place as ``moved``; otherwise the
    entry is upserted as ``present``. Entries are never deleted here.

    Args:
        inventory: Inventory to mutate.
        statuses: Snapshots of the discovered repositories.
        now: Timestamp recorded as ``last_seen``.
        path_exists: Existence check, injectable for tests.

    Returns:
        The inventory entries touched by this scan.
    """
    for entry in inventory.entries:
        if entry.status != EntryStatus.MISSING and not path_exists(entry.path):
            logger.info("inventory entry %s vanished from %s", entry.repo_id, entry.path)
            inventory.mark_missing(entry.path)

    touched: list[InventoryEntry] = []
    for status in statuses:
        remote_url = status.primary_remote_url or None
        existing = inventory.find(status.repo_id, status.path)
        if existing is None:
            missing = [
                e for e in inventory.find_by_repo_id(status.repo_id)
                if e.status == EntryStatus.MISSING
            ]
            if missing:
                moved = inventory.mark_moved(status.repo_id, status.path, now=now)
                if moved is not None:
                    moved.remote_url = remote_url
                    logger.info("inventory entry %s moved to %s", moved.repo_id, moved.path)
                    touched.append(moved)
                    continue

        fields = {
            "repo_id": status.repo_id,
            "path": status.path,
            "remote_url": remote_url,
            "status": EntryStatus.PRESENT,
            "last_seen": now,
        }
        if existing is None:
            fields["type"] = RepoType.MIRROR if status.bare else RepoType.CHECKOUT
        touched.append(inventory.upsert(InventoryEntry(**fields)))

    return touched
