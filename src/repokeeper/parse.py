"""Parsers for git's textual output and remote URL normalization."""

import re
from pathlib import Path
from typing import NamedTuple
from urllib.parse import urlsplit

from repokeeper.models import Tracking, TrackingStatus, Worktree

SCP_LIKE_URL = re.compile(r"^(?:[^@/:]+@)?(?P<host>[^/:]+):(?P<path>.+)$")
LOCAL_REPO_PREFIX = "local:"


class ForEachRefEntry(NamedTuple):
    """One line of the batched ``for-each-ref`` tracking query."""

    branch: str
    upstream: str
    track: str
    track_short: str

    @property
    def is_gone(self) -> bool:
        return self.track.strip().strip("[]").strip() == "gone"


def parse_porcelain_status(output: str) -> Worktree:
    """Parse ``git status --porcelain=v1`` output into change counts.

    A file can count as both staged and unstaged (e.g. ``MM``).

    Args:
        output: Raw porcelain output.

    Returns:
        Worktree with staged/unstaged/untracked counts and dirty flag.
    """
    staged = 0
    unstaged = 0
    untracked = 0

    for line in output.split("\n"):
        if len(line) < 2:
            continue
        x, y = line[0], line[1]
        if x == "?" and y == "?":
            untracked += 1
            continue
        if x == "!" and y == "!":
            continue
        if x not in (" ", "?"):
            staged += 1
        if y not in (" ", "?"):
            unstaged += 1

    return Worktree(
        dirty=staged > 0 or unstaged > 0 or untracked > 0,
        staged=staged,
        unstaged=unstaged,
        untracked=untracked,
    )


def parse_for_each_ref(output: str) -> list[ForEachRefEntry]:
    """Parse pipe-delimited ``for-each-ref`` output.

    Expected format per line:
    ``%(refname:short)|%(upstream:short)|%(upstream:track)|%(upstream:trackshort)``

    Args:
        output: Raw command output.

    Returns:
        One entry per local branch.
    """
    entries: list[ForEachRefEntry] = []
    for line in output.split("\n"):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        parts = line.split("|", 3)
        parts += [""] * (4 - len(parts))
        entries.append(
            ForEachRefEntry(
                branch=parts[0].strip(),
                upstream=parts[1].strip(),
                track=parts[2].strip(),
                track_short=parts[3].strip(),
            )
        )
    return entries


def parse_rev_list_count(output: str) -> tuple[int, int] | None:
    """Parse ``rev-list --left-right --count <branch>...<upstream>``.

    Args:
        output: Raw command output, e.g. ``"2\\t1"``.

    Returns:
        Tuple of (ahead, behind), or None if output is malformed.
    """
    parts = output.split()
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def tracking_from_counts(upstream: str, ahead: int, behind: int) -> Tracking:
    """Classify tracking state from ahead/behind counts.

    Args:
        upstream: Upstream short name.
        ahead: Commits on the branch not on the upstream.
        behind: Commits on the upstream not on the branch.

    Returns:
        Tracking with status and both counts set.
    """
    if ahead > 0 and behind > 0:
        status = TrackingStatus.DIVERGED
    elif ahead > 0:
        status = TrackingStatus.AHEAD
    elif behind > 0:
        status = TrackingStatus.BEHIND
    else:
        status = TrackingStatus.EQUAL
    return Tracking(upstream=upstream, status=status, ahead=ahead, behind=behind)


TRACK_SHORT_STATUS = {
    ">": TrackingStatus.AHEAD,
    "<": TrackingStatus.BEHIND,
    "<>": TrackingStatus.DIVERGED,
    "=": TrackingStatus.EQUAL,
}


def tracking_from_track_short(entry: ForEachRefEntry) -> Tracking:
    """Fallback classification from the ``trackshort`` marker; counts unknown."""
    status = TRACK_SHORT_STATUS.get(entry.track_short, TrackingStatus.NONE)
    return Tracking(upstream=entry.upstream, status=status)


def normalize_url(raw_url: str | None) -> str:
    """Convert a git remote URL into a machine-independent repo_id.

    Strips scheme and user, converts ``git@host:path`` to ``host/path``,
    lowercases the host and strips trailing ``.git`` and slashes.

    Examples:
        git@github.com:Org/Repo.git -> github.com/Org/Repo
        https://github.com/Org/Repo.git -> github.com/Org/Repo

    Args:
        raw_url: Remote URL as configured in git.

    Returns:
        Normalized identifier, or empty string for empty input.
    """
    if not raw_url or not raw_url.strip():
        return ""
    url = raw_url.strip()

    host = ""
    path = url
    if "://" in url:
        parts = urlsplit(url)
        host = parts.hostname or ""
        path = parts.path
    else:
        match = SCP_LIKE_URL.match(url)
        if match:
            host = match.group("host")
            path = match.group("path")

    path = path.lstrip("/").rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    path = path.rstrip("/")

    host = host.lower()
    if not host:
        return path
    return f"{host}/{path}"


def primary_remote(remote_names: list[str]) -> str:
    """Select the preferred remote: origin, else first alphabetically.

    Args:
        remote_names: Configured remote names.

    Returns:
        Chosen remote name, or empty string when there are none.
    """
    if not remote_names:
        return ""
    if "origin" in remote_names:
        return "origin"
    return sorted(remote_names)[0]


def local_repo_id(path: Path) -> str:
    """Synthetic repo_id for repositories without any remote."""
    return LOCAL_REPO_PREFIX + path.as_posix()
