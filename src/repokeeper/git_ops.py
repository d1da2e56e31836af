"""Git operations - runner, repository queries and sync actions."""

import logging
import os
import signal
import subprocess
import time
from pathlib import Path

from repokeeper import parse
from repokeeper.context import TaskContext
from repokeeper.errors import CancelledError, GitError, GitTimeoutError, classify_text, extract_git_error
from repokeeper.models import Head, Remote, Tracking, TrackingStatus, Worktree

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60
POLL_INTERVAL = 0.1
KILL_WAIT = 5

FETCH_ARGS = [
    "-c",
    "fetch.recurseSubmodules=false",
    "fetch",
    "--all",
    "--prune",
    "--prune-tags",
    "--no-recurse-submodules",
]
TRACKING_FORMAT = (
    "--format=%(refname:short)|%(upstream:short)|%(upstream:track)|%(upstream:trackshort)"
)
PULL_REBASE_ARGS = ["pull", "--rebase", "--no-recurse-submodules"]
STASH_MESSAGE = "repokeeper: pre-rebase stash"
STASH_POP_ARGS = ["stash", "pop"]
PUSH_ARGS = ["push"]


def git_env() -> dict[str, str]:
    """Environment for git subprocesses: never prompt for credentials."""
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    env["LC_ALL"] = "C"
    return env


def run_git_command(
    repo_path: Path,
    args: list[str],
    timeout: float | None = None,
    ctx: TaskContext | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a git command in a repository.

    The process runs in its own process group. When the task deadline passes
    or the invocation is cancelled the whole group is killed, so helpers git
    spawned (ssh, remote helpers) go with it.

    Args:
        repo_path: Path to repository root.
        args: Git command arguments (without 'git' prefix).
        timeout: Explicit limit in seconds. Inside a task the task deadline
            is the bound and this only tightens it; outside a task it
            defaults to DEFAULT_TIMEOUT.
        ctx: Task context carrying deadline and cancellation.

    Returns:
        CompletedProcess with stdout/stderr as strings.

    Raises:
        GitError: If git cannot be started.
        GitTimeoutError: If the command exceeds its timeout.
        CancelledError: If the invocation is cancelled.
    """
    cmd = ["git", "-C", str(repo_path), *args]
    if ctx is not None:
        ctx.check()
        time_left = ctx.remaining(timeout)
    else:
        time_left = DEFAULT_TIMEOUT if timeout is None else timeout
    logger.debug("git %s (in %s, timeout %s)", " ".join(args), repo_path, time_left)

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=git_env(),
            start_new_session=True,
        )
    except OSError as e:
        raise GitError(f"Failed to run git: {e}", repo_path) from e

    started = time.monotonic()
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if ctx is not None and ctx.cancelled:
                _kill(proc)
                raise CancelledError(f"Cancelled: git {' '.join(args)}") from None
            if time_left is not None and time.monotonic() - started >= time_left:
                _kill(proc)
                raise GitTimeoutError(
                    f"Command timed out after {time_left:.0f}s: {' '.join(args)}", repo_path
                ) from None

    return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)


def _kill(proc: subprocess.Popen) -> None:
    """Kill the process group of ``proc`` and reap it."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    try:
        proc.communicate(timeout=KILL_WAIT)
    except subprocess.TimeoutExpired:
        logger.warning("git process %s did not exit after kill", proc.pid)


def check_result(
    result: subprocess.CompletedProcess[str],
    repo_path: Path,
    what: str,
) -> str:
    """Raise GitError for a failed command, else return stripped stdout.

    Args:
        result: Completed git process.
        repo_path: Repository the command ran in.
        what: Short description for the error message.

    Returns:
        Stripped stdout.

    Raises:
        GitError: If the command exited non-zero.
    """
    if result.returncode != 0:
        output = (result.stderr or result.stdout or "").strip()
        detail = extract_git_error(output) if output else f"exit status {result.returncode}"
        raise GitError(
            f"{what}: {detail}",
            repo_path,
            stderr=output,
            returncode=result.returncode,
            error_class=classify_text(output),
        )
    return result.stdout.strip()


def is_bare_repository(repo_path: Path, ctx: TaskContext | None = None) -> bool:
    """Check whether the path is a bare repository.

    Raises:
        GitError: If the path is not a git repository at all.
    """
    result = run_git_command(repo_path, ["rev-parse", "--is-bare-repository"], ctx=ctx)
    return check_result(result, repo_path, "git rev-parse") == "true"


def is_inside_work_tree(repo_path: Path, ctx: TaskContext | None = None) -> bool:
    """Check whether the path is inside a git working tree."""
    result = run_git_command(repo_path, ["rev-parse", "--is-inside-work-tree"], ctx=ctx)
    if result.returncode != 0:
        return False
    return result.stdout.strip() == "true"


def list_remotes(repo_path: Path, ctx: TaskContext | None = None) -> list[Remote]:
    """List all configured remotes and their URLs.

    Remotes whose URL cannot be read are skipped.

    Raises:
        GitError: If the remote listing fails.
    """
    result = run_git_command(repo_path, ["remote"], ctx=ctx)
    output = check_result(result, repo_path, "git remote")

    remotes: list[Remote] = []
    for name in output.split("\n"):
        name = name.strip()
        if not name:
            continue
        url_result = run_git_command(repo_path, ["remote", "get-url", name], ctx=ctx)
        if url_result.returncode != 0:
            logger.debug("skipping remote %s in %s: no url", name, repo_path)
            continue
        remotes.append(Remote(name=name, url=url_result.stdout.strip()))
    return remotes


def get_head(repo_path: Path, ctx: TaskContext | None = None) -> Head:
    """Get the current branch, or the short commit hash when detached."""
    result = run_git_command(repo_path, ["symbolic-ref", "--quiet", "--short", "HEAD"], ctx=ctx)
    if result.returncode == 0:
        return Head(branch=result.stdout.strip(), detached=False)

    hash_result = run_git_command(repo_path, ["rev-parse", "--short", "HEAD"], ctx=ctx)
    if hash_result.returncode != 0:
        return Head(detached=True)
    return Head(branch=hash_result.stdout.strip(), detached=True)


def get_worktree_status(repo_path: Path, ctx: TaskContext | None = None) -> Worktree:
    """Get staged/unstaged/untracked counts from porcelain status.

    Raises:
        GitError: If git status fails.
    """
    result = run_git_command(repo_path, ["status", "--porcelain=v1"], ctx=ctx)
    if result.returncode != 0:
        check_result(result, repo_path, "git status")
    return parse.parse_porcelain_status(result.stdout)


def list_branch_tracking(
    repo_path: Path, ctx: TaskContext | None = None
) -> list[parse.ForEachRefEntry]:
    """Batched upstream query for every local branch.

    Raises:
        GitError: If for-each-ref fails.
    """
    result = run_git_command(repo_path, ["for-each-ref", TRACKING_FORMAT, "refs/heads"], ctx=ctx)
    if result.returncode != 0:
        check_result(result, repo_path, "git for-each-ref")
    return parse.parse_for_each_ref(result.stdout)


def count_ahead_behind(
    repo_path: Path,
    branch: str,
    upstream: str,
    ctx: TaskContext | None = None,
) -> tuple[int, int] | None:
    """Count commits ahead/behind via symmetric difference.

    Returns:
        Tuple of (ahead, behind), or None when the counts are unavailable.
    """
    result = run_git_command(
        repo_path,
        ["rev-list", "--left-right", "--count", f"{branch}...{upstream}"],
        ctx=ctx,
    )
    if result.returncode != 0:
        return None
    return parse.parse_rev_list_count(result.stdout)


def get_tracking(
    repo_path: Path, branch: str, ctx: TaskContext | None = None
) -> Tracking:
    """Compute tracking state for ``branch``.

    Args:
        repo_path: Path to repository root.
        branch: Current local branch name.
        ctx: Task context.

    Returns:
        Tracking; ``none`` when the branch has no upstream, ``gone`` when the
        upstream ref was deleted.
    """
    if not branch:
        return Tracking()

    for entry in list_branch_tracking(repo_path, ctx=ctx):
        if entry.branch != branch:
            continue
        if not entry.upstream:
            return Tracking()
        if entry.is_gone:
            return Tracking(upstream=entry.upstream, status=TrackingStatus.GONE)
        counts = count_ahead_behind(repo_path, branch, entry.upstream, ctx=ctx)
        if counts is None:
            return parse.tracking_from_track_short(entry)
        return parse.tracking_from_counts(entry.upstream, *counts)

    return Tracking()


def has_submodules(repo_path: Path, ctx: TaskContext | None = None) -> bool:
    """Check for recorded submodule paths without touching them."""
    if not (repo_path / ".gitmodules").is_file():
        return False
    result = run_git_command(
        repo_path,
        ["config", "--file", ".gitmodules", "--get-regexp", r"^submodule\..*\.path$"],
        ctx=ctx,
    )
    return result.returncode == 0 and bool(result.stdout.strip())


def fetch_repo(repo_path: Path, ctx: TaskContext | None = None) -> None:
    """Fetch all remotes with pruning; submodule recursion disabled twice.

    Raises:
        GitError: If fetch fails.
    """
    result = run_git_command(repo_path, FETCH_ARGS, ctx=ctx)
    check_result(result, repo_path, "git fetch")


def stash_push_args(message: str = STASH_MESSAGE) -> list[str]:
    return ["stash", "push", "-u", "-m", message]


def stash_push(
    repo_path: Path, message: str = STASH_MESSAGE, ctx: TaskContext | None = None
) -> bool:
    """Stash local changes including untracked files.

    Returns:
        True if a stash entry was created.

    Raises:
        GitError: If stash fails.
    """
    result = run_git_command(repo_path, stash_push_args(message), ctx=ctx)
    output = check_result(result, repo_path, "git stash push")
    return "No local changes to save" not in output


def stash_pop(repo_path: Path, ctx: TaskContext | None = None) -> None:
    """Pop the most recent stash entry."""
    result = run_git_command(repo_path, STASH_POP_ARGS, ctx=ctx)
    check_result(result, repo_path, "git stash pop")


def pull_rebase(repo_path: Path, ctx: TaskContext | None = None) -> None:
    """Rebase the current branch onto its upstream without submodule recursion."""
    result = run_git_command(repo_path, PULL_REBASE_ARGS, ctx=ctx)
    check_result(result, repo_path, "git pull --rebase")


def push_repo(repo_path: Path, ctx: TaskContext | None = None) -> None:
    """Push the current branch to its upstream."""
    result = run_git_command(repo_path, PUSH_ARGS, ctx=ctx)
    check_result(result, repo_path, "git push")


def clone_args(remote_url: str, target: Path, branch: str | None, mirror: bool) -> list[str]:
    """Build clone arguments for a checkout or mirror clone."""
    args = ["clone"]
    if mirror:
        args.append("--mirror")
    elif branch:
        args += ["--branch", branch, "--single-branch"]
    return [*args, remote_url, str(target)]


def clone_repo(
    remote_url: str,
    target: Path,
    branch: str | None = None,
    mirror: bool = False,
    ctx: TaskContext | None = None,
) -> None:
    """Clone a repository into ``target``; parent directories are created.

    Raises:
        GitError: If clone fails.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    result = run_git_command(target.parent, clone_args(remote_url, target, branch, mirror), ctx=ctx)
    check_result(result, target, "git clone")


def set_upstream(
    repo_path: Path, upstream: str, branch: str, ctx: TaskContext | None = None
) -> None:
    """Point ``branch`` at ``upstream`` for tracking."""
    result = run_git_command(
        repo_path, ["branch", f"--set-upstream-to={upstream}", branch], ctx=ctx
    )
    check_result(result, repo_path, "git branch --set-upstream-to")


def set_remote_url(
    repo_path: Path, remote: str, url: str, ctx: TaskContext | None = None
) -> None:
    """Rewrite the URL of a configured remote."""
    result = run_git_command(repo_path, ["remote", "set-url", remote, url], ctx=ctx)
    check_result(result, repo_path, "git remote set-url")
