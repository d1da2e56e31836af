"""Tests for repository inspection."""

from pathlib import Path

import pytest
from conftest import commit, git

from repokeeper.context import Invocation
from repokeeper.errors import CancelledError, GitError, GitTimeoutError
from repokeeper.inspector import inspect_repo
from repokeeper.models import ErrorClass, Head, Remote, TrackingStatus, Worktree
from repokeeper.vcs import GitAdapter


class TestInspectRealRepos:
    def test_clean_repo_without_remote(self, temp_git_repo):
        status = inspect_repo(temp_git_repo, GitAdapter())
        assert not status.has_error
        assert status.repo_id == f"local:{temp_git_repo.as_posix()}"
        assert status.head.branch == "main"
        assert not status.is_dirty
        assert status.remotes == []
        assert status.tracking.status == TrackingStatus.NONE

    def test_dirty_repo(self, temp_git_repo_dirty):
        status = inspect_repo(temp_git_repo_dirty, GitAdapter())
        assert status.is_dirty
        assert status.worktree.untracked == 1

    def test_clone_with_origin(self, remote_setup):
        commit(remote_setup.seed, "new.txt", "upstream")
        git(remote_setup.seed, "push")
        git(remote_setup.work, "fetch")

        status = inspect_repo(remote_setup.work, GitAdapter())
        assert status.primary_remote == "origin"
        assert status.primary_remote_url == str(remote_setup.origin)
        assert status.repo_id == remote_setup.origin.as_posix().lstrip("/")[: -len(".git")]
        assert status.tracking.status == TrackingStatus.BEHIND
        assert status.tracking.upstream == "origin/main"

    def test_bare_repo(self, remote_setup):
        status = inspect_repo(remote_setup.origin, GitAdapter())
        assert not status.has_error
        assert status.bare
        assert status.worktree is None
        assert status.tracking.status == TrackingStatus.NONE

    def test_detached_head_has_no_tracking(self, remote_setup):
        git(remote_setup.work, "checkout", "--detach")
        status = inspect_repo(remote_setup.work, GitAdapter())
        assert status.head.detached
        assert status.tracking.status == TrackingStatus.NONE

    def test_missing_path(self, tmp_path):
        status = inspect_repo(tmp_path / "gone", GitAdapter())
        assert status.error_class == ErrorClass.MISSING
        assert status.error == "path missing"

    def test_not_a_repository_is_corrupt(self, tmp_path):
        plain = tmp_path / "plain"
        plain.mkdir()
        status = inspect_repo(plain, GitAdapter())
        assert status.has_error
        assert status.error_class == ErrorClass.CORRUPT

    def test_submodules_detected_but_not_expanded(self, temp_git_repo):
        (temp_git_repo / ".gitmodules").write_text(
            '[submodule "lib"]\n\tpath = lib\n\turl = https://example.com/lib.git\n'
        )
        status = inspect_repo(temp_git_repo, GitAdapter())
        assert status.submodules.has_submodules


class TestInspectWithAdapter:
    def configure(self, adapter, path: Path):
        adapter.is_bare.return_value = False
        adapter.is_worktree.return_value = True
        adapter.remotes.return_value = [Remote(name="origin", url="git@github.com:org/repo.git")]
        adapter.head.return_value = Head(branch="main")
        adapter.worktree_status.return_value = Worktree()
        adapter.has_submodules.return_value = False

    def test_step_failure_truncates_snapshot(self, mock_adapter, tmp_path):
        self.configure(mock_adapter, tmp_path)
        mock_adapter.worktree_status.side_effect = GitError(
            "git status: index file corrupt", tmp_path, error_class=ErrorClass.CORRUPT
        )
        status = inspect_repo(tmp_path, mock_adapter)
        assert status.repo_id == "github.com/org/repo"
        assert status.head.branch == "main"
        assert status.error_class == ErrorClass.CORRUPT
        mock_adapter.tracking_status.assert_not_called()

    def test_timeout_is_classified(self, mock_adapter, tmp_path):
        self.configure(mock_adapter, tmp_path)
        mock_adapter.remotes.side_effect = GitTimeoutError("timed out", tmp_path)
        status = inspect_repo(tmp_path, mock_adapter)
        assert status.error_class == ErrorClass.TIMEOUT

    def test_cancellation_propagates(self, mock_adapter, tmp_path):
        self.configure(mock_adapter, tmp_path)
        mock_adapter.head.side_effect = CancelledError("cancelled")
        with pytest.raises(CancelledError):
            inspect_repo(tmp_path, mock_adapter, Invocation().task_context())

    def test_not_a_worktree(self, mock_adapter, tmp_path):
        self.configure(mock_adapter, tmp_path)
        mock_adapter.is_worktree.return_value = False
        status = inspect_repo(tmp_path, mock_adapter)
        assert status.error_class == ErrorClass.CORRUPT
