"""Exceptions and failure classification."""

from pathlib import Path

from repokeeper.models import ErrorClass

AUTH_MARKERS = (
    "permission denied",
    "authentication failed",
    "access denied",
    "publickey",
    "could not read username",
    "could not read password",
    "credential",
    "terminal prompts disabled",
)
NETWORK_MARKERS = (
    "could not resolve host",
    "network is unreachable",
    "connection timed out",
    "connection refused",
    "failed to connect",
    "unable to access",
    "temporary failure in name resolution",
    "tls handshake timeout",
)
TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded")
CORRUPT_MARKERS = ("not a git repository", "bad object", "corrupt", "object file", "loose object")
MISSING_REMOTE_MARKERS = (
    "repository not found",
    "couldn't find remote ref",
    "remote ref does not exist",
    "no such remote",
    "does not appear to be a git repository",
    "no remote repository specified",
)


class RepoKeeperError(Exception):
    """Base class for repokeeper errors."""


class GitError(RepoKeeperError):
    """Exception raised for git command failures."""

    def __init__(
        self,
        message: str,
        repo_path: Path | None,
        stderr: str = "",
        returncode: int | None = None,
        error_class: ErrorClass | None = None,
    ) -> None:
        """Initialize GitError.

        Args:
            message: Error description.
            repo_path: Path to the repository where error occurred.
            stderr: Raw stderr captured from git, if any.
            returncode: Exit status of the git process, if it ran.
            error_class: Known classification; derived from the text when None.
        """
        self.repo_path = repo_path
        self.stderr = stderr
        self.returncode = returncode
        self.error_class = error_class
        super().__init__(message)


class GitTimeoutError(GitError):
    """A git command exceeded its deadline and was killed."""

    def __init__(self, message: str, repo_path: Path | None) -> None:
        super().__init__(message, repo_path, error_class=ErrorClass.TIMEOUT)


class CancelledError(RepoKeeperError):
    """The invocation was cancelled while a git command was running."""


class ConfigError(RepoKeeperError):
    """Configuration file could not be parsed or validated."""


class InventoryError(RepoKeeperError):
    """Inventory file could not be parsed or validated."""


class EntryNotFoundError(RepoKeeperError):
    """No single inventory entry matches a repo_id or path."""


class ConfirmationRequiredError(RepoKeeperError):
    """A mutating plan was executed without operator confirmation."""


def classify_error(error: BaseException | str | None) -> ErrorClass | None:
    """Map an exception or git error text to an ErrorClass.

    Explicit classes carried by GitError win over text heuristics.

    Args:
        error: Exception, raw message, or None.

    Returns:
        ErrorClass, or None when there is no error.
    """
    if error is None:
        return None
    if isinstance(error, (GitTimeoutError, CancelledError, TimeoutError)):
        return ErrorClass.TIMEOUT
    if isinstance(error, GitError) and error.error_class is not None:
        return error.error_class
    if isinstance(error, FileNotFoundError):
        return ErrorClass.MISSING

    if isinstance(error, GitError):
        text = f"{error} {error.stderr}"
    else:
        text = str(error)
    return classify_text(text)


def classify_text(text: str) -> ErrorClass:
    """Classify git error output by well-known markers.

    Args:
        text: Error output.

    Returns:
        Matching ErrorClass, UNKNOWN when nothing matches.
    """
    lower = text.lower()
    if _contains_any(lower, AUTH_MARKERS):
        return ErrorClass.AUTH
    if _contains_any(lower, NETWORK_MARKERS):
        return ErrorClass.NETWORK
    if _contains_any(lower, TIMEOUT_MARKERS):
        return ErrorClass.TIMEOUT
    if _contains_any(lower, MISSING_REMOTE_MARKERS):
        return ErrorClass.MISSING_REMOTE
    if _contains_any(lower, CORRUPT_MARKERS):
        return ErrorClass.CORRUPT
    if "no such file or directory" in lower:
        return ErrorClass.MISSING
    return ErrorClass.UNKNOWN


def extract_git_error(message: str) -> str:
    """Extract the key error from git output.

    Looks for 'fatal:' or 'error:' lines and returns just that part.

    Args:
        message: Full git error output.

    Returns:
        Cleaned up error message.
    """
    for line in message.split("\n"):
        line = line.strip()
        if line.startswith("fatal:"):
            return line[6:].strip()
        if line.startswith("error:"):
            return line[6:].strip()
    lines = [line.strip() for line in message.split("\n") if line.strip()]
    return lines[-1] if lines else message


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)
