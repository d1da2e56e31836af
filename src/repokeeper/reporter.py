"""Rich console output formatting."""

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from repokeeper.models import (
    ErrorClass,
    InventoryEntry,
    OutcomeKind,
    RemoteMismatchPlan,
    RepositoryStatus,
    StatusReport,
    SyncResult,
    SyncSummary,
    TrackingStatus,
    UpstreamRepairPlan,
)

TRACKING_STYLES = {
    TrackingStatus.EQUAL: ("green", "up to date"),
    TrackingStatus.AHEAD: ("cyan", "ahead"),
    TrackingStatus.BEHIND: ("magenta", "behind"),
    TrackingStatus.DIVERGED: ("red bold", "diverged"),
    TrackingStatus.GONE: ("yellow", "gone"),
    TrackingStatus.NONE: ("dim", "no upstream"),
}

OUTCOME_MARKERS = {
    OutcomeKind.FETCHED: "[cyan]↓[/]",
    OutcomeKind.REBASED: "[green]↻[/]",
    OutcomeKind.STASHED_REBASED: "[green]↻[/]",
    OutcomeKind.PUSHED: "[green]↑[/]",
    OutcomeKind.CLONED: "[green]+[/]",
}


class Reporter:
    """Formats and displays status and sync results using Rich."""

    def __init__(self, console: Console, verbosity: str = "normal") -> None:
        """Initialize reporter.

        Args:
            console: Rich console for output.
            verbosity: ``quiet``, ``normal`` or ``verbose``.
        """
        self.console = console
        self.verbosity = verbosity

    def display_status(self, report: StatusReport) -> None:
        """Display a status report: summary, table, then warnings.

        Args:
            report: Status report to display.
        """
        if self.verbosity == "quiet":
            self.display_quiet_status(report.repos)
            return

        self.display_summary(report.repos)
        if report.repos:
            self.display_status_table(report.repos)

        flagged = [r for r in report.repos if self.repo_warnings(r)]
        if flagged:
            self.display_warnings(flagged)

    def display_status_table(self, repos: list[RepositoryStatus]) -> None:
        """Display repositories in a table format.

        Args:
            repos: Repository snapshots to display.
        """
        table = Table(title="Repositories", expand=True)
        table.add_column("Path", style="blue", no_wrap=True)
        table.add_column("Branch", style="cyan")
        table.add_column("Tracking")
        table.add_column("Changes", justify="right")
        table.add_column("Ahead/Behind", justify="center")
        if self.verbosity == "verbose":
            table.add_column("Repo ID", style="dim")
            table.add_column("Labels", style="dim")

        for repo in repos:
            row = [
                self.shorten_path(repo.path),
                self.format_branch(repo),
                self.format_tracking(repo),
                self.format_changes(repo),
                self.format_ahead_behind(repo),
            ]
            if self.verbosity == "verbose":
                row.extend([repo.repo_id, escape(self.format_labels(repo.labels))])
            table.add_row(*row)

        self.console.print(table)

    def display_warnings(self, repos: list[RepositoryStatus]) -> None:
        """Display warning panel for repos with issues.

        Args:
            repos: Repos with warnings to display.
        """
        lines: list[str] = []
        for repo in repos:
            path_str = self.shorten_path(repo.path)
            for message in self.repo_warnings(repo):
                lines.append(f"[yellow]![/] {path_str}: {message}")

        if lines:
            panel = Panel(
                "\n".join(lines),
                title="[bold yellow]Warnings[/]",
                border_style="yellow",
            )
            self.console.print(panel)

    def repo_warnings(self, repo: RepositoryStatus) -> list[str]:
        """Human-readable problems of one repository."""
        if repo.has_error:
            return [f"{(repo.error_class or ErrorClass.UNKNOWN).value}: {repo.error}"]
        warnings: list[str] = []
        if repo.is_dirty:
            warnings.append("Uncommitted changes")
        if repo.tracking.status == TrackingStatus.GONE:
            warnings.append(f"Upstream {repo.tracking.upstream} no longer exists")
        if repo.head.detached and not repo.bare:
            warnings.append("Detached HEAD state")
        return warnings

    def display_summary(self, repos: list[RepositoryStatus]) -> None:
        """Display summary statistics.

        Args:
            repos: Repositories in the report.
        """
        errors = sum(1 for r in repos if r.has_error)
        dirty = sum(1 for r in repos if r.is_dirty)
        clean = len(repos) - errors - dirty

        self.console.print(f"\nChecked [bold]{len(repos)}[/] repositories")
        self.console.print(f"  [green]{clean}[/] clean, [red]{dirty}[/] dirty, ", end="")
        self.console.print(f"[red bold]{errors}[/] with errors\n")

    def display_quiet_status(self, repos: list[RepositoryStatus]) -> None:
        for repo in repos:
            path_str = self.shorten_path(repo.path)
            if repo.has_error:
                self.console.print(f"[red]error[/] {path_str}: {repo.error}")
            elif repo.is_dirty:
                self.console.print(f"[red]dirty[/] {path_str} ({repo.head.branch})")
            elif self.repo_warnings(repo):
                self.console.print(f"[yellow]warn[/] {path_str} ({repo.head.branch})")

    def display_sync_plan(self, plan: list[SyncResult]) -> None:
        """Display a sync plan without running it.

        Args:
            plan: Planned items.
        """
        self.console.print("[bold]Dry run - no changes will be made[/]\n")
        table = Table(title="Sync plan", expand=True)
        table.add_column("Path", style="blue", no_wrap=True)
        table.add_column("Outcome")
        table.add_column("Action", style="dim")

        for item in plan:
            table.add_row(
                self.shorten_path(item.path),
                self.format_outcome(item),
                item.action or "-",
            )
        self.console.print(table)

    def display_sync_results(self, results: list[SyncResult], summary: SyncSummary) -> None:
        """Display executed sync results followed by the summary.

        Args:
            results: Executed results.
            summary: Aggregate from ``sync.summarize``.
        """
        for result in results:
            path_str = self.shorten_path(result.path)
            if not result.ok:
                self.console.print(f"  [red]✗[/] {path_str}: {result.outcome.value} {result.error}")
            elif result.outcome.is_skip:
                if self.verbosity != "quiet":
                    self.console.print(f"  [dim]·[/] {path_str}: {result.outcome.value}")
            else:
                marker = OUTCOME_MARKERS.get(result.outcome, "[green]✓[/]")
                self.console.print(f"  {marker} {path_str}: {result.outcome.value}")

        if self.verbosity != "quiet":
            self.display_sync_summary(summary)
        self.display_failures(summary)

    def display_sync_summary(self, summary: SyncSummary) -> None:
        self.console.print("\n[bold]Summary:[/] ", end="")
        parts = []
        if summary.succeeded:
            parts.append(f"[green]{summary.succeeded} ok[/]")
        if summary.skipped:
            parts.append(f"[dim]{summary.skipped} skipped[/]")
        if summary.failed:
            parts.append(f"[red]{summary.failed} failed[/]")
        self.console.print(", ".join(parts) if parts else "nothing to do")

    def display_failures(self, summary: SyncSummary) -> None:
        """Trailing failure list, ordered by (repo_id, path)."""
        if not summary.failures:
            return
        lines = [
            f"[red]x[/] {self.shorten_path(f.path)} "
            f"({(f.error_class or ErrorClass.UNKNOWN).value}) {f.outcome.value}: {f.error}"
            for f in summary.failures
        ]
        self.console.print(
            Panel("\n".join(lines), title="[bold red]Failures[/]", border_style="red")
        )

    def display_remote_plans(self, plans: list[RemoteMismatchPlan], applied: bool = False) -> None:
        """Display remote-mismatch plans or their applied results.

        Args:
            plans: Plans to show.
            applied: Whether the plans were already applied.
        """
        if not plans:
            self.console.print("[green]No remote mismatches found.[/]")
            return

        table = Table(title="Remote mismatches", expand=True)
        table.add_column("Path", style="blue", no_wrap=True)
        table.add_column("Action")
        table.add_column("Current", style="red")
        table.add_column("Target", style="green")
        if applied:
            table.add_column("Result")

        for plan in plans:
            row = [
                self.shorten_path(plan.path),
                plan.action,
                plan.current_value,
                plan.target_value,
            ]
            if applied:
                row.append("[green]ok[/]" if plan.ok else f"[red]{plan.error}[/]")
            table.add_row(*row)
        self.console.print(table)

    def display_upstream_plans(self, plans: list[UpstreamRepairPlan]) -> None:
        """Display upstream repair plans or results.

        Args:
            plans: Plans to show.
        """
        table = Table(title="Upstream tracking", expand=True)
        table.add_column("Path", style="blue", no_wrap=True)
        table.add_column("Branch", style="cyan")
        table.add_column("Current")
        table.add_column("Target")
        table.add_column("Action")

        for plan in plans:
            if plan.action == "unchanged" and self.verbosity != "verbose":
                continue
            action = plan.action if plan.ok else f"[red]{plan.action}: {plan.error}[/]"
            table.add_row(
                self.shorten_path(plan.path),
                plan.local_branch or "-",
                plan.current_upstream or "-",
                plan.target_upstream or "-",
                action,
            )
        self.console.print(table)

    def display_labels(self, entry: InventoryEntry) -> None:
        """Display an inventory entry's labels as sorted ``key=value`` lines."""
        self.console.print(f"REPO: {entry.repo_id}", markup=False)
        self.console.print(f"PATH: {entry.path}", markup=False)
        if not entry.labels:
            self.console.print("LABELS: -")
            return
        self.console.print("LABELS:")
        for key in sorted(entry.labels):
            self.console.print(f"- {key}={entry.labels[key]}", markup=False)

    def format_labels(self, labels: dict[str, str]) -> str:
        if not labels:
            return "-"
        return ",".join(f"{key}={labels[key]}" for key in sorted(labels))

    def format_branch(self, repo: RepositoryStatus) -> str:
        if repo.bare:
            return "[dim](bare)[/]"
        if repo.head.detached:
            return f"[yellow]({repo.head.branch or 'detached'})[/]"
        return repo.head.branch or "-"

    def format_tracking(self, repo: RepositoryStatus) -> str:
        """Format tracking state, or the error class for failed repos.

        Args:
            repo: Repository snapshot.

        Returns:
            Styled tracking string.
        """
        if repo.has_error:
            return f"[red bold]{(repo.error_class or ErrorClass.UNKNOWN).value}[/]"
        style, text = TRACKING_STYLES.get(
            repo.tracking.status, ("white", repo.tracking.status.value)
        )
        if repo.tracking.upstream and repo.tracking.status != TrackingStatus.NONE:
            text = f"{text} ({repo.tracking.upstream})"
        return f"[{style}]{text}[/]"

    def format_changes(self, repo: RepositoryStatus) -> str:
        """Format change counts for display.

        Args:
            repo: Repository snapshot.

        Returns:
            Formatted string showing staged/modified/untracked counts.
        """
        if repo.worktree is None:
            return "-"
        parts: list[str] = []
        if repo.worktree.staged > 0:
            parts.append(f"[green]{repo.worktree.staged}S[/]")
        if repo.worktree.unstaged > 0:
            parts.append(f"[red]{repo.worktree.unstaged}M[/]")
        if repo.worktree.untracked > 0:
            parts.append(f"[yellow]{repo.worktree.untracked}?[/]")
        return " ".join(parts) if parts else "-"

    def format_ahead_behind(self, repo: RepositoryStatus) -> str:
        """Format ahead/behind counts.

        Args:
            repo: Repository snapshot.

        Returns:
            Formatted ahead/behind string.
        """
        ahead = repo.tracking.ahead or 0
        behind = repo.tracking.behind or 0
        if ahead == 0 and behind == 0:
            return "-"

        parts: list[str] = []
        if ahead > 0:
            parts.append(f"[cyan]+{ahead}[/]")
        if behind > 0:
            parts.append(f"[magenta]-{behind}[/]")
        return "/".join(parts)

    def format_outcome(self, item: SyncResult) -> str:
        if not item.ok:
            return f"[red]{item.outcome.value}[/]"
        if item.outcome.is_skip:
            return f"[dim]{item.outcome.value}[/]"
        return f"[green]{item.outcome.value}[/]"

    def shorten_path(self, path: Path) -> str:
        """Shorten path for display using home directory.

        Args:
            path: Absolute path.

        Returns:
            Shortened path string.
        """
        try:
            return "~/" + str(Path(path).relative_to(Path.home()))
        except ValueError:
            return str(path)
