"""repokeeper CLI."""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from repokeeper import config as config_module
from repokeeper import labels, reconcile, store
from repokeeper import sync as sync_module
from repokeeper.context import Invocation
from repokeeper.engine import Engine
from repokeeper.errors import ConfigError, EntryNotFoundError, InventoryError
from repokeeper.inventory import Inventory
from repokeeper.models import Config, Severity, StatusFilter, StatusReport
from repokeeper.reporter import Reporter

app = typer.Typer(
    name="repokeeper",
    help="Inventory, inspect and safely sync many git repositories",
    no_args_is_help=False,
)

console = Console()
err_console = Console(stderr=True)


class State:
    """Global options shared by every command."""

    def __init__(
        self,
        config_path: Path | None = None,
        inventory_path: Path | None = None,
        verbosity: str = "normal",
    ) -> None:
        self.config_path = config_path
        self.inventory_path = inventory_path
        self.verbosity = verbosity


def configure_logging(verbosity: str) -> None:
    """Route repokeeper logs through rich on stderr.

    Args:
        verbosity: ``verbose`` logs at DEBUG, ``quiet`` at ERROR, otherwise WARNING.
    """
    level = {"verbose": logging.DEBUG, "quiet": logging.ERROR}.get(verbosity, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def get_state(ctx: typer.Context) -> State:
    if not isinstance(ctx.obj, State):
        ctx.obj = State()
    return ctx.obj


def load_or_exit(state: State) -> tuple[Config, Path, Inventory]:
    """Load config and inventory, or exit; both failures are fatal.

    Args:
        state: Global options.

    Returns:
        Tuple of (config, inventory path, inventory).
    """
    try:
        config = config_module.load_config(state.config_path)
        inventory_path = config_module.resolve_inventory_path(config, state.inventory_path)
        inventory = store.load_inventory(inventory_path)
    except (FileNotFoundError, ConfigError, InventoryError) as e:
        err_console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(int(Severity.ERROR)) from e
    return config, inventory_path, inventory


def exit_with(invocation: Invocation) -> None:
    """Exit with 0 for ok, 1 for warnings, 2 for errors."""
    if invocation.exit_code:
        raise typer.Exit(invocation.exit_code)


def print_json(data: object) -> None:
    print(json.dumps(data, indent=2))


def confirm(message: str, json_output: bool) -> bool:
    """Ask the operator; JSON output never prompts, so changes are declined."""
    if json_output:
        err_console.print("[yellow]Not applying changes: --json never prompts, pass --yes[/]")
        return False
    return typer.confirm(message, default=False)


def parse_selector(raw: str | None) -> list[labels.LabelRequirement]:
    try:
        return labels.parse_label_selector(raw)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--selector") from e


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option("-c", "--config", help="Path to config file"),
    ] = None,
    inventory_path: Annotated[
        Path | None,
        typer.Option("--inventory", help="Path to inventory file (overrides config)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Verbose output"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("-q", "--quiet", help="Minimal output"),
    ] = False,
) -> None:
    """Inventory, inspect and safely sync many git repositories.

    If no subcommand given, shows the status of every known repository.
    """
    verbosity = "verbose" if verbose else "quiet" if quiet else "normal"
    ctx.obj = State(config_path=config_path, inventory_path=inventory_path, verbosity=verbosity)
    configure_logging(verbosity)

    if ctx.invoked_subcommand is None:
        status(ctx)


@app.command()
def init(
    path: Annotated[
        Path,
        typer.Argument(help="Where to create config file"),
    ] = Path("./repokeeper.yml"),
) -> None:
    """Create a default configuration file."""
    try:
        config_module.create_default_config(path)
        console.print(f"[green]Created config file:[/] {path}")
        console.print("Edit this file to configure roots and exclusions.")
    except FileExistsError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(1) from e


@app.command()
def scan(
    ctx: typer.Context,
    roots: Annotated[
        list[Path] | None,
        typer.Argument(help="Directories to scan (overrides config)"),
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", "-x", help="Extra exclude pattern (repeatable)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Discover repositories under the roots and update the inventory."""
    state = get_state(ctx)
    config, inventory_path, inventory = load_or_exit(state)
    invocation = Invocation()
    engine = Engine(config, inventory, invocation=invocation)

    scan_roots = [p.expanduser().resolve() for p in roots] if roots else None
    excludes = [*config.exclude_patterns, *exclude] if exclude else None
    statuses = engine.scan(scan_roots, excludes)
    store.save_inventory(inventory, inventory_path)

    if json_output:
        print_json([s.model_dump(mode="json") for s in statuses])
    else:
        report = StatusReport(generated_at=inventory.updated_at, repos=statuses)
        Reporter(console, state.verbosity).display_status(report)
        console.print(f"Inventory: [bold]{len(inventory)}[/] entries in {inventory_path}")
    exit_with(invocation)


@app.command()
def status(
    ctx: typer.Context,
    only: Annotated[
        StatusFilter,
        typer.Option("--only", help="Show only matching repositories"),
    ] = StatusFilter.ALL,
    selector: Annotated[
        str | None,
        typer.Option("--selector", "-l", help="Label selector, e.g. team=platform,tier"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Report live state of every inventory entry."""
    requirements = parse_selector(selector)
    state = get_state(ctx)
    config, _, inventory = load_or_exit(state)
    invocation = Invocation()
    engine = Engine(config, inventory, invocation=invocation)

    report = engine.status(only, requirements)

    if json_output:
        print_json(report.model_dump(mode="json"))
    else:
        Reporter(console, state.verbosity).display_status(report)
    exit_with(invocation)


@app.command()
def sync(
    ctx: typer.Context,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show the plan without executing"),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Run mutating steps without asking"),
    ] = False,
    update_local: Annotated[
        bool,
        typer.Option("--update-local", help="Rebase clean branches onto their upstream"),
    ] = False,
    push_local: Annotated[
        bool,
        typer.Option("--push-local", help="Push branches that are ahead"),
    ] = False,
    rebase_dirty: Annotated[
        bool,
        typer.Option("--rebase-dirty", help="Stash, rebase and pop dirty trees"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", help="Rebase diverged branches"),
    ] = False,
    allow_protected_rebase: Annotated[
        bool,
        typer.Option("--allow-protected-rebase", help="Rebase protected branches too"),
    ] = False,
    checkout_missing: Annotated[
        bool,
        typer.Option("--checkout-missing", help="Re-clone missing repositories"),
    ] = False,
    stop_on_error: Annotated[
        bool,
        typer.Option("--stop-on-error", help="Run sequentially and stop at the first failure"),
    ] = False,
    selector: Annotated[
        str | None,
        typer.Option("--selector", "-l", help="Only sync entries matching this label selector"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Fetch every repository and optionally update local branches.

    The plan is computed once; execution runs exactly that plan.
    """
    requirements = parse_selector(selector)
    state = get_state(ctx)
    config, inventory_path, inventory = load_or_exit(state)
    invocation = Invocation()
    engine = Engine(config, inventory, invocation=invocation)

    options = sync_module.sync_options_from_config(
        config,
        update_local=update_local or None,
        push_local=push_local or None,
        rebase_dirty=rebase_dirty or None,
        force=force or None,
        allow_protected_rebase=allow_protected_rebase or None,
        checkout_missing=checkout_missing or None,
        continue_on_error=False if stop_on_error else None,
        assume_yes=yes or None,
    )
    plan = engine.plan_sync(options, requirements)
    reporter = Reporter(console, state.verbosity)

    if dry_run:
        invocation.raise_severity(sync_module.summarize(plan).severity)
        if json_output:
            print_json([item.model_dump(mode="json") for item in plan])
        else:
            reporter.display_sync_plan(plan)
        exit_with(invocation)
        return

    confirmed = options.assume_yes
    if sync_module.requires_confirmation(plan, options.assume_yes):
        if not json_output:
            reporter.display_sync_plan(plan)
        mutating = sum(1 for item in plan if item.is_mutating)
        confirmed = confirm(
            f"Run clone/stash/rebase/push steps in {mutating} repositories?", json_output
        )
        if not confirmed:
            plan = sync_module.decline_mutations(plan, engine.adapter)

    results = engine.execute_sync(plan, options, confirmed=confirmed)
    store.save_inventory(inventory, inventory_path)

    if json_output:
        print_json([result.model_dump(mode="json") for result in results])
    else:
        reporter.display_sync_results(results, sync_module.summarize(results))
    exit_with(invocation)


@app.command("reconcile-remotes")
def reconcile_remotes(
    ctx: typer.Context,
    mode: Annotated[
        str,
        typer.Option("--mode", help="registry: adopt live URLs; git: restore recorded URLs"),
    ] = "registry",
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show the plan without applying"),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Apply without asking"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Fix drift between recorded and live remote URLs."""
    try:
        reconcile_mode = reconcile.parse_reconcile_mode(mode)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--mode") from e

    state = get_state(ctx)
    config, inventory_path, inventory = load_or_exit(state)
    invocation = Invocation()
    engine = Engine(config, inventory, invocation=invocation)
    reporter = Reporter(console, state.verbosity)

    plans = engine.plan_remote_mismatch_reconcile(reconcile_mode)
    if dry_run or not plans:
        if json_output:
            print_json([plan.model_dump(mode="json") for plan in plans])
        else:
            reporter.display_remote_plans(plans)
        return

    if not json_output:
        reporter.display_remote_plans(plans)
    confirmed = yes or confirm(f"Apply {len(plans)} remote changes?", json_output)
    if not confirmed:
        if json_output:
            print_json([plan.model_dump(mode="json") for plan in plans])
        else:
            console.print("[yellow]Nothing applied.[/]")
        raise typer.Exit(int(Severity.WARNING))

    applied = engine.apply_remote_mismatch_reconcile(plans, reconcile_mode, confirmed=True)
    store.save_inventory(inventory, inventory_path)

    if json_output:
        print_json([plan.model_dump(mode="json") for plan in applied])
    else:
        reporter.display_remote_plans(applied, applied=True)
    exit_with(invocation)


@app.command("repair-upstream")
def repair_upstream(
    ctx: typer.Context,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show the plan without applying"),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Apply without asking"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Point branches without a correct upstream at <remote>/<branch>."""
    state = get_state(ctx)
    config, inventory_path, inventory = load_or_exit(state)
    invocation = Invocation()
    engine = Engine(config, inventory, invocation=invocation)
    reporter = Reporter(console, state.verbosity)

    plans = engine.plan_upstream_repair()
    pending = [plan for plan in plans if plan.needs_change]

    if not dry_run and pending:
        confirmed = yes or confirm(f"Set upstream for {len(pending)} repositories?", json_output)
        if confirmed:
            plans = engine.apply_upstream_repair(plans, confirmed=True)
            store.save_inventory(inventory, inventory_path)
        else:
            invocation.raise_severity(Severity.WARNING)

    if json_output:
        print_json([plan.model_dump(mode="json") for plan in plans])
    else:
        reporter.display_upstream_plans(plans)
    exit_with(invocation)


@app.command()
def prune(ctx: typer.Context) -> None:
    """Drop missing inventory entries not seen for stale_days."""
    state = get_state(ctx)
    config, inventory_path, inventory = load_or_exit(state)
    engine = Engine(config, inventory)

    pruned = engine.prune_stale()
    if pruned:
        store.save_inventory(inventory, inventory_path)
    console.print(f"Pruned [bold]{pruned}[/] stale entries ({len(inventory)} remaining)")



@app.command()
def label(
    ctx: typer.Context,
    target: Annotated[
        str,
        typer.Argument(help="Repository path or repo_id"),
    ],
    set_labels: Annotated[
        list[str] | None,
        typer.Option("--set", help="Label to set as key=value (repeatable)"),
    ] = None,
    remove: Annotated[
        list[str] | None,
        typer.Option("--remove", help="Label key to remove (repeatable)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Show, set or remove labels on one inventory entry."""
    try:
        assignments = labels.parse_label_assignments(set_labels or [])
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--set") from e
    try:
        remove_keys = labels.parse_label_keys(remove or [])
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--remove") from e

    state = get_state(ctx)
    config, inventory_path, inventory = load_or_exit(state)
    engine = Engine(config, inventory)

    try:
        entry = engine.label(target, assignments, remove_keys)
    except EntryNotFoundError as e:
        err_console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(int(Severity.ERROR)) from e
    if assignments or remove_keys:
        store.save_inventory(inventory, inventory_path)

    if json_output:
        print_json({"repo_id": entry.repo_id, "path": str(entry.path), "labels": entry.labels})
    else:
        Reporter(console, state.verbosity).display_labels(entry)
