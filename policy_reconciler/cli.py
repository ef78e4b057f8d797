"""
Command Line Interface for the policy reconciliation engine.

Provides commands for listing catalog categories and for applying,
removing and verifying the security measures of a category.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .core.cancellation import CancellationToken
from .core.engine import PolicyEngine
from .core.exceptions import OperationCancelledError
from .core.models import Operation, PolicyUnit, ReconciliationRun, UnitStatus
from .utils.os_detection import is_admin


console = Console()

STATUS_COLORS = {
    UnitStatus.APPLIED: "green",
    UnitStatus.NOT_APPLIED: "red",
    UnitStatus.UNDETERMINED: "dim",
}


def setup_logging(verbose: bool) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)]
    )


def check_privileges():
    """Check if running with administrative privileges."""
    if not is_admin():
        console.print(
            "[red]Error: Administrative privileges required![/red]\n"
            "Please run as Administrator, or pass --force to continue anyway."
        )
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', help="Path to configuration file")
@click.option('--verbose', '-v', is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """
    Policy Reconciliation Engine

    Applies, removes and verifies catalogs of Windows security measures
    across Group Policy, the registry and the security policy database.
    """
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['verbose'] = verbose

    setup_logging(verbose)

    if 'engine' not in ctx.obj:
        try:
            ctx.obj['engine'] = PolicyEngine(config_path=config)
        except Exception as e:
            console.print(f"[red]Failed to initialize policy engine: {e}[/red]")
            sys.exit(1)


@cli.command(name='list')
@click.pass_context
def list_categories(ctx):
    """List the catalog categories."""
    engine: PolicyEngine = ctx.obj['engine']

    try:
        categories = engine.list_categories()
    except Exception as e:
        console.print(f"[red]Failed to load catalog: {e}[/red]")
        sys.exit(1)

    table = Table(title="Catalog Categories")
    table.add_column("Category")
    table.add_column("Security Measures", justify="right")

    for category in categories:
        table.add_row(category, str(len(engine.get_units(category))))

    console.print(table)


@cli.command()
@click.argument('category')
@click.option('--intent', '-i', help="Only show measures for this device intent")
@click.pass_context
def show(ctx, category: str, intent: Optional[str]):
    """Show the security measures of a category."""
    engine: PolicyEngine = ctx.obj['engine']

    try:
        units = engine.get_units(category, intent=intent)
    except Exception as e:
        console.print(f"[red]Failed to load category: {e}[/red]")
        sys.exit(1)

    _display_units_table(category, units)


def _operation_options(func):
    func = click.option('--sub-category', '-s', 'sub_categories', multiple=True,
                        help="Sub-category to include alongside uncategorized measures (repeatable)")(func)
    func = click.option('--intent', '-i', help="Device intent to select measures for (e.g. business)")(func)
    func = click.option('--output', '-o', help="Output file for results (JSON format)")(func)
    func = click.option('--format', 'output_format', type=click.Choice(['table', 'summary', 'json']),
                        default='table', help="Output format")(func)
    func = click.option('--name', '-n', 'names', multiple=True,
                        help="Security measure to process (repeatable, default: all)")(func)
    return click.argument('category')(func)


@cli.command()
@_operation_options
@click.option('--force', is_flag=True, help="Skip the administrative privilege check")
@click.option('--yes', '-y', is_flag=True, help="Do not prompt for confirmation")
@click.pass_context
def apply(ctx, category: str, intent: Optional[str], sub_categories: Tuple[str, ...], names: Tuple[str, ...],
          output_format: str, output: Optional[str], force: bool, yes: bool):
    """
    Apply the security measures of a category.

    Makes actual system changes, including any dependent measures.
    """
    selection = _selection(names, intent, sub_categories)
    _confirm_changes(force, yes, "apply")
    _run_operation(ctx.obj['engine'], Operation.APPLY, category, selection, output_format, output)


@cli.command()
@_operation_options
@click.option('--force', is_flag=True, help="Skip the administrative privilege check")
@click.option('--yes', '-y', is_flag=True, help="Do not prompt for confirmation")
@click.pass_context
def remove(ctx, category: str, intent: Optional[str], sub_categories: Tuple[str, ...], names: Tuple[str, ...],
           output_format: str, output: Optional[str], force: bool, yes: bool):
    """
    Remove the security measures of a category.

    Deletes applied values or resets them to their defaults.
    """
    selection = _selection(names, intent, sub_categories)
    _confirm_changes(force, yes, "remove")
    _run_operation(ctx.obj['engine'], Operation.REMOVE, category, selection, output_format, output)


@cli.command()
@_operation_options
@click.pass_context
def verify(ctx, category: str, intent: Optional[str], sub_categories: Tuple[str, ...], names: Tuple[str, ...],
           output_format: str, output: Optional[str]):
    """
    Verify the security measures of a category.

    Performs a read-only check without making changes.
    """
    _run_operation(ctx.obj['engine'], Operation.VERIFY, category,
                   _selection(names, intent, sub_categories), output_format, output)


def _selection(names: Tuple[str, ...], intent: Optional[str],
               sub_categories: Tuple[str, ...]) -> Dict[str, Any]:
    """Engine keyword arguments selecting the measures to process."""
    if names and (intent or sub_categories):
        raise click.UsageError("--name cannot be combined with --intent or --sub-category")
    return {
        "names": list(names) or None,
        "intent": intent,
        "sub_categories": list(sub_categories) or None,
    }


def _confirm_changes(force: bool, yes: bool, action: str):
    if not force:
        check_privileges()

    if not yes:
        console.print("[yellow]Warning: This will make changes to your system configuration![/yellow]")
        if not click.confirm(f"Do you want to {action} these security measures?"):
            console.print("Operation cancelled.")
            sys.exit(0)


def _run_operation(engine: PolicyEngine, operation: Operation, category: str,
                   selection: Dict[str, Any], output_format: str, output: Optional[str]):
    token = CancellationToken()

    try:
        if output_format != 'json':
            console.print(Panel(
                f"[bold]{operation.value.title()} - {category}[/bold]\n"
                f"Security measures: {_describe_selection(selection)}",
                title="Policy Reconciliation"
            ))

        future = engine.submit(operation, category, cancellation_token=token, **selection)

        if output_format == 'json':
            run = _wait_for(future, token)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True
            ) as progress:
                progress.add_task(f"Running {operation.value}...", total=None)
                run = _wait_for(future, token)

    except OperationCancelledError:
        console.print(f"[yellow]{operation.value.title()} cancelled.[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]{operation.value.title()} failed: {e}[/red]")
        sys.exit(1)

    if output_format == 'json':
        click.echo(json.dumps(run.model_dump(mode="json"), indent=2))
    elif output_format == 'summary':
        _display_summary(run)
    else:
        _display_table(run)

    if output:
        _save_json_results(run, output)
        if output_format != 'json':
            console.print(f"\n[green]Results saved to: {output}[/green]")


def _describe_selection(selection: Dict[str, Any]) -> str:
    if selection["names"]:
        return ", ".join(selection["names"])
    parts = []
    if selection["intent"]:
        parts.append(f"intent {selection['intent']}")
    if selection["sub_categories"]:
        parts.append(f"sub-categories {', '.join(selection['sub_categories'])}")
    return "; ".join(parts) if parts else "all"


def _wait_for(future, token: CancellationToken) -> ReconciliationRun:
    """Wait for a run; Ctrl+C cancels it at the next checkpoint."""
    try:
        return future.result()
    except KeyboardInterrupt:
        token.cancel()
        console.print("[yellow]Cancelling...[/yellow]")
        return future.result()


def _display_summary(run: ReconciliationRun):
    """Display a summary of run results."""
    table = Table(title=f"{run.operation.value.title()} Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Total Security Measures", str(run.total_units))
    table.add_row("Applied", f"[green]{run.applied_units}[/green]")
    table.add_row("Not Applied", f"[red]{run.not_applied_units}[/red]" if run.not_applied_units else "0")
    table.add_row("Undetermined", str(run.undetermined_units))
    if run.operation == Operation.VERIFY:
        table.add_row("Compliance Score", f"{run.compliance_score:.1f}%")

    console.print(table)


def _display_table(run: ReconciliationRun):
    """Display per-unit results in table format."""
    table = Table(title=f"{run.operation.value.title()} Results")
    table.add_column("Security Measure")
    table.add_column("Status")

    for result in run.unit_results:
        color = STATUS_COLORS.get(result.status, "white")
        table.add_row(
            result.name or result.unit_id,
            f"[{color}]{result.status.value.upper()}[/{color}]"
        )

    console.print(table)
    _display_summary(run)


def _display_units_table(category: str, units: List[PolicyUnit]):
    """Display the security measures of a category."""
    table = Table(title=f"{category} Security Measures")
    table.add_column("Name")
    table.add_column("Backend", style="dim")
    table.add_column("Sub-Category")
    table.add_column("Device Intents")

    for unit in units:
        backend = unit.backend.value if unit.backend else "custom"
        table.add_row(
            unit.name or "",
            backend,
            unit.sub_category_display,
            ", ".join(unit.device_intents)
        )

    console.print(table)


def _save_json_results(run: ReconciliationRun, output_path: str):
    """Save results to JSON file."""
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    with open(output_file, 'w', encoding='utf-8') as f:
        json.dump(run.model_dump(mode="json"), f, indent=2)


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
