"""Policy role assignments CLI (rolesync).

Usage:
    rolesync plan              # Show what apply would create, refresh and delete
    rolesync apply             # Converge Azure and the state file onto the spec
    rolesync refresh           # Re-read tracked role assignments, record drift
    rolesync destroy           # Delete every tracked role assignment
    rolesync key P S R         # Print the assignment key (role assignment name)
    rolesync normalize ID      # Print a normalized role definition ID
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from .config import (
    DEFAULT_OPERATION_TIMEOUT_SECONDS,
    DEFAULT_SPEC_FILE,
    DEFAULT_STATE_FILE,
    Config,
    ConfigurationError,
)
from .diagnostics import Severity
from .keys import assignment_key
from .main import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_SECURITY_VIOLATION,
    apply,
    build_reconciler,
    compute_plan,
    destroy,
    refresh,
    setup_logging,
)
from .normalizer import normalize_role_definition_id
from .reconciler import ReconcileResult, RoleAssignmentReconciler
from .security import SecretlessViolationError
from .spec_loader import SpecLoadError
from .state import StateError

Operation = Callable[[Config, RoleAssignmentReconciler], Awaitable[ReconcileResult]]

spec_option = click.option(
    "--spec",
    "spec_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_SPEC_FILE,
    envvar="SPEC_FILE",
    show_default=True,
    help="Desired role assignments (YAML).",
)
state_option = click.option(
    "--state",
    "state_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STATE_FILE,
    envvar="STATE_FILE",
    show_default=True,
    help="Applied role assignments (JSON).",
)


def azure_options(func: Callable[..., None]) -> Callable[..., None]:
    """Options shared by the commands that call Azure."""
    func = click.option(
        "--abort-on-delete-error",
        is_flag=True,
        envvar="ABORT_ON_DELETE_ERROR",
        help="Stop deleting at the first failure instead of continuing.",
    )(func)
    func = click.option(
        "--timeout",
        "timeout",
        type=int,
        default=DEFAULT_OPERATION_TIMEOUT_SECONDS,
        envvar="OPERATION_TIMEOUT",
        show_default=True,
        help="Seconds per role assignment API call.",
    )(func)
    func = click.option(
        "--client-id",
        envvar="AZURE_CLIENT_ID",
        default=None,
        help="Client ID of a user-assigned managed identity.",
    )(func)
    func = click.option(
        "--subscription-id",
        envvar="AZURE_SUBSCRIPTION_ID",
        required=True,
        help="Subscription the authorization client binds to.",
    )(func)
    return state_option(spec_option(func))


def _build_config(
    subscription_id: str,
    client_id: str | None,
    spec_file: Path,
    state_file: Path,
    timeout: int,
    abort_on_delete_error: bool,
) -> Config:
    try:
        return Config(
            subscription_id=subscription_id,
            client_id=client_id,
            spec_file=spec_file,
            state_file=state_file,
            operation_timeout_seconds=timeout,
            abort_on_delete_error=abort_on_delete_error,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _echo_result(result: ReconcileResult) -> None:
    for diagnostic in result.diagnostics:
        color = "red" if diagnostic.severity == Severity.ERROR else "yellow"
        click.secho(str(diagnostic), fg=color, err=True)
    click.echo(
        f"{result.operation}: {result.created} created, {result.refreshed} refreshed, "
        f"{result.deleted} deleted, {result.drifted} drifted, "
        f"{len(result.assignments)} tracked"
    )


def _run(ctx: click.Context, operation: Operation, config: Config) -> None:
    try:
        reconciler = build_reconciler(config)
        result = asyncio.run(operation(config, reconciler))
    except SecretlessViolationError as e:
        click.secho(str(e), fg="red", err=True)
        ctx.exit(EXIT_SECURITY_VIOLATION)
    except (SpecLoadError, StateError) as e:
        raise click.ClickException(str(e)) from e

    _echo_result(result)
    ctx.exit(EXIT_OK if result.success else EXIT_ERROR)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="rolesync")
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
def cli(verbose: bool) -> None:
    """Reconcile the role assignments that policy managed identities need.

    \b
    Quick Start:
        rolesync plan --spec assignments.yaml --state state.json
        rolesync apply --spec assignments.yaml --state state.json
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


@cli.command()
@spec_option
@state_option
def plan(spec_file: Path, state_file: Path) -> None:
    """Show what apply would do. Does not call Azure."""
    try:
        changes = compute_plan(spec_file, state_file)
    except (SpecLoadError, StateError) as e:
        raise click.ClickException(str(e)) from e

    for desired in changes.to_create:
        click.secho(
            f"+ {desired.principal_id} {desired.role_definition_id} {desired.scope} "
            f"(name {desired.key})",
            fg="green",
        )
    for applied in changes.to_refresh:
        click.echo(f"= {applied.resource_id}")
    for applied in changes.to_delete:
        click.secho(f"- {applied.resource_id or '(drifted)'}", fg="red")

    click.echo(
        f"Plan: {len(changes.to_create)} to create, {len(changes.to_refresh)} to refresh, "
        f"{len(changes.to_delete)} to delete."
    )


@cli.command(name="apply")
@azure_options
@click.pass_context
def apply_command(ctx: click.Context, **options: object) -> None:
    """Create, refresh and delete role assignments to match the spec."""
    _run(ctx, apply, _build_config(**options))  # type: ignore[arg-type]


@cli.command(name="refresh")
@azure_options
@click.pass_context
def refresh_command(ctx: click.Context, **options: object) -> None:
    """Re-read tracked role assignments and record drift in state."""
    _run(ctx, refresh, _build_config(**options))  # type: ignore[arg-type]


@cli.command(name="destroy")
@azure_options
@click.confirmation_option(prompt="Delete every tracked role assignment?")
@click.pass_context
def destroy_command(ctx: click.Context, **options: object) -> None:
    """Delete every tracked role assignment."""
    _run(ctx, destroy, _build_config(**options))  # type: ignore[arg-type]


@cli.command()
@click.argument("principal_id")
@click.argument("scope")
@click.argument("role_definition_id")
def key(principal_id: str, scope: str, role_definition_id: str) -> None:
    """Print the role assignment name derived from a triple."""
    click.echo(str(assignment_key(principal_id, scope, role_definition_id)))


@cli.command()
@click.argument("role_definition_id")
def normalize(role_definition_id: str) -> None:
    """Print the tenant-root form of a role definition ID."""
    click.echo(normalize_role_definition_id(role_definition_id))


def main() -> None:
    """Entry point for the rolesync CLI."""
    cli()


if __name__ == "__main__":
    main()
