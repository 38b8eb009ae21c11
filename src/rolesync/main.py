"""Entry points for reconciling policy role assignments.

A run loads the desired assignments (YAML spec) and the applied set (JSON
state), reconciles them through the Azure authorization API, and writes the
resulting applied set back to the state file, including after partial
failures so that every role assignment created so far stays tracked.

Exit codes: 0 success, 1 configuration/load/reconcile errors, 2 security
violations.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from .config import Config, ConfigurationError
from .diagnostics import Severity
from .gateway import AzureRoleAssignmentGateway
from .models import AssignmentsState
from .provenance import ChangeProvenanceSummary, get_provenance_logger, hash_spec_content
from .reconciler import ReconcilePlan, ReconcileResult, RoleAssignmentReconciler, plan_changes
from .security import SecretlessViolationError, get_managed_identity_credential
from .spec_loader import SpecLoadError, parse_assignments_spec, read_spec_text
from .state import StateError, StateStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SECURITY_VIOLATION = 2

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_KEYS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    # Replace a handler installed by an earlier call instead of stacking them
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_reconciler(config: Config) -> RoleAssignmentReconciler:
    """Build a reconciler talking to Azure with the managed identity.

    Raises:
        SecretlessViolationError: If credential secrets are in the environment.
    """
    credential = get_managed_identity_credential(config.client_id)
    gateway = AzureRoleAssignmentGateway(credential, config.subscription_id)
    return RoleAssignmentReconciler(
        gateway,
        operation_timeout_seconds=config.operation_timeout_seconds,
        abort_on_delete_error=config.abort_on_delete_error,
        suppress_drift_warnings=config.suppress_drift_warnings,
    )


def compute_plan(spec_file: Path, state_file: Path) -> ReconcilePlan:
    """Compute what an apply would do, without calling Azure or needing credentials.

    Raises:
        SpecLoadError: If the spec is invalid.
        StateError: If the state file is invalid.
    """
    spec = parse_assignments_spec(read_spec_text(spec_file), str(spec_file))
    state = StateStore(state_file).load()
    return plan_changes(spec.assignments, state.assignments)


async def apply(config: Config, reconciler: RoleAssignmentReconciler) -> ReconcileResult:
    """Converge Azure and the state file onto the spec.

    The first run (no state file) creates everything; later runs update.

    Raises:
        SpecLoadError: If the spec is invalid.
        StateError: If the state file cannot be read or written.
    """
    content = read_spec_text(config.spec_file)
    spec = parse_assignments_spec(content, str(config.spec_file))
    store = StateStore(config.state_file)

    if store.exists():
        state = store.load()
        result = await reconciler.update(spec.assignments, state.assignments)
    else:
        state = AssignmentsState()
        result = await reconciler.create(spec.assignments)

    _save(store, state, result, config)
    _log_provenance(config, result, hash_spec_content(content))
    return result


async def refresh(config: Config, reconciler: RoleAssignmentReconciler) -> ReconcileResult:
    """Re-read every tracked role assignment and record drift in state.

    Raises:
        StateError: If the state file cannot be read or written.
    """
    store = StateStore(config.state_file)
    state = store.load()
    result = await reconciler.read(state.assignments)
    _save(store, state, result, config)
    _log_provenance(config, result)
    return result


async def destroy(config: Config, reconciler: RoleAssignmentReconciler) -> ReconcileResult:
    """Delete every tracked role assignment.

    Assignments that could not be deleted remain in state.

    Raises:
        StateError: If the state file cannot be read or written.
    """
    store = StateStore(config.state_file)
    state = store.load()
    result = await reconciler.delete(state.assignments)
    _save(store, state, result, config)
    _log_provenance(config, result)
    return result


def _save(
    store: StateStore,
    state: AssignmentsState,
    result: ReconcileResult,
    config: Config,
) -> None:
    new_state = AssignmentsState(
        id=state.id or config.spec_file.stem,
        assignments=result.assignments,
    )
    store.save(new_state)


def _log_provenance(config: Config, result: ReconcileResult, spec_hash: str = "") -> None:
    provenance_logger = get_provenance_logger()
    provenance = provenance_logger.create_provenance(
        state_id=config.spec_file.stem,
        subscription_id=config.subscription_id,
        operation=result.operation,
        spec_file_hash=spec_hash,
        dry_run=config.dry_run,
    )
    provenance.change_summary = ChangeProvenanceSummary(
        create_count=result.created,
        refresh_count=result.refreshed,
        delete_count=result.deleted,
        drift_count=result.drifted,
    )
    provenance.duration_seconds = result.duration_seconds
    if not result.success:
        provenance.error = "; ".join(d.detail for d in result.diagnostics.errors)
    provenance_logger.log_provenance(provenance)


def log_diagnostics(result: ReconcileResult) -> None:
    for diagnostic in result.diagnostics:
        if diagnostic.severity == Severity.ERROR:
            logger.error(diagnostic.summary, extra={"detail": diagnostic.detail})
        else:
            logger.warning(diagnostic.summary, extra={"detail": diagnostic.detail})


async def main() -> int:
    """Run one reconciliation pass configured from the environment.

    With DRY_RUN=true only the plan is computed and logged.

    Returns:
        Exit code.
    """
    setup_logging()

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_ERROR

    logger.info(
        "Starting policy role assignment reconciliation",
        extra={
            "subscription_id": config.subscription_id,
            "spec_file": str(config.spec_file),
            "state_file": str(config.state_file),
            "dry_run": config.dry_run,
        },
    )

    try:
        if config.dry_run:
            plan = compute_plan(config.spec_file, config.state_file)
            logger.info(
                "Dry run plan",
                extra={
                    "to_create": len(plan.to_create),
                    "to_refresh": len(plan.to_refresh),
                    "to_delete": len(plan.to_delete),
                },
            )
            return EXIT_OK

        reconciler = build_reconciler(config)
        result = await apply(config, reconciler)
    except (SpecLoadError, StateError) as e:
        logger.error("Failed to load assignments", extra={"error": str(e)})
        return EXIT_ERROR
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return EXIT_SECURITY_VIOLATION

    log_diagnostics(result)
    return EXIT_OK if result.success else EXIT_ERROR


def run() -> None:
    """Entry point for the reconcile command."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
