"""Role assignment reconciliation.

This module keeps a persisted set of applied role assignments in sync with a
declared desired set:
1. Match desired entries against applied entries by (principal, role, scope)
2. Refresh matched entries from Azure, nulling the ones that vanished (drift)
3. Create desired entries that have no applied counterpart
4. Delete applied entries that are no longer desired

ARM has no set-level role assignment API, so every change is a single
create/get/delete call through the RoleAssignmentGateway. Creation uses a
deterministic name derived from the assignment's content, so re-running a
pass after a partial failure converges instead of duplicating.

A pass is idempotent but not atomic. When a call fails mid-pass the result
still carries every assignment that is tracked at that point, so nothing that
exists in Azure drops out of state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TypeVar

from .config import DEFAULT_OPERATION_TIMEOUT_SECONDS
from .diagnostics import Diagnostics
from .gateway import (
    RoleAssignmentGateway,
    RoleAssignmentGatewayError,
    RoleAssignmentNotFoundError,
)
from .models import AppliedAssignment, AssignmentTriple, DesiredAssignment
from .normalizer import normalize_role_definition_id
from .provenance import get_provenance_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLIENT_ERROR_SUMMARY = "Client Error"
DRIFT_SUMMARY = "Role assignment drift"


@dataclass
class ReconcilePlan:
    """Operations needed to move the applied set to the desired set."""

    to_create: list[DesiredAssignment] = field(default_factory=list)
    to_refresh: list[AppliedAssignment] = field(default_factory=list)
    to_delete: list[AppliedAssignment] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_create or self.to_delete)


@dataclass
class ReconcileResult:
    """Outcome of a single reconciliation operation."""

    operation: str
    assignments: list[AppliedAssignment] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    created: int = 0
    refreshed: int = 0
    deleted: int = 0
    drifted: int = 0

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return not self.diagnostics.has_error()


def plan_changes(
    planned: Sequence[DesiredAssignment],
    current: Sequence[AppliedAssignment],
) -> ReconcilePlan:
    """Compute the set difference between desired and applied assignments.

    Entries are matched by structural equality of (principal_id,
    role_definition_id, scope). Because the assignment key is a pure function
    of those fields, this is equivalent to matching by key.

    Args:
        planned: Desired assignments.
        current: Applied assignments from state.

    Returns:
        The plan. Matched applied entries are refreshed, unmatched desired
        entries created, unmatched applied entries deleted.
    """
    current_by_triple: dict[AssignmentTriple, AppliedAssignment] = {}
    for applied in current:
        current_by_triple.setdefault(applied.triple(), applied)

    planned_triples = {desired.triple() for desired in planned}

    plan = ReconcilePlan()
    for desired in planned:
        applied = current_by_triple.get(desired.triple())
        if applied is not None:
            plan.to_refresh.append(applied)
        else:
            plan.to_create.append(desired)

    for applied in current:
        if applied.triple() not in planned_triples:
            plan.to_delete.append(applied)

    return plan


class RoleAssignmentReconciler:
    """Create/Read/Update/Delete lifecycle for a set of role assignments.

    Calls run sequentially. Each gateway call is a blocking SDK round-trip
    executed in the default executor and bounded by the operation timeout.
    """

    def __init__(
        self,
        gateway: RoleAssignmentGateway,
        *,
        operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS,
        abort_on_delete_error: bool = False,
        suppress_drift_warnings: bool = False,
    ) -> None:
        """Initialize the reconciler.

        Args:
            gateway: Role assignment operations.
            operation_timeout_seconds: Upper bound for a single gateway call.
            abort_on_delete_error: Stop a delete pass at the first hard error
                instead of continuing with the remaining entries.
            suppress_drift_warnings: Do not emit warning diagnostics on drift.
        """
        self._gateway = gateway
        self._timeout = operation_timeout_seconds
        self._abort_on_delete_error = abort_on_delete_error
        self._suppress_drift_warnings = suppress_drift_warnings
        self._provenance = get_provenance_logger()

    async def create(self, desired: Sequence[DesiredAssignment]) -> ReconcileResult:
        """Create every desired role assignment.

        Aborts at the first failure. Assignments created before the failure
        are returned and tracked; they are not rolled back.
        """
        result = ReconcileResult(operation="create")
        for entry in desired:
            try:
                applied = await self._create_one(entry)
            except RoleAssignmentGatewayError as e:
                self._add_client_error(result, "create", e)
                break
            result.assignments.append(applied)
            result.created += 1

        return self._finish(result)

    async def read(self, current: Sequence[AppliedAssignment]) -> ReconcileResult:
        """Refresh every applied role assignment from Azure.

        Vanished assignments are kept with their fields nulled. Entries that
        are already drift markers are returned unchanged. On a hard error the
        remaining entries are returned as they were in state.
        """
        result = ReconcileResult(operation="read")
        remaining = list(current)
        while remaining:
            applied = remaining[0]
            if applied.resource_id is None:
                result.assignments.append(applied.model_copy())
                remaining.pop(0)
                continue
            try:
                refreshed = await self._refresh_one(applied)
            except RoleAssignmentGatewayError as e:
                self._add_client_error(result, "read", e)
                break
            remaining.pop(0)
            if refreshed.is_drifted:
                self._add_drift_warning(result, applied)
            else:
                result.refreshed += 1
            result.assignments.append(refreshed)

        result.assignments.extend(a.model_copy() for a in remaining)
        return self._finish(result)

    async def update(
        self,
        planned: Sequence[DesiredAssignment],
        current: Sequence[AppliedAssignment],
    ) -> ReconcileResult:
        """Converge the applied set onto the planned set.

        Matched entries are refreshed, new entries created, unmatched applied
        entries deleted. A matched entry whose role assignment vanished is
        re-created in the same pass. Creates and refreshes abort the pass on
        the first hard error; entries not yet processed stay tracked.
        """
        plan = plan_changes(planned, current)
        desired_by_triple = {desired.triple(): desired for desired in planned}
        result = ReconcileResult(operation="update")

        logger.info(
            "Reconciling role assignments",
            extra={
                "to_create": len(plan.to_create),
                "to_refresh": len(plan.to_refresh),
                "to_delete": len(plan.to_delete),
            },
        )

        pending_refresh = list(plan.to_refresh)
        pending_create = list(plan.to_create)
        try:
            while pending_refresh:
                applied = pending_refresh[0]
                refreshed = await self._refresh_one(applied)
                if refreshed.is_drifted:
                    self._add_drift_warning(result, applied)
                    refreshed = await self._create_one(desired_by_triple[applied.triple()])
                    result.created += 1
                else:
                    result.refreshed += 1
                pending_refresh.pop(0)
                result.assignments.append(refreshed)

            while pending_create:
                applied = await self._create_one(pending_create[0])
                pending_create.pop(0)
                result.assignments.append(applied)
                result.created += 1
        except RoleAssignmentGatewayError as e:
            self._add_client_error(result, "update", e)
            # Keep every object that may still exist in Azure in state
            result.assignments.extend(a.model_copy() for a in pending_refresh)
            result.assignments.extend(a.model_copy() for a in plan.to_delete)
            return self._finish(result)

        # A stale entry can point at an object this pass re-created under the same name
        live_ids = {a.resource_id for a in result.assignments}
        to_delete = [a for a in plan.to_delete if a.resource_id not in live_ids]

        undeleted = await self._delete_all(to_delete, result)
        result.assignments.extend(a.model_copy() for a in undeleted)
        return self._finish(result)

    async def delete(self, current: Sequence[AppliedAssignment]) -> ReconcileResult:
        """Delete every applied role assignment.

        Missing role assignments count as deleted. Other failures are
        collected and the pass continues (unless abort_on_delete_error);
        entries that could not be deleted are returned so they stay tracked.
        """
        result = ReconcileResult(operation="delete")
        undeleted = await self._delete_all(current, result)
        result.assignments.extend(a.model_copy() for a in undeleted)
        return self._finish(result)

    async def _delete_all(
        self,
        entries: Sequence[AppliedAssignment],
        result: ReconcileResult,
    ) -> list[AppliedAssignment]:
        """Delete entries, returning the ones that may still exist in Azure."""
        undeleted: list[AppliedAssignment] = []
        pending = list(entries)
        while pending:
            applied = pending.pop(0)
            if applied.resource_id is None:
                # Drift marker, nothing left in Azure
                continue
            try:
                await self._delete_one(applied.resource_id)
            except RoleAssignmentGatewayError as e:
                self._add_client_error(result, "delete", e)
                undeleted.append(applied)
                if self._abort_on_delete_error:
                    undeleted.extend(pending)
                    break
                continue
            result.deleted += 1
        return undeleted

    async def _create_one(self, desired: DesiredAssignment) -> AppliedAssignment:
        key = desired.key
        logger.debug(
            f"creating role assignment {key} at scope {desired.scope}",
            extra={"principal_id": desired.principal_id},
        )
        resource_id = await self._call(
            self._gateway.create,
            desired.scope,
            str(key),
            desired.principal_id,
            desired.role_definition_id,
        )
        self._provenance.log_change_detail(resource_id, "Create")
        return AppliedAssignment(
            principal_id=desired.principal_id,
            scope=desired.scope,
            role_definition_id=normalize_role_definition_id(desired.role_definition_id),
            resource_id=resource_id,
            assignment_key=key,
        )

    async def _refresh_one(self, applied: AppliedAssignment) -> AppliedAssignment:
        """Re-read an applied entry. A vanished assignment yields a drift marker."""
        refreshed = applied.model_copy()
        if applied.resource_id is None:
            refreshed.mark_drifted()
            return refreshed

        logger.debug(f"reading role assignment: {applied.resource_id}")
        try:
            record = await self._call(self._gateway.get_by_id, applied.resource_id)
        except RoleAssignmentNotFoundError:
            refreshed.mark_drifted()
            return refreshed

        refreshed.principal_id = record.principal_id
        refreshed.scope = record.scope
        refreshed.role_definition_id = normalize_role_definition_id(record.role_definition_id)
        refreshed.resource_id = record.resource_id
        return refreshed

    async def _delete_one(self, resource_id: str) -> None:
        logger.debug(f"deleting role assignment: {resource_id}")
        try:
            await self._call(self._gateway.delete_by_id, resource_id)
        except RoleAssignmentNotFoundError:
            logger.info("Role assignment already gone", extra={"resource_id": resource_id})
            return
        self._provenance.log_change_detail(resource_id, "Delete")

    async def _call(self, func: Callable[..., T], *args: str) -> T:
        """Run a blocking gateway call with the operation timeout.

        Raises:
            RoleAssignmentGatewayError: On timeout, or whatever the gateway raised.
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, func, *args),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            operation = getattr(func, "__name__", "role assignment operation")
            raise RoleAssignmentGatewayError(
                f"{operation} timed out after {self._timeout}s"
            ) from e

    def _add_client_error(
        self,
        result: ReconcileResult,
        action: str,
        error: RoleAssignmentGatewayError,
    ) -> None:
        logger.error(
            f"Unable to {action} role assignment",
            extra={"error": str(error), "status_code": error.status_code},
        )
        result.diagnostics.add_error(
            CLIENT_ERROR_SUMMARY,
            f"Unable to {action} role assignment, got error: {error}",
        )

    def _add_drift_warning(self, result: ReconcileResult, applied: AppliedAssignment) -> None:
        result.drifted += 1
        logger.warning(
            "Role assignment no longer exists",
            extra={
                "resource_id": applied.resource_id,
                "assignment_key": str(applied.assignment_key),
            },
        )
        if not self._suppress_drift_warnings:
            result.diagnostics.add_warning(
                DRIFT_SUMMARY,
                f"Role assignment {applied.resource_id} was removed outside of this tool",
            )

    def _finish(self, result: ReconcileResult) -> ReconcileResult:
        result.end_time = datetime.now(UTC)
        logger.info(
            "Reconciliation operation complete",
            extra={
                "operation": result.operation,
                "created_count": result.created,
                "refreshed_count": result.refreshed,
                "deleted_count": result.deleted,
                "drifted_count": result.drifted,
                "errors": len(result.diagnostics.errors),
                "duration_seconds": result.duration_seconds,
            },
        )
        return result
