"""Role assignment gateway: the narrow Azure capability the reconciler needs.

ARM has no notion of a set of role assignments. It offers single-object
operations only, and the reconciler needs three of them:

- create a role assignment with a caller-chosen name at a scope
- get a role assignment by its resource ID
- delete a role assignment by its resource ID

RoleAssignmentGateway is the interface the reconciler depends on.
AzureRoleAssignmentGateway implements it with the Azure authorization
management SDK. A missing role assignment is reported with
RoleAssignmentNotFoundError, every other failure with RoleAssignmentGatewayError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.authorization.models import RoleAssignmentCreateParameters

if TYPE_CHECKING:
    from azure.core.credentials import TokenCredential

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


class RoleAssignmentGatewayError(Exception):
    """Raised when a role assignment operation fails for any reason but NotFound."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RoleAssignmentNotFoundError(RoleAssignmentGatewayError):
    """Raised when the role assignment does not exist (HTTP 404)."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"Role assignment not found: {resource_id}", HTTP_NOT_FOUND)
        self.resource_id = resource_id


@dataclass(frozen=True)
class RoleAssignmentRecord:
    """Role assignment as read back from Azure."""

    resource_id: str
    principal_id: str
    scope: str
    role_definition_id: str


class RoleAssignmentGateway(Protocol):
    """Single-object role assignment operations."""

    def create(
        self,
        scope: str,
        name: str,
        principal_id: str,
        role_definition_id: str,
    ) -> str:
        """Create a role assignment and return its resource ID."""
        ...

    def get_by_id(self, resource_id: str) -> RoleAssignmentRecord:
        """Read a role assignment; raise RoleAssignmentNotFoundError if missing."""
        ...

    def delete_by_id(self, resource_id: str) -> None:
        """Delete a role assignment; raise RoleAssignmentNotFoundError if missing."""
        ...


def _translate_error(e: AzureError, resource_id: str) -> RoleAssignmentGatewayError:
    """Map an Azure SDK error onto the gateway's error types."""
    if isinstance(e, ResourceNotFoundError):
        return RoleAssignmentNotFoundError(resource_id)
    if isinstance(e, HttpResponseError):
        if e.status_code == HTTP_NOT_FOUND:
            return RoleAssignmentNotFoundError(resource_id)
        return RoleAssignmentGatewayError(
            f"Azure API error ({e.status_code}): {e.message}", e.status_code
        )
    return RoleAssignmentGatewayError(f"Azure error: {e}")


class AzureRoleAssignmentGateway:
    """RoleAssignmentGateway backed by AuthorizationManagementClient.

    The client is shared by every reconciliation pass of a process. Retries
    and backoff are left to the SDK's pipeline policies.
    """

    def __init__(
        self,
        credential: TokenCredential,
        subscription_id: str,
        client: AuthorizationManagementClient | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            credential: Azure credential (managed identity).
            subscription_id: Subscription the client is bound to. Role
                assignment operations are scope-addressed, so this only
                selects the default endpoint context.
            client: Pre-built client, mainly for tests.
        """
        self._client = client or AuthorizationManagementClient(
            credential=credential,
            subscription_id=subscription_id,
        )

    def create(
        self,
        scope: str,
        name: str,
        principal_id: str,
        role_definition_id: str,
    ) -> str:
        logger.debug(
            "Creating role assignment",
            extra={"scope": scope, "assignment_name": name, "principal_id": principal_id},
        )
        parameters = RoleAssignmentCreateParameters(
            principal_id=principal_id,
            role_definition_id=role_definition_id,
        )
        try:
            created = self._client.role_assignments.create(
                scope=scope,
                role_assignment_name=name,
                parameters=parameters,
            )
        except AzureError as e:
            target = f"{scope}/providers/Microsoft.Authorization/roleAssignments/{name}"
            raise _translate_error(e, target) from e

        if not created.id:
            raise RoleAssignmentGatewayError(
                f"Role assignment '{name}' at scope {scope} was created without a resource ID"
            )
        return created.id

    def get_by_id(self, resource_id: str) -> RoleAssignmentRecord:
        logger.debug("Reading role assignment", extra={"resource_id": resource_id})
        try:
            assignment = self._client.role_assignments.get_by_id(
                role_assignment_id=resource_id,
            )
        except AzureError as e:
            raise _translate_error(e, resource_id) from e

        return RoleAssignmentRecord(
            resource_id=assignment.id or resource_id,
            principal_id=assignment.principal_id or "",
            scope=assignment.scope or "",
            role_definition_id=assignment.role_definition_id or "",
        )

    def delete_by_id(self, resource_id: str) -> None:
        logger.debug("Deleting role assignment", extra={"resource_id": resource_id})
        try:
            deleted = self._client.role_assignments.delete_by_id(
                role_assignment_id=resource_id,
            )
        except AzureError as e:
            raise _translate_error(e, resource_id) from e

        # ARM answers 204 No Content when the role assignment was already gone
        if deleted is None:
            raise RoleAssignmentNotFoundError(resource_id)
