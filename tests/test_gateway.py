"""Tests for the Azure role assignment gateway."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import (
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure_mock import (
    READER_ROLE_ID,
    SUBSCRIPTION_ID,
    SUBSCRIPTION_SCOPE,
    MockRoleAssignmentState,
)

from rolesync.gateway import (
    AzureRoleAssignmentGateway,
    RoleAssignmentGatewayError,
    RoleAssignmentNotFoundError,
)

NAME = "3882958e-d42e-55eb-aed9-4c9827d1cf2d"
RESOURCE_ID = f"{SUBSCRIPTION_SCOPE}/providers/Microsoft.Authorization/roleAssignments/{NAME}"


class TestCreate:
    """Tests for AzureRoleAssignmentGateway.create."""

    def test_returns_resource_id(
        self, gateway: AzureRoleAssignmentGateway, azure_state: MockRoleAssignmentState
    ) -> None:
        resource_id = gateway.create(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)

        assert resource_id == RESOURCE_ID
        assert azure_state.assignments[RESOURCE_ID].principal_id == "p1"
        assert azure_state.assignments[RESOURCE_ID].role_definition_id == READER_ROLE_ID

    def test_is_idempotent_for_same_name(
        self, gateway: AzureRoleAssignmentGateway, azure_state: MockRoleAssignmentState
    ) -> None:
        first = gateway.create(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)
        second = gateway.create(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)

        assert first == second
        assert azure_state.assignment_count == 1

    def test_http_error_wrapped(
        self, gateway: AzureRoleAssignmentGateway, azure_state: MockRoleAssignmentState
    ) -> None:
        azure_state.fail("create", 403)

        with pytest.raises(RoleAssignmentGatewayError) as exc_info:
            gateway.create(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)

        assert exc_info.value.status_code == 403
        assert not isinstance(exc_info.value, RoleAssignmentNotFoundError)

    def test_missing_id_in_response_rejected(self) -> None:
        client = MagicMock()
        client.role_assignments.create.return_value = MagicMock(id=None)
        gateway = AzureRoleAssignmentGateway(
            credential=MagicMock(), subscription_id=SUBSCRIPTION_ID, client=client
        )

        with pytest.raises(RoleAssignmentGatewayError):
            gateway.create(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)

    def test_sends_principal_and_role(self) -> None:
        client = MagicMock()
        client.role_assignments.create.return_value = MagicMock(id=RESOURCE_ID)
        gateway = AzureRoleAssignmentGateway(
            credential=MagicMock(), subscription_id=SUBSCRIPTION_ID, client=client
        )

        gateway.create(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)

        kwargs = client.role_assignments.create.call_args.kwargs
        assert kwargs["scope"] == SUBSCRIPTION_SCOPE
        assert kwargs["role_assignment_name"] == NAME
        assert kwargs["parameters"].principal_id == "p1"
        assert kwargs["parameters"].role_definition_id == READER_ROLE_ID


class TestGetById:
    """Tests for AzureRoleAssignmentGateway.get_by_id."""

    def test_returns_record(
        self, gateway: AzureRoleAssignmentGateway, azure_state: MockRoleAssignmentState
    ) -> None:
        azure_state.put(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)

        record = gateway.get_by_id(RESOURCE_ID)

        assert record.resource_id == RESOURCE_ID
        assert record.principal_id == "p1"
        assert record.scope == SUBSCRIPTION_SCOPE
        assert record.role_definition_id == READER_ROLE_ID

    def test_missing_raises_not_found(self, gateway: AzureRoleAssignmentGateway) -> None:
        with pytest.raises(RoleAssignmentNotFoundError) as exc_info:
            gateway.get_by_id(RESOURCE_ID)
        assert exc_info.value.resource_id == RESOURCE_ID

    def test_plain_http_404_is_not_found(self) -> None:
        error = HttpResponseError(message="gone")
        error.status_code = 404
        client = MagicMock()
        client.role_assignments.get_by_id.side_effect = error
        gateway = AzureRoleAssignmentGateway(
            credential=MagicMock(), subscription_id=SUBSCRIPTION_ID, client=client
        )

        with pytest.raises(RoleAssignmentNotFoundError):
            gateway.get_by_id(RESOURCE_ID)

    def test_server_error_is_not_not_found(
        self, gateway: AzureRoleAssignmentGateway, azure_state: MockRoleAssignmentState
    ) -> None:
        azure_state.fail("get_by_id", 500)

        with pytest.raises(RoleAssignmentGatewayError) as exc_info:
            gateway.get_by_id(RESOURCE_ID)

        assert not isinstance(exc_info.value, RoleAssignmentNotFoundError)
        assert "500" in str(exc_info.value)

    def test_non_http_azure_error_wrapped(self) -> None:
        client = MagicMock()
        client.role_assignments.get_by_id.side_effect = ServiceRequestError("connection reset")
        gateway = AzureRoleAssignmentGateway(
            credential=MagicMock(), subscription_id=SUBSCRIPTION_ID, client=client
        )

        with pytest.raises(RoleAssignmentGatewayError):
            gateway.get_by_id(RESOURCE_ID)


class TestDeleteById:
    """Tests for AzureRoleAssignmentGateway.delete_by_id."""

    def test_deletes(
        self, gateway: AzureRoleAssignmentGateway, azure_state: MockRoleAssignmentState
    ) -> None:
        azure_state.put(SUBSCRIPTION_SCOPE, NAME, "p1", READER_ROLE_ID)

        gateway.delete_by_id(RESOURCE_ID)

        assert azure_state.assignment_count == 0

    def test_no_content_is_not_found(self, gateway: AzureRoleAssignmentGateway) -> None:
        with pytest.raises(RoleAssignmentNotFoundError):
            gateway.delete_by_id(RESOURCE_ID)

    def test_resource_not_found_error_is_not_found(
        self, gateway: AzureRoleAssignmentGateway, azure_state: MockRoleAssignmentState
    ) -> None:
        azure_state.fail("delete_by_id", 404)

        with pytest.raises(RoleAssignmentNotFoundError):
            gateway.delete_by_id(RESOURCE_ID)

    def test_conflict_wrapped(self) -> None:
        client = MagicMock()
        error = HttpResponseError(message="locked")
        error.status_code = 409
        client.role_assignments.delete_by_id.side_effect = error
        gateway = AzureRoleAssignmentGateway(
            credential=MagicMock(), subscription_id=SUBSCRIPTION_ID, client=client
        )

        with pytest.raises(RoleAssignmentGatewayError) as exc_info:
            gateway.delete_by_id(RESOURCE_ID)

        assert exc_info.value.status_code == 409

    def test_not_found_error_class(self) -> None:
        client = MagicMock()
        client.role_assignments.delete_by_id.side_effect = ResourceNotFoundError("gone")
        gateway = AzureRoleAssignmentGateway(
            credential=MagicMock(), subscription_id=SUBSCRIPTION_ID, client=client
        )

        with pytest.raises(RoleAssignmentNotFoundError):
            gateway.delete_by_id(RESOURCE_ID)
