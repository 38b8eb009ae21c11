"""Azure API mock for role assignment tests.

In-memory simulation of the authorization client's role_assignments
operations, with call recording, error injection and external deletion.

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext() as ctx:
        ...
        assert ctx.state.call_count("create") == 1
"""

from .context import MockAzureContext
from .credential import MockManagedIdentityCredential, create_mock_credential
from .resources import (
    CONTRIBUTOR_ROLE_ID,
    READER_ROLE_ID,
    ROLE_ASSIGNMENT_PROVIDER,
    SUBSCRIPTION_ID,
    SUBSCRIPTION_SCOPE,
    MockAuthorizationClient,
    MockRoleAssignment,
    MockRoleAssignmentState,
    MockRoleAssignmentsOperations,
)

__all__ = [
    "CONTRIBUTOR_ROLE_ID",
    "READER_ROLE_ID",
    "ROLE_ASSIGNMENT_PROVIDER",
    "SUBSCRIPTION_ID",
    "SUBSCRIPTION_SCOPE",
    "MockAuthorizationClient",
    "MockAzureContext",
    "MockManagedIdentityCredential",
    "MockRoleAssignment",
    "MockRoleAssignmentState",
    "MockRoleAssignmentsOperations",
    "create_mock_credential",
]
