"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from azure_mock import (  # noqa: E402
    SUBSCRIPTION_ID,
    MockAuthorizationClient,
    MockRoleAssignmentState,
)

from rolesync.gateway import AzureRoleAssignmentGateway  # noqa: E402
from rolesync.main import JsonFormatter  # noqa: E402
from rolesync.reconciler import RoleAssignmentReconciler  # noqa: E402
from rolesync.security import FORBIDDEN_CREDENTIAL_ENV_VARS  # noqa: E402


@pytest.fixture
def azure_state() -> MockRoleAssignmentState:
    """In-memory role assignments."""
    return MockRoleAssignmentState()


@pytest.fixture
def gateway(azure_state: MockRoleAssignmentState) -> AzureRoleAssignmentGateway:
    """Real gateway wired to the mock authorization client."""
    return AzureRoleAssignmentGateway(
        credential=None,  # type: ignore[arg-type]
        subscription_id=SUBSCRIPTION_ID,
        client=MockAuthorizationClient(azure_state, SUBSCRIPTION_ID),  # type: ignore[arg-type]
    )


@pytest.fixture
def reconciler(gateway: AzureRoleAssignmentGateway) -> RoleAssignmentReconciler:
    return RoleAssignmentReconciler(gateway, operation_timeout_seconds=5)


@pytest.fixture
def secretless_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment without credential secrets, so startup is not blocked."""
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """Remove handlers installed by setup_logging during a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
