"""Secretless credential handling.

Role assignments are written with a managed identity only:
- AZURE_CLIENT_SECRET and friends must never be present in the environment
- ManagedIdentityCredential is the ONLY credential type handed out
- All authentication flows through Entra ID tokens
"""

from __future__ import annotations

import logging
import os

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = (
    "SECURITY VIOLATION: {env_var} is set. Role assignments are managed with a "
    "managed identity only; service principal secrets and passwords are not allowed. "
    "Remove the variable and assign a managed identity with User Access Administrator "
    "(or a constrained equivalent) on the target scopes."
)


class SecretlessViolationError(Exception):
    """Raised when credential secrets are found in the environment."""

    pass


def enforce_secretless_architecture() -> None:
    """Refuse to continue when credential secrets are present.

    Raises:
        SecretlessViolationError: If any credential environment variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))

    logger.info(
        "Secretless architecture verified",
        extra={"security_event": "secretless_verified", "credential_type": "ManagedIdentity"},
    )


def get_managed_identity_credential(
    client_id: str | None = None,
) -> ManagedIdentityCredential:
    """Get a ManagedIdentityCredential after verifying secretless architecture.

    Args:
        client_id: Client ID of a user-assigned managed identity. If None,
                   the system-assigned identity is used.

    Raises:
        SecretlessViolationError: If credential environment variables detected.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()
