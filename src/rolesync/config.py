"""Configuration management with validation.

Configuration is validated at load time so that a misconfigured reconciler
fails before it touches any role assignment.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_OPERATION_TIMEOUT_SECONDS = 60
MIN_OPERATION_TIMEOUT_SECONDS = 5
MAX_OPERATION_TIMEOUT_SECONDS = 600

DEFAULT_SPEC_FILE = "/specs/assignments.yaml"
DEFAULT_STATE_FILE = "/state/assignments.json"

# Security constraints - enforced limits to prevent abuse
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file
MAX_STATE_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB max state file

# Input validation patterns
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


@dataclass(frozen=True)
class Config:
    """Reconciler configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-pass.
    """

    # Required fields
    subscription_id: str

    # Paths
    spec_file: Path = field(default_factory=lambda: Path(DEFAULT_SPEC_FILE))
    state_file: Path = field(default_factory=lambda: Path(DEFAULT_STATE_FILE))

    # Identity
    client_id: str | None = None

    # Timing
    operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS

    # Behavior
    abort_on_delete_error: bool = False
    suppress_drift_warnings: bool = False
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not (
            MIN_OPERATION_TIMEOUT_SECONDS
            <= self.operation_timeout_seconds
            <= MAX_OPERATION_TIMEOUT_SECONDS
        ):
            errors.append(
                f"OPERATION_TIMEOUT must be between {MIN_OPERATION_TIMEOUT_SECONDS} "
                f"and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
            )

        # The spec file is checked by the loader, destroy and refresh run without one.
        # The state file itself is created on first apply, its directory is not.
        if not self.state_file.parent.exists():
            errors.append(f"State directory does not exist: {self.state_file.parent}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Subscription the authorization client binds to
            SPEC_FILE: Desired role assignments YAML (default: /specs/assignments.yaml)
            STATE_FILE: Persisted applied set JSON (default: /state/assignments.json)
            AZURE_CLIENT_ID: Client ID of a user-assigned managed identity (optional)
            OPERATION_TIMEOUT: Seconds per role assignment API call (default: 60)
            ABORT_ON_DELETE_ERROR: If "true", stop deleting at the first hard error
            SUPPRESS_WARNING_POLICY_ROLE_ASSIGNMENTS: If "true", omit drift warnings
            DRY_RUN: If "true", only compute the plan (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            spec_file=Path(os.environ.get("SPEC_FILE", DEFAULT_SPEC_FILE)),
            state_file=Path(os.environ.get("STATE_FILE", DEFAULT_STATE_FILE)),
            client_id=os.environ.get("AZURE_CLIENT_ID") or None,
            operation_timeout_seconds=get_int(
                "OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            abort_on_delete_error=get_bool("ABORT_ON_DELETE_ERROR", False),
            suppress_drift_warnings=get_bool("SUPPRESS_WARNING_POLICY_ROLE_ASSIGNMENTS", False),
            dry_run=get_bool("DRY_RUN", False),
        )
