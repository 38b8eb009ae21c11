"""Provenance tracking for role assignment changes.

Every reconciliation pass is stamped with a provenance record answering:
- "Which role assignments did this pass create or delete?"
- "Which spec content and tool version produced them?"
- "Did anything vanish outside of our control?"

Records are emitted as structured log entries (JSON via main.setup_logging).
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
TOOL_VERSION = os.environ.get("ROLESYNC_VERSION", "dev")


@dataclass
class ChangeProvenanceSummary:
    """Summary of role assignment changes for provenance tracking."""

    create_count: int = 0
    refresh_count: int = 0
    delete_count: int = 0
    drift_count: int = 0

    @property
    def total_significant(self) -> int:
        """Total changes that touched Azure (create + delete)."""
        return self.create_count + self.delete_count


@dataclass
class ReconcileProvenance:
    """Provenance record for one reconciliation operation."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    state_id: str = ""
    tool_version: str = TOOL_VERSION
    instance_id: str = ""

    # Source of truth
    git_commit_sha: str = ""
    spec_file_hash: str = ""  # SHA256 of the spec file content

    # Azure context
    subscription_id: str = ""

    # Outcome
    operation: str = ""
    dry_run: bool = False
    change_summary: ChangeProvenanceSummary = field(default_factory=ChangeProvenanceSummary)
    duration_seconds: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


def hash_spec_content(content: str) -> str:
    """SHA256 of spec content, for correlating state with the spec that produced it."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ProvenanceLogger:
    """Logs provenance records and individual change details."""

    def __init__(self) -> None:
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")
        self._instance_id = os.environ.get("CONTAINER_INSTANCE_ID", "")

    def create_provenance(
        self,
        state_id: str,
        subscription_id: str,
        operation: str,
        spec_file_hash: str = "",
        dry_run: bool = False,
    ) -> ReconcileProvenance:
        """Create a provenance record for an operation about to run."""
        return ReconcileProvenance(
            state_id=state_id,
            tool_version=TOOL_VERSION,
            instance_id=self._instance_id,
            git_commit_sha=self._git_commit_sha,
            spec_file_hash=spec_file_hash,
            subscription_id=subscription_id,
            operation=operation,
            dry_run=dry_run,
        )

    def log_provenance(self, provenance: ReconcileProvenance) -> None:
        """Log a completed provenance record.

        Failed operations log at ERROR, operations that found drift at
        WARNING, everything else at INFO.
        """
        log_level = logging.INFO
        if provenance.error:
            log_level = logging.ERROR
        elif provenance.change_summary.drift_count > 0:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Reconciliation provenance",
            extra={
                "provenance": provenance.to_dict(),
                "state_id": provenance.state_id,
                "operation": provenance.operation,
                "changes_applied": provenance.change_summary.total_significant,
                "drift_detected": provenance.change_summary.drift_count > 0,
                "git_commit": provenance.git_commit_sha,
                "tool_version": provenance.tool_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )

    def log_change_detail(self, resource_id: str, change_type: str) -> None:
        """Log a single role assignment change for fine-grained audit."""
        logger.info(
            "Role assignment change",
            extra={
                "git_commit": self._git_commit_sha,
                "resource_id": resource_id,
                "change_type": change_type,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
