"""Persisted applied set.

The state file records every role assignment this tool created, with the
resource ID Azure assigned it. It is the "current" side of every
reconciliation and is rewritten after each pass, including failed ones.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .config import MAX_STATE_FILE_SIZE_BYTES
from .models import AssignmentsState
from .spec_loader import format_validation_error

logger = logging.getLogger(__name__)


class StateError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


class StateStore:
    """JSON file holding the applied set of one logical resource instance."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> AssignmentsState:
        """Load state; a missing file is an empty state.

        Raises:
            StateError: If the file is too large, unreadable or malformed.
        """
        if not self._path.exists():
            logger.info("No state file at %s, starting empty", self._path)
            return AssignmentsState()

        try:
            file_size = self._path.stat().st_size
        except OSError as e:
            raise StateError(f"Failed to stat state file {self._path}: {e}") from e

        if file_size > MAX_STATE_FILE_SIZE_BYTES:
            raise StateError(
                f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: "
                f"{self._path}"
            )

        try:
            raw_data = json.loads(self._path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StateError(f"Failed to read state file {self._path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StateError(f"Invalid JSON in {self._path}: {e}") from e

        try:
            return AssignmentsState.model_validate(raw_data)
        except ValidationError as e:
            raise StateError(
                f"Validation failed for {self._path}:\n{format_validation_error(e)}"
            ) from e

    def save(self, state: AssignmentsState) -> None:
        """Write state atomically (temp file in the same directory, then replace).

        Raises:
            StateError: If the file cannot be written.
        """
        content = json.dumps(state.model_dump(mode="json", by_alias=True), indent=2)
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise StateError(f"Failed to write state file {self._path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.write("\n")
            os.replace(tmp_name, self._path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StateError(f"Failed to write state file {self._path}: {e}") from e

        logger.info(
            "Saved %d role assignments to %s", len(state.assignments), self._path
        )
