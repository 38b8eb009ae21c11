"""Desired role assignment loading with validation.

SECURITY: File reads enforce a size limit. Input validation is performed at
the boundary, so the reconciler only ever sees well-formed assignments.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import AssignmentsSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def format_validation_error(e: ValidationError) -> str:
    """Render pydantic errors as one "  - loc: msg" line each."""
    errors = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        errors.append(f"  - {loc}: {error['msg']}")
    return "\n".join(errors)


def read_spec_text(spec_path: Path) -> str:
    """Read a spec file, enforcing the size limit.

    Raises:
        SpecLoadError: If the file is missing, too large or unreadable.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        return spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e


def parse_assignments_spec(content: str, source: str = "<string>") -> AssignmentsSpec:
    """Parse and validate desired assignments from YAML text.

    Accepts a flat document (``assignments: [...]``) or a Kubernetes-style
    wrapper with ``apiVersion``/``kind``/``spec``.

    Raises:
        SpecLoadError: If the YAML is invalid or fails validation.
    """
    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {source}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec must contain a YAML mapping: {source}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec") or {}
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {source}")
    else:
        spec_data = raw_data

    try:
        return AssignmentsSpec.model_validate(spec_data)
    except ValidationError as e:
        raise SpecLoadError(
            f"Validation failed for {source}:\n{format_validation_error(e)}"
        ) from e


def load_assignments_spec(spec_path: Path) -> AssignmentsSpec:
    """Load and validate the desired role assignments from a YAML file.

    Args:
        spec_path: Path to the spec file.

    Returns:
        Validated spec with duplicates collapsed.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    spec = parse_assignments_spec(read_spec_text(spec_path), str(spec_path))
    logger.info(
        "Loaded %d desired role assignments from %s", len(spec.assignments), spec_path
    )
    return spec
