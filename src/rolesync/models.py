"""Pydantic models for desired and applied role assignments.

These models provide:
1. Type-safe YAML/JSON parsing of the desired set and the persisted state
2. Validation at the boundary (fail fast, fail loudly)
3. Structural matching between desired and applied entries
"""

from __future__ import annotations

import uuid
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

from .keys import assignment_key
from .normalizer import normalize_role_definition_id

# Structural identity of a role assignment: (principal_id, role_definition_id, scope)
AssignmentTriple = tuple[str | None, str | None, str | None]


class DesiredAssignment(BaseModel):
    """A role assignment the caller wants to exist."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    principal_id: Annotated[str, Field(min_length=1, alias="principalId")]
    scope: Annotated[str, Field(min_length=1)]
    role_definition_id: Annotated[str, Field(min_length=1, alias="roleDefinitionId")]

    @field_validator("principal_id", "scope", "role_definition_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @property
    def key(self) -> uuid.UUID:
        """Deterministic assignment key, used as the role assignment name."""
        return assignment_key(self.principal_id, self.scope, self.role_definition_id)

    def triple(self) -> AssignmentTriple:
        """Structural identity, with the role definition ID in its stored form."""
        role_definition_id = normalize_role_definition_id(self.role_definition_id)
        return (self.principal_id, role_definition_id, self.scope)


class AppliedAssignment(BaseModel):
    """A role assignment materialized in Azure and tracked in state.

    When a refresh finds the role assignment gone, the identifying fields are
    set to None and the record is kept. Such a record is a drift marker: it
    no longer matches any desired assignment, so the next update re-creates
    the desired one and drops the marker.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    principal_id: str | None = Field(None, alias="principalId")
    scope: str | None = None
    role_definition_id: str | None = Field(None, alias="roleDefinitionId")
    resource_id: str | None = Field(None, alias="resourceId")
    assignment_key: uuid.UUID | None = Field(None, alias="assignmentKey")

    @property
    def is_drifted(self) -> bool:
        return (
            self.principal_id is None
            and self.scope is None
            and self.role_definition_id is None
            and self.resource_id is None
        )

    def triple(self) -> AssignmentTriple:
        return (self.principal_id, self.role_definition_id, self.scope)

    def matches(self, desired: DesiredAssignment) -> bool:
        """Check structural equality with a desired assignment."""
        return self.triple() == desired.triple()

    def mark_drifted(self) -> None:
        """Null the identifying fields, keeping the assignment key."""
        self.principal_id = None
        self.scope = None
        self.role_definition_id = None
        self.resource_id = None


class AssignmentsSpec(BaseModel):
    """Desired set of policy role assignments."""

    model_config = {"extra": "ignore"}

    assignments: list[DesiredAssignment] = Field(default_factory=list)

    @field_validator("assignments")
    @classmethod
    def collapse_duplicates(cls, v: list[DesiredAssignment]) -> list[DesiredAssignment]:
        # The desired input is a set; identical triples would race for the same name
        seen: set[AssignmentTriple] = set()
        unique: list[DesiredAssignment] = []
        for desired in v:
            if desired.triple() in seen:
                continue
            seen.add(desired.triple())
            unique.append(desired)
        return unique


class AssignmentsState(BaseModel):
    """Persisted applied set for one logical resource instance."""

    model_config = {"extra": "ignore"}

    id: str = ""
    assignments: list[AppliedAssignment] = Field(default_factory=list)
