"""Deterministic role assignment names.

Role assignment names must be GUIDs. Deriving the name from the assignment's
content makes creation idempotent: re-sending the same create request after a
partial failure targets the same role assignment instead of a duplicate.
"""

from __future__ import annotations

import uuid

ASSIGNMENT_KEY_NAMESPACE = uuid.NAMESPACE_URL


def assignment_key(principal_id: str, scope: str, role_definition_id: str) -> uuid.UUID:
    """Derive the assignment key for a (principal, scope, role) triple.

    The key is a version 5 UUID over the raw concatenation of the three fields.
    The role definition ID is deliberately NOT normalized first: keys of role
    assignments that already exist in Azure were derived from raw values, and
    changing the derivation would orphan them.

    Args:
        principal_id: Object ID of the principal receiving the role.
        scope: Scope the role is granted on.
        role_definition_id: Role definition ID as declared.

    Returns:
        The deterministic assignment key.
    """
    return uuid.uuid5(ASSIGNMENT_KEY_NAMESPACE, principal_id + scope + role_definition_id)
