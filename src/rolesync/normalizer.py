"""Role definition ID normalization.

ARM accepts a role definition ID in two shapes:

    /subscriptions/{sub}/providers/Microsoft.Authorization/roleDefinitions/{guid}
    /providers/Microsoft.Authorization/roleDefinitions/{guid}

The subscription-scoped form and the tenant-root form refer to the same built-in
role, and ARM may echo back either one. Comparisons and persisted values use the
tenant-root form so that equality does not depend on how the ID was written.
"""

from __future__ import annotations

# "/subscriptions/{sub}/providers/..." splits into 7 segments; the leading
# empty segment plus "subscriptions" and the subscription ID are dropped.
SUBSCRIPTION_SCOPED_SEGMENT_COUNT = 7
SUBSCRIPTION_PREFIX_SEGMENTS = 3


def normalize_role_definition_id(role_definition_id: str) -> str:
    """Return the tenant-root form of a role definition ID.

    IDs that are not subscription-scoped (already normalized, or malformed) are
    returned unchanged. The function is idempotent.

    Args:
        role_definition_id: Role definition resource ID.

    Returns:
        Normalized role definition ID.
    """
    segments = role_definition_id.split("/")
    if len(segments) == SUBSCRIPTION_SCOPED_SEGMENT_COUNT:
        return "/" + "/".join(segments[SUBSCRIPTION_PREFIX_SEGMENTS:])
    return role_definition_id
