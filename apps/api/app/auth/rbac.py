"""RBAC permission matrix and checker.

Roles inherit cumulatively: viewer < editor < approver < admin.
Permissions are (action, resource_type) tuples in a set for O(1) lookup.
"""

from app.models.enums import UserRole


# ── Actions ───────────────────────────────────────────────────────────────


class Action:
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    APPROVE = "approve"
    PUBLISH = "publish"
    ROLLBACK = "rollback"
    DELETE = "delete"
    RESTORE = "restore"


# ── Resource Types ────────────────────────────────────────────────────────


class Resource:
    POLICY_VERSION = "policy_version"
    AUDIT_LOG = "audit_log"


# ── Role hierarchy (higher = more privilege) ──────────────────────────────

ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.VIEWER: 0,
    UserRole.EDITOR: 1,
    UserRole.APPROVER: 2,
    UserRole.ADMIN: 3,
}

# ── Per-role permission sets ──────────────────────────────────────────────

_VIEWER_PERMS: set[tuple[str, str]] = {
    (Action.VIEW, Resource.POLICY_VERSION),
}

_EDITOR_EXTRA: set[tuple[str, str]] = {
    (Action.CREATE, Resource.POLICY_VERSION),
    (Action.EDIT, Resource.POLICY_VERSION),
}

_APPROVER_EXTRA: set[tuple[str, str]] = {
    (Action.APPROVE, Resource.POLICY_VERSION),
    (Action.PUBLISH, Resource.POLICY_VERSION),
    (Action.VIEW, Resource.AUDIT_LOG),
}

_ADMIN_EXTRA: set[tuple[str, str]] = {
    (Action.ROLLBACK, Resource.POLICY_VERSION),
    (Action.DELETE, Resource.POLICY_VERSION),
    (Action.RESTORE, Resource.POLICY_VERSION),
}

# ── Cumulative permission matrix ──────────────────────────────────────────

PERMISSION_MATRIX: dict[UserRole, set[tuple[str, str]]] = {
    UserRole.VIEWER: _VIEWER_PERMS,
    UserRole.EDITOR: _VIEWER_PERMS | _EDITOR_EXTRA,
    UserRole.APPROVER: _VIEWER_PERMS | _EDITOR_EXTRA | _APPROVER_EXTRA,
    UserRole.ADMIN: _VIEWER_PERMS | _EDITOR_EXTRA | _APPROVER_EXTRA | _ADMIN_EXTRA,
}


# ── Public API ────────────────────────────────────────────────────────────


def check_permission(role: UserRole, action: str, resource_type: str) -> bool:
    """Check if a role has permission for an action on a resource type."""
    perms = PERMISSION_MATRIX.get(role)
    if perms is None:
        return False
    return (action, resource_type) in perms


def get_permissions_for_role(role: UserRole) -> dict[str, list[str]]:
    """Return permissions grouped by resource type."""
    perms = PERMISSION_MATRIX.get(role, set())
    result: dict[str, list[str]] = {}
    for action, resource in sorted(perms):
        result.setdefault(resource, []).append(action)
    return result
