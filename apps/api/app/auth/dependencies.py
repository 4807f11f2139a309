"""FastAPI auth dependencies: get_current_user, require_permission.

Authentication happens at the gateway. It forwards the verified identity
as the ``X-User-Id``, ``X-Org-Id`` and ``X-User-Role`` headers, which are
only trusted because the API is not reachable from outside the gateway.
"""

import uuid

import sentry_sdk
import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from app.auth.rbac import check_permission
from app.models.enums import UserRole
from app.schemas.auth import CurrentUser

logger = structlog.get_logger()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_org_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> CurrentUser:
    """Resolve the acting user from the gateway identity headers."""
    if not x_user_id or not x_org_id or not x_user_role:
        raise _unauthorized("Missing identity headers")

    try:
        user_id = uuid.UUID(x_user_id)
        org_id = uuid.UUID(x_org_id)
        role = UserRole(x_user_role.strip().lower())
    except ValueError as e:
        logger.warning("identity_headers_invalid", error=str(e))
        raise _unauthorized("Malformed identity headers") from e

    current_user = CurrentUser(user_id=user_id, org_id=org_id, role=role)

    request.state.org_id = org_id
    request.state.user_id = user_id

    # Enrich Sentry scope with identity (PII-free)
    sentry_sdk.set_user({"id": str(user_id)})
    sentry_sdk.set_tag("org_id", str(org_id))
    sentry_sdk.set_tag("user_role", role.value)

    return current_user


def ensure_permission(current_user: CurrentUser, action: str, resource_type: str) -> None:
    if not check_permission(current_user.role, action, resource_type):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied: {action} on {resource_type}",
        )


def require_permission(action: str, resource_type: str):
    """
    Dependency factory: checks a specific (action, resource_type) permission.

    Usage:
        @router.post("/...", dependencies=[Depends(require_permission("create", "policy_version"))])
    """

    async def _check_perm(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        ensure_permission(current_user, action, resource_type)
        return current_user

    return _check_perm
