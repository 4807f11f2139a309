"""Per-request tenant state and tenant-scoped query helpers.

``TenantMiddleware`` resets ``request.state.org_id`` / ``user_id`` on every
request; ``get_current_user`` fills them from the gateway identity headers.
It also binds the request id and path to structlog's context so every
``policy_version.*`` log line of a request can be correlated.
"""

import uuid

import structlog
from sqlalchemy.sql import Select
from starlette.types import ASGIApp, Receive, Scope, Send

_REQUEST_ID_HEADER = b"x-request-id"


def _request_id(scope: Scope) -> str:
    for name, value in scope.get("headers", []):
        if name == _REQUEST_ID_HEADER:
            return value.decode("latin-1")
    return "unknown"


class TenantMiddleware:
    """Pure ASGI middleware: tenant state plus request-scoped log context."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope.setdefault("state", {})
        scope["state"].setdefault("org_id", None)
        scope["state"].setdefault("user_id", None)

        structlog.contextvars.bind_contextvars(request_id=_request_id(scope), path=scope.get("path"))
        try:
            await self.app(scope, receive, send)
        finally:
            structlog.contextvars.clear_contextvars()


def tenant_filter(stmt: Select, org_id: uuid.UUID, model: type) -> Select:
    """Restrict ``stmt`` to rows of ``org_id``.

    Policies, versions and events all carry ``org_id``; models without the
    column are returned unfiltered.

        stmt = tenant_filter(select(PolicyVersion), current_user.org_id, PolicyVersion)
    """
    if hasattr(model, "org_id"):
        return stmt.where(model.org_id == org_id)  # type: ignore[attr-defined]
    return stmt
