"""Error taxonomy for policy version control.

Every error carries a stable ``error`` code, the HTTP status the API maps it
to, a human message and a ``detail`` dict naming the policy, version or field
involved so callers can render an actionable message.
"""

from __future__ import annotations

import uuid
from typing import Any


class VersionControlError(Exception):
    error = "version_control_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = {
            key: str(value) if isinstance(value, uuid.UUID) else value
            for key, value in detail.items()
            if value is not None
        }


class NotFoundError(VersionControlError):
    error = "not_found"
    status_code = 404


class PolicyNotFoundError(NotFoundError):
    def __init__(self, policy_id: uuid.UUID | str) -> None:
        super().__init__(f"Policy {policy_id} not found", policy_id=policy_id)


class VersionNotFoundError(NotFoundError):
    def __init__(
        self,
        version_id: uuid.UUID | str,
        policy_id: uuid.UUID | str | None = None,
    ) -> None:
        super().__init__(
            f"Policy version {version_id} not found",
            version_id=version_id,
            policy_id=policy_id,
        )


class InvalidReasonError(VersionControlError):
    error = "invalid_reason"
    status_code = 422


class InvalidTransitionError(VersionControlError):
    error = "invalid_transition"
    status_code = 422


class InvalidComparisonError(VersionControlError):
    error = "invalid_comparison"
    status_code = 422


class ForbiddenError(VersionControlError):
    error = "forbidden"
    status_code = 403


class VersionConflictError(VersionControlError):
    """Version number allocation lost a race and ran out of retries."""

    error = "conflict"
    status_code = 409
    retryable = True
